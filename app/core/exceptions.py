"""Custom exception classes for the application."""

from typing import Any


class TopicTriageError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# Retrieval Errors
class TransientRetrievalError(TopicTriageError):
    """One retrieval strategy failed or timed out."""

    def __init__(self, strategy: str, message: str) -> None:
        self.strategy = strategy
        super().__init__(
            f"Retrieval strategy {strategy} failed: {message}",
            {"strategy": strategy},
        )


# Planner Errors
class PlannerError(TopicTriageError):
    """Planner was unresponsive or returned an unusable step."""

    pass


# Validation Errors
class ValidationError(TopicTriageError):
    """A finalize step was rejected before it could be applied."""

    pass


# Persistence Errors
class PersistenceError(TopicTriageError):
    """Applying a decision against the topic store failed."""

    pass


class TopicNotFoundError(PersistenceError):
    """Topic not found."""

    def __init__(self, topic_id: str) -> None:
        super().__init__(f"Topic not found: {topic_id}", {"topic_id": topic_id})


# External API Errors
class ExternalAPIError(TopicTriageError):
    """Error calling external API."""

    def __init__(self, api_name: str, message: str) -> None:
        super().__init__(f"{api_name} API error: {message}", {"api": api_name})


class APIKeyMissingError(ExternalAPIError):
    """API key not configured."""

    def __init__(self, api_name: str) -> None:
        super().__init__(api_name, "API key not configured")

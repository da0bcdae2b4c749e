"""Categorization decision and result schemas."""

from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.topic import ProposedTopic

DecisionAction = Literal["assign", "create"]
DecisionSource = Literal["planner", "fallback", "validator"]


class Decision(BaseModel):
    """Terminal decision handed to the apply step."""

    action: DecisionAction
    reasoning: str
    target_topic_id: str | None = None
    target_topic_name: str | None = None
    proposed_topic: ProposedTopic | None = None
    improved_name: str | None = None
    improved_description: str | None = None
    iteration_count: int = 0
    source: DecisionSource = "planner"


class CategorizationResult(BaseModel):
    """Outcome of categorizing one message."""

    message_id: str
    topic_id: str
    topic_name: str
    decision: DecisionAction
    reasoning: str
    iteration_count: int
    processing_time_ms: int
    rerouted_from_create: bool = False


class BatchItemResult(BaseModel):
    """Per-message entry of a batch run."""

    message_id: str
    result: CategorizationResult | None = None
    skipped: bool = False
    error: str | None = None
    error_type: str | None = None


class BatchResult(BaseModel):
    """Aggregate outcome of a batch run."""

    items: list[BatchItemResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.result is not None)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.error is not None)

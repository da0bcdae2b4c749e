"""Topic schemas."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

MAX_SAMPLE_UTTERANCES = 10
SAMPLE_UTTERANCE_CHARS = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        cleaned = str(value).strip()
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())
        result.append(cleaned)
    return result


class ProposedTopic(BaseModel):
    """Fields a planner supplies when it wants a new topic."""

    name: str
    description: str = ""
    keywords: list[str] = Field(default_factory=list)

    @field_validator("keywords", mode="before")
    @classmethod
    def _dedupe_keywords(cls, value: object) -> object:
        if isinstance(value, list):
            return _dedupe([str(item) for item in value])
        return value


class Topic(BaseModel):
    """A taxonomy entry that messages get assigned to."""

    id: str
    name: str
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    sample_utterances: list[str] = Field(default_factory=list)
    contributors: list[str] = Field(default_factory=list)
    message_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {"from_attributes": True, "frozen": True}

    @field_validator("keywords", "contributors", mode="before")
    @classmethod
    def _dedupe_lists(cls, value: object) -> object:
        if isinstance(value, list):
            return _dedupe([str(item) for item in value])
        return value

    @field_validator("sample_utterances", mode="before")
    @classmethod
    def _bound_samples(cls, value: object) -> object:
        if isinstance(value, list):
            return list(value)[-MAX_SAMPLE_UTTERANCES:]
        return value


class TopicCreate(BaseModel):
    """Schema for creating a topic."""

    name: str
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    sample_utterances: list[str] = Field(default_factory=list)
    contributors: list[str] = Field(default_factory=list)
    message_count: int = 0


class TopicUpdate(BaseModel):
    """Schema for updating a topic. ``None`` leaves a field untouched."""

    name: str | None = None
    description: str | None = None
    keywords: list[str] | None = None
    sample_utterances: list[str] | None = None
    contributors: list[str] | None = None
    message_count: int | None = None

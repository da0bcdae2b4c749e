"""Planner step and observation schemas."""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from app.schemas.topic import ProposedTopic


class FetchContextStep(BaseModel):
    """Gather recent channel history and thread ancestry."""

    tool: Literal["fetch_context"] = "fetch_context"
    message_count: int = Field(default=5, ge=1, le=10)


class FindTopicsStep(BaseModel):
    """Search the taxonomy with a (possibly reformulated) query."""

    tool: Literal["find_topics"] = "find_topics"
    query: str = Field(description="Search query: the message text or extracted keywords")
    include_all: bool = Field(default=False, description="Also return a topic overview")


class FinalizeStep(BaseModel):
    """Commit to assigning an existing topic or creating a new one."""

    tool: Literal["finalize"] = "finalize"
    action: Literal["assign", "create"]
    reasoning: str = Field(description="Brief explanation of the categorization path")
    topic_id: str | None = Field(default=None, description="Required when action is assign")
    topic_name: str | None = None
    improved_name: str | None = Field(
        default=None, description="Optional better name for the assigned topic"
    )
    improved_description: str | None = Field(
        default=None, description="Optional better description for the assigned topic"
    )
    new_topic: ProposedTopic | None = Field(
        default=None, description="Required when action is create"
    )


PlannerStep = Annotated[
    FetchContextStep | FindTopicsStep | FinalizeStep,
    Field(discriminator="tool"),
]


class PlannerResponse(BaseModel):
    """Structured planner output wrapping exactly one step."""

    step: PlannerStep


class MessageSummary(BaseModel):
    """What the planner knows about the message being categorized."""

    message_id: str
    text: str
    length: int
    user: str
    channel_name: str
    is_thread_reply: bool
    is_short: bool


class PlannerObservation(BaseModel):
    """Input for one planner turn."""

    message: MessageSummary
    iteration: int
    max_iterations: int
    last_tool: str | None = None
    last_result: dict[str, Any] | None = None
    error: str | None = None


class PlannerTurn(BaseModel):
    """A completed planner turn: the chosen step and what it produced."""

    iteration: int
    step: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    error: str | None = None

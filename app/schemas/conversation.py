"""Per-channel conversation state schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.topic import utcnow

RECENT_ACTIVITY_LIMIT = 20


class ActivityEntry(BaseModel):
    """A categorized message remembered for its channel."""

    ts: str
    message_id: str
    text: str = ""
    user: str = ""
    topic_id: str
    topic_name: str
    recorded_at: datetime = Field(default_factory=utcnow)


class ConversationState(BaseModel):
    """Recent categorizations in one channel and the topic it is on."""

    channel_id: str
    recent_activity: list[ActivityEntry] = Field(default_factory=list)
    current_topic_id: str | None = None
    current_topic_name: str | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    def record(self, entry: ActivityEntry, limit: int = RECENT_ACTIVITY_LIMIT) -> None:
        """Append ``entry`` (oldest dropped first) and make its topic current."""
        self.recent_activity.append(entry)
        if limit > 0 and len(self.recent_activity) > limit:
            del self.recent_activity[: len(self.recent_activity) - limit]
        self.current_topic_id = entry.topic_id
        self.current_topic_name = entry.topic_name
        self.updated_at = utcnow()

    def topic_for_ts(self, ts: str) -> ActivityEntry | None:
        for entry in reversed(self.recent_activity):
            if entry.ts == ts:
                return entry
        return None

"""Chat message schemas."""

from pydantic import BaseModel


class IncomingMessage(BaseModel):
    """A chat message waiting to be categorized."""

    channel_id: str
    channel_name: str = ""
    ts: str
    text: str = ""
    user: str = ""
    user_name: str | None = None
    thread_ts: str | None = None

    @property
    def message_id(self) -> str:
        return f"{self.channel_id}:{self.ts}"

    @property
    def is_thread_reply(self) -> bool:
        return bool(self.thread_ts) and self.thread_ts != self.ts

    @property
    def contributor(self) -> str:
        return self.user_name or self.user


class HistoryMessage(BaseModel):
    """A prior message returned by the conversation history provider."""

    ts: str
    text: str = ""
    user: str = ""
    user_name: str | None = None
    thread_ts: str | None = None

"""Conversation context for the ``fetch_context`` tool."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, TypeVar

from app.config import Settings, settings
from app.persistence.contracts import HistoryProvider
from app.schemas.conversation import ConversationState
from app.schemas.message import HistoryMessage, IncomingMessage
from app.services.categorization.text import truncate
from app.services.conversation_state import ConversationTracker

logger = logging.getLogger(__name__)

THREAD_PARENT_PREVIEW = 200
ANALYZE_HINT = "Analyze message content to find or create appropriate topic"

T = TypeVar("T")


def minutes_between(later_ts: str, earlier_ts: str) -> int | None:
    """Whole minutes between two chat timestamps (epoch seconds as strings)."""
    try:
        return max(0, round((float(later_ts) - float(earlier_ts)) / 60))
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class ContextGatherer:
    """Collects recent history, thread ancestry and channel state concurrently."""

    history: HistoryProvider | None
    tracker: ConversationTracker
    timeout: float = settings.context_timeout_seconds
    max_messages: int = settings.max_context_messages
    short_message_chars: int = settings.short_message_chars

    @classmethod
    def from_settings(
        cls,
        history: HistoryProvider | None,
        tracker: ConversationTracker,
        config: Settings = settings,
    ) -> "ContextGatherer":
        return cls(
            history=history,
            tracker=tracker,
            timeout=config.context_timeout_seconds,
            max_messages=config.max_context_messages,
            short_message_chars=config.short_message_chars,
        )

    async def _bounded(
        self,
        name: str,
        awaitable: Awaitable[list[T]],
        log_extra: dict[str, Any],
    ) -> list[T]:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Context fetch timed out", extra={**log_extra, "fetch": name})
        except Exception as e:
            logger.warning(
                "Context fetch failed",
                extra={**log_extra, "fetch": name, "error": str(e)},
            )
        return []

    async def _channel_state(
        self,
        channel_id: str,
        log_extra: dict[str, Any],
    ) -> ConversationState | None:
        try:
            return await asyncio.wait_for(self.tracker.get(channel_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Channel state read timed out",
                extra={**log_extra, "channel_id": channel_id},
            )
        except Exception as e:
            logger.warning(
                "Channel state read failed",
                extra={**log_extra, "channel_id": channel_id, "error": str(e)},
            )
        return None

    async def _no_messages(self) -> list[HistoryMessage]:
        return []

    async def gather(
        self,
        message: IncomingMessage,
        message_count: int,
        *,
        log_extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Build the context payload for ``message``; fetch failures degrade to empty."""
        extra = dict(log_extra or {})
        count = max(1, min(message_count, self.max_messages))

        if self.history is not None:
            recent_call = self.history.messages_before(message.channel_id, message.ts, count)
            thread_call = (
                self.history.thread_messages(message.channel_id, message.thread_ts)
                if message.is_thread_reply and message.thread_ts
                else self._no_messages()
            )
        else:
            recent_call = self._no_messages()
            thread_call = self._no_messages()

        recent, thread, state = await asyncio.gather(
            self._bounded("messages_before", recent_call, extra),
            self._bounded("thread_messages", thread_call, extra),
            self._channel_state(message.channel_id, extra),
        )
        return build_context(message, recent, thread, state, self.short_message_chars)


def build_context(
    message: IncomingMessage,
    recent: list[HistoryMessage],
    thread: list[HistoryMessage],
    state: ConversationState | None,
    short_message_chars: int = 15,
) -> dict[str, Any]:
    text = message.text or ""
    is_short = len(text) < short_message_chars

    def known_topic(ts: str) -> dict[str, str] | None:
        entry = state.topic_for_ts(ts) if state is not None else None
        if entry is None:
            return None
        return {"id": entry.topic_id, "name": entry.topic_name}

    thread_parent = None
    if message.is_thread_reply and thread:
        parent = next((item for item in thread if item.ts == message.thread_ts), thread[0])
        thread_parent = {
            "text": truncate(parent.text, THREAD_PARENT_PREVIEW),
            "user": parent.user,
            "user_name": parent.user_name,
            "topic": known_topic(parent.ts),
            "thread_message_count": len(thread),
        }

    recent_messages = []
    for item in recent:
        topic = known_topic(item.ts)
        recent_messages.append(
            {
                "text": truncate(item.text),
                "user": item.user,
                "user_name": item.user_name,
                "minutes_ago": minutes_between(message.ts, item.ts),
                "topic_id": topic["id"] if topic else None,
                "topic_name": topic["name"] if topic else None,
            }
        )

    current_topic = None
    if state is not None and state.current_topic_id:
        current_topic = {"id": state.current_topic_id, "name": state.current_topic_name}

    if thread_parent and thread_parent["topic"]:
        hint = f'Thread reply - use parent\'s topic: "{thread_parent["topic"]["name"]}"'
    elif is_short and current_topic:
        hint = f'Short message - likely continues current topic: "{current_topic["name"]}"'
    else:
        hint = ANALYZE_HINT

    return {
        "current_message": {
            "text": text,
            "user": message.user,
            "user_name": message.user_name,
            "is_thread_reply": message.is_thread_reply,
            "length": len(text),
            "is_short": is_short,
        },
        "thread_parent": thread_parent,
        "recent_messages": recent_messages,
        "channel": {
            "id": message.channel_id,
            "name": message.channel_name,
            "current_topic": current_topic,
            "last_activity_minutes_ago": (
                recent_messages[-1]["minutes_ago"] if recent_messages else None
            ),
        },
        "hint": hint,
    }

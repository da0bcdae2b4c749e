"""Slack Web API conversation history."""

import logging
from typing import Any

import httpx

from app.config import Settings, settings
from app.core.exceptions import APIKeyMissingError, ExternalAPIError
from app.schemas.message import HistoryMessage

logger = logging.getLogger(__name__)

THREAD_REPLY_LIMIT = 100


class SlackHistoryClient:
    """History provider backed by ``conversations.history`` and ``conversations.replies``."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key or settings.slack_api_key
        self.base_url = (base_url or settings.slack_api_base).rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

        if not self.api_key:
            raise APIKeyMissingError("Slack")

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "SlackHistoryClient":
        if not config.slack_api_key:
            raise APIKeyMissingError("Slack")
        return cls(
            api_key=config.slack_api_key,
            base_url=config.slack_api_base,
            timeout=config.context_timeout_seconds,
        )

    async def __aenter__(self) -> "SlackHistoryClient":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            self._owns_client = True
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client must be used as async context manager")
        return self._client

    async def _call(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        """GET a Slack Web API method; Slack reports failures with ``ok: false``."""
        query = {key: value for key, value in params.items() if value is not None}
        try:
            response = await self.client.get(f"{self.base_url}/{endpoint}", params=query)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning("Slack HTTP error", extra={"endpoint": endpoint, "error": str(e)})
            raise ExternalAPIError("Slack", str(e)) from e

        if not data.get("ok"):
            error = data.get("error", "Unknown error")
            logger.warning("Slack API error", extra={"endpoint": endpoint, "error": error})
            raise ExternalAPIError("Slack", error)
        return data

    async def messages_before(self, channel: str, ts: str, count: int) -> list[HistoryMessage]:
        """Messages posted before ``ts``, oldest first."""
        if count <= 0:
            return []
        data = await self._call(
            "conversations.history",
            {"channel": channel, "latest": ts, "limit": count, "inclusive": "false"},
        )
        # Slack returns newest first
        return [_to_history(raw) for raw in reversed(data.get("messages") or [])]

    async def thread_messages(self, channel: str, thread_ts: str) -> list[HistoryMessage]:
        """Thread parent followed by its replies."""
        data = await self._call(
            "conversations.replies",
            {"channel": channel, "ts": thread_ts, "limit": THREAD_REPLY_LIMIT},
        )
        return [_to_history(raw) for raw in data.get("messages") or []]


def _to_history(raw: dict[str, Any]) -> HistoryMessage:
    profile = raw.get("user_profile") or {}
    return HistoryMessage(
        ts=str(raw.get("ts", "")),
        text=raw.get("text") or "",
        user=raw.get("user") or raw.get("bot_id") or "",
        user_name=profile.get("real_name") or profile.get("name") or raw.get("username"),
        thread_ts=raw.get("thread_ts"),
    )

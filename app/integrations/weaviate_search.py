"""Weaviate GraphQL search over the topic index."""

import json
import logging
from typing import Any

import httpx

from app.config import Settings, settings
from app.core.exceptions import ExternalAPIError
from app.services.categorization.fusion import RankedHit

logger = logging.getLogger(__name__)

SUPPORTED_STRATEGIES = ("hybrid", "vector", "lexical")


class WeaviateSearchClient:
    """Search service that ranks topics with Weaviate.

    Strategies map to Weaviate operators:
    - hybrid: ``hybrid`` (BM25 + vector, balanced by ``alpha``)
    - vector: ``nearText``
    - lexical: ``bm25`` over the combined search text
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        topic_class: str | None = None,
        hybrid_alpha: float | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.weaviate_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.weaviate_api_key
        self.topic_class = topic_class or settings.weaviate_topic_class
        self.hybrid_alpha = (
            hybrid_alpha if hybrid_alpha is not None else settings.weaviate_hybrid_alpha
        )
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "WeaviateSearchClient":
        return cls(
            base_url=config.weaviate_url,
            api_key=config.weaviate_api_key or "",
            topic_class=config.weaviate_topic_class,
            hybrid_alpha=config.weaviate_hybrid_alpha,
            timeout=config.search_timeout_seconds,
        )

    async def __aenter__(self) -> "WeaviateSearchClient":
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=headers)
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

    def build_query(self, strategy: str, query: str, limit: int) -> str:
        """Render the GraphQL ``Get`` query for one strategy."""
        text = json.dumps(query)
        if strategy == "hybrid":
            operator = f"hybrid: {{query: {text}, alpha: {self.hybrid_alpha}}}"
            additional = "id score"
        elif strategy == "vector":
            operator = f"nearText: {{concepts: [{text}]}}"
            additional = "id distance certainty"
        elif strategy == "lexical":
            operator = f'bm25: {{query: {text}, properties: ["combinedSearchText"]}}'
            additional = "id score"
        else:
            raise ValueError(f"Unsupported search strategy: {strategy}")

        return (
            f"{{ Get {{ {self.topic_class}({operator}, limit: {int(limit)}) "
            f"{{ topicId name _additional {{ {additional} }} }} }} }}"
        )

    async def search(self, strategy: str, query: str, limit: int) -> list[RankedHit]:
        """Return topics ranked by ``strategy``; empty when nothing matches."""
        if not query.strip() or limit <= 0:
            return []

        payload = {"query": self.build_query(strategy, query, limit)}
        try:
            response = await self.client.post(f"{self.base_url}/v1/graphql", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.warning(
                "Weaviate HTTP error",
                extra={"strategy": strategy, "error": str(e)},
            )
            raise ExternalAPIError("Weaviate", str(e)) from e

        if body.get("errors"):
            message = "; ".join(str(error.get("message", error)) for error in body["errors"])
            raise ExternalAPIError("Weaviate", message)

        rows = ((body.get("data") or {}).get("Get") or {}).get(self.topic_class) or []
        hits: list[RankedHit] = []
        for row in rows:
            additional = row.get("_additional") or {}
            # Objects indexed with the store id carry it as topicId
            topic_id = row.get("topicId") or additional.get("id")
            if not topic_id:
                continue
            hits.append(
                RankedHit(
                    topic_id=str(topic_id),
                    rank=len(hits) + 1,
                    raw_score=_raw_score(strategy, additional),
                )
            )
        logger.debug(
            "Weaviate search complete",
            extra={"strategy": strategy, "hits": len(hits)},
        )
        return hits


def _raw_score(strategy: str, additional: dict[str, Any]) -> float:
    if strategy == "vector":
        certainty = additional.get("certainty")
        if certainty is not None:
            return float(certainty)
        distance = additional.get("distance")
        return 1.0 - float(distance) if distance is not None else 0.0
    score = additional.get("score")
    return float(score) if score is not None else 0.0

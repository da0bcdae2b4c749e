"""Concurrent categorization of many messages."""

import asyncio
import logging
from collections.abc import Sequence

from app.config import settings
from app.schemas.categorization import BatchItemResult, BatchResult
from app.schemas.message import IncomingMessage
from app.services.categorization.decision_loop import DecisionLoop

logger = logging.getLogger(__name__)


async def categorize_batch(
    loop: DecisionLoop,
    messages: Sequence[IncomingMessage],
    concurrency: int | None = None,
) -> BatchResult:
    """Categorize ``messages`` with at most ``concurrency`` in flight.

    A failing message is logged and reported; the others still run. Items keep
    input order.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency or settings.batch_concurrency))

    async def _one(message: IncomingMessage) -> BatchItemResult:
        async with semaphore:
            try:
                result = await loop.categorize(message)
            except Exception as e:
                logger.exception(
                    "Message categorization failed",
                    extra={"message_id": message.message_id, "error_type": type(e).__name__},
                )
                return BatchItemResult(
                    message_id=message.message_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        if result is None:
            return BatchItemResult(message_id=message.message_id, skipped=True)
        return BatchItemResult(message_id=message.message_id, result=result)

    items = await asyncio.gather(*(_one(message) for message in messages))
    batch = BatchResult(items=list(items))
    logger.info(
        "Batch categorized",
        extra={
            "messages": len(messages),
            "succeeded": batch.succeeded,
            "failed": batch.failed,
        },
    )
    return batch

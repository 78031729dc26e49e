"""Event stream — append-only Redis Stream log with consumer-group delivery."""

from __future__ import annotations

from typing import Any, Mapping

from structlog import get_logger

from ytdigest_events.envelope import SummaryCreatedEvent, SummaryFailedEvent, WorkRequestedEvent
from ytdigest_events.processor import (
    DEFAULT_BLOCK_MS,
    ConsumerHandle,
    EntryHandler,
    EventProcessor,
    ensure_consumer_group,
)
from ytdigest_events.producer import EventProducer

logger = get_logger(__name__)


class EventStream:
    """Facade over one Redis connection pool for producing and consuming entries."""

    def __init__(
        self,
        redis_client: Any,
        *,
        maxlen: int | None = None,
        block_ms: int = DEFAULT_BLOCK_MS,
        claim_min_idle_ms: int | None = None,
        claim_interval_s: float = 30.0,
    ) -> None:
        self._redis = redis_client
        self._producer = EventProducer(redis_client, maxlen=maxlen)
        self._block_ms = block_ms
        self._claim_min_idle_ms = claim_min_idle_ms
        self._claim_interval_s = claim_interval_s
        self._handles: list[ConsumerHandle] = []

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "EventStream":
        import redis.asyncio as aioredis

        return cls(aioredis.Redis.from_url(url), **kwargs)

    async def append(self, stream: str, fields: Mapping[str, str]) -> str:
        return await self._producer.append(stream, fields)

    async def emit(self, event: WorkRequestedEvent | SummaryCreatedEvent | SummaryFailedEvent) -> str:
        return await self._producer.emit(event)

    async def ensure_group(self, stream: str, group: str) -> None:
        await ensure_consumer_group(self._redis, stream, group)

    def consume(self, stream: str, group: str, consumer: str | None, handler: EntryHandler) -> ConsumerHandle:
        """Start a consumer loop for ``consumer`` in ``group`` and return its control handle."""
        processor = EventProcessor(
            self._redis,
            stream,
            group,
            consumer,
            block_ms=self._block_ms,
            claim_min_idle_ms=self._claim_min_idle_ms,
            claim_interval_s=self._claim_interval_s,
        )
        handle = processor.start(handler)
        self._handles.append(handle)
        return handle

    async def stop(self, handle: ConsumerHandle) -> None:
        await handle.stop()
        if handle in self._handles:
            self._handles.remove(handle)

    async def close(self) -> None:
        """Stop every consumer started here and release the connection pool."""
        for handle in list(self._handles):
            await self.stop(handle)
        await self._redis.aclose()
        logger.info("EventStream closed")

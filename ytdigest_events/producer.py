"""Event producer — append entries to Redis Streams."""

from __future__ import annotations

from typing import Any, Mapping

from structlog import get_logger

from ytdigest_events.envelope import SummaryCreatedEvent, SummaryFailedEvent, WorkRequestedEvent
from ytdigest_events.types import decode_value

logger = get_logger(__name__)


class EventProducer:
    def __init__(self, redis_client: Any, maxlen: int | None = None) -> None:
        self._redis = redis_client
        self._maxlen = maxlen

    async def append(self, stream: str, fields: Mapping[str, str]) -> str:
        """Durably append one entry to ``stream`` and return the id Redis assigned.

        Connection errors propagate to the caller; nothing is dropped silently.
        """
        kwargs: dict[str, Any] = {}
        if self._maxlen:
            kwargs = {"maxlen": self._maxlen, "approximate": True}
        entry_id = await self._redis.xadd(stream, dict(fields), **kwargs)
        decoded = decode_value(entry_id)
        logger.debug("Appended entry %s to %s", decoded, stream)
        return decoded

    async def emit(self, event: WorkRequestedEvent | SummaryCreatedEvent | SummaryFailedEvent) -> str:
        """Append an event to the stream named after it."""
        return await self.append(event.name, event.to_stream_dict())

"""Event processor — Redis Streams consumer group reader.

One processor is one named consumer in a group: it handles entries strictly one
at a time and acknowledges an entry only after its handler returned. A handler
error stops the loop (fail-stop); restarting a consumer under the same name
first re-reads its own unacknowledged entries, so nothing delivered is lost.
"""

from __future__ import annotations

import asyncio
import os
import time
from typing import Any, Awaitable, Callable

from redis.exceptions import ResponseError
from structlog import get_logger

from ytdigest_events.types import StreamEntry, decode_fields, decode_value

logger = get_logger(__name__)

EntryHandler = Callable[[StreamEntry], Awaitable[None]]

DEFAULT_BLOCK_MS = 5000
DEFAULT_CLAIM_COUNT = 10

# Cursor for the consumer's own pending entries vs. never-delivered ones
_PENDING = "0"
_NEW = ">"


async def ensure_consumer_group(redis: Any, stream: str, group: str) -> None:
    """Create a consumer group reading from the start of the stream if it does not already exist.

    Uses ``MKSTREAM`` so the stream is created if absent.
    """
    try:
        await redis.xgroup_create(stream, group, id="0", mkstream=True)
        logger.info("Created consumer group %s on %s", group, stream)
    except ResponseError as exc:
        if "BUSYGROUP" not in str(exc):
            raise


class ConsumerHandle:
    """Control handle for a running consumer loop."""

    def __init__(self, task: "asyncio.Task[None]", shutdown_event: asyncio.Event, consumer_name: str) -> None:
        self._task = task
        self._shutdown_event = shutdown_event
        self.consumer_name = consumer_name

    @property
    def done(self) -> bool:
        return self._task.done()

    async def stop(self) -> None:
        """Ask the loop to exit after the entry in progress and wait for it.

        Never raises the loop's own error; use ``wait()`` for that.
        """
        self._shutdown_event.set()
        await asyncio.wait({self._task})
        if not self._task.cancelled():
            self._task.exception()

    async def wait(self) -> None:
        """Wait for the loop to finish, re-raising the error that stopped it."""
        await self._task


class EventProcessor:
    def __init__(
        self,
        redis_client: Any,
        stream: str,
        group: str,
        consumer_name: str | None = None,
        *,
        block_ms: int = DEFAULT_BLOCK_MS,
        claim_min_idle_ms: int | None = None,
        claim_interval_s: float = 30.0,
        claim_count: int = DEFAULT_CLAIM_COUNT,
    ) -> None:
        self._redis = redis_client
        self._stream = stream
        self._group = group
        self._consumer = consumer_name or f"{group}-{os.getpid()}"
        self._block_ms = block_ms
        self._claim_min_idle_ms = claim_min_idle_ms
        self._claim_interval_s = claim_interval_s
        self._claim_count = claim_count

    @property
    def consumer_name(self) -> str:
        return self._consumer

    def start(self, handler: EntryHandler) -> ConsumerHandle:
        """Run the read loop as a task and return its control handle."""
        shutdown_event = asyncio.Event()
        task = asyncio.create_task(
            self.run(handler, shutdown_event),
            name=f"consumer:{self._stream}:{self._group}:{self._consumer}",
        )
        return ConsumerHandle(task, shutdown_event, self._consumer)

    async def run(self, handler: EntryHandler, shutdown_event: asyncio.Event) -> None:
        await ensure_consumer_group(self._redis, self._stream, self._group)

        logger.info("EventProcessor started", stream=self._stream, group=self._group, consumer=self._consumer)

        cursor = _PENDING
        next_claim_at = time.monotonic()

        while not shutdown_event.is_set():
            if self._claim_min_idle_ms is not None and time.monotonic() >= next_claim_at:
                await self._claim_idle(handler, shutdown_event)
                next_claim_at = time.monotonic() + self._claim_interval_s
                continue

            entries = await self._read(cursor)
            if not entries:
                if cursor == _PENDING:
                    logger.debug("No pending entries left; reading new entries", consumer=self._consumer)
                    cursor = _NEW
                continue

            for entry in entries:
                if shutdown_event.is_set():
                    break
                await self._process(entry, handler)

        logger.info("EventProcessor stopped", stream=self._stream, group=self._group, consumer=self._consumer)

    async def _read(self, cursor: str) -> list[StreamEntry]:
        response = await self._redis.xreadgroup(
            self._group,
            self._consumer,
            {self._stream: cursor},
            count=1,
            block=self._block_ms if cursor == _NEW else None,
        )
        if not response:
            return []

        entries: list[StreamEntry] = []
        for _stream_name, messages in response:
            entries.extend(await self._to_entries(messages))
        return entries

    async def _to_entries(self, messages: Any) -> list[StreamEntry]:
        entries: list[StreamEntry] = []
        for msg_id, fields in messages:
            entry_id = decode_value(msg_id)
            if not fields:
                # Pending entry whose payload was trimmed or deleted from the stream
                logger.warning("Entry %s has no fields; acknowledging and skipping", entry_id, stream=self._stream)
                await self._redis.xack(self._stream, self._group, entry_id)
                continue
            entries.append(StreamEntry(id=entry_id, stream=self._stream, fields=decode_fields(fields)))
        return entries

    async def _process(self, entry: StreamEntry, handler: EntryHandler) -> None:
        try:
            await handler(entry)
        except Exception:
            logger.exception(
                "EventProcessor handler failed; stopping consumer",
                stream=self._stream,
                group=self._group,
                consumer=self._consumer,
                entry_id=entry.id,
            )
            raise
        await self._redis.xack(self._stream, self._group, entry.id)
        logger.debug("Acknowledged entry", stream=self._stream, consumer=self._consumer, entry_id=entry.id)

    async def _claim_idle(self, handler: EntryHandler, shutdown_event: asyncio.Event) -> None:
        """Take over entries left pending too long by other consumers of the group."""
        response = await self._redis.xautoclaim(
            self._stream,
            self._group,
            self._consumer,
            min_idle_time=self._claim_min_idle_ms,
            start_id="0-0",
            count=self._claim_count,
        )
        claimed = await self._to_entries(response[1] if response else [])
        if not claimed:
            return

        logger.info("Claimed idle entries", stream=self._stream, consumer=self._consumer, count=len(claimed))
        for entry in claimed:
            if shutdown_event.is_set():
                break
            await self._process(entry, handler)

"""Request orchestrator — dedup inbound requests, hand work to the stream, fan results out."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from structlog import get_logger

from ytdigest_events.envelope import (
    EventMeta,
    SummaryCreatedEvent,
    SummaryFailedEvent,
    WorkRequestedData,
    WorkRequestedEvent,
    from_stream_dict,
)
from ytdigest_events.types import StreamEntry

from ytdigest.config.schema import MessagesConfig
from ytdigest.constants import WORK_STREAM

from .errors import RequestConflictError, TransientRequestError
from .models import InboundOutcome, OutcomeKind, RequestState
from .validation import normalize_video_url

if TYPE_CHECKING:
    from ytdigest_events.stream import EventStream

    from .db import RequestStore
    from .protocols import TransportAdapter

logger = get_logger(__name__)


def _event_key(event: SummaryCreatedEvent | SummaryFailedEvent) -> str:
    """Map the url echoed by the pipeline back onto the dedup key."""
    try:
        return normalize_video_url(event.url)
    except ValueError:
        return event.url


# One automatic retry after losing a create race; a second conflict is surfaced
_CONFLICT_ATTEMPTS = 2


class Orchestrator:
    """Glue between the transport, the request store and the event stream.

    Inbound path: cached result, join an in-flight request, or create one and
    append a work event. Completion path: cache the result, resolve the request
    and deliver to every party that was waiting on it.
    """

    def __init__(
        self,
        store: "RequestStore",
        stream: "EventStream",
        transport: Optional["TransportAdapter"] = None,
        messages: Optional[MessagesConfig] = None,
        work_stream: str = WORK_STREAM,
    ) -> None:
        self._store = store
        self._stream = stream
        self._transport = transport
        self._messages = messages or MessagesConfig()
        self._work_stream = work_stream

    def set_transport(self, transport: "TransportAdapter") -> None:
        """Wire the outbound side once the transport exists (it needs the orchestrator too)."""
        self._transport = transport

    async def handle_message(self, party_id: str, text: str) -> InboundOutcome:
        """Entry point for one inbound chat message."""
        try:
            key = normalize_video_url(text)
        except ValueError:
            logger.debug("Rejected invalid request", party_id=party_id)
            return InboundOutcome(kind=OutcomeKind.INVALID, message=self._messages.invalid)
        return await self.on_inbound_request(key, party_id)

    async def on_inbound_request(self, key: str, party_id: str) -> InboundOutcome:
        """Decide whether ``key`` is cached, in flight, or new work for ``party_id``.

        Never raises: store and stream failures are logged and reported to the
        party as a generic error.
        """
        try:
            return await self._dispatch_request(key, party_id)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Failed to handle request", key=key, party_id=party_id)
            return InboundOutcome(kind=OutcomeKind.ERROR, message=self._messages.error)

    async def _dispatch_request(self, key: str, party_id: str) -> InboundOutcome:
        for attempt in range(_CONFLICT_ATTEMPTS):
            completed = await self._store.lookup_completed(key)
            if completed is not None:
                cached = await self._store.lookup_cached_result(key)
                if cached is None:
                    logger.error("Completed request has no cached result", key=key, request_id=completed.id)
                    return InboundOutcome(kind=OutcomeKind.ERROR, message=self._messages.error)
                logger.info("Serving cached result", key=key, party_id=party_id)
                return InboundOutcome(kind=OutcomeKind.CACHED, message=cached.content, request_id=completed.id)

            request_id = await self._store.join_if_processing(key, party_id)
            if request_id is not None:
                logger.info("Joined in-flight request", key=key, party_id=party_id, request_id=request_id)
                return InboundOutcome(kind=OutcomeKind.QUEUED, message=self._messages.queued, request_id=request_id)

            existing = await self._store.find_request(key)
            if existing is not None and existing.state is RequestState.FAILED:
                logger.info("Request previously failed; not re-queuing", key=key, party_id=party_id)
                return InboundOutcome(kind=OutcomeKind.ERROR, message=self._messages.error, request_id=existing.id)

            try:
                request_id = await self._store.create_new(key, party_id)
            except RequestConflictError:
                logger.info("Lost create race; retrying lookup", key=key, attempt=attempt + 1)
                continue

            await self._request_work(key, request_id)
            return InboundOutcome(kind=OutcomeKind.QUEUED, message=self._messages.queued, request_id=request_id)

        raise TransientRequestError(f"request for {key} kept conflicting")

    async def _request_work(self, key: str, request_id: str) -> None:
        event = WorkRequestedEvent(
            data=WorkRequestedData(url=key),
            meta=EventMeta(request_id=request_id, url=key),
        )
        entry_id = await self._stream.append(self._work_stream, event.to_stream_dict())
        logger.info("Requested work", key=key, request_id=request_id, entry_id=entry_id, stream=self._work_stream)

    async def on_stream_entry(self, entry: StreamEntry) -> None:
        """Consumer-loop handler for completion and failure streams.

        Decode errors and unexpected event kinds propagate so the consumer stops.
        """
        event = from_stream_dict(entry.fields)
        if isinstance(event, SummaryCreatedEvent):
            await self.on_completion_event(event)
        elif isinstance(event, SummaryFailedEvent):
            await self.on_failure_event(event)
        else:
            raise ValueError(f"unexpected {event.name} event on {entry.stream} (entry {entry.id})")

    async def on_completion_event(self, event: SummaryCreatedEvent) -> list[str]:
        """Cache the summary, complete the request and deliver it to every waiting party."""
        key = _event_key(event)
        await self._store.upsert_result(key, event.data.summary)
        parties = await self._resolve(key, RequestState.COMPLETED)
        await self._fan_out(parties, event.data.summary, key)
        return parties

    async def on_failure_event(self, event: SummaryFailedEvent) -> list[str]:
        """Fail the request and tell every waiting party, so nobody waits forever."""
        key = _event_key(event)
        parties = await self._resolve(key, RequestState.FAILED)
        message = self._messages.failed.replace("{reason}", event.data.reason or "unknown error")
        await self._fan_out(parties, message, key)
        return parties

    async def _resolve(self, key: str, outcome: RequestState) -> list[str]:
        request = await self._store.find_request(key)
        if request is None:
            logger.warning("Resolution for unknown request", key=key, outcome=outcome.value)
            return []
        return await self._store.resolve(request.id, outcome)

    async def _fan_out(self, parties: list[str], payload: str, key: str) -> None:
        if not parties:
            return
        if self._transport is None:
            logger.warning("No transport configured; dropping fanout", key=key, parties=len(parties))
            return
        logger.info("Fanning out", key=key, parties=len(parties))
        try:
            await self._transport.deliver(parties, payload)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Fanout delivery failed", key=key, parties=len(parties))

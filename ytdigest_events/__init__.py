"""ytdigest_events — Redis Streams event log with consumer-group delivery."""

from ytdigest_events.envelope import (
    SUMMARY_CREATED,
    SUMMARY_FAILED,
    WORK_REQUESTED,
    EventDecodeError,
    EventMeta,
    FailureData,
    SummaryCreatedEvent,
    SummaryData,
    SummaryFailedEvent,
    UnknownEventError,
    WorkRequestedData,
    WorkRequestedEvent,
    from_stream_dict,
)
from ytdigest_events.processor import ConsumerHandle, EventProcessor, ensure_consumer_group
from ytdigest_events.producer import EventProducer
from ytdigest_events.stream import EventStream
from ytdigest_events.types import StreamEntry

__all__ = [
    "SUMMARY_CREATED",
    "SUMMARY_FAILED",
    "WORK_REQUESTED",
    "EventDecodeError",
    "EventMeta",
    "FailureData",
    "SummaryCreatedEvent",
    "SummaryData",
    "SummaryFailedEvent",
    "UnknownEventError",
    "WorkRequestedData",
    "WorkRequestedEvent",
    "from_stream_dict",
    "ConsumerHandle",
    "EventProcessor",
    "ensure_consumer_group",
    "EventProducer",
    "EventStream",
    "StreamEntry",
]

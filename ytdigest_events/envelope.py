"""Event envelope — the stream wire contract and the event kinds it carries."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

WORK_REQUESTED = "youtube_audio_requested"
SUMMARY_CREATED = "summary_created"
SUMMARY_FAILED = "summary_failed"


class EventDecodeError(ValueError):
    """Raised when a stream entry cannot be decoded into a known event."""


class UnknownEventError(EventDecodeError):
    """Raised when a stream entry carries an event name this service does not handle."""


class EventMeta(BaseModel):
    """Context carried alongside the payload.

    ``requestId`` and ``key`` are accepted on input; output always uses the
    canonical ``request_id`` and ``url`` spellings.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    request_id: str | None = Field(default=None, validation_alias=AliasChoices("request_id", "requestId"))
    url: str | None = Field(default=None, validation_alias=AliasChoices("url", "key"))


class WorkRequestedData(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: str = Field(validation_alias=AliasChoices("url", "key"))


class SummaryData(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary: str = Field(validation_alias=AliasChoices("summary", "content"))
    title: str = ""
    url: str | None = Field(default=None, validation_alias=AliasChoices("url", "key"))


class FailureData(BaseModel):
    model_config = ConfigDict(extra="allow")

    reason: str = ""
    url: str | None = Field(default=None, validation_alias=AliasChoices("url", "key"))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _BaseEvent(BaseModel):
    meta: EventMeta | None = None
    timestamp: datetime = Field(default_factory=_now)

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize to a flat string dict for Redis XADD."""
        data: BaseModel = self.data  # type: ignore[attr-defined]
        return {
            "name": self.name,  # type: ignore[attr-defined]
            "data": json.dumps(data.model_dump(exclude_none=True)),
            "meta": json.dumps(self.meta.model_dump(exclude_none=True) if self.meta else None),
            "timestamp": self.timestamp.isoformat(),
        }


class WorkRequestedEvent(_BaseEvent):
    name: Literal["youtube_audio_requested"] = WORK_REQUESTED
    data: WorkRequestedData


class _ResolutionEvent(_BaseEvent):
    @property
    def url(self) -> str:
        data_url: str | None = self.data.url  # type: ignore[attr-defined]
        return data_url or (self.meta.url if self.meta else None) or ""

    @property
    def request_id(self) -> str | None:
        return self.meta.request_id if self.meta else None

    @model_validator(mode="after")
    def require_url(self) -> "_ResolutionEvent":
        if not self.url:
            raise ValueError("event carries no originating url in data or meta")
        return self


class SummaryCreatedEvent(_ResolutionEvent):
    name: Literal["summary_created"] = SUMMARY_CREATED
    data: SummaryData


class SummaryFailedEvent(_ResolutionEvent):
    name: Literal["summary_failed"] = SUMMARY_FAILED
    data: FailureData


StreamEvent = Annotated[
    Union[WorkRequestedEvent, SummaryCreatedEvent, SummaryFailedEvent],
    Field(discriminator="name"),
]

_event_adapter: TypeAdapter[Any] = TypeAdapter(StreamEvent)

KNOWN_EVENTS = frozenset({WORK_REQUESTED, SUMMARY_CREATED, SUMMARY_FAILED})


def _load_json(fields: dict[str, str], key: str) -> Any:
    raw = fields.get(key)
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise EventDecodeError(f"field {key!r} is not valid JSON: {exc}") from exc


def from_stream_dict(fields: dict[str, str]) -> WorkRequestedEvent | SummaryCreatedEvent | SummaryFailedEvent:
    """Decode a stream entry's fields into one of the known event kinds."""
    name = fields.get("name", "")
    if name not in KNOWN_EVENTS:
        raise UnknownEventError(f"unknown event name: {name!r}")

    raw: dict[str, Any] = {"name": name, "data": _load_json(fields, "data"), "meta": _load_json(fields, "meta")}
    if fields.get("timestamp"):
        raw["timestamp"] = fields["timestamp"]

    try:
        return _event_adapter.validate_python(raw)  # type: ignore[no-any-return]
    except ValidationError as exc:
        raise EventDecodeError(f"invalid {name} event: {exc}") from exc

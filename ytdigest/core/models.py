"""Data models for requests, waiting parties and cached results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RequestState(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestState.PROCESSING


@dataclass(frozen=True)
class RequestRecord:
    """One row of ``requests``: the unit of work for a dedup key."""

    id: str
    key: str
    state: RequestState
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class CachedResult:
    key: str
    content: str
    created_at: datetime


class OutcomeKind(str, Enum):
    CACHED = "cached"
    QUEUED = "queued"
    INVALID = "invalid"
    ERROR = "error"


@dataclass(frozen=True)
class InboundOutcome:
    """What the inbound path tells the party that sent a request."""

    kind: OutcomeKind
    message: str
    request_id: str | None = None

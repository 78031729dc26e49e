"""Typed structures for the event stream subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StreamEntry:
    """A single immutable entry read back from a Redis Stream."""

    id: str
    stream: str
    fields: dict[str, str] = field(default_factory=dict)


def decode_value(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def decode_fields(raw: dict[bytes, bytes] | dict[str, str]) -> dict[str, str]:
    """Normalize a Redis field mapping to ``str -> str``."""
    return {decode_value(k): decode_value(v) for k, v in raw.items()}

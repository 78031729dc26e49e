"""Error taxonomy for the request dedup store and orchestrator."""


class YtDigestError(Exception):
    """Base class for ytdigest errors."""


class StoreError(YtDigestError):
    """The state store could not complete an operation (connection, I/O, locking)."""


class RequestConflictError(StoreError):
    """Another caller created the request row for this key first."""

    def __init__(self, key: str) -> None:
        super().__init__(f"request already exists for key: {key}")
        self.key = key


class TransientRequestError(YtDigestError):
    """A create/join race kept conflicting after the automatic retry."""

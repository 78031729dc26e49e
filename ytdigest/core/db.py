"""Request store — SQLite dedup/state store for requests, waiting parties and results."""

from __future__ import annotations

import asyncio
import sqlite3
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite
from structlog import get_logger

from .errors import RequestConflictError, StoreError
from .models import CachedResult, RequestRecord, RequestState

logger = get_logger(__name__)

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_request(row: aiosqlite.Row) -> RequestRecord:
    return RequestRecord(
        id=row["id"],
        key=row["key"],
        state=RequestState(row["state"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class RequestStore:
    """Dedup/state store for summary requests.

    Every check-then-act operation runs inside ``BEGIN IMMEDIATE``: SQLite takes
    the write lock up front, so two callers racing on one key are serialized and
    exactly one of them sees the key as absent. Within this process the single
    connection is additionally guarded by an ``asyncio.Lock`` so coroutines never
    interleave statements of different transactions.
    """

    def __init__(self, db_path: str | Path, busy_timeout_ms: int = 5000) -> None:
        """Initialize store.

        Args:
            db_path: Path to SQLite database file (``:memory:`` for tests)
            busy_timeout_ms: How long to wait on another process's write lock
        """
        self.db_path = str(db_path)
        self._busy_timeout_ms = busy_timeout_ms
        self._db: Optional[aiosqlite.Connection] = None
        self._tx_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the connection and apply the schema."""
        if self._db is not None:
            return
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

        try:
            # isolation_level=None: transactions are opened explicitly below
            self._db = await aiosqlite.connect(str(Path(self.db_path).expanduser()), isolation_level=None)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)};")
            await self._db.execute("PRAGMA foreign_keys=ON;")
            if self.db_path != ":memory:":
                await self._db.execute("PRAGMA journal_mode=WAL;")
            await self._db.executescript(_SCHEMA_PATH.read_text(encoding="utf-8"))
        except sqlite3.Error as exc:
            raise StoreError(f"failed to initialize request store at {self.db_path}: {exc}") from exc

        logger.info("Request store initialized", path=self.db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        """Get database connection, asserting it's initialized.

        Raises:
            RuntimeError: If store not initialized
        """
        if self._db is None:
            raise RuntimeError("Request store not initialized - call initialize() first")
        return self._db

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = self.conn
        async with self._tx_lock:
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StoreError(f"could not begin transaction: {exc}") from exc
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            else:
                try:
                    await conn.execute("COMMIT")
                except sqlite3.Error as exc:
                    await conn.execute("ROLLBACK")
                    raise StoreError(f"could not commit transaction: {exc}") from exc

    async def _fetchone(self, sql: str, params: tuple[object, ...]) -> Optional[aiosqlite.Row]:
        async with self._tx_lock:
            try:
                cursor = await self.conn.execute(sql, params)
                return await cursor.fetchone()
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    async def find_request(self, key: str) -> Optional[RequestRecord]:
        """Point read of the request for ``key`` in any state."""
        row = await self._fetchone("SELECT * FROM requests WHERE key = ?", (key,))
        return _row_to_request(row) if row else None

    async def get_request(self, request_id: str) -> Optional[RequestRecord]:
        row = await self._fetchone("SELECT * FROM requests WHERE id = ?", (request_id,))
        return _row_to_request(row) if row else None

    async def lookup_completed(self, key: str) -> Optional[RequestRecord]:
        row = await self._fetchone(
            "SELECT * FROM requests WHERE key = ? AND state = ?",
            (key, RequestState.COMPLETED.value),
        )
        return _row_to_request(row) if row else None

    async def lookup_cached_result(self, key: str) -> Optional[CachedResult]:
        row = await self._fetchone("SELECT key, content, created_at FROM results WHERE key = ?", (key,))
        if row is None:
            return None
        return CachedResult(
            key=row["key"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    async def list_waiting_parties(self, request_id: str) -> list[str]:
        async with self._tx_lock:
            try:
                cursor = await self.conn.execute(
                    "SELECT party_id FROM waiting_parties WHERE request_id = ? ORDER BY created_at, party_id",
                    (request_id,),
                )
                rows = await cursor.fetchall()
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc
        return [row["party_id"] for row in rows]

    async def join_if_processing(self, key: str, party_id: str) -> Optional[str]:
        """Register ``party_id`` as waiting on the in-flight request for ``key``.

        Returns:
            The request id, or None (without side effects) if no request for
            ``key`` is currently PROCESSING.
        """
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    "SELECT id FROM requests WHERE key = ? AND state = ?",
                    (key, RequestState.PROCESSING.value),
                )
                row = await cursor.fetchone()
                if row is None:
                    return None
                request_id: str = row["id"]
                await conn.execute(
                    """
                    INSERT INTO waiting_parties (request_id, party_id, created_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (request_id, party_id) DO NOTHING
                    """,
                    (request_id, party_id, _now_iso()),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"join failed for {key}: {exc}") from exc

        logger.debug("Party joined in-flight request", key=key, party_id=party_id, request_id=request_id)
        return request_id

    async def create_new(self, key: str, party_id: str) -> str:
        """Create a PROCESSING request for ``key`` with ``party_id`` as its first waiting party.

        Raises:
            RequestConflictError: A request for ``key`` already exists (in any
                state). The caller lost the race and should look the key up again.
        """
        request_id = str(uuid.uuid4())
        now = _now_iso()
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute("SELECT 1 FROM requests WHERE key = ?", (key,))
                if await cursor.fetchone() is not None:
                    raise RequestConflictError(key)
                await conn.execute(
                    "INSERT INTO requests (id, key, state, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                    (request_id, key, RequestState.PROCESSING.value, now, now),
                )
                await conn.execute(
                    "INSERT INTO waiting_parties (request_id, party_id, created_at) VALUES (?, ?, ?)",
                    (request_id, party_id, now),
                )
        except sqlite3.IntegrityError as exc:
            # UNIQUE(key) caught a creator in another process
            raise RequestConflictError(key) from exc
        except sqlite3.Error as exc:
            raise StoreError(f"create failed for {key}: {exc}") from exc

        logger.info("Created request", key=key, request_id=request_id, party_id=party_id)
        return request_id

    async def resolve(self, request_id: str, outcome: RequestState) -> list[str]:
        """Move a PROCESSING request to ``outcome`` and drain its waiting parties.

        Returns:
            Every party that joined before resolution: the complete fanout set.
            Empty if the request was not PROCESSING (already resolved or unknown),
            so a repeated resolve never fans out twice.

        Raises:
            ValueError: If ``outcome`` is not a terminal state.
        """
        if not outcome.is_terminal:
            raise ValueError(f"cannot resolve request to non-terminal state {outcome.value}")

        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    "UPDATE requests SET state = ?, updated_at = ? WHERE id = ? AND state = ?",
                    (outcome.value, _now_iso(), request_id, RequestState.PROCESSING.value),
                )
                if cursor.rowcount == 0:
                    logger.warning("Resolve ignored: request is not processing", request_id=request_id)
                    return []
                cursor = await conn.execute(
                    "DELETE FROM waiting_parties WHERE request_id = ? RETURNING party_id, created_at",
                    (request_id,),
                )
                rows = await cursor.fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"resolve failed for {request_id}: {exc}") from exc

        parties = [row["party_id"] for row in sorted(rows, key=lambda r: (r["created_at"], r["party_id"]))]
        logger.info("Resolved request", request_id=request_id, state=outcome.value, parties=len(parties))
        return parties

    async def upsert_result(self, key: str, content: str) -> bool:
        """Insert or update the cached result for ``key``.

        Identical content is left untouched (no write, no timestamp churn).

        Returns:
            True if a row was inserted or changed.
        """
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    """
                    INSERT INTO results (key, content, created_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (key) DO UPDATE SET
                        content = excluded.content,
                        created_at = excluded.created_at
                    WHERE results.content != excluded.content
                    """,
                    (key, content, _now_iso()),
                )
                written = cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise StoreError(f"upsert failed for {key}: {exc}") from exc

        logger.debug("Upserted result", key=key, written=written)
        return written

"""Asynchronous SQLite persistence gateway.

Every blocking sqlite3 call runs in a worker thread (``asyncio.to_thread``) so a
slow statement never stalls the event loop. Transactions are explicit handles:
``Gateway.begin()`` returns a :class:`Transaction` that owns its own connection,
and nesting is expressed with savepoints on that handle.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class GatewayError(Exception):
    """Base class for persistence failures."""


class QueryError(GatewayError):
    """A statement failed to execute."""


class TransactionError(GatewayError):
    """A transaction could not be started, finished, or was used after finishing."""


class Executor(Protocol):
    async def get(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]: ...

    async def all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]: ...

    async def run(self, sql: str, params: Sequence[Any] = ()) -> int: ...


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT,
    name TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chat_rooms (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_by TEXT NOT NULL,
    ai_type TEXT NOT NULL DEFAULT 'code_generation',
    model TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chat_room_members (
    room_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    joined_at TEXT NOT NULL,
    PRIMARY KEY (room_id, user_id),
    FOREIGN KEY (room_id) REFERENCES chat_rooms (id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS chat_room_messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    room_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    reply_to TEXT,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (room_id) REFERENCES chat_rooms (id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_messages_room_created
    ON chat_room_messages (room_id, created_at, seq);
"""


class _Connection:
    """A sqlite3 connection shared between worker threads under a lock."""

    def __init__(self, path: str) -> None:
        try:
            conn = sqlite3.connect(path, timeout=5.0, isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA busy_timeout = 5000")
        except sqlite3.Error as exc:
            raise GatewayError(f"Cannot open database {path}: {exc}") from exc
        self._conn = conn
        self._lock = threading.Lock()

    def execute(self, sql: str, params: Sequence[Any], fetch: str) -> Any:
        with self._lock:
            try:
                cur = self._conn.execute(sql, tuple(params))
                if fetch == "one":
                    row = cur.fetchone()
                    return dict(row) if row is not None else None
                if fetch == "all":
                    return [dict(r) for r in cur.fetchall()]
                return cur.rowcount
            except sqlite3.Error as exc:
                verb = sql.strip().split(None, 1)[0].upper() if sql.strip() else "?"
                raise QueryError(f"{verb} failed: {exc}") from exc

    def executescript(self, script: str) -> None:
        with self._lock:
            try:
                self._conn.executescript(script)
            except sqlite3.Error as exc:
                raise QueryError(f"Schema script failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class Transaction:
    """Handle for one ``BEGIN IMMEDIATE`` transaction on a dedicated connection."""

    def __init__(self, conn: _Connection, label: str = "tx") -> None:
        self._conn = conn
        self._open = True
        self._savepoint_seq = 0
        self.label = label

    @property
    def closed(self) -> bool:
        return not self._open

    async def _exec(self, sql: str, params: Sequence[Any], fetch: str) -> Any:
        if not self._open:
            raise TransactionError(f"Transaction {self.label} already finished")
        return await asyncio.to_thread(self._conn.execute, sql, params, fetch)

    async def get(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        return await self._exec(sql, params, "one")

    async def all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        return await self._exec(sql, params, "all")

    async def run(self, sql: str, params: Sequence[Any] = ()) -> int:
        return await self._exec(sql, params, "none")

    async def commit(self) -> None:
        await self._finish("COMMIT")
        logger.debug("tx_committed", extra={"tx": self.label})

    async def rollback(self) -> None:
        # Rolling back a finished transaction is a no-op so cleanup paths stay simple.
        if not self._open:
            return
        await self._finish("ROLLBACK")
        logger.debug("tx_rolled_back", extra={"tx": self.label})

    async def _finish(self, statement: str) -> None:
        if not self._open:
            raise TransactionError(f"Transaction {self.label} already finished")
        self._open = False
        try:
            await asyncio.to_thread(self._conn.execute, statement, (), "none")
        except QueryError as exc:
            raise TransactionError(f"{statement} failed for {self.label}: {exc}") from exc
        finally:
            await asyncio.to_thread(self._conn.close)

    @asynccontextmanager
    async def savepoint(self, name: Optional[str] = None) -> AsyncIterator["Transaction"]:
        """Scope a nested unit of work; an exception undoes only that unit."""
        self._savepoint_seq += 1
        sp = name or f"sp_{self._savepoint_seq}"
        if not sp.isidentifier():
            raise ValueError(f"Invalid savepoint name: {sp!r}")
        await self.run(f"SAVEPOINT {sp}")
        try:
            yield self
        except BaseException:
            if self._open:
                await self.run(f"ROLLBACK TO SAVEPOINT {sp}")
                await self.run(f"RELEASE SAVEPOINT {sp}")
            raise
        else:
            await self.run(f"RELEASE SAVEPOINT {sp}")


class Gateway:
    """Entry point to the database: autocommit statements and transaction handles."""

    def __init__(self, db_path: str) -> None:
        if db_path == ":memory:":
            raise GatewayError("In-memory databases cannot be shared between connections; use a file path")
        self.db_path = db_path
        self._shared: Optional[_Connection] = None
        self._shared_lock = threading.Lock()

    def create_schema(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(directory, exist_ok=True)
        conn = _Connection(self.db_path)
        try:
            conn.execute("PRAGMA journal_mode = WAL", (), "one")
            conn.executescript(SCHEMA)
        finally:
            conn.close()
        logger.info("Database ready at %s", self.db_path)

    async def initialize(self) -> None:
        await asyncio.to_thread(self.create_schema)

    def _autocommit(self) -> _Connection:
        with self._shared_lock:
            if self._shared is None:
                self._shared = _Connection(self.db_path)
            return self._shared

    async def get(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        conn = await asyncio.to_thread(self._autocommit)
        return await asyncio.to_thread(conn.execute, sql, params, "one")

    async def all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        conn = await asyncio.to_thread(self._autocommit)
        return await asyncio.to_thread(conn.execute, sql, params, "all")

    async def run(self, sql: str, params: Sequence[Any] = ()) -> int:
        conn = await asyncio.to_thread(self._autocommit)
        return await asyncio.to_thread(conn.execute, sql, params, "none")

    async def begin(self, label: str = "tx") -> Transaction:
        conn = await asyncio.to_thread(_Connection, self.db_path)
        try:
            await asyncio.to_thread(conn.execute, "BEGIN IMMEDIATE", (), "none")
        except QueryError as exc:
            await asyncio.to_thread(conn.close)
            raise TransactionError(f"Cannot begin {label}: {exc}") from exc
        return Transaction(conn, label)

    @asynccontextmanager
    async def transaction(self, label: str = "tx") -> AsyncIterator[Transaction]:
        """Commit on normal exit, roll back when the block raises."""
        tx = await self.begin(label)
        try:
            yield tx
        except BaseException:
            await tx.rollback()
            raise
        else:
            if not tx.closed:
                await tx.commit()

    def close(self) -> None:
        with self._shared_lock:
            if self._shared is not None:
                self._shared.close()
                self._shared = None


_gateway: Gateway | None = None


def get_gateway() -> Gateway:
    global _gateway
    if _gateway is not None:
        return _gateway
    from ..config import get_settings

    gateway = Gateway(get_settings().db_path)
    gateway.create_schema()
    _gateway = gateway
    return _gateway


def reset_gateway() -> None:
    global _gateway
    if _gateway is not None:
        _gateway.close()
    _gateway = None

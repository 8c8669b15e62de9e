from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager, contextmanager
from pathlib import Path
from typing import Protocol, TypeVar, runtime_checkable

from loguru import logger

from chat_relay.errors import BackendUnavailableError
from chat_relay.models import SessionRecord

T = TypeVar("T")


@runtime_checkable
class SessionStore(Protocol):
    """Single source of truth for which sessions exist.

    ``put`` is a full replace; callers compute updates against a record they
    loaded with ``get``.
    """

    async def get(self, session_id: str) -> SessionRecord | None: ...

    async def put(self, session_id: str, record: SessionRecord) -> None: ...

    async def delete(self, session_id: str) -> None: ...

    async def list_all(self) -> list[SessionRecord]: ...

    def session_lock(self, session_id: str) -> AbstractAsyncContextManager[None]: ...


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


def _check_key(session_id: str, record: SessionRecord) -> None:
    if record.session_id != session_id:
        raise ValueError(f"Record for {record.session_id!r} cannot be stored under {session_id!r}")


class InMemorySessionStore:
    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}
        self._locks = KeyedLocks()

    async def get(self, session_id: str) -> SessionRecord | None:
        return self._records.get(session_id)

    async def put(self, session_id: str, record: SessionRecord) -> None:
        _check_key(session_id, record)
        self._records[session_id] = record

    async def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)

    async def list_all(self) -> list[SessionRecord]:
        return list(self._records.values())

    def session_lock(self, session_id: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(session_id)


class SqliteSessionStore:
    """Keeps one JSON-encoded record per session in a SQLite file."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._locks = KeyedLocks()
        self._conn_lock = threading.Lock()
        with self._guard("open"):
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._initialize_schema()

    def close(self) -> None:
        with self._conn_lock:
            self._conn.close()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as ex:
            logger.error(f"Session store {operation} failed ({self._db_path}): {ex}")
            raise BackendUnavailableError(
                f"Session store {operation} failed: {ex}",
                db_path=self._db_path,
            ) from ex

    async def _run(self, operation: str, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run blocking sqlite work on a worker thread, one call at a time."""

        def call() -> T:
            with self._conn_lock, self._guard(operation):
                return fn(self._conn)

        return await asyncio.to_thread(call)

    async def get(self, session_id: str) -> SessionRecord | None:
        row = await self._run(
            "get",
            lambda conn: conn.execute(
                "SELECT record_json FROM sessions WHERE id = ? LIMIT 1",
                (session_id,),
            ).fetchone(),
        )
        if row is None:
            return None
        return SessionRecord.from_dict(json.loads(row["record_json"]))

    async def put(self, session_id: str, record: SessionRecord) -> None:
        _check_key(session_id, record)
        params = (
            session_id,
            record.provider_name,
            record.model_name,
            record.created_at.isoformat(),
            record.last_updated.isoformat(),
            json.dumps(record.to_dict(), ensure_ascii=True),
        )

        def upsert(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO sessions (id, provider_name, model_name, created_at, updated_at, record_json)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    provider_name = excluded.provider_name,
                    model_name = excluded.model_name,
                    updated_at = excluded.updated_at,
                    record_json = excluded.record_json
                """,
                params,
            )
            conn.commit()

        await self._run("put", upsert)

    async def delete(self, session_id: str) -> None:
        def remove(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            conn.commit()

        await self._run("delete", remove)

    async def list_all(self) -> list[SessionRecord]:
        rows = await self._run(
            "list",
            lambda conn: conn.execute("SELECT record_json FROM sessions ORDER BY updated_at DESC").fetchall(),
        )
        return [SessionRecord.from_dict(json.loads(row["record_json"])) for row in rows]

    def session_lock(self, session_id: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(session_id)

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                provider_name TEXT NULL,
                model_name TEXT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                record_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_updated
                ON sessions(updated_at);
            """
        )
        self._conn.commit()

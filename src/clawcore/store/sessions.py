"""Session store: in-memory session cache with SQLite persistence."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from clawcore.models.config import StoreConfig
from clawcore.models.message import Message, Role, Session, ToolCall

# ── Exceptions ─────────────────────────────────────────────────────────────────


class ClawStoreError(Exception):
    """Base class for store errors."""


class StoreNotInitializedError(ClawStoreError):
    """Raised when a persistence method is called before ``initialize()``."""

    def __init__(self) -> None:
        super().__init__("Store is not initialized. Call initialize() first.")


# ── SessionStore ───────────────────────────────────────────────────────────────


class SessionStore:
    """
    Authoritative owner of every session's history and summary.

    All sessions are loaded into memory by ``initialize()``. The read and
    append methods operate on that cache synchronously and never touch the
    database; ``save()`` writes one session through explicitly. Callers hold
    only copies of history lists and must write back through this API.

    Persistence is best-effort: a failing ``save()`` is logged and reported
    via its return value, never raised.

    Usage::

        store = SessionStore(StoreConfig(db_path="/tmp/sessions.db"))
        await store.initialize()
        try:
            store.add_message("telegram:42", "user", "hello")
            await store.save(store.get_or_create("telegram:42"))
        finally:
            await store.close()
    """

    def __init__(self, config: StoreConfig) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._conn: aiosqlite.Connection | None = None
        self._sessions: dict[str, Session] = {}
        self._logger = structlog.get_logger("clawcore.store")

    async def initialize(self) -> None:
        """
        Open the database, apply the schema and load every persisted session.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(self._db_path, timeout=self._config.connection_timeout)
        try:
            conn.row_factory = aiosqlite.Row
            if self._config.wal_mode:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await conn.execute("PRAGMA synchronous=NORMAL")

            schema = (Path(__file__).parent / "schema.sql").read_text()
            await conn.executescript(schema)
            await conn.commit()
        except Exception:
            await conn.close()
            raise

        self._conn = conn
        await self._load_all()
        self._logger.info(
            "store_initialized", db_path=self._db_path, sessions=len(self._sessions)
        )

    async def close(self) -> None:
        """Close the database connection. The in-memory cache is kept."""
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    async def __aenter__(self) -> SessionStore:
        await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreNotInitializedError()
        return self._conn

    # ── Cache operations ───────────────────────────────────────────────────────

    def get_or_create(self, key: str) -> Session:
        """Return the session for ``key``, creating an empty one if needed."""
        session = self._sessions.get(key)
        if session is None:
            session = Session(key=key)
            self._sessions[key] = session
            self._logger.debug("session_created", session_key=key)
        return session

    def get_history(self, key: str) -> list[Message]:
        """Return a copy of the session's history, or ``[]`` if it does not exist."""
        session = self._sessions.get(key)
        if session is None:
            return []
        return session.history()

    def get_summary(self, key: str) -> str:
        """Return the session's summary, or ``""`` if it does not exist."""
        session = self._sessions.get(key)
        if session is None:
            return ""
        return session.summary

    def add_message(self, key: str, role: Role, content: str) -> None:
        self.get_or_create(key).add_message(role, content)

    def add_full_message(self, key: str, message: Message) -> None:
        """Append a complete message (tool calls, tool_call_id) to the session."""
        self.get_or_create(key).add_full_message(message)

    def set_summary(self, key: str, summary: str) -> None:
        """Replace the summary of an existing session. No-op for unknown keys."""
        session = self._sessions.get(key)
        if session is None:
            return
        session.summary = summary
        session.updated_at = int(time.time() * 1000)

    def truncate_history(self, key: str, keep_last: int) -> None:
        """
        Keep only the most recent ``keep_last`` messages of an existing session.

        The prefix is discarded. Sessions that are already short enough, and
        unknown keys, are left untouched.
        """
        session = self._sessions.get(key)
        if session is None:
            return
        session.truncate_history(keep_last)

    def session_keys(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    # ── Persistence ────────────────────────────────────────────────────────────

    async def save(self, session: Session) -> bool:
        """
        Persist one session (summary and full history) in a single transaction.

        The rows are captured before the first await, so concurrent appends
        made while the write is in progress land in the next save.

        Args:
            session: The session to persist.

        Returns:
            True when the write committed, False when it failed (logged).

        Raises:
            StoreNotInitializedError: If ``initialize()`` has not been called.
        """
        conn = self._conn_or_raise()
        rows = [
            (
                session.key,
                position,
                message.role,
                message.content,
                json.dumps([tc.model_dump() for tc in message.tool_calls])
                if message.tool_calls
                else None,
                message.tool_call_id,
            )
            for position, message in enumerate(session.messages)
        ]
        summary, created_at, updated_at = session.summary, session.created_at, session.updated_at

        try:
            await conn.execute(
                """
                INSERT INTO sessions (key, summary, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    summary = excluded.summary,
                    updated_at = excluded.updated_at
                """,
                (session.key, summary, created_at, updated_at),
            )
            await conn.execute(
                "DELETE FROM session_messages WHERE session_key = ?", (session.key,)
            )
            await conn.executemany(
                """
                INSERT INTO session_messages
                    (session_key, position, role, content, tool_calls, tool_call_id)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            await conn.commit()
        except aiosqlite.Error as exc:
            self._logger.error("session_save_failed", session_key=session.key, error=str(exc))
            try:
                await conn.rollback()
            except aiosqlite.Error as rollback_exc:
                self._logger.error(
                    "session_rollback_failed", session_key=session.key, error=str(rollback_exc)
                )
            return False

        self._logger.debug("session_saved", session_key=session.key, messages=len(rows))
        return True

    async def delete_session(self, key: str) -> bool:
        """
        Remove a session from the cache and the database.

        Returns:
            True if the session existed in the cache.
        """
        conn = self._conn_or_raise()
        existed = self._sessions.pop(key, None) is not None
        await conn.execute("DELETE FROM session_messages WHERE session_key = ?", (key,))
        await conn.execute("DELETE FROM sessions WHERE key = ?", (key,))
        await conn.commit()
        self._logger.info("session_deleted", session_key=key, existed=existed)
        return existed

    async def _load_all(self) -> None:
        conn = self._conn_or_raise()
        sessions: dict[str, Session] = {}
        async with conn.execute(
            "SELECT key, summary, created_at, updated_at FROM sessions"
        ) as cursor:
            async for row in cursor:
                sessions[row["key"]] = Session(
                    key=row["key"],
                    summary=row["summary"] or "",
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                )

        async with conn.execute(
            """
            SELECT session_key, role, content, tool_calls, tool_call_id
            FROM session_messages
            ORDER BY session_key, position
            """
        ) as cursor:
            async for row in cursor:
                session = sessions.get(row["session_key"])
                if session is None:
                    continue
                session.messages.append(_row_to_message(row))

        self._sessions.update(sessions)


def _row_to_message(row: aiosqlite.Row) -> Message:
    tool_calls_raw = row["tool_calls"]
    tool_calls = (
        [ToolCall.model_validate(tc) for tc in json.loads(tool_calls_raw)]
        if tool_calls_raw
        else []
    )
    return Message(
        role=row["role"],
        content=row["content"] or "",
        tool_calls=tool_calls,
        tool_call_id=row["tool_call_id"],
    )

"""Short-lived USSD session state, persisted in SQLite.

Each session id belongs to one phone call and the carrier sends at most one
request per call at a time, so the store only provides durability between
(stateless) request handlers; it does no locking.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from cryptodial.errors import PersistenceError, SessionExpiredError
from cryptodial.storage.database import Database
from cryptodial.storage.models import (
    SESSION_COLUMNS,
    TEMP_FIELDS,
    SessionRecord,
    session_column_value,
)

logger = logging.getLogger("cryptodial.sessions")

START_STATE = "__start__"
DEFAULT_TTL_SECONDS = 300

_MUTABLE_FIELDS = set(SESSION_COLUMNS) - {"session_id", "created_at"}


class SessionStore:
    """Keyed by the transport's session id, with explicit expiry.

    Parameters
    ----------
    db:
        Connected :class:`Database` (an in-memory one is fine).
    ttl_seconds:
        Lifetime of a session from its creation.
    clock:
        Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        db: Database,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    async def get(self, session_id: str) -> SessionRecord | None:
        """Return the live session, or ``None`` if missing or past expiry."""
        row = await self.db.fetch_one(
            "SELECT * FROM sessions WHERE sessionId = ? AND expiresAt >= ?",
            (session_id, self.now()),
        )
        return SessionRecord.from_row(row) if row else None

    async def require(self, session_id: str) -> SessionRecord:
        session = await self.get(session_id)
        if session is None:
            raise SessionExpiredError(f"Session {session_id} not found or expired")
        return session

    async def create(
        self, session_id: str, phone_number: str, state: str = START_STATE
    ) -> SessionRecord:
        """Start a fresh session, replacing any stale row with the same id."""
        now = self.now()
        record = SessionRecord(
            session_id=session_id,
            phone_number=phone_number,
            state=state,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        columns = list(SESSION_COLUMNS.values())
        await self.db.execute(
            f"INSERT OR REPLACE INTO sessions ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            tuple(
                session_column_value(field, getattr(record, field))
                for field in SESSION_COLUMNS
            ),
        )
        return record

    async def upsert(self, session_id: str, **fields: Any) -> SessionRecord:
        """Merge *fields* into the session; unspecified fields keep their values.

        Pass a field explicitly as ``None`` to clear it. A missing session is
        created when ``phone_number`` is supplied, otherwise
        ``SessionExpiredError`` is raised.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")

        current = await self.get(session_id)
        if current is None:
            phone_number = fields.get("phone_number")
            if not phone_number:
                raise SessionExpiredError(f"Session {session_id} not found or expired")
            current = await self.create(
                session_id, phone_number, fields.get("state", START_STATE)
            )
        if not fields:
            return current

        assignments = ", ".join(f"{SESSION_COLUMNS[name]} = ?" for name in fields)
        params = tuple(session_column_value(name, value) for name, value in fields.items())
        await self.db.execute(
            f"UPDATE sessions SET {assignments} WHERE sessionId = ?",
            params + (session_id,),
        )
        return current.model_copy(update=fields)

    async def clear_temp(self, session_id: str, **extra: Any) -> SessionRecord:
        """Drop every temp field, optionally updating others in the same write."""
        return await self.upsert(session_id, **{name: None for name in TEMP_FIELDS}, **extra)

    async def delete(self, session_id: str) -> None:
        await self.db.execute("DELETE FROM sessions WHERE sessionId = ?", (session_id,))

    async def sweep_expired(self, now: int | None = None) -> int:
        """Delete sessions whose ``expiresAt`` is before *now*. Returns the count."""
        cutoff = self.now() if now is None else now
        removed = await self.db.execute("DELETE FROM sessions WHERE expiresAt < ?", (cutoff,))
        if removed:
            logger.info(f"Swept {removed} expired session(s)")
        return removed

    async def run_sweeper(self, interval: float) -> None:
        """Sweep forever every *interval* seconds. Cancel the task to stop."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_expired()
            except PersistenceError as exc:
                logger.error(f"Session sweep failed: {exc}")

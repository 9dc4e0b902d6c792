"""Session persistence backends.

Sessions are keyed by ``"<origin>_<sessionId>"``. Both backends implement the
same expiry semantics; with the default configuration no session ever expires,
so ``validate_and_refresh`` is a plain lookup and ``clean_expired`` returns 0.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from walletrouter.config import SessionStoreConfig
from walletrouter.types import Session


def session_key(origin: str, session_id: str) -> str:
    """Build the store key for a session."""
    return f"{origin}_{session_id}"


class SessionStore(ABC):
    """Interface for session storage."""

    def __init__(self, config: SessionStoreConfig | None = None) -> None:
        self.config = config or SessionStoreConfig()

    def _expires_at(self) -> float | None:
        if self.config.lifetime is None:
            return None
        return time.time() + self.config.lifetime

    @staticmethod
    def _is_expired(expires_at: float | None) -> bool:
        return expires_at is not None and time.time() > expires_at

    @abstractmethod
    async def set(self, key: str, session: Session) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Session | None:
        ...

    @abstractmethod
    async def get_all(self) -> dict[str, Session]:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...

    @abstractmethod
    async def validate_and_refresh(self, key: str) -> Session | None:
        """Return the session if it is still valid, extending its lifetime."""
        ...

    @abstractmethod
    async def clean_expired(self) -> int:
        """Remove expired sessions and return how many were removed."""
        ...


@dataclass(slots=True)
class _Entry:
    session: Session
    expires_at: float | None


class MemorySessionStore(SessionStore):
    """Volatile in-process session store."""

    def __init__(self, config: SessionStoreConfig | None = None) -> None:
        super().__init__(config)
        self._sessions: dict[str, _Entry] = {}

    async def set(self, key: str, session: Session) -> None:
        self._sessions[key] = _Entry(session, self._expires_at())

    async def get(self, key: str) -> Session | None:
        entry = self._sessions.get(key)
        if entry is None:
            return None
        if self._is_expired(entry.expires_at):
            del self._sessions[key]
            return None
        return entry.session

    async def get_all(self) -> dict[str, Session]:
        return {
            key: entry.session
            for key, entry in self._sessions.items()
            if not self._is_expired(entry.expires_at)
        }

    async def delete(self, key: str) -> None:
        self._sessions.pop(key, None)

    async def clear(self) -> None:
        self._sessions.clear()

    async def validate_and_refresh(self, key: str) -> Session | None:
        session = await self.get(key)
        if session is None:
            return None
        if self.config.refresh_on_access and self.config.lifetime is not None:
            self._sessions[key].expires_at = self._expires_at()
        return session

    async def clean_expired(self) -> int:
        expired = [key for key, entry in self._sessions.items() if self._is_expired(entry.expires_at)]
        for key in expired:
            del self._sessions[key]
        return len(expired)


class SqliteSessionStore(SessionStore):
    """Durable session store backed by a SQLite file.

    Each row holds the JSON form of a ``Session`` record and nothing else, so
    the store survives process restarts. Every query opens its own connection
    and runs in a worker thread via ``asyncio.to_thread``.

    Example:
        ```python
        store = SqliteSessionStore("sessions.db")
        router = WalletRouter(transport, wallets, manager, store)
        ```
    """

    TABLE = "wm_sessions"

    def __init__(self, path: str | Path, config: SessionStoreConfig | None = None) -> None:
        super().__init__(config)
        self.path = str(path)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize(self) -> None:
        conn = self._connect()
        try:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    expires_at REAL
                );
            """)
            conn.commit()
        finally:
            conn.close()

    def _fetch(self, key: str) -> sqlite3.Row | None:
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"SELECT data, expires_at FROM {self.TABLE} WHERE key = ?;", (key,)
            )
            return cursor.fetchone()
        finally:
            conn.close()

    def _fetch_all(self) -> list[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(f"SELECT key, data, expires_at FROM {self.TABLE};").fetchall()
        finally:
            conn.close()

    def _execute(self, sql: str, args: tuple = ()) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute(sql, args)
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    async def set(self, key: str, session: Session) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT OR REPLACE INTO {self.TABLE} (key, data, expires_at) VALUES (?, ?, ?);",
            (key, json.dumps(session.to_dict()), self._expires_at()),
        )

    async def get(self, key: str) -> Session | None:
        row = await asyncio.to_thread(self._fetch, key)
        if row is None:
            return None
        if self._is_expired(row["expires_at"]):
            await self.delete(key)
            return None
        return Session.from_dict(json.loads(row["data"]))

    async def get_all(self) -> dict[str, Session]:
        rows = await asyncio.to_thread(self._fetch_all)
        return {
            row["key"]: Session.from_dict(json.loads(row["data"]))
            for row in rows
            if not self._is_expired(row["expires_at"])
        }

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._execute, f"DELETE FROM {self.TABLE} WHERE key = ?;", (key,))

    async def clear(self) -> None:
        await asyncio.to_thread(self._execute, f"DELETE FROM {self.TABLE};")

    async def validate_and_refresh(self, key: str) -> Session | None:
        session = await self.get(key)
        if session is None:
            return None
        if self.config.refresh_on_access and self.config.lifetime is not None:
            await asyncio.to_thread(
                self._execute,
                f"UPDATE {self.TABLE} SET expires_at = ? WHERE key = ?;",
                (self._expires_at(), key),
            )
        return session

    async def clean_expired(self) -> int:
        return await asyncio.to_thread(
            self._execute,
            f"DELETE FROM {self.TABLE} WHERE expires_at IS NOT NULL AND expires_at < ?;",
            (time.time(),),
        )

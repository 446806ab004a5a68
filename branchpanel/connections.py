"""Connection backends that open a session to the selected branch."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import asyncpg

from .models import BranchConnectionInfo

LOG = logging.getLogger(__name__)


class ConnectionBackendError(RuntimeError):
    """Raised when a backend cannot open or probe a branch connection."""


@runtime_checkable
class ConnectionBackend(Protocol):
    """Protocol implemented by connection backends."""

    async def connect(self, info: BranchConnectionInfo) -> "ConnectionEvent":
        """Open a session to the branch and report its health."""

    async def ping(self) -> "ConnectionEvent":
        """Re-probe the open session."""

    async def disconnect(self) -> None:
        """Close the session if one is open."""


@dataclass(frozen=True, slots=True)
class ConnectionEvent:
    """Result of a connect or ping."""

    database: str
    user: str
    status: str
    latency_ms: int
    connected_at: datetime


class AsyncpgConnectionBackend:
    """Connection backend that talks to the branch via asyncpg."""

    _PROBE_QUERY = "SELECT current_database() AS database, current_user AS user"

    def __init__(self, *, connect_timeout: float = 10.0, ssl: Any = "require") -> None:
        self._connect_timeout = connect_timeout
        self._ssl = ssl
        self._conn: Any = None
        self._info: BranchConnectionInfo | None = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self, info: BranchConnectionInfo) -> ConnectionEvent:
        await self.disconnect()
        started = time.perf_counter()
        try:
            conn = await asyncpg.connect(
                host=info.host,
                user=info.user,
                password=info.password,
                database=info.database,
                ssl=self._ssl,
                timeout=self._connect_timeout,
            )
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to connect to {info.host}/{info.database}: {exc}") from exc
        self._conn = conn
        self._info = info
        return await self._probe(started, status="Connected")

    async def ping(self) -> ConnectionEvent:
        if self._conn is None:
            raise ConnectionBackendError("No open connection.")
        return await self._probe(time.perf_counter(), status="Healthy")

    async def disconnect(self) -> None:
        conn, self._conn = self._conn, None
        self._info = None
        if conn is None:
            return
        try:
            await conn.close()
        except Exception:  # pragma: no cover - best effort
            LOG.exception("Failed to close branch connection")

    async def _probe(self, started: float, *, status: str) -> ConnectionEvent:
        try:
            row = await self._conn.fetchrow(self._PROBE_QUERY)
        except Exception as exc:
            raise ConnectionBackendError(f"Connection probe failed: {exc}") from exc
        latency_ms = int((time.perf_counter() - started) * 1000)
        return ConnectionEvent(
            database=str(row["database"]),
            user=str(row["user"]),
            status=status,
            latency_ms=latency_ms,
            connected_at=datetime.now(tz=timezone.utc),
        )


class DemoConnectionBackend:
    """Stub backend reporting synthetic health for offline use and tests."""

    def __init__(self) -> None:
        self._info: BranchConnectionInfo | None = None
        self.connect_calls: list[BranchConnectionInfo] = []

    @property
    def is_connected(self) -> bool:
        return self._info is not None

    async def connect(self, info: BranchConnectionInfo) -> ConnectionEvent:
        self.connect_calls.append(info)
        self._info = info
        return self._build_event(status="Connected")

    async def ping(self) -> ConnectionEvent:
        if self._info is None:
            raise ConnectionBackendError("No open connection.")
        return self._build_event(status=random.choice(["Healthy", "Degraded"]))

    async def disconnect(self) -> None:
        self._info = None

    def _build_event(self, *, status: str) -> ConnectionEvent:
        assert self._info is not None
        return ConnectionEvent(
            database=self._info.database,
            user=self._info.user,
            status=status,
            latency_ms=25 + random.randint(0, 15),
            connected_at=datetime.now(tz=timezone.utc),
        )


__all__ = [
    "AsyncpgConnectionBackend",
    "ConnectionBackend",
    "ConnectionBackendError",
    "ConnectionEvent",
    "DemoConnectionBackend",
]

"""Analysis store: results kept under their run id with an explicit TTL.

Two implementations share the ``AnalysisStore`` protocol:

- ``InMemoryAnalysisStore``: dict with monotonic-clock expiry, for one process
- ``SqlAlchemyAnalysisStore``: one ``analysis_runs`` row per run

Expired entries are never returned; both stores purge them lazily on read
and on demand via ``purge_expired``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from roster_merge.config import settings
from roster_merge.models.analysis_run import AnalysisRun

logger = logging.getLogger(__name__)


class AnalysisStore(Protocol):
    async def put(self, run_id: str, payload: dict[str, Any]) -> None: ...

    async def get(self, run_id: str) -> dict[str, Any] | None: ...

    async def delete(self, run_id: str) -> None: ...

    async def purge_expired(self) -> int: ...


class InMemoryAnalysisStore:
    """Process-local store. Not shared between workers."""

    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.analysis_ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def put(self, run_id: str, payload: dict[str, Any]) -> None:
        self._entries[run_id] = (self._clock() + self._ttl, payload)

    async def get(self, run_id: str) -> dict[str, Any] | None:
        entry = self._entries.get(run_id)
        if entry is None:
            return None
        expires_at, payload = entry
        if self._clock() >= expires_at:
            del self._entries[run_id]
            logger.debug("Analysis %s expired", run_id)
            return None
        return payload

    async def delete(self, run_id: str) -> None:
        self._entries.pop(run_id, None)

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [run_id for run_id, (expires_at, _) in self._entries.items() if now >= expires_at]
        for run_id in expired:
            del self._entries[run_id]
        return len(expired)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class SqlAlchemyAnalysisStore:
    """Store backed by the ``analysis_runs`` table.

    Usage:
        engine = get_engine()
        await init_db(engine)
        store = SqlAlchemyAnalysisStore(get_session_factory(engine))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ttl_seconds: float | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._session_factory = session_factory
        self._ttl = timedelta(
            seconds=ttl_seconds if ttl_seconds is not None else settings.analysis_ttl_seconds
        )
        self._now = now

    async def put(self, run_id: str, payload: dict[str, Any]) -> None:
        now = self._now()
        async with self._session_factory() as session:
            await session.merge(
                AnalysisRun(
                    run_id=run_id,
                    payload=payload,
                    created_at=now,
                    expires_at=now + self._ttl,
                )
            )
            await session.commit()

    async def get(self, run_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            row = await session.get(AnalysisRun, run_id)
            if row is None:
                return None
            if self._now() >= _aware(row.expires_at):
                await session.delete(row)
                await session.commit()
                logger.debug("Analysis %s expired", run_id)
                return None
            return row.payload

    async def delete(self, run_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(AnalysisRun).where(AnalysisRun.run_id == run_id))
            await session.commit()

    async def purge_expired(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(AnalysisRun).where(AnalysisRun.expires_at <= self._now())
            )
            await session.commit()
            return result.rowcount or 0

"""Run record storage.

:class:`RunLifecycleManager` needs a per ``(actor_id, scope_key)`` claim that
serialises the "read latest run, then create a new one" sequence, and a
single terminal update once the pipeline ends.  The claim yields a
:class:`ClaimedScope` whose ``latest``/``create`` run under the claim.

Two implementations:

- :class:`InMemoryRunStore`: process-local, used by tests and by the CLI
  when no ``DATABASE_URL`` is configured.  The claim is an ``asyncio.Lock``
  per key.
- :class:`SqlAlchemyRunStore`: PostgreSQL via SQLAlchemy's async ORM.  The
  claim is a transaction-scoped advisory lock, so concurrent workers in
  different processes cannot both pass the rate-limit check.  The lookup
  and the insert use the connection holding the lock; a claimant never
  needs a second pooled connection.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Protocol

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channel_pulse.core.models.runs import ReportRun
from channel_pulse.core.schemas.runs import RunRecord, RunStatus


class ClaimedScope(Protocol):
    async def latest(self) -> RunRecord | None: ...

    async def create(self, started_at: datetime) -> RunRecord: ...


class RunStore(Protocol):
    def claim(self, actor_id: str, scope_key: str) -> AbstractAsyncContextManager[ClaimedScope]: ...

    async def finish(self, run_id: str, status: RunStatus, error: str | None = None) -> RunRecord: ...


class _StoreScope:
    """Claimed view that delegates to the store's own lookups."""

    def __init__(self, store: InMemoryRunStore, actor_id: str, scope_key: str) -> None:
        self._store = store
        self._actor_id = actor_id
        self._scope_key = scope_key

    async def latest(self) -> RunRecord | None:
        return await self._store.latest(self._actor_id, self._scope_key)

    async def create(self, started_at: datetime) -> RunRecord:
        return await self._store.create(self._actor_id, self._scope_key, started_at)


class InMemoryRunStore:
    """Run records kept in a list, in creation order."""

    def __init__(self) -> None:
        self._runs: list[RunRecord] = []
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    @asynccontextmanager
    async def claim(self, actor_id: str, scope_key: str) -> AsyncIterator[ClaimedScope]:
        lock = self._locks.setdefault((actor_id, scope_key), asyncio.Lock())
        async with lock:
            yield _StoreScope(self, actor_id, scope_key)

    async def latest(self, actor_id: str, scope_key: str) -> RunRecord | None:
        best: RunRecord | None = None
        for run in self._runs:
            if run.actor_id != actor_id or run.scope_key != scope_key:
                continue
            if best is None or run.created_at >= best.created_at:
                best = run
        return best

    async def create(self, actor_id: str, scope_key: str, started_at: datetime) -> RunRecord:
        run = RunRecord(
            id=str(uuid.uuid4()),
            actor_id=actor_id,
            scope_key=scope_key,
            started_at=started_at,
            created_at=started_at,
        )
        self._runs.append(run)
        return run

    async def finish(self, run_id: str, status: RunStatus, error: str | None = None) -> RunRecord:
        for index, run in enumerate(self._runs):
            if run.id == run_id:
                finished = run.finish(status, error)
                self._runs[index] = finished
                return finished
        raise KeyError(run_id)

    def all(self) -> list[RunRecord]:
        return list(self._runs)


class _SessionScope:
    """Claimed view bound to the session whose transaction holds the lock.

    The created row is flushed here and committed when the claim ends.
    """

    def __init__(self, session: AsyncSession, actor_id: str, scope_key: str) -> None:
        self._session = session
        self._actor_id = actor_id
        self._scope_key = scope_key

    async def latest(self) -> RunRecord | None:
        return await _latest_in(self._session, self._actor_id, self._scope_key)

    async def create(self, started_at: datetime) -> RunRecord:
        row = _new_row(self._actor_id, self._scope_key, started_at)
        self._session.add(row)
        await self._session.flush()
        return row.to_record()


class SqlAlchemyRunStore:
    """Run records in the ``report_runs`` table.

    Outside a claim, each operation opens its own session and commits
    before returning.

    Args:
        session_factory: Factory from
            :func:`channel_pulse.core.database.build_session_factory`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def claim(self, actor_id: str, scope_key: str) -> AsyncIterator[ClaimedScope]:
        # The lock is held until this transaction ends, i.e. for the body of
        # the ``async with``; other claimers of the same key block on it.
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(claim_statement(actor_id, scope_key))
                yield _SessionScope(session, actor_id, scope_key)

    async def latest(self, actor_id: str, scope_key: str) -> RunRecord | None:
        async with self._session_factory() as session:
            return await _latest_in(session, actor_id, scope_key)

    async def create(self, actor_id: str, scope_key: str, started_at: datetime) -> RunRecord:
        async with self._session_factory() as session:
            row = _new_row(actor_id, scope_key, started_at)
            session.add(row)
            await session.commit()
            return row.to_record()

    async def finish(self, run_id: str, status: RunStatus, error: str | None = None) -> RunRecord:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    sa.select(ReportRun)
                    .where(ReportRun.id == uuid.UUID(run_id))
                    .with_for_update()
                )
                row = result.scalars().first()
                if row is None:
                    raise KeyError(run_id)
                finished = row.to_record().finish(status, error)
                row.status = finished.status.value
                row.error = finished.error
            return finished


async def _latest_in(session: AsyncSession, actor_id: str, scope_key: str) -> RunRecord | None:
    result = await session.execute(latest_statement(actor_id, scope_key))
    row = result.scalars().first()
    return row.to_record() if row is not None else None


def _new_row(actor_id: str, scope_key: str, started_at: datetime) -> ReportRun:
    return ReportRun(
        id=uuid.uuid4(),
        actor_id=actor_id,
        scope_key=scope_key,
        status=RunStatus.RUNNING.value,
        started_at=started_at,
        created_at=started_at,
    )


def claim_statement(actor_id: str, scope_key: str) -> sa.Select:
    """``SELECT pg_advisory_xact_lock(hashtext(<actor>|<scope>))``."""
    key = f"report_runs:{actor_id}|{scope_key}"
    return sa.select(sa.func.pg_advisory_xact_lock(sa.func.hashtext(key)))


def latest_statement(actor_id: str, scope_key: str) -> sa.Select:
    return (
        sa.select(ReportRun)
        .where(ReportRun.actor_id == actor_id, ReportRun.scope_key == scope_key)
        .order_by(ReportRun.created_at.desc())
        .limit(1)
    )


__all__ = [
    "ClaimedScope",
    "InMemoryRunStore",
    "RunStore",
    "SqlAlchemyRunStore",
]

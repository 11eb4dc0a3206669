"""Tests for run record storage.

Covers:
- InMemoryRunStore: latest by created_at per (actor, scope), single terminal
  transition, claim serialises holders of the same key only, the claimed
  scope reads and writes the claimed key
- SqlAlchemyRunStore claim: lock, lookup and insert share one session
- SqlAlchemyRunStore statements compile for PostgreSQL (advisory lock,
  latest-run query)
- SqlAlchemyRunStore against a live PostgreSQL (integration, needs
  DATABASE_URL)
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from channel_pulse.core.exceptions import InvalidRunTransition
from channel_pulse.core.schemas.runs import RunStatus
from channel_pulse.pipeline import run_store
from channel_pulse.pipeline.run_store import (
    InMemoryRunStore,
    SqlAlchemyRunStore,
    claim_statement,
    latest_statement,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestInMemoryRunStore:
    @pytest.mark.asyncio
    async def test_latest_is_most_recent_for_key(self) -> None:
        store = InMemoryRunStore()
        await store.create("a", "1:14d", T0)
        newest = await store.create("a", "1:14d", T0 + timedelta(hours=1))
        await store.create("a", "1:90d", T0 + timedelta(hours=2))
        await store.create("b", "1:14d", T0 + timedelta(hours=3))

        assert await store.latest("a", "1:14d") == newest
        assert await store.latest("c", "1:14d") is None

    @pytest.mark.asyncio
    async def test_finish_once(self) -> None:
        store = InMemoryRunStore()
        run = await store.create("a", "1:14d", T0)

        finished = await store.finish(run.id, RunStatus.FAILED, "boom")

        assert finished.status is RunStatus.FAILED
        assert finished.error == "boom"
        with pytest.raises(InvalidRunTransition):
            await store.finish(run.id, RunStatus.SUCCESS)

    @pytest.mark.asyncio
    async def test_finish_to_running_is_rejected(self) -> None:
        store = InMemoryRunStore()
        run = await store.create("a", "1:14d", T0)
        with pytest.raises(InvalidRunTransition):
            await store.finish(run.id, RunStatus.RUNNING)

    @pytest.mark.asyncio
    async def test_finish_unknown_run(self) -> None:
        with pytest.raises(KeyError):
            await InMemoryRunStore().finish("missing", RunStatus.SUCCESS)

    @pytest.mark.asyncio
    async def test_claim_serialises_same_key(self) -> None:
        store = InMemoryRunStore()
        events: list[str] = []

        async def hold(name: str, key: str) -> None:
            async with store.claim("a", key):
                events.append(f"{name}:in")
                await asyncio.sleep(0)
                events.append(f"{name}:out")

        await asyncio.gather(hold("first", "k"), hold("second", "k"))
        assert events == ["first:in", "first:out", "second:in", "second:out"]

    @pytest.mark.asyncio
    async def test_claim_does_not_block_other_keys(self) -> None:
        store = InMemoryRunStore()
        events: list[str] = []

        async def hold(name: str, key: str) -> None:
            async with store.claim("a", key):
                events.append(f"{name}:in")
                await asyncio.sleep(0)
                events.append(f"{name}:out")

        await asyncio.gather(hold("first", "k1"), hold("second", "k2"))
        assert events[:2] == ["first:in", "second:in"]

    @pytest.mark.asyncio
    async def test_claimed_scope_reads_and_writes_its_key(self) -> None:
        store = InMemoryRunStore()
        await store.create("a", "1:90d", T0)

        async with store.claim("a", "1:14d") as claimed:
            assert await claimed.latest() is None
            run = await claimed.create(T0 + timedelta(hours=1))
            assert await claimed.latest() == run

        assert (run.actor_id, run.scope_key) == ("a", "1:14d")
        assert await store.latest("a", "1:14d") == run


def _session_factory_mock() -> tuple[MagicMock, MagicMock]:
    result = MagicMock()
    result.scalars.return_value.first.return_value = None
    session = MagicMock()
    session.execute = AsyncMock(return_value=result)
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session_cm = MagicMock()
    session_cm.__aenter__.return_value = session
    factory = MagicMock(return_value=session_cm)
    return factory, session


class TestSqlAlchemyClaim:
    @pytest.mark.asyncio
    async def test_lookup_and_insert_use_the_locking_session(self) -> None:
        factory, session = _session_factory_mock()
        store = SqlAlchemyRunStore(factory)

        async with store.claim("a", "1:14d") as claimed:
            assert await claimed.latest() is None
            run = await claimed.create(T0)

        assert factory.call_count == 1
        session.begin.assert_called_once()
        # Advisory lock, then the latest-run query.
        assert session.execute.await_count == 2
        first_sql = str(session.execute.await_args_list[0].args[0])
        assert "pg_advisory_xact_lock" in first_sql
        session.add.assert_called_once()
        session.flush.assert_awaited_once()
        session.commit.assert_not_awaited()
        assert run.status is RunStatus.RUNNING
        assert run.created_at == T0


class TestStatements:
    def test_claim_uses_transaction_advisory_lock(self) -> None:
        sql = str(claim_statement("a", "1:14d").compile(dialect=postgresql.dialect()))
        assert "pg_advisory_xact_lock(hashtext(" in sql

    def test_latest_orders_by_created_at(self) -> None:
        sql = str(latest_statement("a", "1:14d").compile(dialect=postgresql.dialect()))
        assert "FROM report_runs" in sql
        assert "ORDER BY report_runs.created_at DESC" in sql
        assert "LIMIT" in sql


@pytest.mark.integration
class TestSqlAlchemyRunStore:
    @pytest.mark.asyncio
    async def test_create_latest_finish(self, session_factory) -> None:
        store = SqlAlchemyRunStore(session_factory)

        async with store.claim("a", "1:14d") as claimed:
            assert await claimed.latest() is None
            run = await claimed.create(T0)

        assert run.status is RunStatus.RUNNING
        finished = await store.finish(run.id, RunStatus.SUCCESS)
        assert finished.status is RunStatus.SUCCESS

        latest = await store.latest("a", "1:14d")
        assert latest is not None
        assert latest.id == run.id
        assert latest.status is RunStatus.SUCCESS

        with pytest.raises(InvalidRunTransition):
            await store.finish(run.id, RunStatus.FAILED)


def test_exports_are_defined_here() -> None:
    for name in run_store.__all__:
        assert getattr(run_store, name).__module__ == run_store.__name__

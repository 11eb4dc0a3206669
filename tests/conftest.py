"""Shared pytest fixtures for channel-pulse tests.

Fixture summary
---------------
settings       : Settings with small page sizes and no external services.
fake_sleep     : Records retry delays instead of sleeping.
retry_policy   : RetryPolicy wired to ``fake_sleep``.
clock          : Mutable fake UTC clock.
session_factory: Async PostgreSQL session factory (integration only).

Unit tests run without any infrastructure: the messaging platform is a
scripted :class:`tests.factories.feeds.FakeFeedSource` and run records live
in :class:`~channel_pulse.pipeline.run_store.InMemoryRunStore`.  Tests marked
``integration`` need a live PostgreSQL instance; set DATABASE_URL in the
environment before running them.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Remove credentials that may leak in from a developer shell or .env so that
# unit tests never reach a live Telegram account.

for _key in ("TELEGRAM_API_ID", "TELEGRAM_API_HASH", "TELEGRAM_SESSION_STRING"):
    os.environ.pop(_key, None)

from channel_pulse.config.settings import Settings, get_settings  # noqa: E402
from channel_pulse.pipeline.fetcher import RetryPolicy  # noqa: E402

get_settings.cache_clear()

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock and sleep fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable returning a settable UTC ``now``."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeSleep:
    """Async stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def retry_policy(fake_sleep: FakeSleep) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, sleep=fake_sleep)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        discussion_page_size=10,
        max_discussion_messages_scan=1_000,
        report_top_n=50,
    )


# ---------------------------------------------------------------------------
# Integration database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator:
    """Session factory bound to a fresh ``report_runs`` table.

    Skips the test unless DATABASE_URL points at a reachable PostgreSQL.
    """
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set")

    from channel_pulse.core.database import Base, build_engine, build_session_factory  # noqa: PLC0415

    engine = build_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield build_session_factory(engine)
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

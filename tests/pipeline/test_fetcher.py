"""Tests for the rate-limited feed fetcher.

Covers:
- parse_wait_seconds(): ``seconds`` attribute, FLOOD_WAIT_N / "wait of N
  seconds" / "retry after N" text, no signal -> None
- RetryPolicy.delay_for(): explicit wait + 1, linear backoff capped at max
- RateLimitedFetcher: success after flood waits, exhaustion raises
  TransientFetchError chained from the last error, no sleep after the final
  attempt, every call kind goes through the retry loop
- A real Telethon FloodWaitError is honoured

These tests never sleep: RetryPolicy.sleep is replaced by a recorder.
"""

from __future__ import annotations

import pytest
from telethon.errors import FloodWaitError

from channel_pulse.core.exceptions import TransientFetchError
from channel_pulse.pipeline.fetcher import RateLimitedFetcher, RetryPolicy, parse_wait_seconds
from tests.factories import DISCUSSION_GROUP_ID, CommentFactory, FakeFeedSource, FakeFloodWait


# ---------------------------------------------------------------------------
# parse_wait_seconds
# ---------------------------------------------------------------------------


class TestParseWaitSeconds:
    def test_seconds_attribute_wins(self) -> None:
        assert parse_wait_seconds(FakeFloodWait(17)) == 17

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("RPCError 420: FLOOD_WAIT_42 (caused by GetHistoryRequest)", 42),
            ("A wait of 9 seconds is required", 9),
            ("Too many requests, retry after 3", 3),
            ("SLOWMODE_WAIT_60", 60),
        ],
    )
    def test_wait_parsed_from_text(self, text: str, expected: int) -> None:
        assert parse_wait_seconds(RuntimeError(text)) == expected

    def test_no_signal_returns_none(self) -> None:
        assert parse_wait_seconds(ConnectionError("connection reset by peer")) is None

    def test_telethon_flood_wait_error(self) -> None:
        error = FloodWaitError(request=None, capture=7)
        assert parse_wait_seconds(error) == 7


# ---------------------------------------------------------------------------
# RetryPolicy
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    def test_explicit_wait_adds_one_second(self) -> None:
        policy = RetryPolicy()
        assert policy.delay_for(FakeFloodWait(5), attempt=1) == (6.0, "flood_wait")

    def test_linear_backoff(self) -> None:
        policy = RetryPolicy(base_delay=0.8, max_delay=10.0)
        delay, reason = policy.delay_for(ConnectionError("reset"), attempt=3)
        assert reason == "backoff"
        assert delay == pytest.approx(2.4)

    def test_backoff_is_capped(self) -> None:
        policy = RetryPolicy(base_delay=0.8, max_delay=10.0)
        assert policy.delay_for(ConnectionError("reset"), attempt=50) == (10.0, "backoff")

    def test_from_settings(self, settings) -> None:
        policy = RetryPolicy.from_settings(settings, max_attempts=2)
        assert policy.max_attempts == 2
        assert policy.base_delay == settings.fetch_base_delay_seconds
        assert policy.max_delay == settings.fetch_max_delay_seconds


# ---------------------------------------------------------------------------
# RateLimitedFetcher
# ---------------------------------------------------------------------------


class TestRateLimitedFetcher:
    @pytest.mark.asyncio
    async def test_flood_waits_then_success(self, retry_policy, fake_sleep) -> None:
        """Two flood waits are slept through (N+1 each) and the page returned."""
        messages = CommentFactory.build_batch(3)
        source = FakeFeedSource(messages)
        source.errors = [FakeFloodWait(2), FakeFloodWait(4)]
        fetcher = RateLimitedFetcher(source, DISCUSSION_GROUP_ID, retry_policy)

        page = await fetcher.fetch(cursor=0, limit=10)

        assert [m.id for m in page] == sorted((m.id for m in messages), reverse=True)
        assert fake_sleep.delays == [3.0, 5.0]
        assert source.count("messages") == 3

    @pytest.mark.asyncio
    async def test_exhaustion_raises_transient_fetch_error(self, fake_sleep) -> None:
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=fake_sleep)
        source = FakeFeedSource()
        last = ConnectionError("third")
        source.errors = [ConnectionError("first"), ConnectionError("second"), last]
        fetcher = RateLimitedFetcher(source, DISCUSSION_GROUP_ID, policy)

        with pytest.raises(TransientFetchError) as exc_info:
            await fetcher.fetch(cursor=0)

        assert exc_info.value.attempts == 3
        assert exc_info.value.label == "messages"
        assert exc_info.value.__cause__ is last
        # No sleep after the final attempt.
        assert fake_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_single_attempt_policy_never_sleeps(self, fake_sleep) -> None:
        policy = RetryPolicy(max_attempts=1, sleep=fake_sleep)
        source = FakeFeedSource()
        source.errors = [FakeFloodWait(30)]
        fetcher = RateLimitedFetcher(source, DISCUSSION_GROUP_ID, policy)

        with pytest.raises(TransientFetchError):
            await fetcher.fetch(cursor=0)
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_fetch_by_id_retries(self, retry_policy, fake_sleep) -> None:
        message = CommentFactory.build(id=5)
        source = FakeFeedSource([message])
        source.errors = [ConnectionError("reset")]
        fetcher = RateLimitedFetcher(source, DISCUSSION_GROUP_ID, retry_policy)

        assert await fetcher.fetch_by_id(5) == message
        assert await fetcher.fetch_by_id(6) is None
        assert fake_sleep.delays == [pytest.approx(0.8)]

    @pytest.mark.asyncio
    async def test_fetch_replies_passes_post_and_cursor(self, retry_policy) -> None:
        replies = CommentFactory.build_batch(4)
        source = FakeFeedSource(replies={10: replies})
        fetcher = RateLimitedFetcher(source, "channel-entity", retry_policy)

        newest_two = await fetcher.fetch_replies(10, cursor=0, limit=2)
        older = await fetcher.fetch_replies(10, cursor=newest_two[-1].id, limit=2)

        assert len(newest_two) == 2
        assert len(older) == 2
        assert {m.id for m in newest_two}.isdisjoint(m.id for m in older)
        assert source.calls[0] == ("replies", "channel-entity", 10, 0, 2)

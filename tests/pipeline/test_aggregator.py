"""Tests for engagement aggregation.

Covers:
- end_user_id(): users counted, channel/chat/anonymous authors skipped
- comment_count / distinct posts / avg_comments_per_active_post
- attribution starts from thread root, falling back to the direct parent;
  messages with neither are skipped
- unattributed comments are excluded
- ranking: comment_count desc, ties by first-seen order, truncated to top_n
- no-data status for an empty window
- aggregate() over sync and async iterables
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from channel_pulse.core.schemas.messages import ChannelPeer, ChatPeer, UserPeer
from channel_pulse.pipeline.aggregator import EngagementAggregator, end_user_id
from channel_pulse.pipeline.context import ReportWindow, RunContext
from channel_pulse.pipeline.fetcher import RateLimitedFetcher, RetryPolicy
from tests.factories import (
    CHANNEL_ID,
    DISCUSSION_GROUP_ID,
    CommentFactory,
    FakeFeedSource,
    RelayFactory,
)

WINDOW = ReportWindow(
    start=datetime(2026, 1, 1, tzinfo=timezone.utc),
    end=datetime(2026, 3, 1, tzinfo=timezone.utc),
)

RELAYS = [
    RelayFactory.build(id=100, forward_origin_post_id=1),
    RelayFactory.build(id=200, forward_origin_post_id=2),
    RelayFactory.build(id=300, forward_origin_post_id=3),
]


def _aggregator(source: FakeFeedSource, top_n: int = 50) -> EngagementAggregator:
    fetcher = RateLimitedFetcher(source, DISCUSSION_GROUP_ID, RetryPolicy(max_attempts=1))
    context = RunContext(CHANNEL_ID, fetcher, WINDOW)
    return EngagementAggregator(context.resolver(), CHANNEL_ID, top_n)


def _comment(author: int, root: int, **kwargs):
    return CommentFactory.build(author=UserPeer(author), parent_id=root, **kwargs)


class TestEndUserId:
    def test_user(self) -> None:
        assert end_user_id(CommentFactory.build(author=UserPeer(5))) == 5

    @pytest.mark.parametrize("author", [ChannelPeer(5), ChatPeer(5), None])
    def test_non_user_authors(self, author) -> None:
        assert end_user_id(CommentFactory.build(author=author)) is None


class TestAggregate:
    @pytest.mark.asyncio
    async def test_counts_and_averages(self) -> None:
        source = FakeFeedSource(lookup=RELAYS)
        messages = [
            _comment(1, 100),
            _comment(1, 100),
            _comment(1, 200),
            _comment(2, 300),
        ]

        report = await _aggregator(source).aggregate(messages, WINDOW.start, WINDOW.end)

        assert report.status == "ok"
        first, second = report.items
        assert (first.author_id, first.comment_count, first.post_count) == (1, 3, 2)
        assert first.avg_comments_per_active_post == pytest.approx(1.5)
        assert (second.author_id, second.comment_count, second.post_count) == (2, 1, 1)
        assert report.attributed_count == 4

    @pytest.mark.asyncio
    async def test_thread_root_preferred_over_parent(self) -> None:
        nested_parent = _comment(9, 100, id=150)
        source = FakeFeedSource([nested_parent], lookup=RELAYS)
        nested = CommentFactory.build(author=UserPeer(3), parent_id=150, thread_root_id=200)

        aggregator = _aggregator(source)
        assert await aggregator.add(nested) == 2

    @pytest.mark.asyncio
    async def test_parent_used_without_thread_root(self) -> None:
        nested_parent = _comment(9, 100, id=150)
        source = FakeFeedSource([nested_parent], lookup=RELAYS)
        nested = CommentFactory.build(author=UserPeer(3), parent_id=150)

        assert await _aggregator(source).add(nested) == 1

    @pytest.mark.asyncio
    async def test_skipped_messages(self) -> None:
        source = FakeFeedSource(lookup=RELAYS)
        messages = [
            CommentFactory.build(author=ChannelPeer(CHANNEL_ID), parent_id=100),
            CommentFactory.build(author=ChatPeer(4), parent_id=100),
            CommentFactory.build(author=None, parent_id=100),
            CommentFactory.build(author=UserPeer(5)),  # no parent, no root
            _comment(6, 999),  # unattributable
        ]

        report = await _aggregator(source).aggregate(messages, WINDOW.start, WINDOW.end)

        assert report.items == []
        assert report.status == "no-data"
        assert report.scanned_count == 5
        assert report.attributed_count == 0

    @pytest.mark.asyncio
    async def test_relays_are_not_counted_as_comments(self) -> None:
        source = FakeFeedSource(lookup=RELAYS)
        report = await _aggregator(source).aggregate(RELAYS, WINDOW.start, WINDOW.end)
        assert report.items == []

    @pytest.mark.asyncio
    async def test_async_iterable(self) -> None:
        source = FakeFeedSource(lookup=RELAYS)

        async def stream():
            yield _comment(1, 100)
            yield _comment(1, 200)

        report = await _aggregator(source).aggregate(stream(), WINDOW.start, WINDOW.end)

        assert report.items[0].comment_count == 2

    @pytest.mark.asyncio
    async def test_username_taken_from_first_message_that_has_one(self) -> None:
        source = FakeFeedSource(lookup=RELAYS)
        messages = [
            _comment(1, 100, author_username=None),
            _comment(1, 100, author_username="anne_k"),
            _comment(1, 100, author_username="renamed"),
        ]

        report = await _aggregator(source).aggregate(messages, WINDOW.start, WINDOW.end)

        assert report.items[0].username == "anne_k"


class TestRanking:
    @pytest.mark.asyncio
    async def test_ties_keep_first_seen_order(self) -> None:
        source = FakeFeedSource(lookup=RELAYS)
        messages = [
            _comment(30, 100),
            _comment(10, 100),
            _comment(20, 100),
            _comment(20, 200),
            _comment(10, 200),
        ]

        report = await _aggregator(source).aggregate(messages, WINDOW.start, WINDOW.end)

        assert [item.author_id for item in report.items] == [10, 20, 30]

    @pytest.mark.asyncio
    async def test_truncated_to_top_n(self) -> None:
        source = FakeFeedSource(lookup=RELAYS)
        messages = []
        for author in range(1, 8):
            messages.extend(_comment(author, 100) for _ in range(author))

        aggregator = _aggregator(source, top_n=3)
        report = await aggregator.aggregate(messages, WINDOW.start, WINDOW.end)

        assert [item.author_id for item in report.items] == [7, 6, 5]
        assert len(aggregator.records()) == 7

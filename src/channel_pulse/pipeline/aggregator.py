"""Aggregate attributed comments into a ranked engagement report.

For every in-window discussion message:

1. Skip it unless the author is an end user; messages posted as a channel or
   a chat (including the automatic relays of channel posts) are excluded.
2. Attribute it to a channel post, starting the climb at the message's
   thread root, or its direct parent when no root is reported.  Messages
   that attribute to nothing are left out.
3. Count the comment for its author and remember the post.

The report ranks authors by comment count, highest first.  Ties keep the
order in which authors were first seen in the feed; no secondary key is
applied.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, Iterable
from datetime import datetime
from typing import assert_never

import structlog

from channel_pulse.core.metrics import attribution_results_total
from channel_pulse.core.schemas.messages import ChannelPeer, ChatPeer, Message, UserPeer
from channel_pulse.core.schemas.report import EngagementRecord, EngagementReport
from channel_pulse.pipeline.attribution import ThreadAttributionResolver

logger = structlog.get_logger(__name__)

TOP_USERS_AMOUNT: int = 50


def end_user_id(message: Message) -> int | None:
    """Return the author id when the message was written by an end user."""
    match message.author:
        case UserPeer(id=user_id):
            return user_id
        case ChannelPeer() | ChatPeer():
            return None
        case None:
            return None
        case unreachable:
            assert_never(unreachable)


class EngagementAggregator:
    """Accumulates one run's engagement and renders the report.

    Instances are single-use: create one per run.

    Args:
        resolver: Attribution resolver carrying the run's cache.
        target_channel_id: Channel whose posts count.
        top_n: Number of authors kept in the report.
    """

    def __init__(
        self,
        resolver: ThreadAttributionResolver,
        target_channel_id: int,
        top_n: int = TOP_USERS_AMOUNT,
    ) -> None:
        self.resolver = resolver
        self.target_channel_id = target_channel_id
        self.top_n = top_n
        self._records: dict[int, EngagementRecord] = {}
        self.seen_count = 0
        self.attributed_count = 0

    async def add(self, message: Message) -> int | None:
        """Account for one message.  Usable directly as a scanner visitor.

        Returns:
            The post the message was attributed to, or ``None`` if it was
            skipped.
        """
        self.seen_count += 1
        author_id = end_user_id(message)
        if author_id is None:
            return None

        start_id = message.attribution_start_id
        if start_id is None:
            return None

        post_id = await self.resolver.resolve(start_id, self.target_channel_id)
        if post_id is None:
            attribution_results_total.labels(outcome="miss").inc()
            return None
        attribution_results_total.labels(outcome="hit").inc()

        record = self._records.get(author_id)
        if record is None:
            record = self._records[author_id] = EngagementRecord(author_id=author_id)
        record.comment_count += 1
        record.distinct_post_ids.add(post_id)
        if record.username is None and message.author_username:
            record.username = message.author_username
        self.attributed_count += 1
        return post_id

    def records(self) -> list[EngagementRecord]:
        """All author records, ranked, untruncated."""
        # sorted() is stable and _records preserves first-seen order.
        return sorted(self._records.values(), key=lambda r: r.comment_count, reverse=True)

    def report(
        self,
        window_from: datetime,
        window_to: datetime,
        scanned_count: int | None = None,
        safety_abort: bool = False,
    ) -> EngagementReport:
        ranked = self.records()[: self.top_n]
        report = EngagementReport(
            window_from=window_from,
            window_to=window_to,
            items=[record.to_item() for record in ranked],
            scanned_count=self.seen_count if scanned_count is None else scanned_count,
            attributed_count=self.attributed_count,
            safety_abort=safety_abort,
        )
        logger.info(
            "aggregate.report",
            authors=len(self._records),
            reported=len(report.items),
            attributed=self.attributed_count,
        )
        return report

    async def aggregate(
        self,
        messages: Iterable[Message] | AsyncIterable[Message],
        window_from: datetime,
        window_to: datetime,
    ) -> EngagementReport:
        """Consume already-windowed *messages* and return the report."""
        if isinstance(messages, AsyncIterable):
            async for message in messages:
                await self.add(message)
        else:
            for message in messages:
                await self.add(message)
        return self.report(window_from, window_to)

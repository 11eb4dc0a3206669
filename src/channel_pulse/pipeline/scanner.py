"""Windowed consumption of a reverse-chronological feed.

:class:`WindowedScanner` pages through a feed newest-first using
"continue from last-seen id" cursoring and hands every message inside
``[window_from, window_to]`` to a visitor, exactly once and in feed order.

Stop conditions:

- a page shorter than ``page_size`` (feed exhausted);
- the first message older than ``window_from``; the rest of that page is
  not visited and no further page is requested.  This relies on the feed
  being non-increasing in time;
- more than ``max_scanned`` messages examined.  This safety cap is not an
  error: the scan stops, ``ScanStats.safety_abort`` is set and the caller
  builds a partial result.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal, Union

import structlog

from channel_pulse.core.exceptions import ScanSafetyAbort
from channel_pulse.core.metrics import discussion_messages_scanned_total
from channel_pulse.core.schemas.messages import Message
from channel_pulse.pipeline.fetcher import RateLimitedFetcher

logger = structlog.get_logger(__name__)

Visitor = Callable[[Message], Union[None, Awaitable[Any]]]

StopReason = Literal["exhausted", "window", "safety_cap", "stalled"]


@dataclass
class ScanStats:
    """Counters describing one completed scan.

    Attributes:
        pages: Pages requested.
        scanned: Messages examined (in or out of the window).
        visited: Messages handed to the visitor.
        skipped_newer: Messages newer than ``window_to``.
        stop_reason: Why the scan ended.
        last_message_id: Id of the last message examined; the cursor a
            follow-up scan would resume from.
    """

    pages: int = 0
    scanned: int = 0
    visited: int = 0
    skipped_newer: int = 0
    stop_reason: StopReason = "exhausted"
    last_message_id: int | None = None

    @property
    def safety_abort(self) -> bool:
        return self.stop_reason == "safety_cap"


class WindowedScanner:
    def __init__(self, fetcher: RateLimitedFetcher) -> None:
        self.fetcher = fetcher

    async def scan(
        self,
        window_from: datetime,
        window_to: datetime,
        page_size: int,
        max_scanned: int,
        visit: Visitor,
    ) -> ScanStats:
        """Visit every feed message with ``window_from <= timestamp <= window_to``.

        Args:
            window_from: Inclusive lower time bound.
            window_to: Inclusive upper time bound.
            page_size: Messages requested per page.
            max_scanned: Safety cap on examined messages.
            visit: Called with each in-window message; may be a coroutine
                function.

        Returns:
            :class:`ScanStats` for the scan.

        Raises:
            TransientFetchError: Propagated from the fetcher.
        """
        stats = ScanStats()
        try:
            await self._scan(stats, window_from, window_to, page_size, max_scanned, visit)
        except ScanSafetyAbort as exc:
            stats.stop_reason = "safety_cap"
            logger.warning(
                "scan.safety_abort",
                scanned=exc.scanned,
                limit=exc.limit,
                last_message_id=stats.last_message_id,
            )
        logger.info(
            "scan.done",
            pages=stats.pages,
            scanned=stats.scanned,
            visited=stats.visited,
            stop_reason=stats.stop_reason,
        )
        return stats

    async def _scan(
        self,
        stats: ScanStats,
        window_from: datetime,
        window_to: datetime,
        page_size: int,
        max_scanned: int,
        visit: Visitor,
    ) -> None:
        cursor = 0
        while True:
            page = await self.fetcher.fetch(cursor, page_size)
            stats.pages += 1
            if not page:
                stats.stop_reason = "exhausted"
                return

            for message in page:
                if message.timestamp < window_from:
                    stats.stop_reason = "window"
                    return

                stats.scanned += 1
                discussion_messages_scanned_total.inc()
                if stats.scanned > max_scanned:
                    raise ScanSafetyAbort(stats.scanned - 1, max_scanned)
                stats.last_message_id = message.id

                if message.timestamp > window_to:
                    stats.skipped_newer += 1
                    continue

                result = visit(message)
                if inspect.isawaitable(result):
                    await result
                stats.visited += 1

            logger.debug(
                "scan.page",
                page=stats.pages,
                size=len(page),
                scanned=stats.scanned,
                cursor=page[-1].id,
            )

            if len(page) < page_size:
                stats.stop_reason = "exhausted"
                return

            next_cursor = page[-1].id
            if cursor and next_cursor >= cursor:
                # Feed did not move backwards; continuing would repeat items.
                logger.warning("scan.stalled", cursor=cursor, next_cursor=next_cursor)
                stats.stop_reason = "stalled"
                return
            cursor = next_cursor

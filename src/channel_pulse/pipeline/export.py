"""Channel posts with their threaded comments, as one JSON-ready document.

For every post of the channel inside the lookback window that has comments,
the comment thread is paged through and rebuilt into a reply forest with
:class:`~channel_pulse.pipeline.tree.CommentTreeBuilder`.  The document
layout::

    {
      "generated_at": "...",
      "channel": {"id": ..., "username": "...", "discussion_group_id": ...},
      "window": {"from": "...", "to": "..."},
      "posts": [
        {"post_id": ..., "post_link": "...", "published_at": "...",
         "post_text": "...", "reactions": {...} | null,
         "comments": [<comment tree>, ...]},
        ...
      ]
    }

Posts are ordered oldest first; comments keep feed order.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Callable

import structlog

from channel_pulse.config.settings import Settings, get_settings
from channel_pulse.core.exceptions import ValidationError
from channel_pulse.core.schemas.messages import Message
from channel_pulse.pipeline.context import ReportWindow
from channel_pulse.pipeline.fetcher import FeedSource, RateLimitedFetcher, RetryPolicy
from channel_pulse.pipeline.scanner import WindowedScanner
from channel_pulse.pipeline.tree import CommentTreeBuilder, flatten
from channel_pulse.telegram.config import comment_link, post_link
from channel_pulse.telegram.validation import ValidatedTarget

logger = structlog.get_logger(__name__)


class CommentExporter:
    """Build the comment export document for one channel.

    Args:
        source: Feed binding.
        settings: Page sizes and scan cap.  Defaults to
            :func:`~channel_pulse.config.settings.get_settings`.
        policy: Retry policy for feed calls.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        source: FeedSource,
        settings: Settings | None = None,
        policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = partial(datetime.now, timezone.utc),
    ) -> None:
        self.source = source
        self.settings = settings or get_settings()
        self.policy = policy or RetryPolicy.from_settings(self.settings)
        self.clock = clock
        self.builder = CommentTreeBuilder()

    async def export(self, target: ValidatedTarget, days: int | None = None) -> dict[str, Any]:
        """Return the export document for the last *days* of *target*'s posts.

        Raises:
            ValidationError: If *days* is given and is less than one.
        """
        if days is None:
            days = self.settings.export_lookback_days
        elif days < 1:
            raise ValidationError(f"Lookback must be at least 1 day, got {days}.")
        window = ReportWindow.last_days(days, now=self.clock())
        peer = target.entity if target.entity is not None else target.channel_id
        fetcher = RateLimitedFetcher(self.source, peer, self.policy)

        posts: list[Message] = []
        await WindowedScanner(fetcher).scan(
            window.start,
            window.end,
            self.settings.discussion_page_size,
            self.settings.max_discussion_messages_scan,
            posts.append,
        )

        exported: list[dict[str, Any]] = []
        comment_total = 0
        for post in sorted(posts, key=lambda p: (p.timestamp, p.id)):
            comments: list[dict[str, Any]] = []
            if post.replies_count:
                replies = await self._fetch_thread(fetcher, post.id)
                forest = self.builder.build(replies, root_id=post.id)
                comment_total += sum(1 for _ in flatten(forest))
                link_for = partial(comment_link, target.username, post.id)
                comments = [node.to_dict(link_for) for node in forest]
            exported.append(
                {
                    "post_id": post.id,
                    "post_link": post_link(target.username, post.id),
                    "published_at": post.timestamp.isoformat(),
                    "post_text": post.text,
                    "reactions": post.reactions.to_dict() if post.reactions else None,
                    "comments": comments,
                }
            )

        logger.info(
            "export.done",
            channel=target.username,
            posts=len(exported),
            comments=comment_total,
        )
        return {
            "generated_at": self.clock().isoformat(),
            "channel": {
                "id": target.channel_id,
                "username": target.username,
                "discussion_group_id": target.discussion_group_id,
            },
            "window": {"from": window.start.isoformat(), "to": window.end.isoformat()},
            "posts": exported,
        }

    async def _fetch_thread(self, fetcher: RateLimitedFetcher, post_id: int) -> list[Message]:
        page_size = self.settings.discussion_page_size
        replies: list[Message] = []
        cursor = 0
        while True:
            page = await fetcher.fetch_replies(post_id, cursor, page_size)
            replies.extend(page)
            if len(page) < page_size:
                return replies
            next_cursor = page[-1].id
            if cursor and next_cursor >= cursor:
                logger.warning("export.thread_stalled", post_id=post_id, cursor=cursor)
                return replies
            cursor = next_cursor


def write_export(document: dict[str, Any], path: Path) -> Path:
    """Write *document* as UTF-8 JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
    return path

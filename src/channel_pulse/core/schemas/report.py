"""Engagement report and comment tree schemas.

:class:`EngagementRecord` is the mutable per-author accumulator used while a
run aggregates.  :class:`EngagementReport` is the immutable, serialisable
result handed to the delivery layer.  :class:`CommentNode` is the node type of
the reconstructed comment forest used by the export path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, computed_field

from channel_pulse.core.schemas.messages import Reactions


@dataclass
class EngagementRecord:
    """Running totals for one author within a single run.

    Attributes:
        author_id: Numeric id of the end user.
        username: Public username, if any message exposed it.
        comment_count: Attributed comments by this author (>= 1 once created).
        distinct_post_ids: Channel posts those comments belong to.
    """

    author_id: int
    username: str | None = None
    comment_count: int = 0
    distinct_post_ids: set[int] = field(default_factory=set)

    @property
    def post_count(self) -> int:
        return len(self.distinct_post_ids)

    @property
    def avg_comments_per_active_post(self) -> float:
        if not self.distinct_post_ids:
            return 0.0
        return self.comment_count / len(self.distinct_post_ids)

    def to_item(self) -> EngagementReportItem:
        return EngagementReportItem(
            author_id=self.author_id,
            username=self.username,
            comment_count=self.comment_count,
            post_count=self.post_count,
        )


class EngagementReportItem(BaseModel):
    """One ranked author in an engagement report.

    Attributes:
        author_id: Numeric id of the end user.
        username: Public username without ``@``, if known.
        comment_count: Attributed comments in the window.
        post_count: Distinct channel posts commented on.
        avg_comments_per_active_post: ``comment_count / post_count``.
    """

    author_id: int
    username: Optional[str] = None
    comment_count: int = Field(ge=1)
    post_count: int = Field(ge=1)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def avg_comments_per_active_post(self) -> float:
        return self.comment_count / self.post_count


class EngagementReport(BaseModel):
    """Ranked engagement report for one channel and window.

    Attributes:
        window_from: Inclusive lower bound of the window.
        window_to: Inclusive upper bound of the window.
        items: Authors ordered by ``comment_count`` descending, ties in the
            order authors were first seen in the feed.
        scanned_count: Discussion messages examined.
        attributed_count: Messages attributed to a channel post.
        safety_abort: ``True`` when the scan hit the message cap and the
            report is partial.
    """

    window_from: datetime
    window_to: datetime
    items: list[EngagementReportItem] = Field(default_factory=list)
    scanned_count: int = 0
    attributed_count: int = 0
    safety_abort: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> Literal["ok", "no-data"]:
        return "ok" if self.items else "no-data"


@dataclass
class CommentNode:
    """A comment and its replies, in feed order."""

    id: int
    author_id: int | None
    timestamp: datetime
    text: str | None = None
    reactions: Reactions | None = None
    children: list[CommentNode] = field(default_factory=list)

    def to_dict(self, link_for: Any = None) -> dict[str, Any]:
        """Serialise the subtree.

        Args:
            link_for: Optional callable mapping a comment id to a public link.
        """
        data: dict[str, Any] = {
            "comment_id": self.id,
            "date": self.timestamp.isoformat(),
            "author_telegram_id": self.author_id,
            "text": self.text,
            "reactions": self.reactions.to_dict() if self.reactions else None,
            "replies": [child.to_dict(link_for) for child in self.children],
        }
        if link_for is not None:
            data["comment_link"] = link_for(self.id)
        return data

"""Telegram binding constants.

Telegram does not publish a fixed rate limit.  The operative signal is the
``FloodWaitError.seconds`` attribute returned by the MTProto server, which
:class:`~channel_pulse.pipeline.fetcher.RetryPolicy` honours exactly (plus one
second).
"""

from __future__ import annotations

MAX_MESSAGES_PER_REQUEST: int = 100
"""Upper bound of ``limit`` accepted by a single ``messages.getHistory`` call."""

T_ME_BASE_URL: str = "https://t.me"
"""Base for public post and comment links."""


def post_link(username: str, post_id: int) -> str:
    """``https://t.me/<username>/<post_id>``."""
    return f"{T_ME_BASE_URL}/{username.lstrip('@')}/{post_id}"


def comment_link(username: str, post_id: int, comment_id: int) -> str:
    """Link opening *comment_id* inside the comment thread of *post_id*."""
    return f"{post_link(username, post_id)}?comment={comment_id}"

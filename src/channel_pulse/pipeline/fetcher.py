"""Flood-control-aware access to the messaging feed.

Every feed call made by the pipeline goes through :class:`RateLimitedFetcher`,
which retries failures according to an injectable :class:`RetryPolicy`:

- If the error carries an explicit wait (Telegram's ``FLOOD_WAIT_N`` /
  ``FloodWaitError.seconds``), sleep ``N + 1`` seconds.
- Otherwise back off linearly, ``base_delay * attempt`` capped at
  ``max_delay``.
- After ``max_attempts`` failures raise
  :class:`~channel_pulse.core.exceptions.TransientFetchError`.

Callers always pass the cursor (last-seen id), so calling again after a
failure never re-delivers items that were already consumed.

The policy's ``sleep`` is injectable so tests can run retries against a fake
clock instead of real time.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, TypeVar

import structlog

from channel_pulse.core.exceptions import TransientFetchError
from channel_pulse.core.metrics import feed_fetch_retries_total
from channel_pulse.core.schemas.messages import Message, PeerInfo

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_WAIT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"FLOOD_WAIT_(\d+)"),
    re.compile(r"SLOWMODE_WAIT_(\d+)"),
    re.compile(r"wait of (\d+) seconds", re.IGNORECASE),
    re.compile(r"retry[ -]after (\d+)", re.IGNORECASE),
)


class FeedSource(Protocol):
    """External collaborator that reads the messaging platform.

    ``peer`` is whatever the binding needs to address a chat (for Telegram,
    a resolved entity).  Pages are returned newest first.
    """

    async def fetch_messages(self, peer: Any, *, cursor: int, limit: int) -> list[Message]: ...

    async def fetch_message_by_id(self, peer: Any, message_id: int) -> Message | None: ...

    async def fetch_replies(
        self, peer: Any, post_id: int, *, cursor: int, limit: int
    ) -> list[Message]: ...

    async def resolve_peer(self, identifier: str) -> PeerInfo: ...


def parse_wait_seconds(error: BaseException) -> int | None:
    """Extract an explicit "retry after N seconds" signal from *error*.

    Telethon's ``FloodWaitError`` and ``SlowModeWaitError`` expose the wait
    as an integer ``seconds`` attribute; other layers only leave it in the
    message text (``FLOOD_WAIT_17``, ``A wait of 17 seconds is required``).

    Returns:
        The number of seconds to wait, or ``None`` when the error carries no
        wait signal.
    """
    seconds = getattr(error, "seconds", None)
    if isinstance(seconds, int) and not isinstance(seconds, bool) and seconds >= 0:
        return seconds
    text = str(error)
    for pattern in _WAIT_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


@dataclass(frozen=True)
class RetryPolicy:
    """How a feed call is retried.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Linear backoff step in seconds.
        max_delay: Cap on the linear backoff delay.
        wait_parser: Extracts an explicit wait from an error.
        sleep: Coroutine used to wait; replace with a fake in tests.
    """

    max_attempts: int = 10
    base_delay: float = 0.8
    max_delay: float = 10.0
    wait_parser: Callable[[BaseException], int | None] = parse_wait_seconds
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep)

    def delay_for(self, error: BaseException, attempt: int) -> tuple[float, str]:
        """Return ``(seconds, reason)`` to wait after failed *attempt* (1-based)."""
        wait = self.wait_parser(error)
        if wait is not None:
            return float(wait + 1), "flood_wait"
        return min(self.base_delay * attempt, self.max_delay), "backoff"

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> RetryPolicy:
        values: dict[str, Any] = {
            "max_attempts": settings.fetch_max_attempts,
            "base_delay": settings.fetch_base_delay_seconds,
            "max_delay": settings.fetch_max_delay_seconds,
        }
        values.update(overrides)
        return cls(**values)


class RateLimitedFetcher:
    """Feed reader for one chat, retrying every call under a :class:`RetryPolicy`.

    Args:
        source: The platform binding.
        peer: The chat to read (discussion group or channel).
        policy: Retry behaviour.  Defaults to :class:`RetryPolicy()`.
    """

    def __init__(self, source: FeedSource, peer: Any, policy: RetryPolicy | None = None) -> None:
        self.source = source
        self.peer = peer
        self.policy = policy or RetryPolicy()

    async def fetch(self, cursor: int, limit: int = 100) -> list[Message]:
        """Return the page of messages older than *cursor* (``0`` = newest).

        An empty list means the feed is exhausted.

        Raises:
            TransientFetchError: When the retry budget is used up.
        """
        return await self._call_with_retry(
            "messages",
            lambda: self.source.fetch_messages(self.peer, cursor=cursor, limit=limit),
        )

    async def fetch_by_id(self, message_id: int) -> Message | None:
        """Return one message, or ``None`` if it does not exist (deleted)."""
        return await self._call_with_retry(
            "message_by_id",
            lambda: self.source.fetch_message_by_id(self.peer, message_id),
        )

    async def fetch_replies(self, post_id: int, cursor: int, limit: int = 100) -> list[Message]:
        """Return the page of comments on *post_id* older than *cursor*."""
        return await self._call_with_retry(
            f"replies(post={post_id})",
            lambda: self.source.fetch_replies(self.peer, post_id, cursor=cursor, limit=limit),
        )

    async def _call_with_retry(self, label: str, call: Callable[[], Awaitable[T]]) -> T:
        policy = self.policy
        attempt = 0
        while True:
            attempt += 1
            try:
                return await call()
            except Exception as exc:
                if attempt >= policy.max_attempts:
                    logger.error(
                        "fetch.exhausted",
                        call=label,
                        attempts=attempt,
                        error=str(exc),
                    )
                    raise TransientFetchError(attempt, label) from exc
                delay, reason = policy.delay_for(exc, attempt)
                feed_fetch_retries_total.labels(reason=reason).inc()
                logger.warning(
                    "fetch.retry",
                    call=label,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    reason=reason,
                    sleep_seconds=delay,
                    error=str(exc),
                )
                await policy.sleep(delay)

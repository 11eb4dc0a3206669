"""Attribute discussion-group comments to the channel post they belong to.

When a channel has a linked discussion group, every channel post is relayed
into the group as an automatic forward, and comments on the post are replies
(direct or nested) to that relay.  Attribution therefore climbs the reply
chain from a comment until it reaches a message whose forward marker points
at the target channel; the marker's origin post id is the answer.

The climb is bounded (``max_steps``) and guarded against revisiting a node,
since reply pointers in corrupted data can loop or run arbitrarily deep.
Every node visited during one climb receives the final result in the
:class:`AttributionCache`, so sibling comments resolve in O(1) after the
first climb through their shared ancestors.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from channel_pulse.core.exceptions import TransientFetchError
from channel_pulse.pipeline.fetcher import RateLimitedFetcher

logger = structlog.get_logger(__name__)

MAX_STEPS: int = 25

_NO_DEFAULT = object()


class AttributionCache:
    """Message id → resolved channel post id, or ``None`` for no attribution.

    Entries are write-once: a later write for an id that is already cached is
    ignored.  A cache belongs to exactly one run and is never persisted.
    """

    def __init__(self) -> None:
        self._entries: dict[int, int | None] = {}

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, message_id: int, default: object = _NO_DEFAULT) -> int | None:
        """Return the cached result; raise ``KeyError`` when absent and no
        default is given."""
        if default is _NO_DEFAULT:
            return self._entries[message_id]
        return self._entries.get(message_id, default)  # type: ignore[arg-type]

    def remember(self, message_ids: Iterable[int], post_id: int | None) -> None:
        for message_id in message_ids:
            self._entries.setdefault(message_id, post_id)


class ThreadAttributionResolver:
    """Climb reply chains to find the owning channel post.

    Args:
        fetcher: Single-message lookups in the discussion group.
        cache: Per-run memo shared by all resolutions of the run.
        max_steps: Maximum messages examined per climb.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        cache: AttributionCache,
        max_steps: int = MAX_STEPS,
    ) -> None:
        self.fetcher = fetcher
        self.cache = cache
        self.max_steps = max_steps

    async def resolve(self, start_id: int, target_channel_id: int) -> int | None:
        """Return the id of the channel post *start_id* belongs to.

        Args:
            start_id: Discussion message to start from (a comment's thread
                root or direct parent).
            target_channel_id: Channel whose posts count as roots.

        Returns:
            The post id within the target channel, or ``None`` when the
            chain ends, breaks, loops, leaves the reachable history or
            exceeds ``max_steps``.
        """
        visited: list[int] = []
        seen: set[int] = set()
        current: int | None = start_id

        for _ in range(self.max_steps):
            if current is None:
                break

            if current in self.cache:
                cached = self.cache.get(current)
                self.cache.remember(visited, cached)
                return cached

            if current in seen:
                logger.warning("attribution.cycle", start_id=start_id, node=current)
                break
            seen.add(current)
            visited.append(current)

            try:
                message = await self.fetcher.fetch_by_id(current)
            except TransientFetchError as exc:
                logger.warning(
                    "attribution.fetch_failed",
                    start_id=start_id,
                    node=current,
                    error=str(exc),
                )
                message = None

            if message is None:
                break

            if message.relays_post_of(target_channel_id):
                post_id = message.forward_origin_post_id
                self.cache.remember(visited, post_id)
                return post_id

            current = message.parent_id
        else:
            logger.debug("attribution.step_limit", start_id=start_id, steps=self.max_steps)

        self.cache.remember(visited, None)
        return None

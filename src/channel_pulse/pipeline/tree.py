"""Reconstruct nested reply forests from a flat message list.

Replies to a channel post arrive as a flat, feed-ordered page sequence in
which each message only knows its direct parent.  :class:`CommentTreeBuilder`
turns that list into a forest of :class:`~channel_pulse.core.schemas.report.CommentNode`:

- a message replying directly to the post (``parent_id == root_id``) is a
  forest root;
- so is a message whose parent is not in the batch (deleted, outside the
  window, or never fetched);
- every other message is attached under its parent, children kept in feed
  order.

Malformed input whose parent pointers form a cycle is broken at the
first-seen member of the cycle, which becomes a forest root; every input
message therefore appears exactly once in :func:`flatten`.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

import structlog

from channel_pulse.core.schemas.messages import Message
from channel_pulse.core.schemas.report import CommentNode

logger = structlog.get_logger(__name__)


def _node_for(message: Message) -> CommentNode:
    return CommentNode(
        id=message.id,
        author_id=message.author.id if message.author is not None else None,
        timestamp=message.timestamp,
        text=message.text,
        reactions=message.reactions,
    )


class CommentTreeBuilder:
    """Assemble reply forests.  Stateless; one instance can serve many posts."""

    def build(self, flat: Iterable[Message], root_id: int | None) -> list[CommentNode]:
        """Build the forest of replies under *root_id*.

        Args:
            flat: Messages in feed order.  A repeated id keeps its first
                occurrence.
            root_id: Id of the thread root (the channel post, or its relay
                in the discussion group).  Messages replying to it, or with
                no parent, become forest roots.

        Returns:
            Forest roots in feed order.
        """
        messages: list[Message] = []
        nodes: dict[int, CommentNode] = {}
        for message in flat:
            if message.id in nodes:
                continue
            nodes[message.id] = _node_for(message)
            messages.append(message)

        parent_of: dict[int, int] = {}
        for message in messages:
            pid = message.parent_id
            if pid is None or pid == root_id or pid not in nodes:
                continue
            parent_of[message.id] = pid

        rank = {message.id: index for index, message in enumerate(messages)}
        _break_cycles(parent_of, rank)

        roots: list[CommentNode] = []
        for message in messages:
            node = nodes[message.id]
            pid = parent_of.get(message.id)
            if pid is None:
                roots.append(node)
            else:
                nodes[pid].children.append(node)
        return roots


def _break_cycles(parent_of: dict[int, int], rank: dict[int, int]) -> None:
    """Drop one parent link per cycle in *parent_of*, in place.

    The link removed belongs to the cycle member seen first in the feed.
    """
    settled: set[int] = set()
    for start in sorted(parent_of, key=rank.__getitem__):
        path: list[int] = []
        on_path: set[int] = set()
        current = start
        while current in parent_of and current not in settled:
            if current in on_path:
                loop = path[path.index(current):]
                cut = min(loop, key=rank.__getitem__)
                logger.warning("tree.cycle_broken", node=cut, cycle=loop)
                del parent_of[cut]
                break
            path.append(current)
            on_path.add(current)
            current = parent_of[current]
        settled.update(path)


def flatten(forest: Iterable[CommentNode]) -> Iterator[CommentNode]:
    """Yield every node of *forest* in pre-order."""
    stack = list(reversed(list(forest)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))

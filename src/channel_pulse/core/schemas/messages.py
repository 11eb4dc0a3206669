"""Discussion-group message model.

A :class:`Message` is the platform-neutral view of one item in a discussion
group feed.  It is built by the Telegram binding
(:func:`channel_pulse.telegram.client.message_from_telethon`) and consumed by
every pipeline stage.

The author of a message is one of three peer kinds, modelled as a closed
union of frozen dataclasses::

    AuthorPeer = UserPeer | ChannelPeer | ChatPeer

Code that branches on the author kind matches on the variants and ends with
``assert_never`` so that adding a variant is caught by the type checker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Union


@dataclass(frozen=True)
class UserPeer:
    """A message written by an end user."""

    id: int


@dataclass(frozen=True)
class ChannelPeer:
    """A message written on behalf of a channel (including the automatic
    relay of a channel post and anonymous admins posting as the channel)."""

    id: int


@dataclass(frozen=True)
class ChatPeer:
    """A message written on behalf of a basic group chat."""

    id: int


AuthorPeer = Union[UserPeer, ChannelPeer, ChatPeer]


ReactionKind = Literal["emoji", "custom_emoji", "unknown"]


@dataclass(frozen=True)
class ReactionCount:
    """One reaction bucket on a message.

    Attributes:
        kind: ``"emoji"`` for a plain emoticon, ``"custom_emoji"`` for a
            document-backed custom emoji, ``"unknown"`` for anything else.
        value: The emoticon, the custom emoji document id, or the raw
            reaction type name.
        count: Number of users who reacted with it.
    """

    kind: ReactionKind
    value: str | None
    count: int


@dataclass(frozen=True)
class Reactions:
    total: int
    items: tuple[ReactionCount, ...] = ()

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "items": [
                {"type": item.kind, "value": item.value, "count": item.count}
                for item in self.items
            ],
        }


@dataclass(frozen=True)
class Message:
    """A single discussion-group message.

    Attributes:
        id: Message id, unique within the feed.  Ids grow with time.
        timestamp: Timezone-aware UTC send time.
        parent_id: Id of the message this one directly replies to.
        thread_root_id: Id of the top of the reply chain, when the platform
            reports it.
        author: Author peer, ``None`` when the platform hides it.
        is_forward_of_channel_post: ``True`` when the message relays a post
            from a channel.
        forward_origin_channel_id: Channel the relayed post came from.
        forward_origin_post_id: Post id inside that channel.
        text: Message text or media caption; ``None`` when empty.
        author_username: Public username of the author, if known.
        reactions: Aggregated reactions, if any.
        replies_count: Number of comments attached (channel posts only).
    """

    id: int
    timestamp: datetime
    parent_id: int | None = None
    thread_root_id: int | None = None
    author: AuthorPeer | None = None
    is_forward_of_channel_post: bool = False
    forward_origin_channel_id: int | None = None
    forward_origin_post_id: int | None = None
    text: str | None = None
    author_username: str | None = None
    reactions: Reactions | None = None
    replies_count: int | None = None

    @property
    def attribution_start_id(self) -> int | None:
        """Where a comment-to-post climb begins: the thread root if known,
        otherwise the direct parent."""
        return self.thread_root_id if self.thread_root_id is not None else self.parent_id

    def relays_post_of(self, channel_id: int) -> bool:
        """Whether this message is the automatic relay of a post from *channel_id*."""
        return (
            self.is_forward_of_channel_post
            and self.forward_origin_channel_id == channel_id
            and self.forward_origin_post_id is not None
        )


@dataclass(frozen=True)
class PeerInfo:
    """Result of resolving a human identifier (``@name``) to a peer.

    Attributes:
        id: Stable numeric peer id.
        username: Public username without ``@``, if any.
        title: Display title.
        is_broadcast: ``True`` for broadcast channels, ``False`` for groups
            and users.
        linked_chat_id: Id of the linked discussion group, if any.
        entity: The platform object, kept so follow-up calls can reuse it.
    """

    id: int
    username: str | None = None
    title: str | None = None
    is_broadcast: bool = False
    linked_chat_id: int | None = None
    entity: object | None = field(default=None, compare=False, repr=False)

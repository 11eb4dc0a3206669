"""Telethon binding of the feed collaborator.

:class:`TelegramFeedSource` implements
:class:`~channel_pulse.pipeline.fetcher.FeedSource` on top of an
authorised ``TelegramClient``:

- pages: ``client.get_messages(entity, limit=N, offset_id=cursor)``
- single lookups: ``client.get_messages(entity, ids=message_id)``
- comment threads: ``client.get_messages(channel, reply_to=post_id, ...)``
- identifiers: ``client.get_entity()`` plus ``channels.GetFullChannelRequest``
  for the linked discussion group.

Errors are not handled here; ``FloodWaitError`` and friends propagate to
:class:`~channel_pulse.pipeline.fetcher.RateLimitedFetcher`, which owns
retrying.

Credentials come from :class:`~channel_pulse.config.settings.Settings`
(``TELEGRAM_API_ID``, ``TELEGRAM_API_HASH``, ``TELEGRAM_SESSION_STRING``).
The session string is a serialized Telethon ``StringSession``, generated
once via interactive phone verification and stored permanently.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timezone
from typing import Any

import structlog
from telethon import TelegramClient, functions, types
from telethon.sessions import StringSession

from channel_pulse.config.settings import Settings
from channel_pulse.core.exceptions import MissingTelegramCredentials
from channel_pulse.core.schemas.messages import (
    AuthorPeer,
    ChannelPeer,
    ChatPeer,
    Message,
    PeerInfo,
    ReactionCount,
    Reactions,
    UserPeer,
)

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def peer_from_telethon(peer: Any) -> AuthorPeer | None:
    """Map a Telethon ``Peer*`` object to an :data:`AuthorPeer`."""
    if isinstance(peer, types.PeerUser):
        return UserPeer(peer.user_id)
    if isinstance(peer, types.PeerChannel):
        return ChannelPeer(peer.channel_id)
    if isinstance(peer, types.PeerChat):
        return ChatPeer(peer.chat_id)
    return None


def reactions_from_telethon(message_reactions: Any) -> Reactions | None:
    """Convert ``MessageReactions`` into :class:`Reactions`.

    Standard emoji keep their emoticon, custom emoji their document id.
    Reaction kinds unknown to this version (paid stars, future types) are
    kept under their type name so the total stays correct.  Empty buckets
    are dropped.
    """
    if message_reactions is None:
        return None
    items: list[ReactionCount] = []
    for result in getattr(message_reactions, "results", None) or []:
        reaction = getattr(result, "reaction", None)
        count = getattr(result, "count", 0) or 0
        if count <= 0:
            continue
        if isinstance(reaction, types.ReactionEmoji):
            items.append(ReactionCount("emoji", reaction.emoticon, count))
        elif isinstance(reaction, types.ReactionCustomEmoji):
            items.append(ReactionCount("custom_emoji", str(reaction.document_id), count))
        else:
            kind_name = type(reaction).__name__ if reaction is not None else None
            items.append(ReactionCount("unknown", kind_name, count))
    return Reactions(total=sum(item.count for item in items), items=tuple(items))


def message_from_telethon(message: Any) -> Message:
    """Convert a Telethon ``Message`` (or ``MessageService``) to :class:`Message`.

    The reply header gives both the direct parent (``reply_to_msg_id``) and,
    for nested replies, the top of the thread (``reply_to_top_id``); a direct
    comment on a post only carries the former, which is then also the
    thread root.
    """
    timestamp = message.date
    if timestamp is not None and timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)

    parent_id: int | None = None
    thread_root_id: int | None = None
    reply_to = getattr(message, "reply_to", None)
    if reply_to is not None:
        parent_id = getattr(reply_to, "reply_to_msg_id", None)
        thread_root_id = getattr(reply_to, "reply_to_top_id", None) or parent_id

    # Automatic relays of channel posts into the discussion group are
    # forwards whose origin is the channel post itself.
    is_relay = False
    origin_channel_id: int | None = None
    origin_post_id: int | None = None
    fwd_from = getattr(message, "fwd_from", None)
    if fwd_from is not None:
        origin = getattr(fwd_from, "from_id", None)
        origin_post_id = getattr(fwd_from, "channel_post", None)
        if isinstance(origin, types.PeerChannel) and origin_post_id is not None:
            is_relay = True
            origin_channel_id = origin.channel_id
        else:
            origin_post_id = None

    replies_count: int | None = None
    replies = getattr(message, "replies", None)
    if replies is not None:
        replies_count = getattr(replies, "replies", None)

    sender = getattr(message, "sender", None)

    return Message(
        id=message.id,
        timestamp=timestamp,
        parent_id=parent_id,
        thread_root_id=thread_root_id,
        author=peer_from_telethon(getattr(message, "from_id", None)),
        is_forward_of_channel_post=is_relay,
        forward_origin_channel_id=origin_channel_id,
        forward_origin_post_id=origin_post_id,
        text=(getattr(message, "message", None) or "").strip() or None,
        author_username=getattr(sender, "username", None),
        reactions=reactions_from_telethon(getattr(message, "reactions", None)),
        replies_count=replies_count,
    )


# ---------------------------------------------------------------------------
# Feed source
# ---------------------------------------------------------------------------


class TelegramFeedSource:
    """:class:`~channel_pulse.pipeline.fetcher.FeedSource` backed by Telethon.

    ``peer`` arguments may be Telethon entities or bare channel ids; ids
    are resolved once through ``get_entity`` and cached.

    Args:
        client: A connected, authorised ``TelegramClient``.
    """

    def __init__(self, client: TelegramClient) -> None:
        self.client = client
        self._entities: dict[int, Any] = {}

    async def _entity(self, peer: Any) -> Any:
        if not isinstance(peer, int):
            return peer
        entity = self._entities.get(peer)
        if entity is None:
            entity = await self.client.get_entity(types.PeerChannel(peer))
            self._entities[peer] = entity
        return entity

    async def fetch_messages(self, peer: Any, *, cursor: int, limit: int) -> list[Message]:
        entity = await self._entity(peer)
        messages = await self.client.get_messages(entity, limit=limit, offset_id=cursor)
        return [message_from_telethon(m) for m in messages]

    async def fetch_message_by_id(self, peer: Any, message_id: int) -> Message | None:
        entity = await self._entity(peer)
        message = await self.client.get_messages(entity, ids=message_id)
        if message is None:
            return None
        return message_from_telethon(message)

    async def fetch_replies(
        self, peer: Any, post_id: int, *, cursor: int, limit: int
    ) -> list[Message]:
        entity = await self._entity(peer)
        messages = await self.client.get_messages(
            entity, reply_to=post_id, offset_id=cursor, limit=limit
        )
        return [message_from_telethon(m) for m in messages]

    async def resolve_peer(self, identifier: str) -> PeerInfo:
        """Resolve ``@name`` to a :class:`PeerInfo`.

        For broadcast channels the full channel info is requested to learn
        the linked discussion group.
        """
        entity = await self.client.get_entity(identifier)
        is_broadcast = isinstance(entity, types.Channel) and bool(entity.broadcast)
        linked_chat_id: int | None = None
        if is_broadcast:
            full = await self.client(functions.channels.GetFullChannelRequest(entity))
            linked_chat_id = getattr(full.full_chat, "linked_chat_id", None)
            self._entities[entity.id] = entity
        logger.debug(
            "telegram.resolved",
            identifier=identifier,
            peer_id=entity.id,
            broadcast=is_broadcast,
            linked_chat_id=linked_chat_id,
        )
        return PeerInfo(
            id=entity.id,
            username=getattr(entity, "username", None),
            title=getattr(entity, "title", None),
            is_broadcast=is_broadcast,
            linked_chat_id=linked_chat_id,
            entity=entity,
        )


# ---------------------------------------------------------------------------
# Client construction
# ---------------------------------------------------------------------------


def build_client(settings: Settings) -> TelegramClient:
    """Create (but do not connect) a ``TelegramClient`` from *settings*.

    Raises:
        MissingTelegramCredentials: If the API id, API hash or session
            string is not configured.
    """
    missing = [
        name
        for name, value in (
            ("TELEGRAM_API_ID", settings.telegram_api_id),
            ("TELEGRAM_API_HASH", settings.telegram_api_hash),
            ("TELEGRAM_SESSION_STRING", settings.telegram_session_string),
        )
        if not value
    ]
    if missing:
        raise MissingTelegramCredentials(f"Missing Telegram settings: {', '.join(missing)}")
    return TelegramClient(
        StringSession(settings.telegram_session_string),
        settings.telegram_api_id,
        settings.telegram_api_hash,
        device_model=settings.telegram_device_model,
    )


@asynccontextmanager
async def open_client(settings: Settings) -> AsyncIterator[TelegramClient]:
    """Connect a client for the duration of the ``async with`` block.

    Raises:
        MissingTelegramCredentials: If credentials are missing or the
            session string is no longer authorised.
    """
    client = build_client(settings)
    await client.connect()
    try:
        if not await client.is_user_authorized():
            raise MissingTelegramCredentials("Telegram session is not authorised")
        yield client
    finally:
        await client.disconnect()

"""Factory Boy factories and fakes for test data generation.

Available helpers
-----------------
CommentFactory: user comment in the discussion group
RelayFactory: automatic relay of a channel post into the group
PostFactory: post in the broadcast channel (export path)
FakeFeedSource: scripted FeedSource over in-memory lists
FakeFloodWait: exception carrying a ``seconds`` wait like FloodWaitError
"""

from __future__ import annotations

from tests.factories.feeds import FakeFeedSource, FakeFloodWait
from tests.factories.messages import (
    BASE_TIME,
    CHANNEL_ID,
    DISCUSSION_GROUP_ID,
    CommentFactory,
    PostFactory,
    RelayFactory,
)

__all__ = [
    "BASE_TIME",
    "CHANNEL_ID",
    "CommentFactory",
    "DISCUSSION_GROUP_ID",
    "FakeFeedSource",
    "FakeFloodWait",
    "PostFactory",
    "RelayFactory",
]

"""Report request validation.

A report can only be requested for a public broadcast channel that has a
linked discussion group, since the discussion group is where comments live.
Every rejection raises :class:`~channel_pulse.core.exceptions.ValidationError`
with a message that can be shown to the requester as-is.  Validation runs
before any run record is created, so a rejected request never consumes the
requester's rate-limit quota.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from channel_pulse.core.exceptions import ValidationError
from channel_pulse.pipeline.fetcher import FeedSource

logger = structlog.get_logger(__name__)

_PERIOD_RE = re.compile(r"^\s*(\d{1,3})\s*d\s*$", re.IGNORECASE)

MAX_PERIOD_DAYS = 365


@dataclass(frozen=True)
class ValidatedTarget:
    """A channel that passed validation.

    Attributes:
        channel_id: Numeric id of the broadcast channel.
        username: Public username, without ``@``.
        discussion_group_id: Id of the linked discussion group.
        entity: Platform object for the channel, reused by later calls.
    """

    channel_id: int
    username: str
    discussion_group_id: int
    entity: Any = field(default=None, compare=False, repr=False)


def normalize_identifier(identifier: str) -> str:
    """Check the shape of a ``@name`` identifier and return it trimmed.

    Raises:
        ValidationError: If the identifier is empty, lacks the leading ``@``
            or contains spaces or ``/``.
    """
    value = (identifier or "").strip()
    if not value:
        raise ValidationError("Channel identifier is empty.")
    if not value.startswith("@"):
        raise ValidationError("Channel identifier must start with @, e.g. @channel_name.")
    if len(value) == 1:
        raise ValidationError("Channel identifier is empty.")
    if any(ch.isspace() for ch in value) or "/" in value:
        raise ValidationError("Channel identifier must not contain spaces or '/'.")
    return value


def parse_period(period: str) -> int:
    """Convert ``"<N>d"`` into a number of days.

    Raises:
        ValidationError: If *period* is not ``<N>d`` with 1 ≤ N ≤ 365.
    """
    match = _PERIOD_RE.match(period or "")
    if not match:
        raise ValidationError(f"Unsupported period {period!r}; use e.g. 14d or 90d.")
    days = int(match.group(1))
    if not 1 <= days <= MAX_PERIOD_DAYS:
        raise ValidationError(f"Period must be between 1d and {MAX_PERIOD_DAYS}d.")
    return days


class TargetValidator:
    """Resolve and check a channel identifier against the platform.

    Args:
        source: Feed binding used to resolve the identifier.
    """

    def __init__(self, source: FeedSource) -> None:
        self.source = source

    async def validate(self, identifier: str) -> ValidatedTarget:
        """Return the validated channel for *identifier*.

        Raises:
            ValidationError: If the identifier is malformed or does not
                name a public broadcast channel with a discussion group.
        """
        value = normalize_identifier(identifier)
        try:
            peer = await self.source.resolve_peer(value)
        except ValidationError:
            raise
        except Exception as exc:
            logger.info("validation.resolve_failed", identifier=value, error=str(exc))
            raise ValidationError(f"Could not find {value}.") from exc

        if not peer.is_broadcast:
            raise ValidationError(f"{value} is not a channel.")
        if not peer.username:
            raise ValidationError(f"{value} has no public username.")
        if peer.linked_chat_id is None:
            raise ValidationError(f"{value} has no linked discussion group.")

        return ValidatedTarget(
            channel_id=peer.id,
            username=peer.username,
            discussion_group_id=peer.linked_chat_id,
            entity=peer.entity,
        )

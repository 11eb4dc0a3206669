"""Application-wide exception hierarchy for channel-pulse.

All custom exceptions subclass ``ChannelPulseError``, enabling consistent
error handling and structured logging across the application.

Hierarchy::

    ChannelPulseError
    ├── FetchError
    │   └── TransientFetchError     (attempts, label)
    ├── ValidationError             (user-facing message)
    ├── ScanSafetyAbort             (scanned, limit)
    ├── InvalidRunTransition        (run_id, current, target)
    └── MissingTelegramCredentials

An attribution miss is not an exception: the resolver returns ``None`` and
the message is left out of the report.
"""

from __future__ import annotations


class ChannelPulseError(Exception):
    """Base class for all channel-pulse exceptions.

    All application-specific exceptions inherit from this class so that
    callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Feed exceptions
# ---------------------------------------------------------------------------


class FetchError(ChannelPulseError):
    """Raised when a call against the messaging feed cannot be completed."""


class TransientFetchError(FetchError):
    """Raised after :class:`~channel_pulse.pipeline.fetcher.RateLimitedFetcher`
    exhausts its retry budget.

    The original error is chained as ``__cause__``.  The enclosing run is
    aborted and recorded as ``failed``.

    Args:
        attempts: Number of attempts made before giving up.
        label: Short name of the feed call (e.g. ``"messages"``).
    """

    def __init__(self, attempts: int, label: str) -> None:
        super().__init__(f"{label}: giving up after {attempts} attempt(s)")
        self.attempts = attempts
        self.label = label


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class ValidationError(ChannelPulseError):
    """Raised when a report request is rejected before a run is created.

    Covers malformed channel identifiers, targets that cannot be resolved,
    targets that are not broadcast channels, channels without a linked
    discussion group and unsupported periods.  The message is safe to show
    to the requesting user.  No run record is written and the actor's
    rate-limit quota is not consumed.
    """


# ---------------------------------------------------------------------------
# Pipeline exceptions
# ---------------------------------------------------------------------------


class ScanSafetyAbort(ChannelPulseError):
    """Internal signal raised when the scanned-message cap is exceeded.

    :class:`~channel_pulse.pipeline.scanner.WindowedScanner` catches it and
    reports a partial scan; it never reaches callers of the scanner.

    Args:
        scanned: Messages scanned when the cap tripped.
        limit: The configured cap.
    """

    def __init__(self, scanned: int, limit: int) -> None:
        super().__init__(f"scan stopped after {scanned} messages (cap {limit})")
        self.scanned = scanned
        self.limit = limit


class InvalidRunTransition(ChannelPulseError):
    """Raised when a run record is moved out of a terminal state.

    Args:
        run_id: Identifier of the run.
        current: Current status value.
        target: Requested status value.
    """

    def __init__(self, run_id: str, current: str, target: str) -> None:
        super().__init__(f"run {run_id}: cannot transition {current} -> {target}")
        self.run_id = run_id
        self.current = current
        self.target = target


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class MissingTelegramCredentials(ChannelPulseError):
    """Raised when a live Telegram client is requested without credentials."""

"""Run record types.

A run is one execution of the engagement pipeline for an actor and scope.
Its status moves exactly once from ``running`` to a terminal state::

    running → success
    running → failed
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime

from channel_pulse.core.exceptions import InvalidRunTransition


class RunStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


@dataclass(frozen=True)
class RunRecord:
    """Persisted shape of a report run.

    Attributes:
        id: Unique run identifier (UUID string).
        actor_id: Who requested the run.
        scope_key: What the run covers, e.g. ``"<channel_id>:14d"``.
        started_at: When the pipeline started.
        created_at: When the record was written; rate limits key on this.
        status: Current :class:`RunStatus`.
        error: Truncated error text for failed runs.
    """

    id: str
    actor_id: str
    scope_key: str
    started_at: datetime
    created_at: datetime
    status: RunStatus = RunStatus.RUNNING
    error: str | None = None

    def finish(self, status: RunStatus, error: str | None = None) -> RunRecord:
        """Return a copy moved to the terminal *status*.

        Raises:
            InvalidRunTransition: If the run is already terminal or *status*
                is not terminal.
        """
        if self.status.is_terminal or not status.is_terminal:
            raise InvalidRunTransition(self.id, self.status.value, status.value)
        return replace(self, status=status, error=error)

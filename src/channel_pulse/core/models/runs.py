"""Report run ORM model.

status progression:
    running → success
    running → failed

Rows are only ever queried as "most recent by ``created_at`` for an actor
and scope", which the composite index serves directly.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from channel_pulse.core.models.base import Base
from channel_pulse.core.schemas.runs import RunRecord, RunStatus


class ReportRun(Base):
    """One execution of the engagement pipeline for an actor and scope."""

    __tablename__ = "report_runs"
    __table_args__ = (
        sa.Index("ix_report_runs_actor_scope_created", "actor_id", "scope_key", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    actor_id: Mapped[str] = mapped_column(
        sa.String(64),
        nullable=False,
    )
    scope_key: Mapped[str] = mapped_column(
        sa.String(255),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        sa.String(16),
        nullable=False,
        server_default=sa.text("'running'"),
    )
    started_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
    error: Mapped[Optional[str]] = mapped_column(
        sa.Text,
        nullable=True,
    )

    def to_record(self) -> RunRecord:
        return RunRecord(
            id=str(self.id),
            actor_id=self.actor_id,
            scope_key=self.scope_key,
            started_at=self.started_at,
            created_at=self.created_at,
            status=RunStatus(self.status),
            error=self.error,
        )

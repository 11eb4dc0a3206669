"""SQLAlchemy ORM models for channel-pulse.

All models are imported here so that ``Base.metadata`` knows every table and
application code can do ``from channel_pulse.core.models import ReportRun``.
"""

from __future__ import annotations

from channel_pulse.core.models.base import Base
from channel_pulse.core.models.runs import ReportRun

__all__ = [
    "Base",
    "ReportRun",
]

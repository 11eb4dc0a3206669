"""Per-run state passed explicitly through the pipeline.

A :class:`RunContext` owns everything that must not outlive one run or leak
into a concurrent one: the attribution memo and the fetcher bound to the
run's discussion group.  Tests build a fresh context per case.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from channel_pulse.pipeline.attribution import MAX_STEPS, AttributionCache, ThreadAttributionResolver
from channel_pulse.pipeline.fetcher import RateLimitedFetcher


@dataclass(frozen=True)
class ReportWindow:
    """Inclusive time window ``[start, end]`` of a report."""

    start: datetime
    end: datetime

    @classmethod
    def last_days(cls, days: int, now: datetime | None = None) -> ReportWindow:
        end = now or datetime.now(timezone.utc)
        return cls(start=end - timedelta(days=days), end=end)


@dataclass
class RunContext:
    """Run-scoped collaborators and state.

    Attributes:
        target_channel_id: Channel whose posts comments are attributed to.
        fetcher: Feed reader bound to the channel's discussion group.
        window: Report window.
        cache: Attribution memo for this run only.
        max_steps: Reply-chain hop limit for attribution.
    """

    target_channel_id: int
    fetcher: RateLimitedFetcher
    window: ReportWindow
    cache: AttributionCache = field(default_factory=AttributionCache)
    max_steps: int = MAX_STEPS

    def resolver(self) -> ThreadAttributionResolver:
        return ThreadAttributionResolver(self.fetcher, self.cache, self.max_steps)

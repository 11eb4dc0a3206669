"""Report run lifecycle.

:class:`RunLifecycleManager` turns a report request into exactly one of four
outcomes:

- :class:`AlreadyRunning`: the requester's previous run for the same scope
  is still marked ``running`` and is fresh;
- :class:`Limited`: a non-failed run for the same scope was created inside
  the rate-limit window;
- :class:`Succeeded`: a new run completed and produced a report;
- :class:`Failed`: a new run was created and aborted.

Rejected requests (:class:`~channel_pulse.core.exceptions.ValidationError`)
raise before any run record exists.  A created run always leaves the
``running`` state, even when the pipeline raises.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Union

import structlog

from channel_pulse.config.settings import Settings, get_settings
from channel_pulse.core.logging_config import run_id_var
from channel_pulse.core.metrics import report_runs_total
from channel_pulse.core.schemas.report import EngagementReport
from channel_pulse.core.schemas.runs import RunRecord, RunStatus
from channel_pulse.pipeline.aggregator import EngagementAggregator
from channel_pulse.pipeline.context import ReportWindow, RunContext
from channel_pulse.pipeline.fetcher import FeedSource, RateLimitedFetcher, RetryPolicy
from channel_pulse.pipeline.run_store import RunStore
from channel_pulse.pipeline.scanner import WindowedScanner
from channel_pulse.telegram.validation import TargetValidator, ValidatedTarget, parse_period

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlreadyRunning:
    message: str = "A report for this channel is already being prepared. Please wait."


@dataclass(frozen=True)
class Limited:
    next_allowed_at: datetime
    remaining: timedelta
    message: str


@dataclass(frozen=True)
class Succeeded:
    run_id: str
    report: EngagementReport


@dataclass(frozen=True)
class Failed:
    run_id: str
    message: str


RunOutcome = Union[AlreadyRunning, Limited, Succeeded, Failed]


def format_wait(remaining: timedelta) -> str:
    """Render a wait as ``"Xh Ym"``, ``"Xh"`` or ``"Ym"``.

    Minutes are rounded up and never drop below one.
    """
    minutes = max(1, math.ceil(remaining.total_seconds() / 60))
    hours, minutes = divmod(minutes, 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def scope_key_for(channel_id: int, days: int) -> str:
    return f"{channel_id}:{days}d"


class RunLifecycleManager:
    """Gate, create, execute and finalise report runs.

    Args:
        store: Run record storage.
        source: Feed binding for validation and scanning.
        validator: Target validator.  Defaults to one over *source*.
        settings: Limits and pipeline sizes.  Defaults to
            :func:`~channel_pulse.config.settings.get_settings`.
        clock: Returns the current UTC time.
        policy: Retry policy for feed calls made by the run.
    """

    def __init__(
        self,
        store: RunStore,
        source: FeedSource,
        validator: TargetValidator | None = None,
        settings: Settings | None = None,
        clock: Clock = _utcnow,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.source = source
        self.validator = validator or TargetValidator(source)
        self.settings = settings or get_settings()
        self.clock = clock
        self.policy = policy or RetryPolicy.from_settings(self.settings)

    @property
    def rate_limit_window(self) -> timedelta:
        return timedelta(hours=self.settings.run_rate_limit_hours)

    @property
    def freshness(self) -> timedelta:
        return timedelta(minutes=self.settings.run_freshness_minutes)

    async def start(self, actor_id: str, target: str, period: str) -> RunOutcome:
        """Request a report of *target* over *period* on behalf of *actor_id*.

        Raises:
            ValidationError: If *target* or *period* is rejected.  No run
                record is written.
        """
        validated = await self.validator.validate(target)
        days = parse_period(period)
        scope_key = scope_key_for(validated.channel_id, days)

        async with self.store.claim(actor_id, scope_key) as claimed:
            now = self.clock()
            latest = await claimed.latest()
            gate = self._gate(latest, now)
            if gate is not None:
                report_runs_total.labels(
                    status="already_running" if isinstance(gate, AlreadyRunning) else "limited"
                ).inc()
                logger.info(
                    "run.rejected",
                    actor_id=actor_id,
                    scope_key=scope_key,
                    outcome=type(gate).__name__,
                    last_run_id=latest.id if latest else None,
                )
                return gate
            run = await claimed.create(now)

        token = run_id_var.set(run.id)
        try:
            return await self._run(run, validated, ReportWindow.last_days(days, now=now))
        finally:
            run_id_var.reset(token)

    def _gate(self, latest: RunRecord | None, now: datetime) -> AlreadyRunning | Limited | None:
        if latest is None:
            return None
        if latest.status is RunStatus.RUNNING and now - latest.created_at < self.freshness:
            return AlreadyRunning()
        next_allowed_at = latest.created_at + self.rate_limit_window
        if now < next_allowed_at and latest.status is not RunStatus.FAILED:
            remaining = next_allowed_at - now
            return Limited(
                next_allowed_at=next_allowed_at,
                remaining=remaining,
                message=f"A new report can be requested in {format_wait(remaining)}.",
            )
        return None

    async def _run(self, run: RunRecord, target: ValidatedTarget, window: ReportWindow) -> RunOutcome:
        logger.info(
            "run.started",
            actor_id=run.actor_id,
            scope_key=run.scope_key,
            window_from=window.start.isoformat(),
            window_to=window.end.isoformat(),
        )
        try:
            report = await self._execute(target, window)
        except asyncio.CancelledError:
            await self._finish(run, RunStatus.FAILED, "cancelled")
            raise
        except Exception as exc:
            error = self._error_text(exc)
            logger.exception("run.failed", error=error)
            await self._finish(run, RunStatus.FAILED, error)
            return Failed(run_id=run.id, message=error)

        await self._finish(run, RunStatus.SUCCESS, None)
        logger.info(
            "run.succeeded",
            status=report.status,
            items=len(report.items),
            scanned=report.scanned_count,
            safety_abort=report.safety_abort,
        )
        return Succeeded(run_id=run.id, report=report)

    async def _execute(self, target: ValidatedTarget, window: ReportWindow) -> EngagementReport:
        settings = self.settings
        fetcher = RateLimitedFetcher(self.source, target.discussion_group_id, self.policy)
        context = RunContext(
            target_channel_id=target.channel_id,
            fetcher=fetcher,
            window=window,
            max_steps=settings.attribution_max_steps,
        )
        aggregator = EngagementAggregator(
            context.resolver(), context.target_channel_id, settings.report_top_n
        )
        stats = await WindowedScanner(fetcher).scan(
            window.start,
            window.end,
            settings.discussion_page_size,
            settings.max_discussion_messages_scan,
            aggregator.add,
        )
        return aggregator.report(
            window.start,
            window.end,
            scanned_count=stats.scanned,
            safety_abort=stats.safety_abort,
        )

    async def _finish(self, run: RunRecord, status: RunStatus, error: str | None) -> None:
        report_runs_total.labels(status=status.value).inc()
        try:
            await self.store.finish(run.id, status, error)
        except Exception:
            # The outcome stands; the record stays stale until freshness expires.
            logger.exception("run.finish_failed", target_status=status.value)

    def _error_text(self, exc: BaseException) -> str:
        text = str(exc) or type(exc).__name__
        if exc.__cause__ is not None:
            text = f"{text}: {exc.__cause__}"
        return text[: self.settings.run_error_max_chars]

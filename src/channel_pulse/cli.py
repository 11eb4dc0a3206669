"""Command-line entry point.

Usage:
    # Ranked engagement report for the last 14 days
    channel-pulse report --actor-id 42 --channel @some_channel --period 14d

    # Posts of the last 90 days with their comment trees
    channel-pulse export-comments --channel @some_channel --days 90

Environment:
    Requires TELEGRAM_API_ID, TELEGRAM_API_HASH and TELEGRAM_SESSION_STRING.
    DATABASE_URL is optional; without it run records live in process
    memory and rate limits only apply within a single invocation.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

import structlog

from channel_pulse.config.settings import Settings, get_settings
from channel_pulse.core.exceptions import ChannelPulseError, ValidationError
from channel_pulse.core.logging_config import configure_logging
from channel_pulse.pipeline.export import CommentExporter, write_export
from channel_pulse.pipeline.lifecycle import (
    AlreadyRunning,
    Failed,
    Limited,
    RunLifecycleManager,
    Succeeded,
)
from channel_pulse.pipeline.run_store import InMemoryRunStore, RunStore, SqlAlchemyRunStore
from channel_pulse.telegram.client import TelegramFeedSource, open_client
from channel_pulse.telegram.validation import TargetValidator

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="channel-pulse",
        description="Engagement reports and comment exports for Telegram channels",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    report = sub.add_parser("report", help="Rank the channel's most active commenters")
    report.add_argument("--actor-id", required=True, help="Who requests the report (rate-limit key)")
    report.add_argument("--channel", required=True, help="Channel identifier, e.g. @channel_name")
    report.add_argument("--period", default="14d", help="Report window, e.g. 14d or 90d (default: 14d)")

    export = sub.add_parser("export-comments", help="Export posts with threaded comments as JSON")
    export.add_argument("--channel", required=True, help="Channel identifier, e.g. @channel_name")
    export.add_argument("--days", type=int, default=None, help="Lookback in days (default: EXPORT_LOOKBACK_DAYS)")
    export.add_argument("--out", type=Path, default=None, help="Output file (default: <EXPORT_DIR>/<channel>_<timestamp>.json)")

    return parser


@asynccontextmanager
async def _run_store(settings: Settings) -> AsyncIterator[RunStore]:
    if not settings.database_url:
        logger.info("cli.run_store", backend="memory")
        yield InMemoryRunStore()
        return

    from channel_pulse.core.database import build_engine, build_session_factory, create_tables  # noqa: PLC0415

    engine = build_engine(settings.database_url)
    try:
        await create_tables(engine)
        yield SqlAlchemyRunStore(build_session_factory(engine))
    finally:
        await engine.dispose()


async def _report(args: argparse.Namespace, settings: Settings) -> int:
    async with open_client(settings) as client, _run_store(settings) as store:
        manager = RunLifecycleManager(store, TelegramFeedSource(client), settings=settings)
        outcome = await manager.start(args.actor_id, args.channel, args.period)

    match outcome:
        case Succeeded(report=report):
            print(report.model_dump_json(indent=2))
            return 0
        case Limited(message=message) | AlreadyRunning(message=message):
            print(message, file=sys.stderr)
            return 2
        case Failed(run_id=run_id, message=message):
            print(f"Report {run_id} failed: {message}", file=sys.stderr)
            return 1
    return 1


async def _export(args: argparse.Namespace, settings: Settings) -> int:
    async with open_client(settings) as client:
        source = TelegramFeedSource(client)
        target = await TargetValidator(source).validate(args.channel)
        document = await CommentExporter(source, settings=settings).export(target, args.days)

    path = args.out
    if path is None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        path = Path(settings.export_dir) / f"{target.username}_{stamp}.json"
    write_export(document, path)
    print(json.dumps({"path": str(path), "posts": len(document["posts"])}))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Parse *argv*, run the command and return the exit code."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)

    handler = _report if args.command == "report" else _export
    try:
        return asyncio.run(handler(args, settings))
    except ValidationError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except ChannelPulseError as exc:
        logger.error("cli.failed", command=args.command, error=str(exc))
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

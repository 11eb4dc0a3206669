"""structlog setup for channel-pulse.

``configure_logging()`` is called once by the CLI.  Modules log through
``structlog.get_logger(__name__)`` with dotted event names
(``scan.page``, ``run.failed``); stdlib loggers from Telethon and SQLAlchemy
go through the same renderer.

While a report run executes, :data:`run_id_var` holds its id and every
record carries it as ``run_id``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, WrappedLogger

run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
"""Id of the report run executing in the current task, set by the lifecycle."""

_REDACTED = "[REDACTED]"

# Key fragments (lower case) whose values never reach a renderer.
_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "api_hash",
    "session_string",
    "password",
    "secret",
    "token",
    "credential",
    "authorization",
    "database_url",
})

_QUIET_LOGGERS = ("telethon", "sqlalchemy.engine")


def _is_secret(key: object) -> bool:
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in _SECRET_SUBSTRINGS)


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Mask Telegram credentials and connection strings, one dict level deep."""
    for key, value in list(event_dict.items()):
        if _is_secret(key):
            event_dict[key] = _REDACTED
        elif isinstance(value, dict):
            for nested_key in list(value):
                if _is_secret(nested_key):
                    value[nested_key] = _REDACTED
    return event_dict


def _inject_run_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    run_id = run_id_var.get()
    if run_id is not None:
        event_dict.setdefault("run_id", run_id)
    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog and stdlib logging to stdout.

    ``DEBUG`` renders coloured console lines; every other level renders one
    JSON object per line with ``timestamp``, ``level``, ``logger``,
    ``event`` and, inside a run, ``run_id``.  Repeated calls replace the
    previous setup.

    Args:
        log_level: Level name, case-insensitive.  Unknown names fall back to
            ``INFO``.
    """
    level_name = log_level.upper()
    debug = level_name == "DEBUG"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_run_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer(colors=True) if debug else structlog.processors.JSONRenderer()
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Telethon logs every reconnect and update at INFO.
    if not debug:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

"""structlog configuration for sshdog.

Two output modes:
- Human (default): colored console output to stderr
- JSON (--log-json): Structured JSON lines to stderr

Diagnostics are chatty by default. Quiet mode silences the ``sshdog``
logger entirely; it never changes control flow, only observability.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# One level above CRITICAL: nothing the package emits passes.
_SILENT = logging.CRITICAL + 10


def _drop_event(_logger: Any, _method: str, _event_dict: Any) -> Any:
    raise structlog.DropEvent


def _event_chain(*, quiet: bool) -> list[structlog.types.Processor]:
    """Processors applied to structlog events before they reach stdlib."""
    if quiet:
        return [_drop_event]
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _stderr_handler(*, log_json: bool) -> logging.Handler:
    """Single stderr handler; also formats records from plain stdlib loggers."""
    if log_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_event_chain(quiet=False),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    return handler


def configure_logging(
    *,
    quiet: bool = False,
    log_json: bool = False,
) -> None:
    """Route sshdog diagnostics to stderr.

    Quiet mode drops structlog events at the head of the chain and raises
    the ``sshdog`` stdlib level above CRITICAL for plain ``logging`` callers.
    Calling again replaces the previous configuration.
    """
    structlog.configure(
        processors=[
            *_event_chain(quiet=quiet),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(_stderr_handler(log_json=log_json))
    root_logger.setLevel(logging.WARNING)

    logging.getLogger("sshdog").setLevel(_SILENT if quiet else logging.DEBUG)


def get_diagnostics(*, quiet: bool = False, name: str = "sshdog") -> Any:
    """Return the diagnostics sink threaded through every component.

    In quiet mode the returned logger drops every event before it reaches
    a handler, regardless of how global logging is configured.
    """
    if quiet:
        return structlog.wrap_logger(
            logging.getLogger(name),
            processors=[_drop_event],
            wrapper_class=structlog.stdlib.BoundLogger,
        )
    return structlog.get_logger(name)

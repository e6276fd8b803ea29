# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge. Console for interactive runs, JSON lines for ``--json-logs``.

Leaf module — no location_blocker imports. Safe to call early in startup.
Library code logs through ``logging.getLogger(__name__)``; the bridge renders
those records together with any structlog contextvars (``subject``, ``job_id``)
bound by the lookup that emitted them.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Third-party loggers that are chatty at INFO/DEBUG.
_NOISY_LOGGERS = ("aiosqlite", "asyncio")

# Run for structlog events and for foreign (stdlib) records alike.
_SHARED_PROCESSORS = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
)


def _renderer(json_output: bool):
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route stdlib and structlog output through one stderr handler.

    Args:
        json_output: JSON lines instead of the coloured console format.
        level: Root logger level name; unknown names fall back to INFO.
    """
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(json_output)],
            foreign_pre_chain=list(_SHARED_PROCESSORS),
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root_level = logging.getLevelName(level.upper())
    if not isinstance(root_level, int):
        root_level = logging.INFO
    root.setLevel(root_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))


def bind_lookup(subject: str, job_id: int) -> None:
    """Attach lookup identity to every log line emitted by the current task.

    asyncio tasks run in a copy of the creating context, so binding inside a
    job's own task never leaks into other jobs.
    """
    structlog.contextvars.bind_contextvars(subject=subject, job_id=job_id)

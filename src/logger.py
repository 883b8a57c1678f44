from __future__ import annotations

import logging
import os

import structlog


def _env_mode() -> str:
    return os.getenv("ENV_MODE", "LOCAL").lower()


def _logging_level() -> int:
    return logging.getLevelNamesMapping().get(os.getenv("LOGGING_LEVEL", "INFO").upper(), logging.INFO)


if _env_mode() in {"local", "staging"}:
    _exception_processor = structlog.processors.format_exc_info
    _renderer = structlog.dev.ConsoleRenderer(colors=False)
else:
    _exception_processor = structlog.processors.dict_tracebacks
    _renderer = structlog.processors.JSONRenderer()

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _exception_processor,
        structlog.processors.TimeStamper(fmt="iso"),
        _renderer,
    ],
    cache_logger_on_first_use=True,
    wrapper_class=structlog.make_filtering_bound_logger(_logging_level()),
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

"""
Structured logging setup.

Configures structlog once at startup. Modules keep using
``structlog.get_logger()`` at import time; the processors chosen here decide
whether events render for a terminal or as JSON lines.
"""

import logging

import structlog


def resolve_log_level(value: str | int | None, *, default: int = logging.INFO) -> int:
    """Convert a configured level name or number to a logging constant."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return default
        if candidate.isdigit():
            return int(candidate)
        mapped = logging.getLevelName(candidate.upper())
        if isinstance(mapped, int):
            return mapped
    return default


def configure_logging(level: str | int | None = "info", *, json_output: bool = False) -> None:
    """Configure structlog processors and the minimum level."""
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_log_level(level)),
        cache_logger_on_first_use=True,
    )

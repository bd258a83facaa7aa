"""Logging utilities for reduction_bench.

Reductions and benchmark runs tag their log records with the active run,
strategy and worker count through context variables, so interleaved output
from concurrent benchmark runs stays attributable.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
import sys
from typing import Any, Dict, Iterator

_CONTEXT_KEYS = (
    "run_id",
    "strategy",
    "workers",
)

_context_vars = {key: contextvars.ContextVar(key, default=None) for key in _CONTEXT_KEYS}


def get_logging_context() -> Dict[str, Any]:
    """Return current structured logging context."""
    return {key: var.get() for key, var in _context_vars.items() if var.get() is not None}


def update_logging_context(**kwargs: Any) -> None:
    """Update structured logging context fields present in kwargs."""
    for key, value in kwargs.items():
        if key in _context_vars:
            _context_vars[key].set(value)


@contextlib.contextmanager
def logging_context(**kwargs: Any) -> Iterator[None]:
    """Context manager to temporarily set logging context fields."""
    tokens = {}
    for key, value in kwargs.items():
        if key in _context_vars:
            tokens[key] = _context_vars[key].set(value)
    try:
        yield
    finally:
        for key, token in tokens.items():
            _context_vars[key].reset(token)


class LoggingContextFilter(logging.Filter):
    """Logging filter that injects structured context into records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject structured context into the log record."""
        context = get_logging_context()
        for key in _CONTEXT_KEYS:
            setattr(record, key, context.get(key))
        return True


def ensure_logging_context_filter(logger_name: str = "reduction_bench") -> None:
    """Attach the context filter to the package logger once."""
    logger = logging.getLogger(logger_name)
    for existing in logger.filters:
        if isinstance(existing, LoggingContextFilter):
            return
    logger.addFilter(LoggingContextFilter())


class _StderrHandler(logging.StreamHandler):
    """Stream handler that always writes to the current ``sys.stderr``."""

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass


def configure_cli_logging(verbose: bool = False) -> None:
    """Send package log records to stderr with their context fields."""
    ensure_logging_context_filter()
    logger = logging.getLogger("reduction_bench")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if any(getattr(h, "_reduction_bench_cli", False) for h in logger.handlers):
        return
    handler = _StderrHandler()
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [strategy=%(strategy)s workers=%(workers)s] %(message)s"
        )
    )
    handler.addFilter(LoggingContextFilter())
    handler._reduction_bench_cli = True  # type: ignore[attr-defined]
    logger.addHandler(handler)


__all__ = [
    "get_logging_context",
    "update_logging_context",
    "logging_context",
    "ensure_logging_context_filter",
    "configure_cli_logging",
    "LoggingContextFilter",
]

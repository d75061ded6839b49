"""
Logging setup shared by the CLI, the HTTP surface and the invocation handler.

Every record carries the id of the invocation that produced it. The id
lives in a context variable so concurrent jobs on different threads or
tasks never mix their ids.

Example Usage:
    >>> from survey_export.utils.log_setup import configure_logging, request_context
    >>>
    >>> configure_logging("DEBUG")
    >>> with request_context("req-123"):
    ...     logging.getLogger("survey_export").info("inside the invocation")
"""
from __future__ import annotations

import contextvars
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union


__all__ = [
    "LOG_FORMAT",
    "RequestIdFilter",
    "configure_logging",
    "current_request_id",
    "request_context",
]


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Attach the current request id to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = _request_id.get()
        return True


def current_request_id() -> str:
    return _request_id.get()


@contextmanager
def request_context(request_id: str) -> Iterator[str]:
    """Bind a request id to every record logged inside the block."""
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


def configure_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """
    Configure the root logger for console (and optionally file) output.

    Safe to call more than once; handlers installed by a previous call
    are replaced.

    Args:
        level: Logging level name or number.
        log_file: Optional path of a log file to write as well.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    formatter = logging.Formatter(LOG_FORMAT)
    request_filter = RequestIdFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(request_filter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # Playwright and httpx are chatty at DEBUG
    for noisy in ("asyncio", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

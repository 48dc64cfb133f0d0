"""structlog setup shared by the API process and the chat session client."""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from diy_assistant.config import settings


class _LogFileTee:
    """File-like sink that mirrors every log line to stdout and a file.

    If the file cannot be opened or written, file output is dropped with a
    warning on stderr and stdout logging carries on.
    """

    def __init__(self, file_path: str) -> None:
        self._path = file_path
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            # structlog is not configured yet, so report on stderr
            print(
                f"WARNING: Could not open log file {file_path!r}: {exc}. "
                "Logging to stdout only.",
                file=sys.stderr,
            )

    def _disable_file(self, action: str) -> None:
        self._file = None
        print(
            f"WARNING: Log file {action} failed for {self._path!r}. File logging disabled.",
            file=sys.stderr,
        )

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        if self._file is None:
            return
        try:
            self._file.write(data)
            self._file.flush()
        except (OSError, ValueError):
            self._disable_file("write")

    def flush(self) -> None:
        sys.stdout.flush()
        if self._file is None:
            return
        try:
            self._file.flush()
        except (OSError, ValueError):
            self._disable_file("flush")


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    *,
    environment: str | None = None,
    log_level: str | None = None,
    log_file: str | None = None,
) -> None:
    """Configure structlog: console output in development, JSON lines elsewhere.

    Arguments default to the values in settings. With a log file set, every
    line is also appended to that file.
    """
    environment = environment or settings.environment
    level = _resolve_level(log_level or settings.log_level)
    log_file = settings.log_file if log_file is None else log_file

    renderer = (
        structlog.dev.ConsoleRenderer()
        if environment == "development"
        else structlog.processors.JSONRenderer()
    )

    logger_factory: structlog.types.WrappedLogger
    if log_file:
        # PrintLoggerFactory only needs write() and flush()
        sink = _LogFileTee(log_file)
        logger_factory = structlog.PrintLoggerFactory(file=sink)  # type: ignore[arg-type]
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )

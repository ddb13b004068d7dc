"""Loguru configuration and logger helpers for WinUSB Creator.

Every record carries ``source``, ``job_id`` and ``tags`` extras. Copy
progress is tagged ``progress`` and only reaches the console in TRACE mode,
so a long install.wim copy does not flood the terminal.
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "WINUSB_CREATOR_LOG_DIR",
        Path.home() / ".local" / "state" / "winusb-creator" / "logs",
    )
)

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[source]: <8}</cyan> | "
    "{message}"
)
_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <8} | {extra[job_id]: <16} | {message}"
)
_DEBUG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <8} | {extra[job_id]: <16} | {extra[tags]} | {message}"
)


def _should_log_progress(record) -> bool:
    """Progress records pass only when the sink runs at TRACE."""
    if "progress" not in record["extra"].get("tags", []):
        return True
    return record["level"].no <= logger.level("TRACE").no


def _should_log_command_output(record) -> bool:
    """Raw stdout/stderr dumps pass at DEBUG and below, or WARNING and above."""
    if not record["message"].startswith(("stdout:", "stderr:")):
        return True
    level = record["level"].no
    return level <= logger.level("DEBUG").no or level >= logger.level("WARNING").no


def _combined_filter(record) -> bool:
    return _should_log_progress(record) and _should_log_command_output(record)


def _add_file_sink(path: Path, level: str, rotation: str, retention: str, **options) -> int:
    return logger.add(
        path,
        level=level,
        rotation=rotation,
        retention=retention,
        compression="zip",
        enqueue=True,
        **options,
    )


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """Replace loguru's default sink with the application sinks.

    Sinks:
        stderr            INFO, DEBUG with ``debug``, TRACE with ``trace``
        operations.log    INFO+, kept 7 days
        debug.log         DEBUG+ (TRACE+ with ``trace``), only with debug or trace, kept 3 days
        structured.jsonl  INFO+ serialized records, kept 7 days

    Args:
        debug: Verbose console and the debug log file
        trace: Per-chunk copy progress as well
        log_dir: Directory for log files (defaults to ``DEFAULT_LOG_DIR``)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "app"})

    console_level = "TRACE" if trace else "DEBUG" if debug else "INFO"
    logger.add(
        sys.stderr,
        level=console_level,
        format=_CONSOLE_FORMAT,
        filter=_combined_filter,
        colorize=True,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    _add_file_sink(
        log_dir / "operations.log",
        "INFO",
        rotation="5 MB",
        retention="7 days",
        format=_FILE_FORMAT,
        backtrace=False,
        diagnose=False,
    )
    if debug or trace:
        _add_file_sink(
            log_dir / "debug.log",
            "TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            format=_DEBUG_FORMAT,
            backtrace=True,
            diagnose=True,
        )
    _add_file_sink(
        log_dir / "structured.jsonl",
        "INFO",
        rotation="10 MB",
        retention="7 days",
        serialize=True,
        format="{message}",
    )
    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """Logger bound to whichever of ``job_id``, ``tags`` and ``source`` are given."""
    context = {"job_id": job_id, "source": source}
    if tags is not None:
        context["tags"] = list(tags)
    return logger.bind(**{key: value for key, value in context.items() if value is not None})


@contextmanager
def operation_context(operation: str, **details):
    """Time an operation and log its start and its outcome.

    Yields a logger bound to a fresh ``<operation>-xxxxxxxx`` job id; the
    details are attached to every record logged inside the block. Exceptions
    are logged and re-raised.

    Example:
        with operation_context("create", image="Win11.iso", drive="disk4") as log:
            log.info("Step 1: Mounting ISO")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    title = operation.capitalize()
    started = time.monotonic()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])
        log.info(f"{title} started", **details)
        try:
            yield log
        except Exception as error:
            log.error(
                f"{title} failed",
                error=str(error),
                error_type=type(error).__name__,
                duration_seconds=round(time.monotonic() - started, 2),
            )
            raise
        log.success(
            f"{title} completed",
            duration_seconds=round(time.monotonic() - started, 2),
        )


class LoggerFactory:
    """Component loggers with their source and tags already bound."""

    @staticmethod
    def for_creator(job_id: str | None = None, **details) -> Logger:
        if job_id is None:
            job_id = f"create-{uuid.uuid4().hex[:8]}"
        return logger.bind(source="creator", job_id=job_id, tags=["creator"], **details)

    @staticmethod
    def for_copy(job_id: str | None = None) -> Logger:
        """Copy logger; its records count as progress and stay off the console below TRACE."""
        return get_logger(job_id=job_id or "-", tags=["copy", "progress"], source="copy")

    @staticmethod
    def for_disk() -> Logger:
        return get_logger(tags=["disk"], source="disk")

    @staticmethod
    def for_image() -> Logger:
        return get_logger(tags=["image"], source="image")

    @staticmethod
    def for_system() -> Logger:
        return get_logger(tags=["system"], source="system")


class ThrottledLogger:
    """Emit at most one record per key every ``interval_seconds``."""

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        self.log = log
        self.interval_seconds = interval_seconds
        self._last_emitted: dict[str, float] = {}

    def debug(self, key: str, message: str, **kwargs) -> None:
        self._emit("debug", key, message, **kwargs)

    def info(self, key: str, message: str, **kwargs) -> None:
        self._emit("info", key, message, **kwargs)

    def _emit(self, method: str, key: str, message: str, **kwargs) -> None:
        now = time.monotonic()
        last = self._last_emitted.get(key)
        if last is not None and now - last < self.interval_seconds:
            return
        self._last_emitted[key] = now
        getattr(self.log, method)(message, **kwargs)

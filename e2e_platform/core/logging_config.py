"""
Logging configuration for the E2E platform.

Console output is JSON lines in CI and human-readable text elsewhere.
Outside CI, rotating files under the logs directory keep the full
history, and each job's pipeline records are also copied into a
``pipeline.log`` inside the job directory while the job runs.
"""

import json
import logging
import logging.handlers
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator

from .config import Config


CONTEXT_FIELDS = ("job_id", "stage", "status", "duration")
JOB_LOG_FILENAME = "pipeline.log"


def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Context fields attached through get_logger(...) or ``extra=``."""
    return {
        attr: getattr(record, attr)
        for attr in CONTEXT_FIELDS
        if getattr(record, attr, None) is not None
    }


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for CI consoles and the rotating log files."""

    def __init__(self, session_id: str):
        super().__init__()
        self.session_id = session_id

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": _record_time(record).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "component": record.name,
            "session_id": self.session_id,
            "message": record.getMessage(),
        }
        entry.update(_record_context(record))

        metadata = getattr(record, "metadata", None)
        if metadata:
            entry["metadata"] = metadata
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self, session_id: str):
        super().__init__()
        self.session_id = session_id

    def format(self, record: logging.LogRecord) -> str:
        timestamp = _record_time(record).astimezone().strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{timestamp}] {record.levelname:8} {record.name:28} | {record.getMessage()}"

        context = _record_context(record)
        job_id = context.pop("job_id", None)
        if job_id:
            line += f" (job: {str(job_id)[:8]})"
        if "stage" in context:
            line += f" [{context['stage']}]"

        metadata = getattr(record, "metadata", None)
        if metadata:
            line += " | " + " | ".join(f"{k}={v}" for k, v in metadata.items())

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _rotating_handler(
    path: Path, max_bytes: int, level: int, formatter: logging.Formatter
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=5, encoding="utf-8"
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def setup_logging(config: Config, session_id: str) -> logging.Logger:
    """
    Install console and file handlers on the root logger.

    Args:
        config: Configuration object with logging settings
        session_id: Identifier of this process run, used for log correlation

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, config.log_level)
    root_logger.setLevel(log_level)

    if config.log_format == "json":
        console_formatter = StructuredFormatter(session_id)
    else:
        console_formatter = TextFormatter(session_id)

    # stderr, so command output on stdout stays machine-readable
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if not config.is_ci_mode:
        config.logs_dir.mkdir(parents=True, exist_ok=True)
        file_formatter = StructuredFormatter(session_id)
        root_logger.addHandler(
            _rotating_handler(
                config.get_log_file_path(), 10 * 1024 * 1024, log_level, file_formatter
            )
        )
        root_logger.addHandler(
            _rotating_handler(
                config.get_error_log_file_path(), 5 * 1024 * 1024, logging.ERROR, file_formatter
            )
        )

    logging.getLogger("e2e_platform.logging").info(
        "Logging configured",
        extra={
            "metadata": {
                "session_id": session_id,
                "log_level": config.log_level,
                "log_format": config.log_format,
                "ci_mode": config.is_ci_mode,
                "file_logging": not config.is_ci_mode,
            }
        },
    )

    return root_logger


class JobFilter(logging.Filter):
    """Passes only records tagged with one job id."""

    def __init__(self, job_id: str):
        super().__init__()
        self.job_id = job_id

    def filter(self, record: logging.LogRecord) -> bool:
        return getattr(record, "job_id", None) == self.job_id


@contextmanager
def job_log(job_dir: Path, job_id: str) -> Iterator[Path]:
    """
    Copy records tagged with ``job_id`` into ``<job_dir>/pipeline.log``.

    Records still pass through the root logger's level first, so the file
    holds what the configured level lets through.
    """
    job_dir.mkdir(parents=True, exist_ok=True)
    path = job_dir / JOB_LOG_FILENAME

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(TextFormatter(job_id))
    handler.addFilter(JobFilter(job_id))

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    try:
        yield path
    finally:
        root_logger.removeHandler(handler)
        handler.close()


def flush_job_log(job_id: str) -> None:
    """Write out anything the ``job_log`` handler for ``job_id`` still buffers."""
    for handler in logging.getLogger().handlers:
        if any(isinstance(f, JobFilter) and f.job_id == job_id for f in handler.filters):
            handler.flush()


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that merges its context into every record's extra fields."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def get_logger(name: str, **context):
    """
    Get a logger, wrapped in a ContextAdapter when context is given.

    Context such as ``job_id`` or ``stage`` ends up on every record, which
    is what the formatters and :func:`job_log` key on.
    """
    logger = logging.getLogger(name)
    if context:
        return ContextAdapter(logger, context)
    return logger


def log_performance(logger, operation: str, duration: float, **metadata) -> None:
    """Record how long an operation took, in seconds."""
    logger.info(
        f"Performance: {operation} completed in {duration:.2f}s",
        extra={"metadata": {"operation": operation, "duration": duration, **metadata}},
    )

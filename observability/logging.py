"""Console and file logging tagged with the current job and scan.

Workers set the ids when they pick up a job; asyncio copies context
variables into each task, so records emitted by concurrent jobs keep
their own ids.

Usage:
    >>> setup_logging(config)
    >>> set_job_context("3f2a9c1b")
    >>> logger.info("Fetch completed | source=%s", slug)
    12:04:51 [INFO] [3f2a9c1b] workers.source_fetch: Fetch completed | source=lemonde
"""

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any

NO_ID = "-"
LOG_FILE_NAME = "media-scanner.log"

# Libraries whose INFO output drowns the scanner's own
NOISY_LOGGERS = ("aiohttp", "asyncio", "httpx", "httpcore", "openai", "redis")

job_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("job_id", default=NO_ID)
scan_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("scan_id", default=NO_ID)

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "job_id", "scan_id",
}


def set_job_context(job_id: str) -> None:
    job_id_var.set(job_id)


def set_scan_context(scan_id: str) -> None:
    scan_id_var.set(scan_id)


def clear_context() -> None:
    """Forget the ids once a job attempt is over."""
    job_id_var.set(NO_ID)
    scan_id_var.set(NO_ID)


class ContextFilter(logging.Filter):
    """Copies the current job and scan ids onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = job_id_var.get()
        record.scan_id = scan_id_var.get()
        return True


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through `extra=`, coerced to JSON-safe values."""
    extras = {}
    for key, value in vars(record).items():
        if key in _STANDARD_ATTRS:
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        extras[key] = value
    return extras


class JsonFormatter(logging.Formatter):
    """One JSON object per line. scan_id appears only inside a scan."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "job_id": getattr(record, "job_id", NO_ID),
        }
        scan_id = getattr(record, "scan_id", NO_ID)
        if scan_id != NO_ID:
            entry["scan_id"] = scan_id
        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_extras(record))
        return json.dumps(entry, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """TIME [LEVEL] [job_id] logger: message, plus (scan=...) inside a scan."""

    def __init__(self, include_date: bool = False):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] [%(job_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S" if include_date else "%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        scan_id = getattr(record, "scan_id", NO_ID)
        if scan_id != NO_ID:
            line = f"{line} (scan={scan_id})"
        return line


def _file_handler(config: Any) -> logging.Handler:
    """Size-based rotation when LOG_MAX_BYTES is set, daily otherwise."""
    config.log_dir.mkdir(parents=True, exist_ok=True)
    path = config.log_dir / LOG_FILE_NAME
    if config.log_max_bytes > 0:
        return RotatingFileHandler(
            path, maxBytes=config.log_max_bytes, backupCount=config.log_backup_count, encoding="utf-8"
        )
    return TimedRotatingFileHandler(
        path, when="midnight", backupCount=config.log_backup_count, encoding="utf-8"
    )


def setup_logging(config: Any, verbose: bool = False) -> bool:
    """Install console and file handlers on the root logger.

    An unwritable log directory leaves console logging only.

    Returns:
        True if the file handler was installed
    """
    json_output = config.log_format == "json"
    context_filter = ContextFilter()

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO))
    console.setFormatter(JsonFormatter() if json_output else TextFormatter())
    console.addFilter(context_filter)
    root.addHandler(console)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    try:
        file_handler = _file_handler(config)
    except OSError as e:
        print(
            f"Warning: cannot write logs to '{config.log_dir}': {e}. Logging to console only.",
            file=sys.stderr,
        )
        return False

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(JsonFormatter() if json_output else TextFormatter(include_date=True))
    file_handler.addFilter(context_filter)
    root.addHandler(file_handler)
    return True

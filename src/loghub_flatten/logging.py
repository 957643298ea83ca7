"""Logging setup for loghub-flatten.

All console output goes to stderr. Records emitted while an archive (and,
on the tar path, a member) is being processed carry ``archive`` / ``member``
fields set through :class:`LogContext`; the JSON formatter writes them out
and the text formatters prefix them.
"""

import logging
import logging.handlers
import json
import sys
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from pathlib import Path

CONTEXT_FIELDS = ("archive", "member")


def _context_of(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, "context_fields", {})


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used for ``format = "json"`` and log files."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(_context_of(record))

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Plain-text formatter; ``detailed`` adds time and source location."""

    SIMPLE = "%(levelname)-8s | %(message)s"
    DETAILED = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"

    def __init__(self, detailed: bool = False) -> None:
        super().__init__(
            fmt=self.DETAILED if detailed else self.SIMPLE,
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.detailed = detailed

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if self.detailed:
            context = _context_of(record)
            fields = " ".join(f"{k}={context[k]}" for k in CONTEXT_FIELDS if k in context)
            if fields:
                text = f"{text} [{fields}]"
        return text


def make_formatter(format: str) -> logging.Formatter:
    if format == "json":
        return JsonFormatter()
    return TextFormatter(detailed=(format == "detailed"))


def setup_logging(
    level: str = "INFO",
    format: str = "simple",
    log_file: Optional[Path] = None,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
) -> None:
    """Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format: Console format (simple, detailed, json)
        log_file: Optional rotating log file, always written as JSON
        max_file_size_mb: Max log file size in MB
        backup_count: Number of rotated files to keep
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(make_formatter(format))
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)


class LogContext:
    """Attach ``archive`` / ``member`` style fields to every record created inside.

    Contexts nest: an inner context sees the outer fields and adds its own.
    """

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._previous_factory = None

    def __enter__(self) -> "LogContext":
        previous = self._previous_factory = logging.getLogRecordFactory()
        fields = self.fields

        def record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
            record = previous(*args, **kwargs)
            record.context_fields = {**_context_of(record), **fields}
            return record

        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        logging.setLogRecordFactory(self._previous_factory)

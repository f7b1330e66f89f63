"""
Logging configuration for the Cricket Fantasy Leaderboard Service.

Structured JSON logs for production, readable text logs for development.
Context is attached with ``logger.info("...", extra={...})`` and every extra
key ends up as a top-level field of the JSON line.
"""

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

# LogRecord attributes that are plumbing, not context
_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName", "extra",
])


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(config=None, log_file=None):
    """
    Set up logging configuration.

    Args:
        config: Optional Config object. If None, uses environment variables.
        log_file: Optional path (str or Path) to also write logs to a file (append mode).
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_format = os.getenv("LOG_FORMAT", "json")

    if config:
        log_level = config.log_level
        log_format = config.log_format

    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Third-party loggers are noisy at INFO
    for name in ("httpx", "httpcore", "hpack", "postgrest"):
        logging.getLogger(name).setLevel(logging.WARNING)

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# Action scripts can be tens of kilobytes; keep log lines readable
MAX_FIELD_LENGTH = 200

QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "urllib3", "asyncio")


def _clip(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_FIELD_LENGTH:
        return value[:MAX_FIELD_LENGTH] + f"...(+{len(value) - MAX_FIELD_LENGTH} chars)"
    return value


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: _clip(value) for key, value in getattr(record, "extra_fields", {}).items()}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        log_data.update(_fields(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Plain lines with structured fields appended as ``key=value``."""

    def __init__(self):
        super().__init__("[%(asctime)s] %(levelname)s %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _fields(record)
        if fields:
            line += " " + " ".join(f"{key}={json.dumps(value, default=str)}" for key, value in fields.items())
        return line


class StructuredLogger(logging.Logger):
    def _log_with_fields(self, level: int, msg: str, fields: Dict[str, Any] = None, **kwargs):
        if not self.isEnabledFor(level):
            return
        extra = kwargs.get("extra", {})
        extra["extra_fields"] = fields or {}
        kwargs["extra"] = extra
        super()._log(level, msg, (), **kwargs)

    def info_with(self, msg: str, **fields):
        self._log_with_fields(logging.INFO, msg, fields)

    def warning_with(self, msg: str, **fields):
        self._log_with_fields(logging.WARNING, msg, fields)

    def debug_with(self, msg: str, **fields):
        self._log_with_fields(logging.DEBUG, msg, fields)


logging.setLoggerClass(StructuredLogger)


def setup_logging(
    level: str = None,
    json_format: bool = None,
    log_file: str = None
):
    """
    Configure the root logger from arguments or ``TABQUERY_LOG_*``.

    Console output goes to stderr so query results on stdout stay pipeable.
    The default level is WARNING: a CLI query should print nothing but its
    results unless asked.
    """
    level = level or os.environ.get("TABQUERY_LOG_LEVEL", "WARNING")
    json_format = json_format if json_format is not None else os.environ.get("TABQUERY_LOG_JSON", "0") == "1"
    log_file = log_file or os.environ.get("TABQUERY_LOG_FILE")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    root_logger.handlers.clear()

    formatter = JSONFormatter() if json_format else TextFormatter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        # Files are always JSON lines
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)

"""
Structured logging for the storage layer.

Routing and migration log records carry the owning user, the entity
family, the row, and the migration stage they concern. The JSON
formatter lifts those into fixed top-level keys so device logs and
cloud collectors can filter a migration run by user or by failing row.

JSON output is opt-in: StorageRouter.create() applies LoggingConfig.from_env(),
which only installs the handler when LEVELUP_LOG_FORMAT=json.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import IO, Any

LOGGER_NAMESPACE = "levelup_storage"

# Promoted to top-level keys, in this order, when present on a record
CONTEXT_FIELDS = ("user_id", "family", "record_id", "stage")

_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    Single-line JSON formatter for storage logs.

    Keys, in order:
    - timestamp, level, logger, message
    - user_id, family, record_id, stage (whichever the record carries)
    - extra: every other field passed through ``extra=``
    - exception: formatted traceback, if any

    Enum values (EntityFamily, MigrationStage) are written as their values.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: _json_value(value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for key in CONTEXT_FIELDS:
            if key in extra:
                entry[key] = extra.pop(key)
        if extra:
            entry["extra"] = extra

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


@dataclass
class LoggingConfig:
    """Logging settings for the storage layer."""

    json_output: bool = False
    level: int = logging.INFO

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Create config from LEVELUP_LOG_FORMAT and LEVELUP_LOG_LEVEL."""
        log_format = os.environ.get("LEVELUP_LOG_FORMAT", "text").strip().lower()
        level_name = os.environ.get("LEVELUP_LOG_LEVEL", "INFO").strip().upper()
        return cls(
            json_output=log_format == "json",
            level=logging.getLevelNamesMapping().get(level_name, logging.INFO),
        )


class _StructuredHandler(logging.StreamHandler):
    """Marker type so reconfiguring replaces only handlers installed here."""


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str = LOGGER_NAMESPACE,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Send a storage logger's records to a stream as structured JSON.

    Calling again replaces the handler installed by the previous call;
    handlers added by the host application are left alone.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger)
        stream: Output stream (default: stdout)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    for handler in [h for h in logger.handlers if isinstance(h, _StructuredHandler)]:
        logger.removeHandler(handler)

    handler = _StructuredHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def apply_logging_config(config: LoggingConfig) -> logging.Logger | None:
    """Install JSON logging if the config asks for it."""
    if not config.json_output:
        return None
    return configure_structured_logging(config.level)


def get_storage_logger(name: str) -> logging.Logger:
    """Logger named ``levelup_storage.<name>`` (e.g. 'migration')."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


class StorageLoggerAdapter(logging.LoggerAdapter):
    """
    Stamps fixed storage context onto every record.

    The migration engine binds the user_id once per run; per-call
    ``extra`` (family, record_id, stage) is merged in alongside it.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs

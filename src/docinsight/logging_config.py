"""Application logging configuration utilities."""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

AUDIT_LOGGER_NAME = "docinsight.audit"


class MinimalJSONFormatter(logging.Formatter):
    """Serialize log records to a compact JSON string.

    Records from this package log a dict (merged into the output) or a plain
    message. Attributes passed through ``extra`` are not serialised.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z")
        )

        log_record: dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
        }

        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            message = record.getMessage()
            if message:
                log_record["message"] = message

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_record, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO", log_dir: str | Path = "logs") -> None:
    """Configure JSON logging on stderr plus the append-only audit log file."""

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": MinimalJSONFormatter}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                },
                "audit": {
                    "class": "logging.FileHandler",
                    "filename": str(directory / "audit.log"),
                    "mode": "a",
                    "encoding": "utf-8",
                    "formatter": "json",
                },
            },
            "root": {
                "level": level,
                "handlers": ["default"],
            },
            "loggers": {
                AUDIT_LOGGER_NAME: {
                    "level": "INFO",
                    "handlers": ["audit"],
                    "propagate": False,
                }
            },
        }
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)

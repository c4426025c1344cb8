"""
Logging configuration for Gestor OM.

Console output plus a rotating log file. Production uses JSON lines so the
files can be shipped to a log aggregator; development keeps a readable
single-line format.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import logging.handlers
import sys

from .config import settings

LOG_FILE_NAME = "gestor_om.log"


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging() -> None:
    root_logger = logging.getLogger()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if settings.is_production:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(levelname)-8s %(asctime)s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        settings.log_dir / LOG_FILE_NAME,
        maxBytes=5_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger(__name__).info(
        "Logging configured (environment=%s, level=%s)",
        settings.environment,
        logging.getLevelName(level),
    )

"""Logging setup for the engine process.

``configure_logging()`` installs a single stdout handler on the root
logger: JSON lines in production, a coloured one-liner on a desk
developer's terminal. Trace fields bound by :class:`RequestContext`
and lifecycle extras (``entity_id``, ``transition``) ride along.
"""

import json
import logging
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from backoffice.logging_config.config import DEFAULT_LOGGING_CONFIG, LogFormat, LoggingConfig, LogLevel
from backoffice.logging_config.context import get_context_dict

LEVEL_ENV = "BACKOFFICE_LOG_LEVEL"
FORMAT_ENV = "BACKOFFICE_LOG_FORMAT"

# LogRecord attributes set through ``extra=`` that are worth shipping.
RECORD_EXTRAS = (
    "entity_id",
    "transition",
    "duration_ms",
    "method",
    "path",
    "status_code",
)

QUIET_LOGGERS = ("asyncio", "httpx", "httpcore", "uvicorn.access")

LEVEL_COLOURS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
RESET = "\033[0m"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, service_name: str = "backoffice", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **get_context_dict(),
        }
        if self.include_caller:
            payload.update(module=record.module, function=record.funcName, line=record.lineno)
        payload.update({k: getattr(record, k) for k in RECORD_EXTRAS if hasattr(record, k)})

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """``12:00:01.123 WARNING  backoffice.engine | message  request_id=...``"""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        colour = LEVEL_COLOURS.get(record.levelname, RESET)
        fields = "  ".join(f"{k}={v}" for k, v in get_context_dict().items())
        line = f"{stamp} {colour}{record.levelname:<8}{RESET} {record.name} | {record.getMessage()}"
        if fields:
            line = f"{line}  {fields}"
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _apply_env_overrides(config: LoggingConfig) -> LoggingConfig:
    level = os.environ.get(LEVEL_ENV, "").strip().upper()
    if level in LogLevel.__members__:
        config = replace(config, level=LogLevel[level])
    fmt = os.environ.get(FORMAT_ENV, "").strip().lower()
    if fmt in {f.value for f in LogFormat}:
        config = replace(config, format=LogFormat(fmt))
    return config


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Install the engine's root handler. Call once at startup.

    ``BACKOFFICE_LOG_LEVEL`` and ``BACKOFFICE_LOG_FORMAT`` override the
    passed config.
    """
    config = _apply_env_overrides(config or DEFAULT_LOGGING_CONFIG)

    handler = logging.StreamHandler(sys.stdout)
    if config.format == LogFormat.JSON:
        handler.setFormatter(StructuredFormatter(config.service_name, config.include_caller))
    else:
        handler.setFormatter(ConsoleFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(config.level.value)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

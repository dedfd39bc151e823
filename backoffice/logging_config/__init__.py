"""Structured Logging & Request Tracing.

Provides structured JSON logging, request ID propagation,
and performance timing for the back-office engine.
"""

from backoffice.logging_config.config import LogFormat, LoggingConfig, LogLevel
from backoffice.logging_config.context import RequestContext, generate_request_id
from backoffice.logging_config.performance import log_performance
from backoffice.logging_config.setup import configure_logging, get_logger

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "RequestContext",
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "log_performance",
]

"""Timing decorator for engine operations."""

import functools
import logging
import time
from typing import Any, Callable, Optional

from backoffice.logging_config.config import DEFAULT_LOGGING_CONFIG


def log_performance(
    threshold_ms: Optional[float] = None,
    logger_name: Optional[str] = None,
) -> Callable:
    """Time each call of the wrapped function.

    Calls slower than ``threshold_ms`` are logged as ``Slow operation``
    at WARNING, the rest at DEBUG. A raising call is logged as failed at
    ERROR and the exception propagates unchanged.

    Example:
        @log_performance(threshold_ms=2000)
        def run_reconciliation(self, refresh=True):
            ...
    """
    limit = DEFAULT_LOGGING_CONFIG.slow_threshold_ms if threshold_ms is None else threshold_ms

    def decorator(func: Callable) -> Callable:
        log = logging.getLogger(logger_name or func.__module__)
        name = func.__qualname__

        @functools.wraps(func)
        def timed(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            failed = False
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                failed = True
                elapsed = (time.perf_counter() - started) * 1000
                log.error(
                    "%s failed after %.1fms: %s",
                    name,
                    elapsed,
                    type(exc).__name__,
                    extra={"duration_ms": round(elapsed, 2)},
                )
                raise
            finally:
                if not failed:
                    elapsed = (time.perf_counter() - started) * 1000
                    level = logging.WARNING if elapsed >= limit else logging.DEBUG
                    prefix = "Slow operation: " if elapsed >= limit else ""
                    log.log(
                        level,
                        "%s%s took %.1fms",
                        prefix,
                        name,
                        elapsed,
                        extra={"duration_ms": round(elapsed, 2)},
                    )

        return timed

    return decorator

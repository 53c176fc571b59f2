"""Logging setup and latency logging."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def setup_logging(level: int | str = logging.INFO) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def log_latency(operation_name: str) -> Callable[[F], F]:
    """Log latency and outcome of each call to the wrapped function."""

    def decorator(func: F) -> F:
        logger = logging.getLogger(func.__module__)

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                latency_ms = (time.perf_counter() - start) * 1000
                logger.error(
                    "%s | latency_ms=%.2f | status=error | error=%s",
                    operation_name,
                    latency_ms,
                    exc,
                )
                raise
            latency_ms = (time.perf_counter() - start) * 1000
            logger.info("%s | latency_ms=%.2f | status=success", operation_name, latency_ms)
            return result

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                latency_ms = (time.perf_counter() - start) * 1000
                logger.error(
                    "%s | latency_ms=%.2f | status=error | error=%s",
                    operation_name,
                    latency_ms,
                    exc,
                )
                raise
            latency_ms = (time.perf_counter() - start) * 1000
            logger.info("%s | latency_ms=%.2f | status=success", operation_name, latency_ms)
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper  # type: ignore[return-value]

    return decorator

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any

from loguru import logger

from app.core.settings import settings


def slow_threshold_ms() -> float:
    try:
        return float(int(settings.PERF_LOG_SLOW_MS or 250))
    except (TypeError, ValueError):
        return 250.0


def log_timing(message: str, elapsed_ms: float, *, quiet_level: str = "INFO", **fields: Any) -> None:
    """Log `message` at WARNING when `elapsed_ms` crosses the slow threshold, else at `quiet_level`.

    The request id is stamped onto the record by the logger patcher.
    """
    level = "WARNING" if elapsed_ms >= slow_threshold_ms() else quiet_level
    logger.log(level, message + " ({elapsed_ms:.1f}ms)", elapsed_ms=elapsed_ms, **fields)


@contextmanager
def perf_span(op: str, **tags: Any):
    """Time one upstream fetch.

    Slow spans are always logged; fast ones only with PERF_LOG_INNER_ALWAYS.
    """
    if not (settings.PERF_LOG_ENABLED and settings.PERF_LOG_INNER_ENABLED):
        yield
        return

    t0 = time.perf_counter()
    outcome = "err"
    try:
        yield
        outcome = "ok"
    finally:
        elapsed_ms = (time.perf_counter() - t0) * 1000.0
        if settings.PERF_LOG_INNER_ALWAYS or elapsed_ms >= slow_threshold_ms():
            shown = {k: v for k, v in tags.items() if v is not None}
            log_timing("span {op} {outcome} {tags}", elapsed_ms, quiet_level="DEBUG", op=op, outcome=outcome, tags=shown)

from __future__ import annotations

import sys
from loguru import logger

from app.core.settings import settings
from app.utils.request_context import current_request_id

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "rid={extra[rid]} | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def _attach_request_id(record) -> None:
    record["extra"].setdefault("rid", current_request_id())


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.configure(patcher=_attach_request_id)
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=_FORMAT,
        backtrace=False,
        diagnose=False,
        enqueue=True,
        serialize=bool(getattr(settings, "LOG_JSON", False)),
    )

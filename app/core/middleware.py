from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from loguru import logger

from app.core.settings import settings
from app.utils.perf import log_timing
from app.utils.request_context import request_id_var


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id (taken from x-request-id when the caller sends one) and log its timing."""

    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("x-request-id") or uuid4().hex
        token = request_id_var.set(req_id)
        t0 = time.perf_counter()
        status: int | str = "!"
        try:
            resp = await call_next(request)
            status = resp.status_code
            resp.headers["x-request-id"] = req_id
            return resp
        finally:
            if settings.PERF_LOG_ENABLED:
                elapsed_ms = (time.perf_counter() - t0) * 1000.0
                log_timing("{method} {path} -> {status}", elapsed_ms, method=request.method, path=request.url.path, status=status)
            request_id_var.reset(token)


class ApiKeyAuthMiddleware(BaseHTTPMiddleware):
    """Static shared-secret check for everything under /api/.

    The secret comes from the app's FeedConfig; an empty secret leaves the API open.
    """

    async def dispatch(self, request: Request, call_next):
        cfg = getattr(request.app.state, "feed_config", None)
        expected = cfg.api_key if cfg is not None else ""
        if not expected or request.method == "OPTIONS" or not request.url.path.startswith("/api/"):
            return await call_next(request)

        # Header wins over query param; compared verbatim.
        provided = request.headers.get("x-api-key") or request.query_params.get("key") or ""
        if provided != expected:
            logger.warning("Rejected {} {}: invalid api key", request.method, request.url.path)
            return JSONResponse(status_code=401, content={"error": "Invalid API key"})

        return await call_next(request)

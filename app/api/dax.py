from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from loguru import logger

from app.candles.service import FeedError, FeedService

router = APIRouter()


def _service(request: Request) -> FeedService:
    return request.app.state.feed_service


@router.get("/dax")
def dax(
    request: Request,
    ping: str | None = Query(None),
    live: str | None = Query(None),
    date: str | None = Query(None),
    tf: str | None = Query(None),
    days: str | None = Query(None),
) -> JSONResponse:
    """Single entry point for the workflow engine.

    GET /api/dax?ping=true                  health check
    GET /api/dax?live=true                  last M1 candle (intraday polling)
    GET /api/dax?date=2026-02-19            M1 candles for the day
    GET /api/dax?date=2026-02-19&days=10    M1 candles over 10 trading days
    GET /api/dax?date=2026-02-19&tf=m5      M5 candles for the day

    Callers must branch on `status` ("ok" / "no_data"), not only on the HTTP code.
    """

    try:
        svc = _service(request)
        if ping:
            result = svc.ping()
        elif live == "true":
            result = svc.live()
        else:
            result = svc.batch(date, tf, days)
        return JSONResponse(status_code=200, content=jsonable_encoder(result, exclude_none=True))
    except FeedError as e:
        return JSONResponse(status_code=e.status_code, content=e.payload)
    except Exception as e:
        logger.exception("DAX API error: {}", e)
        return JSONResponse(status_code=500, content={"error": "Internal error", "message": str(e) or repr(e)})

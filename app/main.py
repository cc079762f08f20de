from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.api.router import api_router
from app.candles.fetcher import RateFetcher
from app.candles.service import FeedService
from app.core.config import FeedConfig
from app.core.middleware import AccessLogMiddleware, ApiKeyAuthMiddleware
from app.core.settings import settings
from app.integrations.dukascopy.client import DukascopyClient, DukascopyConfig
from app.utils.logger import configure_logging


def create_app(
    config: FeedConfig | None = None,
    fetcher: RateFetcher | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    configure_logging(settings.LOG_LEVEL)

    feed_config = config or FeedConfig.from_settings(settings)
    owned_client: DukascopyClient | None = None
    if fetcher is None:
        owned_client = DukascopyClient(DukascopyConfig.from_settings(settings))
        fetcher = owned_client

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        logger.info(
            "DAX feed ready: instrument={} price_type={} session={} auth={}",
            feed_config.instrument,
            feed_config.price_type,
            feed_config.session_label,
            "on" if feed_config.api_key else "off",
        )
        yield
        if owned_client is not None:
            owned_client.close()

    app = FastAPI(
        title="DAX Candle Feed",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.feed_config = feed_config
    app.state.feed_service = FeedService(feed_config, fetcher, clock=clock)

    # Last added runs first: CORS answers preflights before auth sees them.
    app.add_middleware(ApiKeyAuthMiddleware)
    app.add_middleware(AccessLogMiddleware)
    # Permissive by default; the workflow engine calls from its own cloud.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "env": settings.APP_ENV}

    return app


app = create_app()

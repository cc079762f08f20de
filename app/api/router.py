from __future__ import annotations

from fastapi import APIRouter

from app.api import dax

api_router = APIRouter(prefix="/api")
api_router.include_router(dax.router, tags=["dax"])

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class RawCandle:
    """One candle as handed back by a fetcher (oldest-first within a result)."""

    timestamp: int  # epoch milliseconds, UTC
    open: float
    high: float
    low: float
    close: float
    volume: float | None = None


@dataclass(frozen=True)
class RateRequest:
    instrument: str
    price_type: str
    timeframe: str
    date_from: datetime
    date_to: datetime
    retry_count: int = 3
    retry_pause_ms: int = 500


class Candle(BaseModel):
    timestamp: str = Field(..., description="ISO-8601 UTC, millisecond precision")
    date: str | None = Field(None, description="Trading day the candle was fetched for (batch mode only)")
    hour: int
    minute: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class RangeSummary(BaseModel):
    open: float
    high: float
    low: float
    close: float
    range: float


class DailySummary(BaseModel):
    date: str
    open: float
    high: float
    low: float
    close: float
    range: float
    n_candles: int


class BatchResponse(BaseModel):
    status: str = "ok"
    date: str
    days: int
    timeframe: str
    instrument: str
    price_type: str
    session: str
    n_candles: int
    n_trading_days: int
    summary: RangeSummary
    daily_summaries: list[DailySummary]
    candles: list[Candle]


class LiveResponse(BaseModel):
    status: str = "ok"
    mode: str = "live"
    candle: Candle
    n_candles: int
    fetched_at: str


class PingResponse(BaseModel):
    status: str = "ok"
    instrument: str
    timestamp: str

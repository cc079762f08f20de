from __future__ import annotations

import math
from typing import Sequence

from app.candles.calendar import from_epoch_ms, iso_utc
from app.candles.models import Candle, DailySummary, RangeSummary, RawCandle


def round_range(high: float, low: float) -> float:
    # Round half up to one decimal, applied to every range we report.
    return math.floor((high - low) * 10 + 0.5) / 10


def to_candle(raw: RawCandle, trading_date: str | None = None) -> Candle:
    ts = from_epoch_ms(raw.timestamp)
    return Candle(
        timestamp=iso_utc(ts),
        date=trading_date,
        hour=ts.hour,
        minute=ts.minute,
        open=raw.open,
        high=raw.high,
        low=raw.low,
        close=raw.close,
        volume=raw.volume or 0,
    )


def range_summary(candles: Sequence[Candle]) -> RangeSummary:
    if not candles:
        raise ValueError("range_summary needs at least one candle")
    high = max(c.high for c in candles)
    low = min(c.low for c in candles)
    return RangeSummary(
        open=candles[0].open,
        high=high,
        low=low,
        close=candles[-1].close,
        range=round_range(high, low),
    )


def daily_summary(day: str, candles: Sequence[Candle]) -> DailySummary:
    s = range_summary(candles)
    return DailySummary(date=day, n_candles=len(candles), **s.model_dump())

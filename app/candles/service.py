from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from loguru import logger

from app.candles.calendar import iso_utc, last_n_trading_days, parse_date, parse_days, session_window
from app.candles.fetcher import RateFetcher
from app.candles.models import BatchResponse, Candle, DailySummary, LiveResponse, PingResponse, RateRequest
from app.candles.summary import daily_summary, range_summary, to_candle
from app.core.config import LIVE_LOOKBACK_MINUTES, MAX_DAYS, VALID_TIMEFRAMES, FeedConfig
from app.utils.perf import perf_span


class FeedError(Exception):
    """Client-facing failure carrying its HTTP status and JSON payload."""

    status_code = 400

    def __init__(self, payload: dict[str, Any]) -> None:
        super().__init__(str(payload.get("error") or payload))
        self.payload = payload


class InvalidRequest(FeedError):
    pass


class FutureDate(FeedError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedService:
    def __init__(self, config: FeedConfig, fetcher: RateFetcher, *, clock: Callable[[], datetime] | None = None) -> None:
        self.config = config
        self.fetcher = fetcher
        self.clock = clock or _utcnow

    def _request(self, timeframe: str, start: datetime, end: datetime) -> RateRequest:
        return RateRequest(
            instrument=self.config.instrument,
            price_type=self.config.price_type,
            timeframe=timeframe,
            date_from=start,
            date_to=end,
            retry_count=self.config.retry_count,
            retry_pause_ms=self.config.retry_pause_ms,
        )

    def ping(self) -> PingResponse:
        return PingResponse(instrument=self.config.instrument, timestamp=iso_utc(self.clock()))

    def live(self) -> LiveResponse | dict[str, Any]:
        now = self.clock()
        start = now - timedelta(minutes=LIVE_LOOKBACK_MINUTES)

        with perf_span("feed.live.fetch", instrument=self.config.instrument):
            data = self.fetcher.fetch(self._request("m1", start, now)) or []

        if not data:
            logger.info("Live window empty for {} at {}", self.config.instrument, iso_utc(now))
            return {"status": "no_data", "message": "Market probably closed", "timestamp": iso_utc(now)}

        return LiveResponse(candle=to_candle(data[-1]), n_candles=len(data), fetched_at=iso_utc(now))

    def batch(self, date_str: str | None, tf: str | None = None, days_raw: str | None = None) -> BatchResponse | dict[str, Any]:
        anchor = parse_date(date_str)
        if anchor is None:
            raise InvalidRequest(
                {
                    "error": "date parameter required (format YYYY-MM-DD)",
                    "example": "/api/dax?date=2026-02-19",
                }
            )

        tf = tf or "m1"
        if tf not in VALID_TIMEFRAMES:
            raise InvalidRequest({"error": f"Invalid timeframe. Valid values: {', '.join(VALID_TIMEFRAMES)}"})

        days = parse_days(days_raw, cap=MAX_DAYS)
        trading_dates = last_n_trading_days(anchor, days)

        first_from, _ = session_window(anchor, self.config.session_start_h, self.config.session_end_h)
        if first_from > self.clock():
            raise FutureDate({"error": "Date is in the future", "date": date_str})

        all_candles: list[Candle] = []
        daily: list[DailySummary] = []
        for td in trading_dates:
            ds = td.isoformat()
            candles = self._fetch_day(td, tf)
            all_candles.extend(candles)
            if candles:
                daily.append(daily_summary(ds, candles))

        if not all_candles:
            logger.info("No candles for {} days={} tf={}", date_str, days, tf)
            return {
                "status": "no_data",
                "message": "No candles (holiday or weekend?)",
                "date": date_str,
                "days": days,
                "timeframe": tf,
            }

        return BatchResponse(
            date=str(date_str),
            days=days,
            timeframe=tf,
            instrument=self.config.instrument,
            price_type=self.config.price_type,
            session=self.config.session_label,
            n_candles=len(all_candles),
            n_trading_days=len(daily),
            summary=range_summary(all_candles),
            daily_summaries=daily,
            candles=all_candles,
        )

    def _fetch_day(self, td: date, tf: str) -> list[Candle]:
        ds = td.isoformat()
        start, end = session_window(td, self.config.session_start_h, self.config.session_end_h)
        with perf_span("feed.batch.fetch", instrument=self.config.instrument, date=ds, tf=tf):
            data = self.fetcher.fetch(self._request(tf, start, end)) or []
        return [to_candle(c, ds) for c in data]

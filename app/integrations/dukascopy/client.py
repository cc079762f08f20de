from __future__ import annotations

import lzma
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import httpx
import numpy as np
import pandas as pd
import yaml
from loguru import logger

from app.candles.models import RawCandle, RateRequest
from app.core.settings import Settings, settings as default_settings
from app.utils.perf import perf_span

_BUNDLED_INSTRUMENTS = Path(__file__).resolve().parents[2] / "config" / "instruments.yaml"

# bi5 records, big-endian. Candle prices come in O, C, L, H order.
CANDLE_DTYPE = np.dtype(
    [("t", ">u4"), ("open", ">i4"), ("close", ">i4"), ("low", ">i4"), ("high", ">i4"), ("volume", ">f4")]
)
TICK_DTYPE = np.dtype([("t", ">u4"), ("ask", ">i4"), ("bid", ">i4"), ("ask_volume", ">f4"), ("bid_volume", ">f4")])

TIMEFRAME_MINUTES = {"m1": 1, "m5": 5, "m15": 15, "m30": 30, "h1": 60}

_HOUR_MS = 3_600_000


class DukascopyError(RuntimeError):
    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


@dataclass(frozen=True)
class DukascopyConfig:
    base_url: str = "https://datafeed.dukascopy.com/datafeed"
    timeout_seconds: float = 30.0
    instruments_path: str = ""

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> "DukascopyConfig":
        s = s or default_settings
        return cls(
            base_url=str(s.DUKASCOPY_BASE_URL),
            timeout_seconds=float(s.DUKASCOPY_TIMEOUT_SECONDS),
            instruments_path=str(s.DUKASCOPY_INSTRUMENTS_PATH or ""),
        )


def load_decimal_factors(path: str | Path | None = None) -> tuple[dict[str, float], float]:
    p = Path(path) if path else _BUNDLED_INSTRUMENTS
    with open(p, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    default = float(cfg.get("default_decimal_factor", 1000))
    out: dict[str, float] = {}
    for code, meta in (cfg.get("instruments") or {}).items():
        out[str(code).lower()] = float((meta or {}).get("decimal_factor", default))
    return out, default


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _digits(factor: float) -> int:
    return max(0, len(str(int(factor))) - 1)


def decode_candles(blob: bytes, day_start_ms: int, factor: float) -> list[RawCandle]:
    """Decode a `*_candles_min_1.bi5` payload (already decompressed).

    Minutes without trades are published as flat zero-volume rows; they are dropped
    so a closed day decodes to an empty list.
    """
    if not blob:
        return []
    rows = np.frombuffer(blob, dtype=CANDLE_DTYPE, count=len(blob) // CANDLE_DTYPE.itemsize)
    rows = rows[rows["volume"] > 0]
    nd = _digits(factor)
    return [
        RawCandle(
            timestamp=day_start_ms + int(r["t"]) * 1000,
            open=round(int(r["open"]) / factor, nd),
            high=round(int(r["high"]) / factor, nd),
            low=round(int(r["low"]) / factor, nd),
            close=round(int(r["close"]) / factor, nd),
            volume=round(float(r["volume"]), 6),
        )
        for r in rows
    ]


def decode_ticks(blob: bytes, hour_start_ms: int, factor: float, price_type: str) -> list[tuple[int, float, float]]:
    """Decode a `{HH}h_ticks.bi5` payload into (ts_ms, price, volume) on one side."""
    if not blob:
        return []
    rows = np.frombuffer(blob, dtype=TICK_DTYPE, count=len(blob) // TICK_DTYPE.itemsize)
    side = "ask" if price_type == "ask" else "bid"
    nd = _digits(factor)
    return [
        (hour_start_ms + int(r["t"]), round(int(r[side]) / factor, nd), float(r[f"{side}_volume"]))
        for r in rows
    ]


_EPOCH = pd.Timestamp(0, tz="UTC")


def _frame(timestamps: list[int], **columns: list[float]) -> pd.DataFrame:
    df = pd.DataFrame(columns, index=pd.to_datetime(timestamps, unit="ms", utc=True))
    return df.sort_index(kind="stable")


def _to_candles(df: pd.DataFrame) -> list[RawCandle]:
    df = df.dropna(subset=["open"])
    stamps = (df.index - _EPOCH) // pd.Timedelta(milliseconds=1)
    return [
        RawCandle(
            timestamp=int(ts),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=round(float(row.volume), 6),
        )
        for ts, row in zip(stamps, df.itertuples(index=False))
    ]


def ticks_to_minutes(ticks: list[tuple[int, float, float]]) -> list[RawCandle]:
    """Bucket (ts_ms, price, volume) ticks into one-minute OHLC candles."""
    if not ticks:
        return []
    ts, price, vol = zip(*ticks)
    df = _frame(list(ts), price=list(price), volume=list(vol))
    m1 = df.resample("1min", label="left", closed="left").agg(
        open=("price", "first"),
        high=("price", "max"),
        low=("price", "min"),
        close=("price", "last"),
        volume=("volume", "sum"),
    )
    return _to_candles(m1)


def resample(candles: list[RawCandle], minutes: int) -> list[RawCandle]:
    """Aggregate one-minute candles into left-labelled `minutes` wide buckets."""
    if minutes <= 1 or not candles:
        return list(candles)

    df = _frame(
        [c.timestamp for c in candles],
        open=[c.open for c in candles],
        high=[c.high for c in candles],
        low=[c.low for c in candles],
        close=[c.close for c in candles],
        volume=[c.volume or 0.0 for c in candles],
    )
    out = df.resample(f"{minutes}min", label="left", closed="left").agg(
        open=("open", "first"),
        high=("high", "max"),
        low=("low", "min"),
        close=("close", "last"),
        volume=("volume", "sum"),
    )
    return _to_candles(out)


class DukascopyClient:
    """RateFetcher backed by the public Dukascopy datafeed.

    Completed UTC days come from the daily one-minute candle file. The current
    UTC day is not published as candles yet, so it is built from hourly tick
    files instead.
    """

    def __init__(
        self,
        cfg: DukascopyConfig | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cfg = cfg or DukascopyConfig()
        self._factors, self._default_factor = load_decimal_factors(self.cfg.instruments_path or None)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._client = httpx.Client(
            timeout=httpx.Timeout(self.cfg.timeout_seconds),
            headers={"Accept": "application/octet-stream"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def decimal_factor(self, instrument: str) -> float:
        return self._factors.get(instrument.lower(), self._default_factor)

    def _day_path(self, instrument: str, d: date) -> str:
        # Months are zero-based in the datafeed layout.
        return f"{instrument.upper()}/{d.year:04d}/{d.month - 1:02d}/{d.day:02d}"

    def day_candles_url(self, instrument: str, d: date, price_type: str) -> str:
        side = "ASK" if price_type == "ask" else "BID"
        return f"{self.cfg.base_url.rstrip('/')}/{self._day_path(instrument, d)}/{side}_candles_min_1.bi5"

    def hour_ticks_url(self, instrument: str, d: date, hour: int) -> str:
        return f"{self.cfg.base_url.rstrip('/')}/{self._day_path(instrument, d)}/{hour:02d}h_ticks.bi5"

    def _download(self, url: str, retry_count: int, retry_pause_ms: int) -> bytes:
        """Fetch and decompress one bi5 file; b"" when the file does not exist."""
        attempts = 1 + max(0, int(retry_count))
        last_err: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                r = self._client.get(url)
                if r.status_code == 404:
                    return b""
                # Retry on transient server errors / rate limit.
                if r.status_code in (429, 500, 502, 503, 504):
                    raise DukascopyError(f"Dukascopy HTTP {r.status_code} for {url}", retryable=True)
                if r.status_code >= 400:
                    raise DukascopyError(f"Dukascopy HTTP {r.status_code} for {url}: {r.text[:200]}")
                if not r.content:
                    return b""
                try:
                    return lzma.decompress(r.content)
                except lzma.LZMAError as e:
                    raise DukascopyError(f"Corrupt bi5 payload from {url}: {e}") from e
            except (httpx.TimeoutException, httpx.NetworkError, DukascopyError) as e:
                if isinstance(e, DukascopyError) and not e.retryable:
                    raise
                last_err = e
                if attempt >= attempts:
                    break
                logger.warning("Dukascopy fetch failed (attempt {}/{}): {}", attempt, attempts, e)
                self._sleep(max(0, retry_pause_ms) / 1000.0)

        raise DukascopyError(str(last_err) if last_err is not None else f"Dukascopy request failed: {url}")

    def _minutes_for_day(self, req: RateRequest, d: date, start_ms: int, end_ms: int, today: date) -> list[RawCandle]:
        factor = self.decimal_factor(req.instrument)
        day_start_ms = _epoch_ms(datetime(d.year, d.month, d.day, tzinfo=timezone.utc))

        if d < today:
            url = self.day_candles_url(req.instrument, d, req.price_type)
            blob = self._download(url, req.retry_count, req.retry_pause_ms)
            return decode_candles(blob, day_start_ms, factor)

        ticks: list[tuple[int, float, float]] = []
        first_hour = max(0, (start_ms - day_start_ms) // _HOUR_MS)
        last_hour = min(23, (end_ms - 1 - day_start_ms) // _HOUR_MS)
        for hour in range(int(first_hour), int(last_hour) + 1):
            url = self.hour_ticks_url(req.instrument, d, hour)
            blob = self._download(url, req.retry_count, req.retry_pause_ms)
            ticks.extend(decode_ticks(blob, day_start_ms + hour * _HOUR_MS, factor, req.price_type))
        return ticks_to_minutes(ticks)

    def fetch(self, request: RateRequest) -> list[RawCandle]:
        minutes = TIMEFRAME_MINUTES.get(request.timeframe)
        if minutes is None:
            raise DukascopyError(f"Unsupported timeframe: {request.timeframe}")

        start_ms = _epoch_ms(request.date_from)
        end_ms = _epoch_ms(request.date_to)
        if end_ms <= start_ms:
            return []

        today = self._clock().astimezone(timezone.utc).date()
        first_day = request.date_from.astimezone(timezone.utc).date()
        last_day = (request.date_to - timedelta(milliseconds=1)).astimezone(timezone.utc).date()

        minute_candles: list[RawCandle] = []
        with perf_span(
            "dukascopy.fetch",
            instrument=request.instrument,
            timeframe=request.timeframe,
            start=start_ms,
            end=end_ms,
        ):
            d = first_day
            while d <= last_day:
                for c in self._minutes_for_day(request, d, start_ms, end_ms, today):
                    if start_ms <= c.timestamp < end_ms:
                        minute_candles.append(c)
                d += timedelta(days=1)

        return resample(minute_candles, minutes)

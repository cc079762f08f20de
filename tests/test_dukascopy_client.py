from __future__ import annotations

import lzma
from datetime import datetime, timezone

import httpx
import numpy as np
import pytest

from app.candles.models import RateRequest, RawCandle
from app.integrations.dukascopy.client import (
    CANDLE_DTYPE,
    TICK_DTYPE,
    DukascopyClient,
    DukascopyConfig,
    DukascopyError,
    resample,
    ticks_to_minutes,
)

DAY_PATH = "/datafeed/DEUIDXEUR/2026/01/19/BID_candles_min_1.bi5"
TICK_PATH = "/datafeed/DEUIDXEUR/2026/01/19/10h_ticks.bi5"


def _bi5(records, dtype) -> bytes:
    return lzma.compress(np.array(records, dtype=dtype).tobytes(), format=lzma.FORMAT_ALONE)


def _day_file() -> bytes:
    rows = []
    # 07:59 .. 16:00 inclusive; the first and last fall outside the session.
    for minute in range(7 * 60 + 59, 16 * 60 + 1):
        p = 22_000_000 + (minute - 480) * 500
        rows.append((minute * 60, p, p + 250, p - 1_000, p + 2_000, 1.5))
    return _bi5(rows, CANDLE_DTYPE)


def _tick_file() -> bytes:
    rows = [
        (21 * 60_000 + 1_000, 22_000_500, 22_000_000, 1.0, 1.5),
        (21 * 60_000 + 30_000, 22_002_500, 22_002_000, 1.0, 0.5),
        (22 * 60_000 + 5_000, 21_999_500, 21_999_000, 2.0, 1.0),
    ]
    return _bi5(rows, TICK_DTYPE)


class Upstream:
    def __init__(self, files: dict[str, bytes], failures: int = 0, status: int = 503) -> None:
        self.files = files
        self.failures = failures
        self.status = status
        self.paths: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        if self.failures > 0:
            self.failures -= 1
            return httpx.Response(self.status)
        blob = self.files.get(request.url.path)
        if blob is None:
            return httpx.Response(404)
        return httpx.Response(200, content=blob)


def _client(upstream: Upstream, now: datetime, sleeps: list | None = None) -> DukascopyClient:
    sleeps = sleeps if sleeps is not None else []
    return DukascopyClient(
        DukascopyConfig(base_url="https://datafeed.test/datafeed"),
        transport=httpx.MockTransport(upstream),
        clock=lambda: now,
        sleep=sleeps.append,
    )


def _req(tf: str, start: datetime, end: datetime, **kw) -> RateRequest:
    return RateRequest(instrument="deuidxeur", price_type="bid", timeframe=tf, date_from=start, date_to=end, **kw)


SESSION = (datetime(2026, 2, 19, 8, tzinfo=timezone.utc), datetime(2026, 2, 19, 16, tzinfo=timezone.utc))
LATER = datetime(2026, 2, 20, 9, tzinfo=timezone.utc)


def test_completed_day_reads_daily_candle_file():
    upstream = Upstream({DAY_PATH: _day_file()})
    client = _client(upstream, LATER)
    candles = client.fetch(_req("m1", *SESSION))
    client.close()

    assert upstream.paths == [DAY_PATH]
    assert len(candles) == 480
    first = candles[0]
    assert first.timestamp == int(SESSION[0].timestamp() * 1000)
    assert first.open == pytest.approx(22000.0)
    assert first.close == pytest.approx(22000.25)
    assert first.low == pytest.approx(21999.0)
    assert first.high == pytest.approx(22002.0)
    assert first.volume == pytest.approx(1.5)
    assert candles[-1].timestamp == int(datetime(2026, 2, 19, 15, 59, tzinfo=timezone.utc).timestamp() * 1000)


def test_wider_timeframes_are_resampled():
    client = _client(Upstream({DAY_PATH: _day_file()}), LATER)
    m5 = client.fetch(_req("m5", *SESSION))
    h1 = client.fetch(_req("h1", *SESSION))
    client.close()

    assert len(m5) == 96
    assert m5[1].timestamp - m5[0].timestamp == 5 * 60_000
    assert m5[0].open == pytest.approx(22000.0)
    assert m5[0].close == pytest.approx(22002.25)
    assert m5[0].volume == pytest.approx(7.5)

    assert len(h1) == 8
    assert h1[0].high == pytest.approx(22000.0 + 59 * 0.5 + 2.0)
    assert h1[0].low == pytest.approx(21999.0)


def test_current_day_is_built_from_ticks():
    now = datetime(2026, 2, 19, 10, 31, tzinfo=timezone.utc)
    upstream = Upstream({TICK_PATH: _tick_file()})
    client = _client(upstream, now)
    candles = client.fetch(_req("m1", datetime(2026, 2, 19, 10, 21, tzinfo=timezone.utc), now))
    client.close()

    assert upstream.paths == [TICK_PATH]
    assert len(candles) == 2
    a, b = candles
    assert a.timestamp == int(datetime(2026, 2, 19, 10, 21, tzinfo=timezone.utc).timestamp() * 1000)
    assert (a.open, a.high, a.low, a.close) == pytest.approx((22000.0, 22002.0, 22000.0, 22002.0))
    assert a.volume == pytest.approx(2.0)
    assert (b.open, b.close) == pytest.approx((21999.0, 21999.0))


def test_ask_side_reads_ask_prices():
    now = datetime(2026, 2, 19, 10, 31, tzinfo=timezone.utc)
    client = _client(Upstream({TICK_PATH: _tick_file()}), now)
    req = RateRequest(
        instrument="deuidxeur",
        price_type="ask",
        timeframe="m1",
        date_from=datetime(2026, 2, 19, 10, 21, tzinfo=timezone.utc),
        date_to=now,
    )
    candles = client.fetch(req)
    client.close()
    assert candles[0].open == pytest.approx(22000.5)
    assert candles[0].volume == pytest.approx(2.0)


def test_missing_file_means_no_data():
    client = _client(Upstream({}), LATER)
    assert client.fetch(_req("m1", *SESSION)) == []
    client.close()


def test_transient_errors_are_retried():
    sleeps: list[float] = []
    upstream = Upstream({DAY_PATH: _day_file()}, failures=2)
    client = _client(upstream, LATER, sleeps)
    candles = client.fetch(_req("m1", *SESSION, retry_count=3, retry_pause_ms=500))
    client.close()

    assert len(candles) == 480
    assert len(upstream.paths) == 3
    assert sleeps == [0.5, 0.5]


def test_retries_exhausted_raises():
    sleeps: list[float] = []
    upstream = Upstream({DAY_PATH: _day_file()}, failures=10)
    client = _client(upstream, LATER, sleeps)
    with pytest.raises(DukascopyError, match="503"):
        client.fetch(_req("m1", *SESSION, retry_count=2, retry_pause_ms=100))
    client.close()

    assert len(upstream.paths) == 3
    assert sleeps == [0.1, 0.1]


def test_client_errors_are_not_retried():
    upstream = Upstream({}, failures=10, status=403)
    client = _client(upstream, LATER)
    with pytest.raises(DukascopyError, match="403"):
        client.fetch(_req("m1", *SESSION, retry_count=3))
    client.close()
    assert len(upstream.paths) == 1


def test_unknown_instrument_uses_default_decimal_factor():
    client = _client(Upstream({}), LATER)
    assert client.decimal_factor("deuidxeur") == 1000
    assert client.decimal_factor("EURUSD") == 100000
    assert client.decimal_factor("nosuchthing") == 1000
    client.close()


def test_resample_leaves_m1_untouched():
    client = _client(Upstream({DAY_PATH: _day_file()}), LATER)
    m1 = client.fetch(_req("m1", *SESSION))
    client.close()
    assert resample(m1, 1) == m1
    assert resample([], 5) == []


def _flat_day_file() -> bytes:
    # Closed market: every minute of the day is published flat with no volume.
    p = 22_000_000
    return _bi5([(minute * 60, p, p, p, p, 0.0) for minute in range(1440)], CANDLE_DTYPE)


def test_flat_day_yields_no_candles():
    client = _client(Upstream({DAY_PATH: _flat_day_file()}), LATER)
    assert client.fetch(_req("m1", *SESSION)) == []
    assert client.fetch(_req("h1", *SESSION)) == []
    client.close()


def test_flat_minutes_are_dropped_from_a_trading_day():
    rows = []
    for minute in range(8 * 60, 8 * 60 + 10):
        volume = 0.0 if minute % 2 else 2.0
        rows.append((minute * 60, 22_000_000, 22_000_000, 21_999_000, 22_001_000, volume))
    client = _client(Upstream({DAY_PATH: _bi5(rows, CANDLE_DTYPE)}), LATER)
    m1 = client.fetch(_req("m1", *SESSION))
    m5 = client.fetch(_req("m5", *SESSION))
    client.close()

    assert len(m1) == 5
    assert all(c.volume == pytest.approx(2.0) for c in m1)
    assert [c.volume for c in m5] == pytest.approx([6.0, 4.0])


def test_holiday_batch_reports_no_data(make_client):
    fetcher = _client(Upstream({DAY_PATH: _flat_day_file()}), LATER)
    client = make_client(fetcher)
    r = client.get("/api/dax", params={"date": "2026-02-19"})
    fetcher.close()

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "no_data"
    assert "candles" not in body


def test_resample_skips_empty_buckets():
    t0 = int(SESSION[0].timestamp() * 1000)
    m1 = [
        RawCandle(timestamp=t0, open=1.0, high=2.0, low=0.5, close=1.5, volume=1.0),
        RawCandle(timestamp=t0 + 60_000, open=1.5, high=3.0, low=1.0, close=2.5, volume=2.0),
        RawCandle(timestamp=t0 + 20 * 60_000, open=4.0, high=4.5, low=3.5, close=4.25, volume=None),
    ]
    m5 = resample(m1, 5)

    assert [c.timestamp for c in m5] == [t0, t0 + 20 * 60_000]
    first = m5[0]
    assert (first.open, first.high, first.low, first.close, first.volume) == (1.0, 3.0, 0.5, 2.5, 3.0)
    assert m5[1].volume == 0.0


def test_ticks_bucket_into_minutes_in_arrival_order():
    t0 = int(SESSION[0].timestamp() * 1000)
    ticks = [(t0 + 1_000, 10.0, 1.0), (t0 + 2_000, 12.0, 1.0), (t0 + 59_999, 9.0, 0.5), (t0 + 60_000, 11.0, 0.25)]
    a, b = ticks_to_minutes(ticks)

    assert (a.timestamp, a.open, a.high, a.low, a.close, a.volume) == (t0, 10.0, 12.0, 9.0, 9.0, 2.5)
    assert (b.timestamp, b.open, b.close, b.volume) == (t0 + 60_000, 11.0, 11.0, 0.25)
    assert ticks_to_minutes([]) == []

from __future__ import annotations

from typing import Protocol

from app.candles.models import RawCandle, RateRequest


class RateFetcher(Protocol):
    """Upstream candle source.

    Returns oldest-first candles for the requested window and timeframe, or an
    empty list / None when nothing traded. Transport and upstream failures are
    raised; retries are the fetcher's own business.
    """

    def fetch(self, request: RateRequest) -> list[RawCandle] | None: ...

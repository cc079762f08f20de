from __future__ import annotations

from dataclasses import dataclass

from app.core.settings import Settings, settings as default_settings

VALID_TIMEFRAMES: tuple[str, ...] = ("m1", "m5", "m15", "m30", "h1")
MAX_DAYS = 15
LIVE_LOOKBACK_MINUTES = 10


@dataclass(frozen=True)
class FeedConfig:
    instrument: str = "deuidxeur"
    price_type: str = "bid"
    session_start_h: int = 8
    session_end_h: int = 16
    api_key: str = ""
    retry_count: int = 3
    retry_pause_ms: int = 500

    @property
    def session_label(self) -> str:
        return f"{self.session_start_h}:00-{self.session_end_h}:00 UTC"

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> "FeedConfig":
        s = s or default_settings
        price_type = str(s.DAX_PRICE_TYPE or "bid").strip().lower()
        if price_type not in ("bid", "ask"):
            raise ValueError(f"DAX_PRICE_TYPE must be bid or ask, got {s.DAX_PRICE_TYPE!r}")

        start_h = int(s.DAX_SESSION_START_H)
        end_h = int(s.DAX_SESSION_END_H)
        if not (0 <= start_h < end_h <= 24):
            raise ValueError(f"Invalid session hours: {start_h}-{end_h}")

        return cls(
            instrument=str(s.DAX_INSTRUMENT).strip().lower(),
            price_type=price_type,
            session_start_h=start_h,
            session_end_h=end_h,
            api_key=s.DAX_API_KEY or "",
            retry_count=max(0, int(s.FETCH_RETRY_COUNT)),
            retry_pause_ms=max(0, int(s.FETCH_RETRY_PAUSE_MS)),
        )

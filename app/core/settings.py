from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Performance logging (console)
    # Logs request durations in ms. Useful for spotting slow multi-day batches.
    PERF_LOG_ENABLED: bool = True
    # Log slow operations at WARNING when >= this threshold.
    PERF_LOG_SLOW_MS: int = 250
    # Internal (non-request) spans: upstream fetches.
    PERF_LOG_INNER_ENABLED: bool = True
    # If true, logs all internal spans (can be noisy). If false, logs only slow spans.
    PERF_LOG_INNER_ALWAYS: bool = False

    # CORS
    CORS_ALLOW_ORIGINS: list[str] = ["*"]

    # API security
    # Shared secret compared verbatim against `x-api-key` or `?key=`.
    # Leave empty to run the endpoint open.
    DAX_API_KEY: str = ""

    # Instrument
    DAX_INSTRUMENT: str = "deuidxeur"  # DAX40 CFD on Dukascopy
    DAX_PRICE_TYPE: str = "bid"  # bid|ask
    # Session window in UTC hours: 08:00 UTC = 09:00 CET (winter).
    DAX_SESSION_START_H: int = 8
    DAX_SESSION_END_H: int = 16

    # Upstream fetch tuning (passed through to the fetcher)
    FETCH_RETRY_COUNT: int = 3
    FETCH_RETRY_PAUSE_MS: int = 500

    # Dukascopy datafeed
    DUKASCOPY_BASE_URL: str = "https://datafeed.dukascopy.com/datafeed"
    DUKASCOPY_TIMEOUT_SECONDS: float = 30.0
    # Empty: use the bundled app/config/instruments.yaml.
    DUKASCOPY_INSTRUMENTS_PATH: str = ""


settings = Settings()

import os
import sys
from datetime import datetime

import pytest

# Ensure repository root is on sys.path so `import app` works when running pytest.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from app.core.config import FeedConfig  # noqa: E402
from tests.fakes import FIXED_NOW, FakeFetcher  # noqa: E402


@pytest.fixture
def feed_config() -> FeedConfig:
    return FeedConfig(instrument="deuidxeur", price_type="bid", session_start_h=8, session_end_h=16, api_key="")


@pytest.fixture
def make_client(feed_config):
    """Build a TestClient around a fake fetcher and a pinned clock.

    Defaults: open auth, empty upstream, now = 2026-02-19 18:30 UTC.
    """

    from fastapi.testclient import TestClient

    from app.main import create_app

    def _make(fetcher=None, *, config: FeedConfig | None = None, now: datetime = FIXED_NOW) -> TestClient:
        app = create_app(config or feed_config, fetcher or FakeFetcher(), clock=lambda: now)
        return TestClient(app)

    return _make

# writeclub/conftest.py
import sys
import pytest
from pathlib import Path

# Add repository root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

TEST_ADMIN_KEY = "test-admin-key"
TEST_CRON_TOKEN = "test-cron-token"
TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


@pytest.fixture(scope="function", autouse=True)
def test_settings(monkeypatch):
    """
    Pin settings every test relies on.

    Secrets are fixed test values, the trusted time source is off, and the
    schedule/entry rules are the production defaults.
    """
    from writeclub.core.config import settings

    overrides = {
        "ENV": "test",
        "ADMIN_KEY": TEST_ADMIN_KEY,
        "CRON_SECRET_TOKEN": TEST_CRON_TOKEN,
        "AUTH_JWT_SECRET": TEST_JWT_SECRET,
        "AUTH_JWT_ALGORITHM": "HS256",
        "ALLOW_USER_ID_HEADER": True,
        "TRUSTED_TIME_ENABLED": False,
        "COMPETITION_TIMEZONE": "UTC",
        "SUBMISSION_PHASE_DAYS": 25,
        "JUDGING_PHASE_DAYS": 5,
        "RESULTS_PHASE_DAYS": 1,
        "MIN_WORD_COUNT": 350,
        "MAX_WORD_COUNT": 2000,
        "MAX_ENTRIES_PER_MONTH": 3,
        "ASSESSMENT_ENGINE_URL": None,
    }
    for key, value in overrides.items():
        monkeypatch.setattr(settings, key, value)
    yield settings


@pytest.fixture(scope="function", autouse=True)
def sqlite_db(tmp_path):
    """
    Fresh file-backed SQLite database per test.

    File-backed (not :memory:) so threads in concurrency tests share one database.
    """
    from writeclub.core.database import init_engine, create_all_tables, get_engine

    url = f"sqlite+pysqlite:///{tmp_path / 'writeclub_test.db'}"
    init_engine(url)
    create_all_tables()
    yield url
    get_engine().dispose()


@pytest.fixture
def make_user():
    from writeclub.features.users.service import get_or_create_user

    def _make(user_id: str, tier: str = "free"):
        return get_or_create_user(user_id, tier=tier)

    return _make


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from writeclub.main import app

    return TestClient(app)


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": TEST_ADMIN_KEY}


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {TEST_CRON_TOKEN}"}


class FrozenClock:
    """Mutable trusted-clock stand-in; set .now to move time."""

    def __init__(self, now):
        self.now = now
        self.degraded = False

    def reading(self, *args, **kwargs):
        from writeclub.core.clock import ClockReading

        return ClockReading(now=self.now, source="frozen", degraded=self.degraded)


@pytest.fixture
def frozen_clock(monkeypatch):
    """Pin the trusted clock (and everything that reads it) to 2025-03-10 12:00 UTC."""
    from datetime import datetime, timezone
    import writeclub.core.clock as clock_module
    import writeclub.api.cron as cron_api

    clock = FrozenClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))
    monkeypatch.setattr(clock_module, "get_trusted_now", clock.reading)
    monkeypatch.setattr(cron_api, "get_trusted_now", clock.reading)
    return clock

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Keep test runs away from the real data directory
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="venue-import-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(_TEST_DATA_DIR) / 'test.db'}")
os.environ.setdefault("VERIFICATION_CACHE_PATH", str(Path(_TEST_DATA_DIR) / "cache.sqlite"))
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from db import Base  # noqa: E402
from repositories import models  # noqa: E402,F401  Ensures models are registered
from services.rate_limiter import TokenBucket  # noqa: E402
from services.verification_cache import VerificationCache  # noqa: E402


class DummyResponse:
    def __init__(self, json_data=None, status_code=200, text=""):
        self._json = json_data
        self.status_code = status_code
        self.text = text

    def raise_for_status(self):
        import requests

        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


@pytest.fixture
def session_factory():
    """sessionmaker bound to a fresh in-memory database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def cache(tmp_path):
    c = VerificationCache(str(tmp_path / "verification_cache.sqlite"))
    yield c
    c.close()


@pytest.fixture
def fast_limiter():
    return TokenBucket(capacity=1000, refill_amount=1000, refill_interval=1.0)

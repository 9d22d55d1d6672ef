"""
Pytest configuration for backend tests.

This file configures pytest for the backend test suite: import path,
environment, markers and the shared database/store fixtures.
"""

import os
import sys
from pathlib import Path

# Keep the test run away from the real database and mappings
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["FOLDER_MAPPINGS"] = ""
os.environ.setdefault("TMDB_API_KEY", "")
os.environ.setdefault("PLEX_URL", "")
os.environ.setdefault("PLEX_TOKEN", "")

# Add backend directory to Python path for imports
backend_root = Path(__file__).parent.parent
sys.path.insert(0, str(backend_root))

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from linkarr.models.base import Base  # noqa: E402
from linkarr.services import rate_limiter  # noqa: E402
from linkarr.services.tracking_store import TrackingStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Fresh token buckets for every test (each test runs its own event loop)."""
    rate_limiter._rate_limiter = None
    yield
    rate_limiter._rate_limiter = None


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a throwaway SQLite file with all tables created."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'linkarr-test.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    """Tracking store on the test database, detection version 1."""
    return TrackingStore(session_factory=session_factory, detection_version=1)

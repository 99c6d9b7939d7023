"""
Test fixtures for the AppFolio sync pipeline.
"""
import os

TEST_ENCRYPTION_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="

# Settings are read at import time; keep tests off Postgres and on a fixed Fernet key
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)

import asyncio
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pmpulse.core.config import FeatureFlags, Settings
from pmpulse.core.database import Base
from pmpulse.core.retry import SlidingWindowRateLimiter
from pmpulse.core.security import encrypt_secret
from pmpulse.models.appfolio_connection import AppfolioConnection
from pmpulse.services.appfolio_client import ApiPage
from pmpulse.services.sync_run_service import ResourceRunTracker, SyncRunRepository


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


# Database fixtures
@pytest.fixture
def test_db_engine():
    """
    In-memory SQLite engine, one per test.

    pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(test_db_engine):
    """Create database session for each test"""
    SessionLocal = sessionmaker(
        bind=test_db_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()

    yield session

    session.rollback()
    session.close()


# Settings fixtures
@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
        SYNC_BATCH_SIZE=100,
        SYNC_TIMEOUT_SECONDS=600,
        INCREMENTAL_LOOKBACK_DAYS=7,
        FULL_SYNC_LOOKBACK_DAYS=365,
        ALERT_FAILURE_THRESHOLD=3,
        ALERT_COOLDOWN_MINUTES=60,
        ALERT_RECIPIENTS="ops@example.com",
        SMTP_HOST=None,
    )


@pytest.fixture
def feature_flags():
    return FeatureFlags(incremental_sync=True, notifications=True, analytics_refresh=True, auto_geocoding=False)


@pytest.fixture
def connection(db_session):
    """A configured AppFolio connection"""
    conn = AppfolioConnection(
        name="Acme Properties",
        database="acme",
        client_id="client-123",
        client_secret_encrypted=encrypt_secret("s3cret"),
        status="connected",
    )
    db_session.add(conn)
    db_session.commit()
    return conn


@pytest.fixture
def repository(db_session):
    return SyncRunRepository(db_session)


@pytest.fixture
def make_tracker(db_session, repository):
    """Factory for a ResourceRunTracker bound to a fresh running sync run"""

    def _make(resource_type: str = "properties", mode: str = "full"):
        run = repository.create(mode=mode)
        resource = repository.add_resource(run, resource_type)
        return ResourceRunTracker(run, resource, repository)

    return _make


# API fakes
class FakeAppfolioClient:
    """
    Scripted stand-in for AppfolioClient.

    `pages` maps a resource type to the list of record pages it returns; an exception
    instance in that list is raised when its page is requested.
    """

    def __init__(self, pages: Dict[str, List[Any]], rate_limiter: Optional[SlidingWindowRateLimiter] = None):
        self.pages = pages
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(max_requests=1000, window_seconds=60.0)
        self.calls: List[Dict[str, Any]] = []

    async def fetch_page(self, resource_type, params=None, page_url=None):
        self.calls.append({"resource_type": resource_type, "params": dict(params or {}), "page_url": page_url})
        await self.rate_limiter.acquire()
        script = self.pages.get(resource_type, [[]])
        index = int(page_url.rsplit("=", 1)[1]) if page_url else 0
        page = script[index]
        if isinstance(page, BaseException):
            raise page
        next_url = f"/api/v2/reports/{resource_type}.json?page={index + 1}" if index + 1 < len(script) else None
        return ApiPage(records=page, next_page_url=next_url, page_url=page_url or f"/{resource_type}")


@pytest.fixture
def fake_client_factory():
    return FakeAppfolioClient


@pytest.fixture
def mock_notifier():
    notifier = Mock()
    notifier.send_sync_failure_alert.return_value = {"success": True}
    return notifier


class FakeSleep:
    """Records requested delays instead of sleeping"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fake_sleep():
    return FakeSleep()

"""Shared test fixtures"""

import os

os.environ.setdefault("TESTING", "1")

from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import ephemail.models  # noqa: F401  registers tables on Base
from ephemail.config import create_test_config
from ephemail.database import Base
from ephemail.errors import StorageUnavailable
from ephemail.service import TempMailService
from ephemail.storage import GmailAccountRow, SqlStorage


class FakeClock:
    """Manually advanced clock returning aware UTC datetimes"""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeStorage:
    """In-memory stand-in for SqlStorage that can be switched to failing"""

    def __init__(self):
        self.public_domains = ["tempmail.example.com", "mail.example.org"]
        self.owner_domains = {}
        self.usage_rows = Counter()
        self.domain_usage = {}
        self.domain_deltas = []
        self.gmail_accounts = [GmailAccountRow(id="acc-1", email="parent.inbox@gmail.com")]
        self.bumps = []
        self.stats = []
        self.fail = False
        self.failing = set()
        self.calls = Counter()

    def _check(self, name):
        self.calls[name] += 1
        if self.fail or name in self.failing:
            raise StorageUnavailable("database down")

    def ping(self):
        return not self.fail

    def query_public_domains(self):
        self._check("query_public_domains")
        return list(self.public_domains)

    def query_owner_verified_domains(self, owner_id):
        self._check("query_owner_verified_domains")
        return list(self.owner_domains.get(owner_id, []))

    def upsert_usage_snapshots(self, deltas):
        self._check("upsert_usage_snapshots")
        deltas = list(deltas)
        for delta in deltas:
            for tier, count in delta.counts.items():
                self.usage_rows[(delta.owner_id, delta.day, tier)] += count
        return len(deltas)

    def load_custom_domain_usage(self, owner_id, domain):
        self._check("load_custom_domain_usage")
        return self.domain_usage.get((owner_id, domain))

    def apply_domain_usage_deltas(self, deltas):
        self._check("apply_domain_usage_deltas")
        deltas = list(deltas)
        self.domain_deltas.extend(deltas)
        return len(deltas)

    def pick_gmail_account(self):
        self._check("pick_gmail_account")
        return self.gmail_accounts[0] if self.gmail_accounts else None

    def bump_gmail_account(self, account_id):
        self._check("bump_gmail_account")
        self.bumps.append(account_id)

    def record_domain_stats(self, **stats):
        self._check("record_domain_stats")
        self.stats.append(stats)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def settings():
    return create_test_config()


@pytest.fixture
def service(settings, storage, clock):
    """Service with background loops not started"""
    svc = TempMailService(settings, storage, clock=clock)
    yield svc
    svc.scheduler.stop()
    svc.notifier.shutdown()


@pytest.fixture
def store(service):
    return service.store


# ============================================================================
# Database fixtures
# ============================================================================

@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database with all tables"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def sql_storage(session_factory):
    return SqlStorage(session_factory)


# ============================================================================
# HTTP client
# ============================================================================

@pytest.fixture
def client(service):
    from fastapi.testclient import TestClient

    from ephemail.dependencies import get_service
    from ephemail.main import app

    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

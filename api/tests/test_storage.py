"""Tests for SQL storage against SQLite"""

from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ephemail.errors import StorageUnavailable
from ephemail.models import ApiUsageDaily, CustomDomain, Domain, DomainCacheStats, GmailAccount
from ephemail.storage import DomainUsageDelta, SqlStorage, UsageDelta

TODAY = date(2026, 3, 10)


class TestDomainQueries:
    """Test domain lookups"""

    def test_public_domains(self, sql_storage, db_session):
        db_session.add_all([Domain(domain="Mail.Example.org"), Domain(domain="tempmail.example.com")])
        db_session.commit()

        assert sql_storage.query_public_domains() == ["mail.example.org", "tempmail.example.com"]

    def test_owner_verified_domains_only(self, sql_storage, db_session):
        db_session.add_all([
            CustomDomain(owner_id="owner-a", domain="verified.dev", status="verified"),
            CustomDomain(owner_id="owner-a", domain="pending.dev", status="pending"),
            CustomDomain(owner_id="owner-b", domain="other.dev", status="verified"),
        ])
        db_session.commit()

        assert sql_storage.query_owner_verified_domains("owner-a") == ["verified.dev"]
        assert sql_storage.query_owner_verified_domains("owner-c") == []


class TestUsageSnapshots:
    """Test additive daily usage writes"""

    def test_insert_then_add(self, sql_storage, db_session):
        delta = UsageDelta(owner_id="owner-1", day=TODAY, counts={"10min": 3, "1hour": 0}, last_entity_id="e-1")

        assert sql_storage.upsert_usage_snapshots([delta]) == 1
        sql_storage.upsert_usage_snapshots([
            UsageDelta(owner_id="owner-1", day=TODAY, counts={"10min": 2}, last_entity_id="e-2"),
        ])

        rows = db_session.query(ApiUsageDaily).all()
        assert len(rows) == 1
        assert rows[0].tier == "10min"
        assert rows[0].count == 5
        assert rows[0].last_entity_id == "e-2"

    def test_days_are_separate_rows(self, sql_storage, db_session):
        sql_storage.upsert_usage_snapshots([
            UsageDelta(owner_id="owner-1", day=TODAY - timedelta(days=1), counts={"10min": 3}),
            UsageDelta(owner_id="owner-1", day=TODAY, counts={"10min": 1}),
        ])

        counts = {row.date: row.count for row in db_session.query(ApiUsageDaily).all()}
        assert counts == {TODAY - timedelta(days=1): 3, TODAY: 1}

    def test_single_snapshot(self, sql_storage, db_session):
        sql_storage.upsert_usage_snapshot("owner-1", TODAY, {"1day": 1})
        assert db_session.query(ApiUsageDaily).one().count == 1


class TestCustomDomainUsage:
    """Test custom domain meter persistence"""

    @pytest.fixture
    def custom_domain(self, db_session):
        row = CustomDomain(
            owner_id="owner-a", domain="mail.owner-a.dev", status="verified",
            daily_count=4, total_count=10, last_reset_date=TODAY,
        )
        db_session.add(row)
        db_session.commit()
        return row

    def _reload(self, db_session):
        db_session.expire_all()
        return db_session.query(CustomDomain).one()

    def test_load(self, sql_storage, custom_domain):
        row = sql_storage.load_custom_domain_usage("owner-a", "mail.owner-a.dev")

        assert row.daily_count == 4
        assert row.total_count == 10
        assert row.last_reset_date == TODAY
        assert sql_storage.load_custom_domain_usage("owner-a", "missing.dev") is None

    def test_same_day_delta_adds(self, sql_storage, db_session, custom_domain):
        sql_storage.apply_domain_usage_deltas([
            DomainUsageDelta(owner_id="owner-a", domain="mail.owner-a.dev", day=TODAY, daily=2, total=2),
        ])

        row = self._reload(db_session)
        assert row.daily_count == 6
        assert row.total_count == 12

    def test_newer_day_restarts_daily(self, sql_storage, db_session, custom_domain):
        tomorrow = TODAY + timedelta(days=1)
        sql_storage.apply_domain_usage_deltas([
            DomainUsageDelta(owner_id="owner-a", domain="mail.owner-a.dev", day=tomorrow, daily=1, total=1),
        ])

        row = self._reload(db_session)
        assert row.daily_count == 1
        assert row.last_reset_date == tomorrow
        assert row.total_count == 11

    def test_older_day_only_touches_total(self, sql_storage, db_session, custom_domain):
        sql_storage.apply_domain_usage_deltas([
            DomainUsageDelta(owner_id="owner-a", domain="mail.owner-a.dev", day=TODAY - timedelta(days=1),
                             daily=3, total=3),
        ])

        row = self._reload(db_session)
        assert row.daily_count == 4
        assert row.last_reset_date == TODAY
        assert row.total_count == 13

    def test_total_never_negative(self, sql_storage, db_session, custom_domain):
        sql_storage.apply_domain_usage_deltas([
            DomainUsageDelta(owner_id="owner-a", domain="mail.owner-a.dev", day=TODAY, total=-50),
        ])
        assert self._reload(db_session).total_count == 0

    def test_missing_domain_skipped(self, sql_storage):
        written = sql_storage.apply_domain_usage_deltas([
            DomainUsageDelta(owner_id="owner-a", domain="deleted.dev", day=TODAY, daily=1, total=1),
        ])
        assert written == 0


class TestGmailAccounts:
    """Test parent account selection"""

    def test_pick_least_used_active(self, sql_storage, db_session):
        db_session.add_all([
            GmailAccount(email="busy@gmail.com", alias_count=9),
            GmailAccount(email="Quiet@gmail.com", alias_count=1),
            GmailAccount(email="disabled@gmail.com", alias_count=0, status="disabled"),
        ])
        db_session.commit()

        assert sql_storage.pick_gmail_account().email == "quiet@gmail.com"

    def test_pick_none(self, sql_storage):
        assert sql_storage.pick_gmail_account() is None

    def test_bump(self, sql_storage, db_session):
        account = GmailAccount(email="parent@gmail.com")
        db_session.add(account)
        db_session.commit()

        sql_storage.bump_gmail_account(account.id)

        db_session.expire_all()
        row = db_session.query(GmailAccount).one()
        assert row.alias_count == 1
        assert row.last_used is not None


class TestStatsAndHealth:
    def test_record_domain_stats(self, sql_storage, db_session):
        sql_storage.record_domain_stats(public_domains=2, owner_caches=1, cached_custom_domains=3, live_entities=7)

        row = db_session.query(DomainCacheStats).one()
        assert row.live_entities == 7
        assert row.cached_custom_domains == 3

    def test_ping(self, sql_storage):
        assert sql_storage.ping() is True


class TestStorageErrors:
    """Test database failures surface as StorageUnavailable"""

    @pytest.fixture
    def broken_storage(self):
        # No tables created
        engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
        yield SqlStorage(sessionmaker(bind=engine))
        engine.dispose()

    def test_query_error(self, broken_storage):
        with pytest.raises(StorageUnavailable):
            broken_storage.query_public_domains()

    def test_write_error(self, broken_storage):
        with pytest.raises(StorageUnavailable):
            broken_storage.upsert_usage_snapshots([UsageDelta(owner_id="o", day=TODAY, counts={"10min": 1})])

    def test_ping_still_answers(self, broken_storage):
        assert broken_storage.ping() is True

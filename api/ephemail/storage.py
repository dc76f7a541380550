"""Durable storage collaborator backed by SQLAlchemy"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ephemail.database import SessionLocal, check_db_connection
from ephemail.errors import StorageUnavailable
from ephemail.models import ApiUsageDaily, CustomDomain, Domain, DomainCacheStats, GmailAccount
from ephemail.utils import utcnow

logger = logging.getLogger(__name__)


# ============================================================================
# Transfer records
# ============================================================================

@dataclass
class UsageDelta:
    """Per-tier increments for one owner on one calendar day"""
    owner_id: str
    day: date
    counts: Dict[str, int] = field(default_factory=dict)
    last_entity_id: Optional[str] = None


@dataclass
class DomainUsageDelta:
    """Change to one owner's custom domain meter on one calendar day"""
    owner_id: str
    domain: str
    day: date
    daily: int = 0
    total: int = 0
    last_entity_id: Optional[str] = None


@dataclass
class DomainUsageRow:
    daily_count: int
    total_count: int
    last_reset_date: Optional[date]


@dataclass
class GmailAccountRow:
    id: str
    email: str


# ============================================================================
# SQL storage
# ============================================================================

class SqlStorage:
    """
    Row-oriented persistence for domains, usage snapshots and Gmail accounts.

    Every database error surfaces as StorageUnavailable so callers can keep
    serving from memory and retry on the next cycle.
    """

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def _session(self):
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Storage error: {e}")
            raise StorageUnavailable(str(e)) from e
        finally:
            db.close()

    def ping(self) -> bool:
        return check_db_connection(self._session_factory)

    # Domains

    def query_public_domains(self) -> List[str]:
        with self._session() as db:
            rows = db.query(Domain.domain).order_by(Domain.domain).all()
            return [row.domain.lower() for row in rows]

    def query_owner_verified_domains(self, owner_id: str) -> List[str]:
        with self._session() as db:
            rows = (
                db.query(CustomDomain.domain)
                .filter(CustomDomain.owner_id == owner_id, CustomDomain.status == "verified")
                .all()
            )
            return [row.domain.lower() for row in rows]

    # Usage snapshots

    def upsert_usage_snapshot(self, owner_id: str, day: date, counts: Dict[str, int]) -> None:
        self.upsert_usage_snapshots([UsageDelta(owner_id=owner_id, day=day, counts=counts)])

    def upsert_usage_snapshots(self, deltas: Iterable[UsageDelta]) -> int:
        """
        Add the deltas onto the stored daily counts in a single transaction.

        Counts are additive, so replaying a batch after a failed commit
        never loses increments.
        """
        written = 0
        with self._session() as db:
            for delta in deltas:
                for tier, count in delta.counts.items():
                    if not count:
                        continue
                    row = (
                        db.query(ApiUsageDaily)
                        .filter(
                            ApiUsageDaily.owner_id == delta.owner_id,
                            ApiUsageDaily.date == delta.day,
                            ApiUsageDaily.tier == tier,
                        )
                        .first()
                    )
                    if row is None:
                        db.add(ApiUsageDaily(
                            owner_id=delta.owner_id,
                            date=delta.day,
                            tier=tier,
                            count=count,
                            last_entity_id=delta.last_entity_id,
                        ))
                    else:
                        row.count += count
                        if delta.last_entity_id:
                            row.last_entity_id = delta.last_entity_id
                    written += 1
        return written

    # Custom domain metering

    def load_custom_domain_usage(self, owner_id: str, domain: str) -> Optional[DomainUsageRow]:
        with self._session() as db:
            row = (
                db.query(CustomDomain)
                .filter(CustomDomain.owner_id == owner_id, CustomDomain.domain == domain)
                .first()
            )
            if row is None:
                return None
            return DomainUsageRow(
                daily_count=row.daily_count or 0,
                total_count=row.total_count or 0,
                last_reset_date=row.last_reset_date,
            )

    def apply_domain_usage_deltas(self, deltas: Iterable[DomainUsageDelta]) -> int:
        """
        Apply custom domain meter deltas in a single transaction.

        Daily counts belong to the delta's day: a newer day restarts the
        stored daily count, an older day leaves it alone. Lifetime totals
        always accumulate and never drop below zero.
        """
        written = 0
        with self._session() as db:
            for delta in deltas:
                row = (
                    db.query(CustomDomain)
                    .filter(CustomDomain.owner_id == delta.owner_id, CustomDomain.domain == delta.domain)
                    .first()
                )
                if row is None:
                    logger.warning(f"Custom domain {delta.domain} for {delta.owner_id} no longer exists, dropping usage delta")
                    continue

                if row.last_reset_date == delta.day:
                    row.daily_count = (row.daily_count or 0) + delta.daily
                elif row.last_reset_date is None or delta.day > row.last_reset_date:
                    row.daily_count = delta.daily
                    row.last_reset_date = delta.day

                row.total_count = max(0, (row.total_count or 0) + delta.total)
                written += 1
        return written

    # Gmail accounts

    def pick_gmail_account(self) -> Optional[GmailAccountRow]:
        """Least used active account, ties broken randomly"""
        with self._session() as db:
            row = (
                db.query(GmailAccount)
                .filter(GmailAccount.status == "active")
                .order_by(GmailAccount.alias_count.asc(), func.random())
                .first()
            )
            if row is None:
                return None
            return GmailAccountRow(id=row.id, email=row.email.lower())

    def bump_gmail_account(self, account_id: str) -> None:
        with self._session() as db:
            row = db.query(GmailAccount).filter(GmailAccount.id == account_id).first()
            if row is not None:
                row.alias_count = (row.alias_count or 0) + 1
                row.last_used = utcnow()

    # Observability

    def record_domain_stats(self, public_domains: int, owner_caches: int,
                            cached_custom_domains: int, live_entities: int) -> None:
        with self._session() as db:
            db.add(DomainCacheStats(
                public_domains=public_domains,
                owner_caches=owner_caches,
                cached_custom_domains=cached_custom_domains,
                live_entities=live_entities,
            ))

"""Domain models - public sending domains and owner custom domains"""

from sqlalchemy import Column, String, Integer, Date, DateTime, UniqueConstraint
import uuid
from datetime import datetime, timezone

from ephemail.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Domain(Base):
    __tablename__ = "domains"

    id = Column(String(36), primary_key=True, default=new_id)
    domain = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Domain {self.domain}>"


class CustomDomain(Base):
    __tablename__ = "custom_domains"
    __table_args__ = (
        UniqueConstraint("owner_id", "domain", name="uq_custom_domains_owner_domain"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(64), nullable=False, index=True)
    domain = Column(String(255), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # verified, pending, failed

    # Usage metering, written by the reconciliation sync
    daily_count = Column(Integer, nullable=False, default=0)
    total_count = Column(Integer, nullable=False, default=0)
    last_reset_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<CustomDomain {self.domain} owner={self.owner_id} status={self.status}>"


class DomainCacheStats(Base):
    __tablename__ = "domain_cache_stats"

    id = Column(String(36), primary_key=True, default=new_id)
    public_domains = Column(Integer, nullable=False, default=0)
    owner_caches = Column(Integer, nullable=False, default=0)
    cached_custom_domains = Column(Integer, nullable=False, default=0)
    live_entities = Column(Integer, nullable=False, default=0)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<DomainCacheStats {self.recorded_at}>"

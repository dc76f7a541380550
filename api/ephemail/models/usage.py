"""Usage model - daily per-tier creation counts"""

from sqlalchemy import Column, String, Integer, Date, DateTime, UniqueConstraint

from ephemail.database import Base
from ephemail.models.domain import new_id, utcnow


class ApiUsageDaily(Base):
    __tablename__ = "api_usage_daily"
    __table_args__ = (
        UniqueConstraint("owner_id", "date", "tier", name="uq_api_usage_daily_owner_date_tier"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(64), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    tier = Column(String(16), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    last_entity_id = Column(String(36), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<ApiUsageDaily {self.owner_id} {self.date} {self.tier}={self.count}>"

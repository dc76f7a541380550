"""Gmail account model - parent inboxes that aliases forward into"""

from sqlalchemy import Column, String, Integer, DateTime

from ephemail.database import Base
from ephemail.models.domain import new_id, utcnow


class GmailAccount(Base):
    __tablename__ = "gmail_accounts"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    alias_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active")
    last_used = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<GmailAccount {self.email}>"

"""Pydantic schemas for inbound mail and stored messages"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime, timezone
from typing import Dict, Optional
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """A received message as kept in memory and pushed to subscribers"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject: Optional[str] = None
    from_address: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=_utcnow)


class InboundMail(BaseModel):
    """Schema for a webhook mail delivery"""
    address: str
    subject: Optional[str] = None
    from_address: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None

    @field_validator('address')
    @classmethod
    def normalize_address(cls, v: str) -> str:
        """Addresses are matched case-insensitively"""
        v = v.strip().lower()
        if '@' not in v:
            raise ValueError('Invalid address')
        return v

    def to_message(self) -> Message:
        message = Message(
            subject=self.subject,
            from_address=self.from_address,
            body_text=self.body_text,
            body_html=self.body_html,
            headers=self.headers,
        )
        if self.timestamp is not None:
            message.received_at = self.timestamp
        return message

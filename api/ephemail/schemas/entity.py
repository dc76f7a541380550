"""Pydantic schemas for mailbox views"""

from pydantic import BaseModel
from datetime import datetime
from typing import Dict, List

from ephemail.schemas.mail import Message


class EntityInfo(BaseModel):
    """Mailbox summary returned to owners"""
    id: str
    address: str
    tier: str
    domain: str
    is_custom_domain: bool
    created_at: datetime
    expires_at: datetime
    message_count: int = 0

    class Config:
        from_attributes = True


class EntityDetail(EntityInfo):
    """Mailbox with its messages, newest first"""
    messages: List[Message] = []


class AliasInfo(BaseModel):
    alias: str
    strategy: str
    domain: str
    parent_account: str
    created_at: datetime
    last_used: datetime

    class Config:
        from_attributes = True


class UsageStats(BaseModel):
    """Today's per-tier creation counts for one owner"""
    usage: Dict[str, int]
    limits: Dict[str, int]
    reset_time: datetime


class NewMailNotification(BaseModel):
    """Payload pushed to live subscribers"""
    type: str = "new_email"
    address: str
    message: Message
    timestamp: datetime

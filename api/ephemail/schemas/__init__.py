"""Schemas package"""

from ephemail.schemas.mail import Message, InboundMail
from ephemail.schemas.entity import EntityInfo, EntityDetail, AliasInfo, UsageStats, NewMailNotification

__all__ = [
    "Message",
    "InboundMail",
    "EntityInfo",
    "EntityDetail",
    "AliasInfo",
    "UsageStats",
    "NewMailNotification",
]

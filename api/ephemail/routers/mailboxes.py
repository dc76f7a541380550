"""Mailbox endpoints for API owners"""

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from typing import List, Optional

from ephemail.dependencies import get_service
from ephemail.errors import NotFoundOrExpired
from ephemail.schemas import AliasInfo, EntityDetail, EntityInfo, Message, UsageStats
from ephemail.service import TempMailService

router = APIRouter(prefix="/api/v1", tags=["mailboxes"])


def owner_id_header(x_owner_id: str = Header(...)) -> str:
    """Owner id set by the authenticating gateway"""
    return x_owner_id


class MailboxCreate(BaseModel):
    """Schema for creating a new mailbox"""
    tier: str = "10min"
    domain: Optional[str] = None  # If None, a random public domain is used


class AliasCreate(BaseModel):
    strategy: str = "dot"
    domain: Optional[str] = None


@router.post("/emails", response_model=EntityInfo)
def create_mailbox(
    request: MailboxCreate = MailboxCreate(),
    owner_id: str = Depends(owner_id_header),
    x_quota_level: str = Header("free"),
    svc: TempMailService = Depends(get_service),
):
    """
    Generate a new temporary mailbox.

    Example:
        POST /api/v1/emails
        Body: {"tier": "1hour", "domain": "mail.example.org"}
        Response: {"address": "a8f3k9x2@mail.example.org", ...}
    """
    entity = svc.store.create(owner_id, request.tier, request.domain, x_quota_level)
    return EntityInfo.model_validate(entity)


@router.get("/emails", response_model=List[EntityInfo])
def list_mailboxes(owner_id: str = Depends(owner_id_header), svc: TempMailService = Depends(get_service)):
    return [EntityInfo.model_validate(e) for e in svc.store.list_by_owner(owner_id)]


@router.get("/emails/{entity_id}", response_model=EntityDetail)
def get_mailbox(entity_id: str, owner_id: str = Depends(owner_id_header),
                svc: TempMailService = Depends(get_service)):
    entity = svc.store.get(entity_id, owner_id)
    if entity is None:
        raise NotFoundOrExpired("Email not found or expired")
    return EntityDetail.model_validate(entity)


@router.delete("/emails/{entity_id}")
def delete_mailbox(entity_id: str, owner_id: str = Depends(owner_id_header),
                   svc: TempMailService = Depends(get_service)):
    if not svc.store.delete(entity_id, owner_id):
        raise NotFoundOrExpired("Email not found or expired")
    return {"deleted": True}


@router.get("/usage", response_model=UsageStats)
def usage(owner_id: str = Depends(owner_id_header), svc: TempMailService = Depends(get_service)):
    return svc.usage_stats(owner_id)


@router.post("/aliases", response_model=AliasInfo)
def create_alias(request: AliasCreate = AliasCreate(), owner_id: str = Depends(owner_id_header),
                 svc: TempMailService = Depends(get_service)):
    return AliasInfo.model_validate(svc.aliases.generate(owner_id, request.strategy, request.domain))


@router.post("/aliases/rotate", response_model=AliasInfo)
def rotate_alias(request: AliasCreate = AliasCreate(), owner_id: str = Depends(owner_id_header),
                 svc: TempMailService = Depends(get_service)):
    return AliasInfo.model_validate(svc.aliases.rotate(owner_id, request.strategy, request.domain))


@router.get("/aliases", response_model=List[AliasInfo])
def list_aliases(owner_id: str = Depends(owner_id_header), svc: TempMailService = Depends(get_service)):
    return [AliasInfo.model_validate(a) for a in svc.aliases.list_by_owner(owner_id)]


@router.get("/aliases/{alias}/messages", response_model=List[Message])
def alias_messages(alias: str, owner_id: str = Depends(owner_id_header),
                   svc: TempMailService = Depends(get_service)):
    messages = svc.aliases.messages(owner_id, alias)
    if messages is None:
        raise NotFoundOrExpired("Alias not found or expired")
    return messages

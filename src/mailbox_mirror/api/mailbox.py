"""Mailbox view API (bounded inbox/sent listings)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from mailbox_mirror.api.deps import current_account, get_gateway
from mailbox_mirror.gateway import BoundedReadGateway
from mailbox_mirror.models import Account, MessagePage

router = APIRouter(prefix="/api/email", tags=["mailbox"])


@router.get("/inbox", response_model=MessagePage)
async def list_inbox(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1),
    search: str | None = Query(default=None, max_length=200),
    account: Account = Depends(current_account),
    gateway: BoundedReadGateway = Depends(get_gateway),
) -> MessagePage:
    return await gateway.list_inbox(account, page=page, limit=limit, search=search)


@router.get("/sent", response_model=MessagePage)
async def list_sent(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1),
    account: Account = Depends(current_account),
    gateway: BoundedReadGateway = Depends(get_gateway),
) -> MessagePage:
    return await gateway.list_sent(account, page=page, limit=limit)

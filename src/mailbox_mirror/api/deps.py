"""FastAPI dependencies: shared components and the calling account.

Authentication is handled upstream; by the time a request reaches these
routes the caller's mailbox address is forwarded in ``X-Account-Email``.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request

from mailbox_mirror.config import Settings
from mailbox_mirror.gateway import BoundedReadGateway
from mailbox_mirror.models import Account
from mailbox_mirror.store import MirrorRepository
from mailbox_mirror.sync import MailboxSynchronizer


def get_repository(request: Request) -> MirrorRepository:
    return request.app.state.repository


def get_synchronizer(request: Request) -> MailboxSynchronizer:
    return request.app.state.synchronizer


def get_gateway(request: Request) -> BoundedReadGateway:
    return request.app.state.gateway


def current_account(
    repository: MirrorRepository = Depends(get_repository),
    x_account_email: str = Header(default="", alias="x-account-email"),
) -> Account:
    email = x_account_email.strip()
    if not email:
        raise HTTPException(status_code=401, detail="Missing X-Account-Email header")

    account = repository.get_account_by_email(email)
    if account is None:
        raise HTTPException(status_code=404, detail=f"Account not found: {email}")
    return account


def privileged_account(account: Account = Depends(current_account)) -> Account:
    if not account.is_privileged:
        raise HTTPException(status_code=403, detail="Admin permission required")
    return account


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings

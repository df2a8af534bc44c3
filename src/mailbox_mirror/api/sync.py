"""Mailbox sync API.

Triggers and inspects mailbox sync runs.

Important:
- Sync is one-directional; nothing here writes to the IMAP server.
- At most one sync runs per process. Concurrent requests get 409.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Depends

from mailbox_mirror.api.deps import (
    current_account,
    get_app_settings,
    get_repository,
    get_synchronizer,
    privileged_account,
)
from mailbox_mirror.api.models import (
    ConnectionTestResponse,
    ForceSyncRequest,
    ForceSyncResponse,
    SyncAcceptedResponse,
    SyncedEmailSummary,
    SyncHistoryResponse,
    SyncReportResponse,
    SyncRequest,
    SyncStatusResponse,
)
from mailbox_mirror.config import Settings
from mailbox_mirror.models import Account
from mailbox_mirror.store import MirrorRepository
from mailbox_mirror.sync import MailboxSynchronizer

logger = structlog.get_logger()

router = APIRouter(prefix="/api/email/sync", tags=["email-sync"])


@router.post("", status_code=202, response_model=SyncAcceptedResponse)
async def start_sync(
    body: SyncRequest | None = None,
    account: Account = Depends(current_account),
    synchronizer: MailboxSynchronizer = Depends(get_synchronizer),
) -> SyncAcceptedResponse:
    body = body or SyncRequest()
    synchronizer.schedule_sync(account.email, body.limit)
    return SyncAcceptedResponse(
        message="Email sync started in background",
        user_email=account.email,
        limit=body.limit,
    )


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    account: Account = Depends(current_account),
    synchronizer: MailboxSynchronizer = Depends(get_synchronizer),
) -> SyncStatusResponse:
    return SyncStatusResponse(
        connected=synchronizer.connected,
        sync_in_progress=synchronizer.sync_in_progress,
        last_sync_time=account.last_email_sync,
    )


@router.get("/test-connection", response_model=ConnectionTestResponse)
async def test_connection(
    account: Account = Depends(current_account),
    synchronizer: MailboxSynchronizer = Depends(get_synchronizer),
    settings: Settings = Depends(get_app_settings),
) -> ConnectionTestResponse:
    ok = await synchronizer.test_connection()
    return ConnectionTestResponse(
        success=ok,
        message=(
            "Successfully connected to IMAP server" if ok else "Failed to connect to IMAP server"
        ),
        host=settings.imap_host,
        port=settings.imap_port,
        user=settings.imap_username,
        secure=settings.imap_use_tls,
    )


@router.get("/history", response_model=SyncHistoryResponse)
async def sync_history(
    account: Account = Depends(current_account),
    repository: MirrorRepository = Depends(get_repository),
) -> SyncHistoryResponse:
    history = await asyncio.to_thread(repository.sync_history, account.id)
    return SyncHistoryResponse(
        user_email=account.email,
        total_synced_emails=history.total_synced,
        last_sync_time=account.last_email_sync,
        latest_synced_emails=[
            SyncedEmailSummary(
                subject=m.subject,
                from_address=m.from_address,
                to=m.to,
                sent_at=m.sent_at,
                created_at=m.created_at,
            )
            for m in history.latest
        ],
    )


@router.post("/force", response_model=ForceSyncResponse)
async def force_sync(
    body: ForceSyncRequest,
    admin: Account = Depends(privileged_account),
    synchronizer: MailboxSynchronizer = Depends(get_synchronizer),
) -> ForceSyncResponse:
    logger.info("force_sync_requested", admin=admin.email, target=body.user_email)
    deleted, report = await synchronizer.force_sync(body.user_email, body.limit)
    return ForceSyncResponse(
        message="Force sync completed successfully",
        user_email=body.user_email,
        results=report,
        deleted_existing=deleted,
    )


@router.post("/{user_email}", response_model=SyncReportResponse)
async def sync_for_user(
    user_email: str,
    body: SyncRequest | None = None,
    admin: Account = Depends(privileged_account),
    synchronizer: MailboxSynchronizer = Depends(get_synchronizer),
) -> SyncReportResponse:
    body = body or SyncRequest()
    logger.info("admin_sync_requested", admin=admin.email, target=user_email)
    report = await synchronizer.sync_mailbox(user_email, body.limit)
    return SyncReportResponse(
        message="Email sync completed successfully",
        user_email=user_email,
        results=report,
    )

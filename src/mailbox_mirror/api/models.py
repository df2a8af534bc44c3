"""API models for the mailbox mirror endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from mailbox_mirror.models import SyncReport


class SyncRequest(BaseModel):
    limit: int = Field(default=100, ge=1, le=1000, description="Newest messages per folder")


class ForceSyncRequest(BaseModel):
    user_email: str = Field(min_length=3, description="Account whose mirror is rebuilt")
    limit: int = Field(default=100, ge=1, le=1000)


class SyncAcceptedResponse(BaseModel):
    success: bool = True
    message: str
    user_email: str
    limit: int


class SyncStatusResponse(BaseModel):
    connected: bool
    sync_in_progress: bool
    last_sync_time: datetime | None = None


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    host: str
    port: int
    user: str | None = None
    secure: bool


class SyncReportResponse(BaseModel):
    success: bool = True
    message: str
    user_email: str
    results: SyncReport


class ForceSyncResponse(SyncReportResponse):
    deleted_existing: int


class SyncedEmailSummary(BaseModel):
    subject: str
    from_address: str
    to: str
    sent_at: datetime
    created_at: datetime | None = None


class SyncHistoryResponse(BaseModel):
    user_email: str
    total_synced_emails: int
    last_sync_time: datetime | None = None
    latest_synced_emails: list[SyncedEmailSummary]


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error: str | None = None

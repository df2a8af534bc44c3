"""Mirrored message models.

A mirrored message is the local, write-once copy of one remote message. Its
category and flags are fixed at ingestion time; later server-side changes are
never pulled back into an existing row.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field

_PREVIEW_LENGTH = 100
_TAG_RE = re.compile(r"<[^>]*>")


class Category(str, Enum):
    """Local mailbox view a mirrored message belongs to."""

    INBOX = "inbox"
    SENT = "sent"


class ParsedMessage(BaseModel):
    """Normalized content of one raw RFC 822 message."""

    message_id: str | None = Field(default=None, description="Message-ID header")
    subject: str = Field(description="Subject header or a placeholder")
    from_address: str = Field(description="Raw From header")
    from_name: str | None = Field(default=None, description="Display name of the sender")
    to: str = Field(description="Raw To header")
    sent_at: datetime = Field(description="Date header, or ingestion time when absent")
    html: str = Field(default="", description="HTML body")
    text: str = Field(default="", description="Plain-text body")
    has_attachments: bool = Field(default=False, description="Whether any part is an attachment")


class MessageFlags(BaseModel):
    """Local copy of the remote flags at ingestion time."""

    is_read: bool = False
    is_starred: bool = False
    is_important: bool = False
    has_attachments: bool = False


class SourceMetadata(BaseModel):
    """Where a mirrored row came from."""

    sync_origin: bool = Field(default=True, description="Row was created by mailbox sync")
    message_id: str | None = Field(default=None, description="Protocol Message-ID")
    folder: str | None = Field(default=None, description="Remote folder of origin")
    server_uid: int | None = Field(default=None, description="Server UID, folder-scoped")
    original_date: datetime | None = Field(default=None, description="Date the server reported")
    server_flags: list[str] = Field(default_factory=list, description="Raw server flag tokens")
    address_direction: str | None = Field(
        default=None,
        description="Direction implied by addresses (sent, inbox, both, none); informational",
    )


class MirroredMessage(BaseModel):
    """A row of the mirror store."""

    id: int | None = Field(default=None, description="Local row id, set once persisted")
    owner_id: int = Field(description="Local account the row belongs to")
    to: str
    from_address: str
    from_name: str | None = None
    subject: str
    html: str = ""
    text: str = ""
    category: Category
    flags: MessageFlags = Field(default_factory=MessageFlags)
    sender_name: str | None = None
    recipient_name: str | None = None
    source_metadata: SourceMetadata = Field(default_factory=SourceMetadata)
    sent_at: datetime
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @computed_field  # type: ignore[misc]
    @property
    def preview(self) -> str:
        """First characters of the body, with HTML tags stripped if needed."""
        if self.text:
            return self.text[:_PREVIEW_LENGTH]
        if self.html:
            return _TAG_RE.sub("", self.html)[:_PREVIEW_LENGTH]
        return ""


class MessagePage(BaseModel):
    """One page of a bounded mailbox view."""

    messages: list[MirroredMessage] = Field(default_factory=list)
    page: int
    limit: int
    total: int = Field(description="Rows visible in the view, never above the visibility cap")
    unread_count: int
    max_visible: int
    has_more: bool

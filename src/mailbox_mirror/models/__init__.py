"""Data models for Mailbox Mirror.

This module contains Pydantic models for data validation and serialization.
"""

from mailbox_mirror.models.account import PRIVILEGED_ROLES, Account
from mailbox_mirror.models.message import (
    Category,
    MessageFlags,
    MessagePage,
    MirroredMessage,
    ParsedMessage,
    SourceMetadata,
)
from mailbox_mirror.models.report import FolderReport, MessageOutcome, SyncReport

__all__ = [
    "Account",
    "Category",
    "FolderReport",
    "MessageFlags",
    "MessageOutcome",
    "MessagePage",
    "MirroredMessage",
    "PRIVILEGED_ROLES",
    "ParsedMessage",
    "SourceMetadata",
    "SyncReport",
]

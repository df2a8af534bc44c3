"""Sync run reporting models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, computed_field


class MessageOutcome(str, Enum):
    """What happened to one fetched message."""

    SAVED = "saved"
    SKIPPED = "skipped"
    DROPPED = "dropped"


class FolderReport(BaseModel):
    """Counters for one folder of a sync run.

    ``skipped`` counts only duplicates. Messages that failed to parse or to
    persist are ``dropped`` and appear in neither ``saved`` nor ``skipped``.
    """

    fetched: int = 0
    saved: int = 0
    skipped: int = 0
    dropped: int = 0

    def record(self, outcome: MessageOutcome) -> None:
        if outcome is MessageOutcome.SAVED:
            self.saved += 1
        elif outcome is MessageOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.dropped += 1


class SyncReport(BaseModel):
    """Summary of one sync run, per folder and in total."""

    inbox: FolderReport = Field(default_factory=FolderReport)
    sent: FolderReport = Field(default_factory=FolderReport)
    errors: dict[str, str] = Field(
        default_factory=dict,
        description="Folder-scoped failures keyed by remote folder name",
    )

    @computed_field  # type: ignore[misc]
    @property
    def total(self) -> FolderReport:
        return FolderReport(
            fetched=self.inbox.fetched + self.sent.fetched,
            saved=self.inbox.saved + self.sent.saved,
            skipped=self.inbox.skipped + self.sent.skipped,
            dropped=self.inbox.dropped + self.sent.dropped,
        )

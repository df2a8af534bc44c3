"""Mailbox sync orchestration.

One run mirrors the newest messages of the inbox and sent folders into the
local store. Runs are serialized per process: a second request while one is
in flight is rejected immediately instead of queued.

Error containment:
- fatal (raised): unknown owner, connection/auth failure, sync in progress
- folder-scoped (logged, folder counters stay at zero): select/fetch failure
- message-scoped (logged, message dropped): parse or persistence failure
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import structlog

from mailbox_mirror.config import Settings
from mailbox_mirror.exceptions import (
    AccountNotFoundError,
    ImapConnectionError,
    MessageParseError,
    StoreError,
    SyncInProgressError,
)
from mailbox_mirror.imap import MailboxConnector, RawMessage
from mailbox_mirror.models import Account, Category, FolderReport, MessageOutcome, SyncReport
from mailbox_mirror.parsing import parse_message
from mailbox_mirror.store import MirrorRepository
from mailbox_mirror.sync.duplicate_guard import DuplicateGuard
from mailbox_mirror.sync.reconciler import reconcile

logger = structlog.get_logger()

ConnectorFactory = Callable[[], MailboxConnector]


class SyncSlot:
    """Single-slot try-lock. Acquiring never waits."""

    def __init__(self) -> None:
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        if self._held:
            raise SyncInProgressError("Email sync is already in progress")
        self._held = True

    def release(self) -> None:
        self._held = False

    @contextmanager
    def hold(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()


class MailboxSynchronizer:
    """Mirror remote INBOX/Sent folders into the local store."""

    def __init__(
        self,
        repository: MirrorRepository,
        connector_factory: ConnectorFactory,
        *,
        inbox_folder: str = "INBOX",
        sent_folder: str = "Sent",
        per_folder_limit: int = 100,
    ) -> None:
        """Create a synchronizer.

        Args:
            repository: Mirror store the rows are written to.
            connector_factory: Returns a fresh, unconnected connector per run.
            inbox_folder: Remote folder mirrored as the inbox view.
            sent_folder: Remote folder mirrored as the sent view.
            per_folder_limit: Default number of newest messages per folder.
        """

        self._repository = repository
        self._connector_factory = connector_factory
        self._guard = DuplicateGuard(repository)
        self._folders: tuple[tuple[Category, str], ...] = (
            (Category.INBOX, inbox_folder),
            (Category.SENT, sent_folder),
        )
        self._default_limit = per_folder_limit
        self._slot = SyncSlot()
        self._connector: MailboxConnector | None = None
        self._background: asyncio.Task[SyncReport] | None = None

    @classmethod
    def from_settings(cls, settings: Settings, repository: MirrorRepository) -> MailboxSynchronizer:
        return cls(
            repository,
            lambda: MailboxConnector(settings.imap_config()),
            inbox_folder=settings.inbox_folder,
            sent_folder=settings.sent_folder,
            per_folder_limit=settings.sync_per_folder_limit,
        )

    @property
    def sync_in_progress(self) -> bool:
        return self._slot.held

    @property
    def connected(self) -> bool:
        return self._connector is not None and self._connector.connected

    def status(self) -> dict[str, bool]:
        return {"connected": self.connected, "sync_in_progress": self.sync_in_progress}

    async def test_connection(self) -> bool:
        """Open and close a throwaway session against the configured server."""

        return await self._connector_factory().test_connection()

    async def sync_mailbox(self, owner_email: str, per_folder_limit: int | None = None) -> SyncReport:
        """Run one sync for ``owner_email`` and wait for it.

        Raises:
            SyncInProgressError: If another sync is running in this process.
            AccountNotFoundError: If no local account has this address.
            ImapConnectionError: If the server cannot be reached or logged into.
        """

        with self._slot.hold():
            account = await self._resolve_account(owner_email)
            return await self._run(account, per_folder_limit)

    def schedule_sync(
        self,
        owner_email: str,
        per_folder_limit: int | None = None,
    ) -> asyncio.Task[SyncReport]:
        """Start a sync in the background and return its task.

        The slot is claimed before this returns, so a concurrent caller is
        rejected even if the task has not started yet.

        Raises:
            SyncInProgressError: If another sync is running in this process.
        """

        self._slot.acquire()
        try:
            task = asyncio.create_task(self._run_for_email(owner_email, per_folder_limit))
        except BaseException:
            self._slot.release()
            raise

        self._background = task
        task.add_done_callback(self._background_done)
        logger.info("sync_scheduled", owner=owner_email)
        return task

    async def force_sync(
        self,
        owner_email: str,
        per_folder_limit: int | None = None,
    ) -> tuple[int, SyncReport]:
        """Delete the account's sync-origin rows, then run a fresh sync.

        Returns:
            The number of deleted rows and the report of the fresh run.
        """

        with self._slot.hold():
            account = await self._resolve_account(owner_email)
            deleted = await asyncio.to_thread(self._repository.delete_sync_messages, account.id)
            logger.info("force_sync_cleared", owner=account.email, deleted=deleted)
            report = await self._run(account, per_folder_limit)
            return deleted, report

    async def _run_for_email(self, owner_email: str, per_folder_limit: int | None) -> SyncReport:
        account = await self._resolve_account(owner_email)
        return await self._run(account, per_folder_limit)

    def _background_done(self, task: asyncio.Task[SyncReport]) -> None:
        self._slot.release()
        if self._background is task:
            self._background = None

        if task.cancelled():
            logger.warning("background_sync_cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_sync_failed", error=str(exc), error_type=type(exc).__name__)
            return
        logger.info("background_sync_completed", total=task.result().total.model_dump())

    async def _resolve_account(self, owner_email: str) -> Account:
        account = await asyncio.to_thread(self._repository.get_account_by_email, owner_email)
        if account is None:
            logger.error("sync_account_not_found", owner=owner_email)
            raise AccountNotFoundError(owner_email)
        return account

    async def _run(self, account: Account, per_folder_limit: int | None) -> SyncReport:
        limit = per_folder_limit if per_folder_limit is not None else self._default_limit
        logger.info("sync_started", owner=account.email, per_folder_limit=limit)

        report = SyncReport()
        connector = self._connector_factory()
        self._connector = connector
        try:
            await connector.connect()

            for category, folder in self._folders:
                folder_report: FolderReport = getattr(report, category.value)
                error = await self._sync_folder(connector, account, category, folder, limit, folder_report)
                if error is not None:
                    report.errors[folder] = error
        except Exception as exc:
            logger.error("sync_failed", owner=account.email, error=str(exc), error_type=type(exc).__name__)
            raise
        finally:
            await connector.close()
            self._connector = None

        await asyncio.to_thread(self._repository.touch_last_sync, account.id)

        total = report.total
        logger.info(
            "sync_completed",
            owner=account.email,
            inbox=report.inbox.model_dump(),
            sent=report.sent.model_dump(),
            fetched=total.fetched,
            saved=total.saved,
            skipped=total.skipped,
        )
        return report

    async def _sync_folder(
        self,
        connector: MailboxConnector,
        account: Account,
        category: Category,
        folder: str,
        limit: int,
        folder_report: FolderReport,
    ) -> str | None:
        """Mirror one folder, returning an error message if the folder failed."""

        if not connector.connected:
            await connector.connect()

        try:
            messages = [raw async for raw in connector.fetch_folder(folder, limit)]
        except ImapConnectionError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("folder_sync_failed", folder=folder, error=str(exc))
            return str(exc)

        folder_report.fetched = len(messages)
        for raw in messages:
            outcome = await self._process_message(account, category, raw)
            folder_report.record(outcome)

        logger.info(
            "folder_sync_completed",
            folder=folder,
            category=category.value,
            fetched=folder_report.fetched,
            saved=folder_report.saved,
            skipped=folder_report.skipped,
            dropped=folder_report.dropped,
        )
        return None

    async def _process_message(
        self,
        account: Account,
        category: Category,
        raw: RawMessage,
    ) -> MessageOutcome:
        try:
            parsed = parse_message(raw.raw)
        except MessageParseError as exc:
            logger.warning("message_parse_failed", folder=raw.folder, uid=raw.uid, error=str(exc))
            return MessageOutcome.DROPPED

        try:
            if await self._guard.exists(account.id, parsed.message_id, raw.folder, raw.uid):
                return MessageOutcome.SKIPPED

            candidate = reconcile(parsed, raw, account, category)
            await asyncio.to_thread(self._repository.insert_message, candidate)
        except StoreError as exc:
            logger.exception("message_persist_failed", folder=raw.folder, uid=raw.uid, error=str(exc))
            return MessageOutcome.DROPPED

        return MessageOutcome.SAVED

"""Unit tests for the sync orchestrator."""

import asyncio

import pytest

from mailbox_mirror.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    StoreError,
    SyncInProgressError,
)
from mailbox_mirror.models import Category, FolderReport
from mailbox_mirror.store import MirrorRepository
from mailbox_mirror.sync import SyncSlot


def _inbox_mail(raw_email, n: int) -> bytes:
    return raw_email(
        subject=f"Inbound {n}",
        sender=f"sender{n}@ext.com",
        to="alice@co.com",
        message_id=f"<in-{n}@ext.com>",
        date=f"Mon, 06 Jan 2025 1{n}:00:00 +0000",
    )


def _sent_mail(raw_email, n: int) -> bytes:
    return raw_email(
        subject=f"Outbound {n}",
        sender="Alice Smith <alice@co.com>",
        to=f"client{n}@ext.com",
        message_id=f"<out-{n}@co.com>",
        date=f"Tue, 07 Jan 2025 1{n}:00:00 +0000",
    )


def _all_rows(repository: MirrorRepository, owner_id: int, category: Category):
    return repository.list_view(owner_id, category, offset=0, limit=1000)


class TestSyncSlot:
    """Test suite for SyncSlot."""

    def test_second_acquire_is_rejected(self) -> None:
        slot = SyncSlot()
        slot.acquire()

        with pytest.raises(SyncInProgressError):
            slot.acquire()

        slot.release()
        assert slot.held is False

    def test_hold_releases_on_error(self) -> None:
        slot = SyncSlot()

        with pytest.raises(RuntimeError):
            with slot.hold():
                assert slot.held is True
                raise RuntimeError("boom")

        assert slot.held is False


class TestMailboxSynchronizer:
    """Test suite for MailboxSynchronizer."""

    @pytest.mark.asyncio
    async def test_first_sync_reports_counts(self, synchronizer, fake_mailbox, raw_email, alice) -> None:
        fake_mailbox.add("Sent", _sent_mail(raw_email, 1))
        await synchronizer.sync_mailbox("alice@co.com")

        for n in range(1, 4):
            fake_mailbox.add("INBOX", _inbox_mail(raw_email, n))
        fake_mailbox.add("Sent", _sent_mail(raw_email, 2))

        report = await synchronizer.sync_mailbox("alice@co.com")

        assert report.inbox == FolderReport(fetched=3, saved=3, skipped=0)
        assert report.sent == FolderReport(fetched=2, saved=1, skipped=1)
        assert report.total == FolderReport(fetched=5, saved=4, skipped=1)
        assert report.errors == {}

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, synchronizer, fake_mailbox, raw_email, repository, alice) -> None:
        for n in range(1, 4):
            fake_mailbox.add("INBOX", _inbox_mail(raw_email, n))
        fake_mailbox.add("Sent", _sent_mail(raw_email, 1))

        first = await synchronizer.sync_mailbox("alice@co.com")
        second = await synchronizer.sync_mailbox("alice@co.com")

        assert first.total.saved == 4
        assert second.total.saved == 0
        assert second.total.skipped == 4
        assert len(_all_rows(repository, alice.id, Category.INBOX)) == 3
        assert len(_all_rows(repository, alice.id, Category.SENT)) == 1

    @pytest.mark.asyncio
    async def test_rows_are_never_rewritten(self, synchronizer, fake_mailbox, raw_email, repository, alice) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1))
        await synchronizer.sync_mailbox("alice@co.com")
        (before,) = _all_rows(repository, alice.id, Category.INBOX)

        # The same message read on the server and moved to another UID.
        fake_mailbox.folders["INBOX"].clear()
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1), uid=99, flags=("\\Seen",))
        report = await synchronizer.sync_mailbox("alice@co.com")
        (after,) = _all_rows(repository, alice.id, Category.INBOX)

        assert report.inbox.skipped == 1
        assert after.id == before.id
        assert after.flags.is_read is False
        assert after.updated_at == before.updated_at

    @pytest.mark.asyncio
    async def test_category_follows_folder(self, synchronizer, fake_mailbox, raw_email, repository, alice) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1))
        fake_mailbox.add("Sent", _sent_mail(raw_email, 1))
        # Sent to a shared alias; the addresses say nothing about alice.
        fake_mailbox.add(
            "Sent",
            raw_email(sender="sales@co.com", to="x@ext.com", message_id="<alias@co.com>"),
        )

        await synchronizer.sync_mailbox("alice@co.com")

        inbox = _all_rows(repository, alice.id, Category.INBOX)
        sent = _all_rows(repository, alice.id, Category.SENT)
        assert [m.source_metadata.folder for m in inbox] == ["INBOX"]
        assert {m.source_metadata.folder for m in sent} == {"Sent"}
        assert len(sent) == 2

    @pytest.mark.asyncio
    async def test_flags_are_mapped(self, synchronizer, fake_mailbox, raw_email, repository, alice) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1), flags=("\\Seen", "\\Flagged"))
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 2))

        await synchronizer.sync_mailbox("alice@co.com")

        rows = {m.subject: m for m in _all_rows(repository, alice.id, Category.INBOX)}
        assert rows["Inbound 1"].flags.is_read is True
        assert rows["Inbound 1"].flags.is_starred is True
        assert rows["Inbound 2"].flags.is_read is False

    @pytest.mark.asyncio
    async def test_per_folder_limit_takes_newest(self, synchronizer, fake_mailbox, raw_email, repository, alice) -> None:
        for n in range(1, 6):
            fake_mailbox.add("INBOX", _inbox_mail(raw_email, n))

        report = await synchronizer.sync_mailbox("alice@co.com", per_folder_limit=2)

        assert report.inbox.fetched == 2
        subjects = {m.subject for m in _all_rows(repository, alice.id, Category.INBOX)}
        assert subjects == {"Inbound 4", "Inbound 5"}

    @pytest.mark.asyncio
    async def test_concurrent_sync_is_rejected(self, synchronizer, fake_mailbox, raw_email, alice) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1))
        fake_mailbox.gate = asyncio.Event()

        first = asyncio.create_task(synchronizer.sync_mailbox("alice@co.com"))
        await asyncio.sleep(0)
        assert synchronizer.sync_in_progress is True

        with pytest.raises(SyncInProgressError):
            await synchronizer.sync_mailbox("alice@co.com")
        with pytest.raises(SyncInProgressError):
            synchronizer.schedule_sync("alice@co.com")

        fake_mailbox.gate.set()
        report = await first

        assert report.inbox.saved == 1
        assert len(fake_mailbox.sessions) == 1
        assert synchronizer.sync_in_progress is False

    @pytest.mark.asyncio
    async def test_failed_folder_does_not_stop_other(self, synchronizer, fake_mailbox, raw_email, repository, alice) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1))
        fake_mailbox.add("Sent", _sent_mail(raw_email, 1))
        fake_mailbox.failing_folders.add("INBOX")

        report = await synchronizer.sync_mailbox("alice@co.com")

        assert report.inbox == FolderReport()
        assert report.sent.saved == 1
        assert "INBOX" in report.errors
        assert repository.get_account(alice.id).last_email_sync is not None

    @pytest.mark.asyncio
    async def test_unknown_account_opens_no_session(self, synchronizer, fake_mailbox) -> None:
        with pytest.raises(AccountNotFoundError):
            await synchronizer.sync_mailbox("ghost@co.com")

        assert fake_mailbox.sessions == []
        assert synchronizer.sync_in_progress is False

    @pytest.mark.asyncio
    async def test_connection_failure_is_fatal(self, synchronizer, fake_mailbox, repository, alice) -> None:
        fake_mailbox.connect_error = AuthenticationError("Login rejected")

        with pytest.raises(AuthenticationError):
            await synchronizer.sync_mailbox("alice@co.com")

        assert fake_mailbox.sessions[0].closed is True
        assert synchronizer.sync_in_progress is False
        assert synchronizer.connected is False
        assert repository.get_account(alice.id).last_email_sync is None

    @pytest.mark.asyncio
    async def test_unparseable_message_is_dropped(self, synchronizer, fake_mailbox, raw_email, alice) -> None:
        fake_mailbox.add("INBOX", b"")
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1))

        report = await synchronizer.sync_mailbox("alice@co.com")

        assert report.inbox == FolderReport(fetched=2, saved=1, skipped=0, dropped=1)

    @pytest.mark.asyncio
    async def test_persist_failure_is_dropped(
        self,
        synchronizer,
        fake_mailbox,
        raw_email,
        repository,
        alice,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1))

        def _fail(message):
            raise StoreError("disk full")

        monkeypatch.setattr(repository, "insert_message", _fail)

        report = await synchronizer.sync_mailbox("alice@co.com")

        assert report.inbox == FolderReport(fetched=1, saved=0, skipped=0, dropped=1)

    @pytest.mark.asyncio
    async def test_messages_without_message_id_use_uid(self, synchronizer, fake_mailbox, raw_email, alice) -> None:
        fake_mailbox.add("INBOX", raw_email(message_id=None, subject="a"), uid=10)
        fake_mailbox.add("INBOX", raw_email(message_id=None, subject="b"), uid=11)

        first = await synchronizer.sync_mailbox("alice@co.com")
        second = await synchronizer.sync_mailbox("alice@co.com")

        assert first.inbox.saved == 2
        assert second.inbox.skipped == 2

    @pytest.mark.asyncio
    async def test_force_sync_rebuilds_mirror(self, synchronizer, fake_mailbox, raw_email, repository, alice) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1))
        fake_mailbox.add("Sent", _sent_mail(raw_email, 1))
        await synchronizer.sync_mailbox("alice@co.com")

        deleted, report = await synchronizer.force_sync("alice@co.com")

        assert deleted == 2
        assert report.total.saved == 2
        assert report.total.skipped == 0

    @pytest.mark.asyncio
    async def test_schedule_sync_runs_in_background(self, synchronizer, fake_mailbox, raw_email, alice) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1))

        task = synchronizer.schedule_sync("alice@co.com")
        assert synchronizer.sync_in_progress is True

        report = await task
        await asyncio.sleep(0)

        assert report.inbox.saved == 1
        assert synchronizer.sync_in_progress is False

    @pytest.mark.asyncio
    async def test_schedule_sync_releases_slot_on_failure(self, synchronizer, fake_mailbox) -> None:
        task = synchronizer.schedule_sync("ghost@co.com")

        with pytest.raises(AccountNotFoundError):
            await task
        await asyncio.sleep(0)

        assert synchronizer.sync_in_progress is False

    @pytest.mark.asyncio
    async def test_test_connection(self, synchronizer, fake_mailbox) -> None:
        assert await synchronizer.test_connection() is True

        fake_mailbox.connect_error = AuthenticationError("nope")
        assert await synchronizer.test_connection() is False

    def test_status(self, synchronizer) -> None:
        assert synchronizer.status() == {"connected": False, "sync_in_progress": False}

    @pytest.mark.asyncio
    async def test_message_in_both_folders_is_mirrored_once(
        self, synchronizer, fake_mailbox, raw_email, repository, alice
    ) -> None:
        note = raw_email(sender="alice@co.com", to="alice@co.com", message_id="<self@co.com>")
        fake_mailbox.add("INBOX", note, uid=7)
        fake_mailbox.add("Sent", note, uid=3)

        report = await synchronizer.sync_mailbox("alice@co.com")

        assert report.inbox == FolderReport(fetched=1, saved=1)
        assert report.sent == FolderReport(fetched=1, saved=0, skipped=1)
        assert len(_all_rows(repository, alice.id, Category.INBOX)) == 1
        assert _all_rows(repository, alice.id, Category.SENT) == []

    @pytest.mark.asyncio
    async def test_message_moved_between_folders_is_not_duplicated(
        self, synchronizer, fake_mailbox, raw_email, repository, alice
    ) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1), uid=5)
        await synchronizer.sync_mailbox("alice@co.com")

        fake_mailbox.folders["INBOX"].clear()
        fake_mailbox.add("Sent", _inbox_mail(raw_email, 1), uid=40)
        report = await synchronizer.sync_mailbox("alice@co.com")

        assert report.sent.skipped == 1
        assert report.total.saved == 0
        (row,) = _all_rows(repository, alice.id, Category.INBOX)
        assert row.source_metadata.server_uid == 5

    @pytest.mark.asyncio
    async def test_failed_duplicate_lookup_drops_message(
        self,
        synchronizer,
        fake_mailbox,
        raw_email,
        repository,
        alice,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        fake_mailbox.add("INBOX", _inbox_mail(raw_email, 1))
        fake_mailbox.add("Sent", _sent_mail(raw_email, 1))
        lookup = repository.exists

        def _flaky(owner_id, message_id, folder, server_uid):
            if folder == "INBOX":
                raise StoreError("database disk image is malformed")
            return lookup(owner_id, message_id, folder, server_uid)

        monkeypatch.setattr(repository, "exists", _flaky)

        report = await synchronizer.sync_mailbox("alice@co.com")

        assert report.inbox == FolderReport(fetched=1, dropped=1)
        assert report.sent.saved == 1

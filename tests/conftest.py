"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from email.message import EmailMessage
from pathlib import Path

import pytest

from mailbox_mirror.exceptions import FolderFetchError, ImapConnectionError
from mailbox_mirror.imap import RawMessage
from mailbox_mirror.models import Account
from mailbox_mirror.store import MirrorRepository
from mailbox_mirror.sync import MailboxSynchronizer


def build_raw_email(
    *,
    subject: str | None = "Hello",
    sender: str | None = "Bob Builder <bob@ext.com>",
    to: str | None = "alice@co.com",
    message_id: str | None = "<m1@ext.com>",
    date: str | None = "Mon, 06 Jan 2025 10:00:00 +0000",
    text: str = "Plain body",
    html: str | None = None,
    attachment: bytes | None = None,
) -> bytes:
    msg = EmailMessage()
    if subject is not None:
        msg["Subject"] = subject
    if sender is not None:
        msg["From"] = sender
    if to is not None:
        msg["To"] = to
    if message_id is not None:
        msg["Message-ID"] = message_id
    if date is not None:
        msg["Date"] = date

    msg.set_content(text)
    if html is not None:
        msg.add_alternative(html, subtype="html")
    if attachment is not None:
        msg.add_attachment(
            attachment,
            maintype="application",
            subtype="octet-stream",
            filename="report.bin",
        )
    return msg.as_bytes()


class FakeConnector:
    """In-memory stand-in for MailboxConnector backed by a FakeMailbox."""

    def __init__(self, mailbox: FakeMailbox) -> None:
        self.mailbox = mailbox
        self._connected = False
        self.connect_calls = 0
        self.closed = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.mailbox.connect_error is not None:
            raise self.mailbox.connect_error
        self._connected = True

    async def close(self) -> None:
        self._connected = False
        self.closed = True

    async def test_connection(self) -> bool:
        try:
            await self.connect()
        except ImapConnectionError:
            return False
        await self.close()
        return True

    async def fetch_folder(self, folder: str, max_count: int):
        if self.mailbox.gate is not None:
            await self.mailbox.gate.wait()
        if folder in self.mailbox.failing_folders:
            raise FolderFetchError(folder, "simulated select failure")

        messages = self.mailbox.folders.get(folder, [])
        if max_count <= 0:
            return
        for message in messages[-max_count:]:
            yield message


class FakeMailbox:
    """Remote mailbox state shared by every FakeConnector session."""

    def __init__(self) -> None:
        self.folders: dict[str, list[RawMessage]] = {"INBOX": [], "Sent": []}
        self.failing_folders: set[str] = set()
        self.connect_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.sessions: list[FakeConnector] = []

    def add(
        self,
        folder: str,
        raw: bytes,
        *,
        uid: int | None = None,
        flags: tuple[str, ...] = (),
    ) -> RawMessage:
        messages = self.folders.setdefault(folder, [])
        message = RawMessage(
            folder=folder,
            uid=uid if uid is not None else len(messages) + 1,
            sequence=len(messages) + 1,
            flags=frozenset(flags),
            raw=raw,
        )
        messages.append(message)
        return message

    def connector(self) -> FakeConnector:
        session = FakeConnector(self)
        self.sessions.append(session)
        return session


@pytest.fixture
def raw_email():
    """Provide a builder for raw RFC 822 messages."""
    return build_raw_email


@pytest.fixture
def repository(tmp_path: Path) -> MirrorRepository:
    """Provide an initialized mirror store in a temporary directory."""
    repo = MirrorRepository(tmp_path / "mirror.sqlite3")
    repo.initialize()
    return repo


@pytest.fixture
def alice(repository: MirrorRepository) -> Account:
    """Provide a regular account whose mailbox is mirrored."""
    return repository.add_account("alice@co.com", first_name="Alice", last_name="Smith")


@pytest.fixture
def admin(repository: MirrorRepository) -> Account:
    """Provide a privileged account."""
    return repository.add_account("root@co.com", first_name="Root", role="admin")


@pytest.fixture
def fake_mailbox() -> FakeMailbox:
    """Provide an empty remote mailbox."""
    return FakeMailbox()


@pytest.fixture
def synchronizer(repository: MirrorRepository, fake_mailbox: FakeMailbox) -> MailboxSynchronizer:
    """Provide a synchronizer whose sessions talk to ``fake_mailbox``."""
    return MailboxSynchronizer(repository, fake_mailbox.connector)

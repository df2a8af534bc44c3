"""IMAP mailbox connector.

This module owns one read-only IMAP session per sync run.

Notes:
    imapclient is synchronous. The connector wraps each blocking call with
    `asyncio.to_thread` so the rest of the codebase can remain async-friendly.
    Folders are always opened read-only and bodies are fetched with
    BODY.PEEK[], so the server-side \\Seen flag is never touched.
"""

from __future__ import annotations

import asyncio
import ssl
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import structlog
from imapclient import IMAPClient, SocketTimeout
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError

from mailbox_mirror.config import ImapConfig
from mailbox_mirror.exceptions import AuthenticationError, FolderFetchError, ImapConnectionError

logger = structlog.get_logger()

SEEN_FLAG = "\\Seen"
FLAGGED_FLAG = "\\Flagged"

_FETCH_ITEMS = ["UID", "FLAGS", "BODY.PEEK[]"]
_FETCH_BATCH = 25


@dataclass(frozen=True)
class RawMessage:
    """One undecoded message plus the attributes the server assigned it."""

    folder: str
    uid: int
    sequence: int
    flags: frozenset[str]
    raw: bytes


def sequence_range(exists: int, max_count: int) -> tuple[int, int] | None:
    """Return the (first, last) sequence numbers of the newest ``max_count`` messages."""

    if exists <= 0 or max_count <= 0:
        return None
    return max(1, exists - max_count + 1), exists


def _decode_flag(flag: Any) -> str:
    if isinstance(flag, bytes):
        return flag.decode("utf-8", errors="replace")
    return str(flag)


class MailboxConnector:
    """Read-only IMAP session for mirroring remote folders."""

    def __init__(self, config: ImapConfig) -> None:
        """Initialize the connector.

        Args:
            config: Host, credentials, TLS and timeout settings.
        """

        self.config = config
        self._client: IMAPClient | None = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def __aenter__(self) -> MailboxConnector:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open and authenticate the session.

        Raises:
            ImapConnectionError: If the server cannot be reached.
            AuthenticationError: If the login is rejected or times out.
        """

        if self._client is not None:
            return

        logger.info(
            "imap_connecting",
            host=self.config.host,
            port=self.config.port,
            username=self.config.username,
            tls=self.config.use_tls,
        )
        self._client = await asyncio.to_thread(self._connect_sync)
        logger.info("imap_connected", host=self.config.host)

    async def close(self) -> None:
        """Log out and drop the session. Safe to call more than once."""

        client, self._client = self._client, None
        if client is None:
            return
        try:
            await asyncio.to_thread(client.logout)
        except Exception as exc:  # noqa: BLE001
            logger.warning("imap_logout_failed", error=str(exc))
        logger.info("imap_disconnected", host=self.config.host)

    async def test_connection(self) -> bool:
        """Connect and immediately disconnect, reporting whether it worked."""

        try:
            await self.connect()
        except ImapConnectionError as exc:
            logger.warning("imap_connection_test_failed", error=str(exc))
            return False
        await self.close()
        logger.info("imap_connection_test_succeeded", host=self.config.host)
        return True

    async def fetch_folder(self, folder: str, max_count: int) -> AsyncIterator[RawMessage]:
        """Yield the newest ``max_count`` messages of ``folder``, oldest first.

        Args:
            folder: Remote folder name (case-sensitive per server).
            max_count: Upper bound on messages fetched from this folder.

        Raises:
            ImapConnectionError: If the session is not open.
            FolderFetchError: If the folder cannot be selected or fetched.
        """

        if self._client is None:
            raise ImapConnectionError("IMAP session is not connected. Call connect() first.")

        exists = await self._call(folder, self._select_sync, folder)
        span = sequence_range(exists, max_count)
        logger.info("imap_folder_opened", folder=folder, exists=exists, fetching=span)
        if span is None:
            return

        first, last = span
        for start in range(first, last + 1, _FETCH_BATCH):
            end = min(last, start + _FETCH_BATCH - 1)
            batch = await self._call(folder, self._fetch_sync, folder, start, end)
            for message in batch:
                yield message

    async def _call(self, folder: str, func: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except (IMAPClientAbortError, OSError) as exc:
            # The session is unusable; the next folder reconnects.
            client, self._client = self._client, None
            if client is not None:
                try:
                    client.shutdown()
                except Exception as shutdown_exc:  # noqa: BLE001
                    logger.debug("imap_shutdown_failed", error=str(shutdown_exc))
            raise FolderFetchError(folder, str(exc)) from exc
        except IMAPClientError as exc:
            raise FolderFetchError(folder, str(exc)) from exc

    def _connect_sync(self) -> IMAPClient:
        cfg = self.config
        ssl_context = None
        if cfg.use_tls and not cfg.verify_tls:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        try:
            client = IMAPClient(
                host=cfg.host,
                port=cfg.port,
                ssl=cfg.use_tls,
                ssl_context=ssl_context,
                timeout=SocketTimeout(connect=cfg.connect_timeout, read=cfg.auth_timeout),
            )
        except Exception as exc:  # noqa: BLE001
            raise ImapConnectionError(f"Cannot connect to {cfg.host}:{cfg.port}: {exc}") from exc

        try:
            client.login(cfg.username, cfg.secret)
        except Exception as exc:  # noqa: BLE001
            try:
                client.shutdown()
            except Exception:  # noqa: BLE001
                pass
            if isinstance(exc, LoginError):
                raise AuthenticationError(f"Login rejected for {cfg.username}: {exc}") from exc
            raise AuthenticationError(f"Authentication failed for {cfg.username}: {exc}") from exc

        # Address messages by sequence number so the newest N can be ranged.
        client.use_uid = False
        return client

    def _select_sync(self, folder: str) -> int:
        assert self._client is not None
        info = self._client.select_folder(folder, readonly=True)
        return int(info.get(b"EXISTS", 0))

    def _fetch_sync(self, folder: str, start: int, end: int) -> list[RawMessage]:
        assert self._client is not None
        response = self._client.fetch(f"{start}:{end}", _FETCH_ITEMS)

        messages: list[RawMessage] = []
        for seq in sorted(response):
            data = response[seq]
            raw = data.get(b"BODY[]")
            if raw is None:
                logger.warning("imap_message_without_body", sequence=seq)
                continue
            messages.append(
                RawMessage(
                    folder=folder,
                    uid=int(data.get(b"UID", 0)),
                    sequence=int(seq),
                    flags=frozenset(_decode_flag(f) for f in data.get(b"FLAGS", ())),
                    raw=bytes(raw),
                )
            )
        return messages

"""Detect remote messages that are already mirrored."""

from __future__ import annotations

import asyncio

import structlog

from mailbox_mirror.store import MirrorRepository

logger = structlog.get_logger()


class DuplicateGuard:
    """Identity check in front of every mirror write.

    Identity is the protocol Message-ID when the message has one, otherwise the
    folder-scoped server UID. Both are scoped to the owning account.
    """

    def __init__(self, repository: MirrorRepository) -> None:
        self._repository = repository

    async def exists(
        self,
        owner_id: int,
        message_id: str | None,
        folder: str,
        server_uid: int,
    ) -> bool:
        found = await asyncio.to_thread(
            self._repository.exists,
            owner_id,
            message_id,
            folder,
            server_uid,
        )
        if found:
            logger.debug(
                "duplicate_message_skipped",
                owner_id=owner_id,
                message_id=message_id,
                folder=folder,
                server_uid=server_uid,
            )
        return found

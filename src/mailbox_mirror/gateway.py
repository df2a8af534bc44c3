"""Bounded read access to the mirror store.

Every mailbox view exposes at most ``MAX_VISIBLE`` rows, whatever page and
limit the caller asks for. Pages past the ceiling are empty, not errors.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from mailbox_mirror.models import Account, Category, MessagePage
from mailbox_mirror.store import MirrorRepository

logger = structlog.get_logger()

MAX_VISIBLE = 100


@dataclass(frozen=True)
class Window:
    """Effective pagination window after applying the visibility ceiling."""

    limit: int
    skip: int
    fetch: int


def bounded_window(page: int, limit: int, max_visible: int = MAX_VISIBLE) -> Window:
    """Clamp a page/limit request to the visible part of a view.

    Args:
        page: 1-based page number.
        limit: Requested page size.
        max_visible: Ceiling on rows visible in the view.

    Returns:
        Window: Effective limit, skip and number of rows to fetch.
    """

    page = max(1, int(page))
    effective_limit = max(0, min(int(limit), max_visible))
    skip = min((page - 1) * effective_limit, max_visible)
    fetch = max(0, min(effective_limit, max_visible - skip))
    return Window(limit=effective_limit, skip=skip, fetch=fetch)


class BoundedReadGateway:
    """Query side of the mirror: paginated inbox and sent views."""

    def __init__(self, repository: MirrorRepository) -> None:
        self._repository = repository

    async def list_inbox(
        self,
        owner: Account,
        page: int = 1,
        limit: int = 50,
        search: str | None = None,
    ) -> MessagePage:
        return await asyncio.to_thread(self._list, owner, Category.INBOX, page, limit, search)

    async def list_sent(self, owner: Account, page: int = 1, limit: int = 50) -> MessagePage:
        return await asyncio.to_thread(self._list, owner, Category.SENT, page, limit, None)

    def _list(
        self,
        owner: Account,
        category: Category,
        page: int,
        limit: int,
        search: str | None,
    ) -> MessagePage:
        window = bounded_window(page, limit)

        messages = []
        if window.fetch > 0:
            messages = self._repository.list_view(
                owner.id,
                category,
                offset=window.skip,
                limit=window.fetch,
                search=search,
                cap=MAX_VISIBLE,
            )

        total = self._repository.count_view(owner.id, category, search=search, cap=MAX_VISIBLE)
        unread = self._repository.count_unread(owner.id, category, cap=MAX_VISIBLE)

        logger.debug(
            "mailbox_view_listed",
            owner_id=owner.id,
            category=category.value,
            page=page,
            limit=window.limit,
            skip=window.skip,
            returned=len(messages),
            total=total,
        )

        return MessagePage(
            messages=messages,
            page=max(1, int(page)),
            limit=window.limit,
            total=total,
            unread_count=unread,
            max_visible=MAX_VISIBLE,
            has_more=window.skip + len(messages) < total,
        )

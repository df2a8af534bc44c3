"""FastAPI application for the mailbox mirror."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailbox_mirror import __version__
from mailbox_mirror.api.mailbox import router as mailbox_router
from mailbox_mirror.api.models import ErrorResponse
from mailbox_mirror.api.sync import router as sync_router
from mailbox_mirror.config import Settings, get_settings
from mailbox_mirror.exceptions import (
    AccountNotFoundError,
    ConfigurationError,
    ImapConnectionError,
    SyncInProgressError,
)
from mailbox_mirror.gateway import BoundedReadGateway
from mailbox_mirror.store import MirrorRepository
from mailbox_mirror.sync import MailboxSynchronizer
from mailbox_mirror.utils import configure_logging

logger = structlog.get_logger()


def _error(status_code: int, message: str, exc: Exception, **extra: object) -> JSONResponse:
    body = ErrorResponse(message=message, error=str(exc)).model_dump()
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


async def _sync_in_progress(request: Request, exc: Exception) -> JSONResponse:
    synchronizer: MailboxSynchronizer = request.app.state.synchronizer
    return _error(409, "Email sync is already in progress", exc, status=synchronizer.status())


async def _account_not_found(request: Request, exc: Exception) -> JSONResponse:
    return _error(404, "Account not found", exc)


async def _imap_unavailable(request: Request, exc: Exception) -> JSONResponse:
    logger.error("imap_unavailable", path=request.url.path, error=str(exc))
    return _error(502, "Cannot reach the IMAP server", exc)


async def _misconfigured(request: Request, exc: Exception) -> JSONResponse:
    logger.error("configuration_error", path=request.url.path, error=str(exc))
    return _error(500, "Mailbox sync is not configured", exc)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("mailbox_mirror_api_started", version=__version__)
    yield
    logger.info("mailbox_mirror_api_stopped")


def create_app(
    settings: Settings | None = None,
    *,
    repository: MirrorRepository | None = None,
    synchronizer: MailboxSynchronizer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings. If None, uses default settings.
        repository: Mirror store. Built from ``settings`` when omitted.
        synchronizer: Sync orchestrator. Built from ``settings`` when omitted.
    """

    settings = settings or get_settings()
    configure_logging(settings)

    if repository is None:
        repository = MirrorRepository(settings.mirror_db_path)
    repository.initialize()

    app = FastAPI(title="Mailbox Mirror", version=__version__, lifespan=_lifespan)
    app.state.settings = settings
    app.state.repository = repository
    app.state.synchronizer = synchronizer or MailboxSynchronizer.from_settings(settings, repository)
    app.state.gateway = BoundedReadGateway(repository)

    app.add_exception_handler(SyncInProgressError, _sync_in_progress)
    app.add_exception_handler(AccountNotFoundError, _account_not_found)
    app.add_exception_handler(ImapConnectionError, _imap_unavailable)
    app.add_exception_handler(ConfigurationError, _misconfigured)

    app.include_router(sync_router)
    app.include_router(mailbox_router)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app

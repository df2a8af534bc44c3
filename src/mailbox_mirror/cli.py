"""Command-line interface for Mailbox Mirror.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from mailbox_mirror import __version__
from mailbox_mirror.config import Settings, get_settings
from mailbox_mirror.exceptions import MailboxMirrorError
from mailbox_mirror.gateway import BoundedReadGateway
from mailbox_mirror.models import MessagePage
from mailbox_mirror.store import MirrorRepository
from mailbox_mirror.sync import MailboxSynchronizer
from mailbox_mirror.utils import configure_logging

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailbox-mirror", description="Mailbox Mirror")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Account commands
    accounts_parser = subparsers.add_parser("accounts", help="Manage local mailbox owners")
    accounts_sub = accounts_parser.add_subparsers(dest="accounts_command", required=True)

    add_parser = accounts_sub.add_parser("add", help="Register a local account")
    add_parser.add_argument("email", help="Mailbox address of the account")
    add_parser.add_argument("--first-name", default="", help="Given name")
    add_parser.add_argument("--last-name", default="", help="Family name")
    add_parser.add_argument("--role", default="customer", help="Account role (admin, main_admin, customer)")

    sync_parser = subparsers.add_parser("sync", help="Mirror INBOX and Sent for an account")
    sync_parser.add_argument("email", help="Mailbox address of the owning account")
    sync_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Newest messages per folder (default: settings sync_per_folder_limit)",
    )
    sync_parser.add_argument(
        "--force",
        action="store_true",
        help="Delete previously synced rows for the account first",
    )

    inbox_parser = subparsers.add_parser("inbox", help="List the mirrored inbox")
    inbox_parser.add_argument("email", help="Mailbox address of the owning account")
    inbox_parser.add_argument("--page", type=int, default=1, help="1-based page number")
    inbox_parser.add_argument("--limit", type=int, default=25, help="Page size")
    inbox_parser.add_argument("--search", default=None, help="Match subject, body or sender")

    sent_parser = subparsers.add_parser("sent", help="List the mirrored sent folder")
    sent_parser.add_argument("email", help="Mailbox address of the owning account")
    sent_parser.add_argument("--page", type=int, default=1, help="1-based page number")
    sent_parser.add_argument("--limit", type=int, default=25, help="Page size")

    subparsers.add_parser("test-connection", help="Check the configured IMAP login")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind host (default: settings api_host)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default: settings api_port)")

    return parser


def _repository(settings: Settings) -> MirrorRepository:
    repo = MirrorRepository(settings.mirror_db_path)
    repo.initialize()
    return repo


def _cmd_accounts_add(args: argparse.Namespace, settings: Settings) -> int:
    repo = _repository(settings)
    account = repo.add_account(
        args.email,
        first_name=args.first_name,
        last_name=args.last_name,
        role=args.role,
    )
    print(f"Created account {account.id}: {account.email} ({account.role})")
    return 0


async def _cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    repo = _repository(settings)
    synchronizer = MailboxSynchronizer.from_settings(settings, repo)

    if args.force:
        deleted, report = await synchronizer.force_sync(args.email, args.limit)
        print(f"Deleted {deleted} previously synced messages")
    else:
        report = await synchronizer.sync_mailbox(args.email, args.limit)

    for name, counts in (("Inbox", report.inbox), ("Sent", report.sent), ("Total", report.total)):
        print(
            f"{name}: {counts.saved}/{counts.fetched} saved, "
            f"{counts.skipped} skipped, {counts.dropped} dropped"
        )
    for folder, error in report.errors.items():
        print(f"Folder {folder} failed: {error}")
    return 0


def _print_page(page: MessagePage) -> None:
    for m in page.messages:
        state = "READ" if m.flags.is_read else "UNREAD"
        star = "*" if m.flags.is_starred else " "
        print(f"{state}\t{star}\t{m.sent_at.isoformat()}\t{m.from_address}\t{m.subject}")
    print(
        f"\nPage {page.page} ({len(page.messages)} shown, {page.total} visible, "
        f"{page.unread_count} unread, cap {page.max_visible})"
    )


async def _cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    repo = _repository(settings)
    account = repo.get_account_by_email(args.email)
    if account is None:
        print(f"Account not found: {args.email}", file=sys.stderr)
        return 1

    gateway = BoundedReadGateway(repo)
    if args.command == "inbox":
        page = await gateway.list_inbox(account, page=args.page, limit=args.limit, search=args.search)
    else:
        page = await gateway.list_sent(account, page=args.page, limit=args.limit)

    _print_page(page)
    return 0


async def _cmd_test_connection(settings: Settings) -> int:
    synchronizer = MailboxSynchronizer.from_settings(settings, MirrorRepository(settings.mirror_db_path))
    ok = await synchronizer.test_connection()
    print(f"Connection to {settings.imap_host}:{settings.imap_port} {'succeeded' if ok else 'failed'}")
    return 0 if ok else 1


def _cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    uvicorn.run(
        "mailbox_mirror.api.app:create_app",
        factory=True,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        log_level=settings.log_level.lower(),
    )
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Mailbox Mirror CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()
    configure_logging(settings)

    logger.info("mailbox_mirror_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    try:
        if parsed.command == "accounts" and parsed.accounts_command == "add":
            return _cmd_accounts_add(parsed, settings)
        if parsed.command == "sync":
            return asyncio.run(_cmd_sync(parsed, settings))
        if parsed.command in ("inbox", "sent"):
            return asyncio.run(_cmd_list(parsed, settings))
        if parsed.command == "test-connection":
            return asyncio.run(_cmd_test_connection(settings))
        if parsed.command == "serve":
            return _cmd_serve(parsed, settings)
    except MailboxMirrorError as exc:
        logger.error("command_failed", command=parsed.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())

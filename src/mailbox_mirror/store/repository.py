"""SQLite-backed mirror store.

Holds the local copies of remote mailbox messages plus the minimal account
records the sync engine resolves owners against. Every write is a single-row
statement committed on its own; no transaction spans a folder or a run.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

from mailbox_mirror.exceptions import StoreError
from mailbox_mirror.models import (
    Account,
    Category,
    MessageFlags,
    MirroredMessage,
    SourceMetadata,
)

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

_MESSAGE_COLUMNS = """
    id,
    owner_id,
    to_addr,
    from_addr,
    from_name,
    subject,
    html,
    text,
    category,
    is_read,
    is_starred,
    is_important,
    has_attachments,
    sender_name,
    recipient_name,
    source_metadata_json,
    sent_at,
    created_at,
    updated_at
"""


@dataclass(frozen=True)
class SyncHistory:
    """Summary of the sync-origin rows an account owns."""

    total_synced: int
    latest: list[MirroredMessage]


def _utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _is_missing_table(exc: sqlite3.OperationalError) -> bool:
    return "no such table" in str(exc).lower()


class MirrorRepository:
    """Repository for mirrored messages and their owning accounts."""

    def __init__(self, db_path: Path) -> None:
        """Create a repository.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def initialize(self) -> None:
        """Create or upgrade the mirror schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("mirror_schema_created", version=_SCHEMA_VERSION, path=str(self._db_path))
                return

            if current_version != _SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    # -- accounts ---------------------------------------------------------

    def add_account(
        self,
        email: str,
        *,
        first_name: str = "",
        last_name: str = "",
        role: str = "customer",
    ) -> Account:
        """Register a local account.

        Raises:
            StoreError: If an account with this email already exists.
        """

        try:
            with self._connect() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO accounts (email, first_name, last_name, role)
                    VALUES (?, ?, ?, ?);
                    """,
                    (email.strip(), first_name, last_name, role),
                )
                conn.commit()
                account_id = int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise StoreError(f"Account already exists: {email}") from exc

        logger.info("account_created", account_id=account_id, email=email, role=role)
        return Account(
            id=account_id,
            email=email.strip(),
            first_name=first_name,
            last_name=last_name,
            role=role,
        )

    def get_account_by_email(self, email: str) -> Account | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE email = ? COLLATE NOCASE",
                (email.strip(),),
            ).fetchone()
        return self._row_to_account(row) if row is not None else None

    def get_account(self, account_id: int) -> Account | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        return self._row_to_account(row) if row is not None else None

    def touch_last_sync(self, account_id: int, when: datetime | None = None) -> None:
        """Record the time of the account's last successful sync."""

        when = when or datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                "UPDATE accounts SET last_email_sync = ? WHERE id = ?",
                (_utc_iso(when), account_id),
            )
            conn.commit()

    # -- mirrored messages ------------------------------------------------

    def exists(
        self,
        owner_id: int,
        message_id: str | None,
        folder: str,
        server_uid: int,
    ) -> bool:
        """Return whether a remote message is already mirrored for ``owner_id``.

        The protocol Message-ID is used when present because it is stable
        across folders. Messages without one fall back to (folder, uid).
        A store whose table does not exist yet holds nothing.
        """

        try:
            with self._connect() as conn:
                if message_id:
                    row = conn.execute(
                        """
                        SELECT 1 FROM mirrored_messages
                        WHERE owner_id = ? AND message_id = ?
                        LIMIT 1;
                        """,
                        (owner_id, message_id),
                    ).fetchone()
                else:
                    row = conn.execute(
                        """
                        SELECT 1 FROM mirrored_messages
                        WHERE owner_id = ? AND folder = ? AND server_uid = ?
                        LIMIT 1;
                        """,
                        (owner_id, folder, server_uid),
                    ).fetchone()
        except sqlite3.OperationalError as exc:
            if _is_missing_table(exc):
                logger.warning("mirror_table_missing", path=str(self._db_path))
                return False
            raise StoreError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

        return row is not None

    def insert_message(self, message: MirroredMessage) -> MirroredMessage:
        """Persist one new mirror row and return it with its id and timestamps.

        Raises:
            StoreError: If the row violates an identity constraint or the
                write fails.
        """

        now = datetime.now(timezone.utc)
        meta = message.source_metadata

        try:
            with self._connect() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO mirrored_messages (
                        owner_id,
                        to_addr,
                        from_addr,
                        from_name,
                        subject,
                        html,
                        text,
                        category,
                        is_read,
                        is_starred,
                        is_important,
                        has_attachments,
                        sender_name,
                        recipient_name,
                        sync_origin,
                        message_id,
                        server_uid,
                        folder,
                        source_metadata_json,
                        sent_at,
                        created_at,
                        updated_at
                    )
                    VALUES (
                        :owner_id,
                        :to_addr,
                        :from_addr,
                        :from_name,
                        :subject,
                        :html,
                        :text,
                        :category,
                        :is_read,
                        :is_starred,
                        :is_important,
                        :has_attachments,
                        :sender_name,
                        :recipient_name,
                        :sync_origin,
                        :message_id,
                        :server_uid,
                        :folder,
                        :source_metadata_json,
                        :sent_at,
                        :created_at,
                        :updated_at
                    );
                    """,
                    {
                        "owner_id": message.owner_id,
                        "to_addr": message.to,
                        "from_addr": message.from_address,
                        "from_name": message.from_name,
                        "subject": message.subject,
                        "html": message.html,
                        "text": message.text,
                        "category": message.category.value,
                        "is_read": 1 if message.flags.is_read else 0,
                        "is_starred": 1 if message.flags.is_starred else 0,
                        "is_important": 1 if message.flags.is_important else 0,
                        "has_attachments": 1 if message.flags.has_attachments else 0,
                        "sender_name": message.sender_name,
                        "recipient_name": message.recipient_name,
                        "sync_origin": 1 if meta.sync_origin else 0,
                        "message_id": meta.message_id,
                        "server_uid": meta.server_uid,
                        "folder": meta.folder,
                        "source_metadata_json": meta.model_dump_json(),
                        "sent_at": _utc_iso(message.sent_at),
                        "created_at": now.isoformat(),
                        "updated_at": now.isoformat(),
                    },
                )
                conn.commit()
                row_id = int(cur.lastrowid)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot persist message {meta.message_id or meta.server_uid}: {exc}") from exc

        return message.model_copy(update={"id": row_id, "created_at": now, "updated_at": now})

    def delete_sync_messages(self, owner_id: int) -> int:
        """Delete every sync-origin row of ``owner_id`` and return how many went."""

        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM mirrored_messages WHERE owner_id = ? AND sync_origin = 1",
                (owner_id,),
            )
            conn.commit()
            deleted = int(cur.rowcount or 0)

        logger.info("sync_messages_deleted", owner_id=owner_id, deleted=deleted)
        return deleted

    def list_view(
        self,
        owner_id: int,
        category: Category,
        *,
        offset: int,
        limit: int,
        search: str | None = None,
        cap: int | None = None,
    ) -> list[MirroredMessage]:
        """Return one window of a view, newest first.

        ``cap`` bounds the view to its newest rows before ``search`` is
        applied, so a search never reaches past the visible part.
        """

        source, where, params = self._view_query(owner_id, category, search, cap)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM {source}
                WHERE {where}
                ORDER BY sent_at DESC, id DESC
                LIMIT ? OFFSET ?;
                """,
                (*params, limit, offset),
            ).fetchall()

        return [self._row_to_message(row) for row in rows]

    def count_view(
        self,
        owner_id: int,
        category: Category,
        *,
        search: str | None = None,
        cap: int,
    ) -> int:
        """Count the rows of a view bounded to its newest ``cap`` rows."""

        source, where, params = self._view_query(owner_id, category, search, cap)
        with self._connect() as conn:
            (count,) = conn.execute(
                f"SELECT COUNT(*) FROM {source} WHERE {where};",
                params,
            ).fetchone()
        return int(count or 0)

    def count_unread(self, owner_id: int, category: Category, *, cap: int) -> int:
        """Count unread rows among the newest ``cap`` rows of a view."""

        with self._connect() as conn:
            (count,) = conn.execute(
                """
                SELECT COUNT(*) FROM (
                    SELECT is_read FROM mirrored_messages
                    WHERE owner_id = ? AND category = ?
                    ORDER BY sent_at DESC, id DESC
                    LIMIT ?
                )
                WHERE is_read = 0;
                """,
                (owner_id, category.value, cap),
            ).fetchone()
        return int(count or 0)

    def sync_history(self, owner_id: int, latest: int = 5) -> SyncHistory:
        """Count sync-origin rows and return the most recently sent ones."""

        with self._connect() as conn:
            (total,) = conn.execute(
                "SELECT COUNT(*) FROM mirrored_messages WHERE owner_id = ? AND sync_origin = 1",
                (owner_id,),
            ).fetchone()
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM mirrored_messages
                WHERE owner_id = ? AND sync_origin = 1
                ORDER BY sent_at DESC, id DESC
                LIMIT ?;
                """,
                (owner_id, latest),
            ).fetchall()

        return SyncHistory(
            total_synced=int(total or 0),
            latest=[self._row_to_message(row) for row in rows],
        )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=30.0)
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            conn.close()

    def _view_query(
        self,
        owner_id: int,
        category: Category,
        search: str | None,
        cap: int | None,
    ) -> tuple[str, str, tuple[object, ...]]:
        # LIMIT -1 is unbounded in SQLite.
        source = """
            (
                SELECT * FROM mirrored_messages
                WHERE owner_id = ? AND category = ?
                ORDER BY sent_at DESC, id DESC
                LIMIT ?
            ) AS visible
        """
        params: tuple[object, ...] = (owner_id, category.value, -1 if cap is None else cap)

        where = "1 = 1"
        term = (search or "").strip()
        if term:
            pattern = _like_pattern(term)
            where = """
                subject LIKE ? ESCAPE '\\'
                OR text LIKE ? ESCAPE '\\'
                OR from_addr LIKE ? ESCAPE '\\'
                OR COALESCE(from_name, '') LIKE ? ESCAPE '\\'
            """
            params += (pattern, pattern, pattern, pattern)

        return source, where, params

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS accounts (
                id INTEGER PRIMARY KEY,
                email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                first_name TEXT NOT NULL DEFAULT '',
                last_name TEXT NOT NULL DEFAULT '',
                role TEXT NOT NULL DEFAULT 'customer',
                last_email_sync TEXT
            );

            CREATE TABLE IF NOT EXISTS mirrored_messages (
                id INTEGER PRIMARY KEY,
                owner_id INTEGER NOT NULL REFERENCES accounts(id),
                to_addr TEXT NOT NULL,
                from_addr TEXT NOT NULL,
                from_name TEXT,
                subject TEXT NOT NULL,
                html TEXT NOT NULL DEFAULT '',
                text TEXT NOT NULL DEFAULT '',
                category TEXT NOT NULL CHECK (category IN ('inbox', 'sent')),
                is_read INTEGER NOT NULL DEFAULT 0,
                is_starred INTEGER NOT NULL DEFAULT 0,
                is_important INTEGER NOT NULL DEFAULT 0,
                has_attachments INTEGER NOT NULL DEFAULT 0,
                sender_name TEXT,
                recipient_name TEXT,
                sync_origin INTEGER NOT NULL DEFAULT 0,
                message_id TEXT,
                server_uid INTEGER,
                folder TEXT,
                source_metadata_json TEXT NOT NULL DEFAULT '{}',
                sent_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_mirrored_owner_category_sent
                ON mirrored_messages(owner_id, category, sent_at DESC);

            CREATE UNIQUE INDEX IF NOT EXISTS uq_mirrored_owner_message_id
                ON mirrored_messages(owner_id, message_id)
                WHERE message_id IS NOT NULL;

            CREATE UNIQUE INDEX IF NOT EXISTS uq_mirrored_owner_folder_uid
                ON mirrored_messages(owner_id, folder, server_uid)
                WHERE server_uid IS NOT NULL;
            """
        )

    def _row_to_account(self, row: sqlite3.Row) -> Account:
        last_sync = row["last_email_sync"]
        return Account(
            id=row["id"],
            email=row["email"],
            first_name=row["first_name"] or "",
            last_name=row["last_name"] or "",
            role=row["role"],
            last_email_sync=datetime.fromisoformat(last_sync) if last_sync else None,
        )

    def _row_to_message(self, row: sqlite3.Row) -> MirroredMessage:
        return MirroredMessage(
            id=row["id"],
            owner_id=row["owner_id"],
            to=row["to_addr"],
            from_address=row["from_addr"],
            from_name=row["from_name"],
            subject=row["subject"],
            html=row["html"] or "",
            text=row["text"] or "",
            category=Category(row["category"]),
            flags=MessageFlags(
                is_read=bool(row["is_read"]),
                is_starred=bool(row["is_starred"]),
                is_important=bool(row["is_important"]),
                has_attachments=bool(row["has_attachments"]),
            ),
            sender_name=row["sender_name"],
            recipient_name=row["recipient_name"],
            source_metadata=SourceMetadata.model_validate(json.loads(row["source_metadata_json"])),
            sent_at=datetime.fromisoformat(row["sent_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

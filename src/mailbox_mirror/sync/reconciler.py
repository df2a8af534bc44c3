"""Turn a parsed remote message into a mirror-row candidate.

The folder a message was fetched from decides its local category. The
direction implied by the From/To addresses is recorded alongside for audits
but never overrides the folder. A message present in several folders is
mirrored once, under the folder it was first seen in.
"""

from __future__ import annotations

from email.utils import getaddresses

from mailbox_mirror.imap import FLAGGED_FLAG, SEEN_FLAG, RawMessage
from mailbox_mirror.models import (
    Account,
    Category,
    MessageFlags,
    MirroredMessage,
    ParsedMessage,
    SourceMetadata,
)


def _addresses(header: str) -> set[str]:
    return {addr.strip().lower() for _, addr in getaddresses([header]) if addr}


def infer_direction(parsed: ParsedMessage, owner_email: str) -> str:
    """Return ``sent``, ``inbox``, ``both`` or ``none`` from the owner's position."""

    owner = owner_email.strip().lower()
    is_from = owner in _addresses(parsed.from_address)
    is_to = owner in _addresses(parsed.to)
    if is_from and is_to:
        return "both"
    if is_from:
        return "sent"
    if is_to:
        return "inbox"
    return "none"


def map_flags(server_flags: frozenset[str], *, has_attachments: bool = False) -> MessageFlags:
    """Map IMAP system flags onto local read/starred flags."""

    tokens = {flag.lower() for flag in server_flags}
    return MessageFlags(
        is_read=SEEN_FLAG.lower() in tokens,
        is_starred=FLAGGED_FLAG.lower() in tokens,
        is_important=False,
        has_attachments=has_attachments,
    )


def reconcile(
    parsed: ParsedMessage,
    raw: RawMessage,
    owner: Account,
    category: Category,
) -> MirroredMessage:
    """Build the mirror row for one message.

    Args:
        parsed: Decoded message content.
        raw: Server attributes (folder, uid, flags) of the same message.
        owner: Account whose mailbox is being mirrored.
        category: Category of the folder the message was fetched from.

    Returns:
        MirroredMessage: An unsaved candidate row.
    """

    direction = infer_direction(parsed, owner.email)
    owner_sent = direction in ("sent", "both")
    owner_received = direction in ("inbox", "both")

    return MirroredMessage(
        owner_id=owner.id,
        to=parsed.to,
        from_address=parsed.from_address,
        from_name=parsed.from_name,
        subject=parsed.subject,
        html=parsed.html,
        text=parsed.text,
        category=category,
        flags=map_flags(raw.flags, has_attachments=parsed.has_attachments),
        sender_name=owner.full_name if owner_sent else parsed.from_address,
        recipient_name=owner.full_name if owner_received else parsed.to,
        source_metadata=SourceMetadata(
            sync_origin=True,
            message_id=parsed.message_id,
            folder=raw.folder,
            server_uid=raw.uid,
            original_date=parsed.sent_at,
            server_flags=sorted(raw.flags),
            address_direction=direction,
        ),
        sent_at=parsed.sent_at,
    )

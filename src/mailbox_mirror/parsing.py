"""Helpers for parsing raw RFC 822 messages into internal models.

Parsing is pure: no I/O and no clock reads beyond the "now" fallback for
messages that carry no usable Date header.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from mailbox_mirror.exceptions import MessageParseError
from mailbox_mirror.models import ParsedMessage

NO_SUBJECT = "(No Subject)"
UNKNOWN_ADDRESS = "unknown"


def _header(em: EmailMessage, name: str) -> str:
    value = em.get(name)
    if value is None:
        return ""
    return str(value).strip()


def _raw_header(em: EmailMessage, name: str) -> str:
    # The structured Date header raises on garbage in some Python versions.
    for key, value in em.raw_items():
        if key.lower() == name.lower():
            return " ".join(str(value).split())
    return ""


def _parse_date(value: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _display_name(value: str) -> str | None:
    if not value:
        return None
    pairs = getaddresses([value])
    if not pairs:
        return None
    name, addr = pairs[0]
    return name or addr or None


def _part_content(part: EmailMessage | None) -> str:
    if part is None:
        return ""
    try:
        content = part.get_content()
    except (LookupError, UnicodeError):
        # Unknown or lying charset; fall back to a lossy decode.
        payload = part.get_payload(decode=True) or b""
        content = payload.decode("utf-8", errors="replace")
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return str(content)


def _has_attachments(em: EmailMessage) -> bool:
    for part in em.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            return True
    return False


def parse_message(raw: bytes) -> ParsedMessage:
    """Decode one raw message.

    Args:
        raw: The full RFC 822 bytes as returned by the server.

    Returns:
        ParsedMessage: Normalized headers and bodies.

    Raises:
        MessageParseError: If the bytes cannot be decoded as a message.
    """

    if not raw:
        raise MessageParseError("Empty message body")

    try:
        em = BytesParser(policy=policy.default).parsebytes(raw)
        if not em.keys():
            raise MessageParseError("Message has no headers")

        from_raw = _header(em, "From")
        sent_at = _parse_date(_raw_header(em, "Date")) or datetime.now(timezone.utc)

        return ParsedMessage(
            message_id=_header(em, "Message-ID") or None,
            subject=_header(em, "Subject") or NO_SUBJECT,
            from_address=from_raw or UNKNOWN_ADDRESS,
            from_name=_display_name(from_raw),
            to=_header(em, "To") or UNKNOWN_ADDRESS,
            sent_at=sent_at,
            html=_part_content(em.get_body(preferencelist=("html",))),
            text=_part_content(em.get_body(preferencelist=("plain",))).strip(),
            has_attachments=_has_attachments(em),
        )
    except MessageParseError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise MessageParseError(str(exc)) from exc

"""Read-only IMAP access for mailbox mirroring."""

from .client import FLAGGED_FLAG, SEEN_FLAG, MailboxConnector, RawMessage, sequence_range

__all__ = ["FLAGGED_FLAG", "MailboxConnector", "RawMessage", "SEEN_FLAG", "sequence_range"]

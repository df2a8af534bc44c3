"""Mailbox synchronization: reconcile, deduplicate and persist remote messages."""

from mailbox_mirror.sync.duplicate_guard import DuplicateGuard
from mailbox_mirror.sync.orchestrator import ConnectorFactory, MailboxSynchronizer, SyncSlot
from mailbox_mirror.sync.reconciler import infer_direction, map_flags, reconcile

__all__ = [
    "ConnectorFactory",
    "DuplicateGuard",
    "MailboxSynchronizer",
    "SyncSlot",
    "infer_direction",
    "map_flags",
    "reconcile",
]

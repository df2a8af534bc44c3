"""Local mirror store.

The mirror table keeps one write-once row per remote message and account,
queried by the bounded read gateway.
"""

from .repository import MirrorRepository, SyncHistory

__all__ = ["MirrorRepository", "SyncHistory"]

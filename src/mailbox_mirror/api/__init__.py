"""HTTP API for mailbox sync and bounded mailbox views."""

from .app import create_app

__all__ = ["create_app"]

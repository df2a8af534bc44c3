"""Mailbox Mirror - one-directional IMAP mailbox synchronization.

This package pulls messages from a remote IMAP account into a local mirror
table and serves bounded, paginated inbox/sent views over that mirror.
"""

__version__ = "0.1.0"

from mailbox_mirror.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]

"""Custom exceptions for Mailbox Mirror."""


class MailboxMirrorError(Exception):
    """Base exception for all Mailbox Mirror errors."""


class ConfigurationError(MailboxMirrorError):
    """Exception raised for configuration related errors."""


class ImapConnectionError(MailboxMirrorError):
    """Exception raised when the IMAP session cannot be opened."""


class AuthenticationError(ImapConnectionError):
    """Exception raised when the IMAP server rejects the login."""


class FolderFetchError(MailboxMirrorError):
    """Exception raised when a single folder cannot be opened or fetched."""

    def __init__(self, folder: str, message: str) -> None:
        super().__init__(f"{folder}: {message}")
        self.folder = folder


class MessageParseError(MailboxMirrorError):
    """Exception raised when a raw message cannot be decoded."""


class StoreError(MailboxMirrorError):
    """Exception raised when the mirror store rejects a write."""


class SyncInProgressError(MailboxMirrorError):
    """Exception raised when a sync is requested while another is running."""


class AccountNotFoundError(MailboxMirrorError):
    """Exception raised when no local account matches an email address."""

    def __init__(self, email: str) -> None:
        super().__init__(f"Account not found: {email}")
        self.email = email

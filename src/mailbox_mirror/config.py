"""Configuration management for Mailbox Mirror.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from mailbox_mirror.exceptions import ConfigurationError


@dataclass(frozen=True)
class ImapConfig:
    """Connection parameters for one IMAP session."""

    host: str
    port: int
    username: str
    secret: str
    use_tls: bool = True
    verify_tls: bool = True
    connect_timeout: float = 30.0
    auth_timeout: float = 30.0


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAILBOX_MIRROR_ prefix (e.g., MAILBOX_MIRROR_IMAP_HOST).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILBOX_MIRROR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # IMAP Configuration
    imap_host: str = Field(
        default="imap.secureserver.net",
        description="IMAP server host name",
    )
    imap_port: int = Field(
        default=993,
        description="IMAP server port",
    )
    imap_username: str | None = Field(
        default=None,
        description="Login name for the synced mailbox",
    )
    imap_password: SecretStr | None = Field(
        default=None,
        description="Password for the synced mailbox",
    )
    imap_use_tls: bool = Field(
        default=True,
        description="Connect over implicit TLS (IMAPS)",
    )
    imap_verify_tls: bool = Field(
        default=True,
        description="Verify the server certificate when using TLS",
    )
    imap_connect_timeout: float = Field(
        default=30.0,
        description="Timeout for opening the IMAP connection in seconds",
    )
    imap_auth_timeout: float = Field(
        default=30.0,
        description="Timeout for login and subsequent reads in seconds",
    )

    # Folder Configuration
    inbox_folder: str = Field(
        default="INBOX",
        description="Remote folder mirrored as the inbox view",
    )
    sent_folder: str = Field(
        default="Sent",
        description="Remote folder mirrored as the sent view",
    )

    # Sync Configuration
    sync_per_folder_limit: int = Field(
        default=100,
        ge=1,
        description="Maximum number of most recent messages fetched per folder and run",
    )

    # Mirror store configuration
    mirror_db_path: Path = Field(
        default=Path("mailbox_mirror.sqlite3"),
        description="Path to the SQLite database holding the mirror table",
    )

    # API Configuration
    api_host: str = Field(
        default="127.0.0.1",
        description="Host the HTTP API binds to",
    )
    api_port: int = Field(
        default=8080,
        description="Port the HTTP API binds to",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    def imap_config(self) -> ImapConfig:
        """Build the connector configuration.

        Raises:
            ConfigurationError: If the IMAP credentials are not configured.
        """
        if not self.imap_username or self.imap_password is None:
            raise ConfigurationError(
                "IMAP credentials are not configured. "
                "Set MAILBOX_MIRROR_IMAP_USERNAME and MAILBOX_MIRROR_IMAP_PASSWORD."
            )

        return ImapConfig(
            host=self.imap_host,
            port=self.imap_port,
            username=self.imap_username,
            secret=self.imap_password.get_secret_value(),
            use_tls=self.imap_use_tls,
            verify_tls=self.imap_verify_tls,
            connect_timeout=self.imap_connect_timeout,
            auth_timeout=self.imap_auth_timeout,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()

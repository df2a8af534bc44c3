"""Local account model.

The sync engine only needs an account's identity: the address whose mailbox is
mirrored and the name/role used to label the owner's side of a message.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

PRIVILEGED_ROLES = frozenset({"admin", "main_admin"})


class Account(BaseModel):
    """A local account that owns mirrored messages."""

    id: int = Field(description="Local account id")
    email: str = Field(description="Mailbox address")
    first_name: str = ""
    last_name: str = ""
    role: str = Field(default="customer", description="Account role")
    last_email_sync: datetime | None = Field(default=None, description="Last successful sync")

    @property
    def full_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

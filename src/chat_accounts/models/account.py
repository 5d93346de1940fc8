from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import Field

from .base import DBSerializableModel, utcnow


class AccountRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


def new_account_id() -> str:
    return uuid4().hex


ANONYMOUS_USERNAME = "anonymous"

# Names that only system accounts may hold.
RESERVED_USERNAMES = frozenset({ANONYMOUS_USERNAME})


class Account(DBSerializableModel):
    """
    A local account: identity, credit balance, linked chat channel and
    the single active session.

    Instances handed out by the store are copies. All mutation goes
    through the services, which hold the account's lock while they work.
    """

    id: str = Field(default_factory=new_account_id)
    username: str
    password_hash: str
    display_name: str
    credit_balance: Decimal = Decimal("0")
    total_spent: Decimal = Decimal("0")
    last_request_time: Optional[datetime] = Field(
        default=None,
        description="Time of the last successful debit; drives rate limiting.",
    )
    role: AccountRole = AccountRole.USER
    linked_external_channel_id: Optional[str] = Field(
        default=None,
        description="External chat-platform identity (e.g. a YouTube channel id).",
    )
    pending_verification_code: Optional[str] = None
    verification_code_expires_at: Optional[datetime] = None
    session_token: Optional[str] = None
    session_expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def has_live_session(self, now: datetime) -> bool:
        return (
            self.session_token is not None
            and self.session_expires_at is not None
            and self.session_expires_at > now
        )

    def has_live_challenge(self, now: datetime) -> bool:
        if not self.pending_verification_code:
            return False
        if self.verification_code_expires_at is None:
            return True
        return self.verification_code_expires_at > now

    def clear_session(self) -> None:
        self.session_token = None
        self.session_expires_at = None

    def clear_challenge(self) -> None:
        self.pending_verification_code = None
        self.verification_code_expires_at = None

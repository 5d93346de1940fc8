from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .account import Account


class AccountError(str, Enum):
    USERNAME_TOO_SHORT = "username_too_short"
    PASSWORD_TOO_SHORT = "password_too_short"
    USERNAME_TAKEN = "username_taken"
    INVALID_CREDENTIALS = "invalid_credentials"


class CreateAccountResult(BaseModel):
    success: bool
    error: Optional[AccountError] = None
    message: Optional[str] = None
    account: Optional[Account] = None


class LoginResult(BaseModel):
    success: bool
    error: Optional[AccountError] = None
    message: Optional[str] = None
    account: Optional[Account] = None
    session_token: Optional[str] = None


class RateLimitStatus(BaseModel):
    allowed: bool
    wait_seconds: float = 0.0


class LinkResult(BaseModel):
    """
    Outcome of matching a chat message against pending link challenges.

    `linked` is only true for a new link; an already linked channel
    reports `linked=False` together with its owner's id.
    """

    linked: bool
    account_id: Optional[str] = None

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from ..db.base import BaseAccountStore
from ..logging.ledger_logger import LedgerLogger
from ..models.account import ANONYMOUS_USERNAME, Account, AccountRole
from ..models.base import utcnow
from ..models.results import CreateAccountResult
from ..security import tokens
from ..security.hasher import CredentialHasher


logger = logging.getLogger(__name__)

ANONYMOUS_ACCOUNT_ID = "anonymous-default-user"
ANONYMOUS_DISPLAY_NAME = "Anonymous User"
# Treated as unlimited credit. Leaves eight fractional digits of headroom
# in the default 28-digit decimal context, so cent amounts stay exact.
UNLIMITED_CREDITS = Decimal("9" * 20)


class AccountService:
    """
    Registration and account-level operations for the web layer.
    """

    def __init__(
        self,
        store: BaseAccountStore,
        hasher: CredentialHasher,
        ledger: LedgerLogger,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._ledger = ledger
        self._clock = clock
        self._anonymous_lock = asyncio.Lock()

    async def register(
        self, username: str, password: str, display_name: Optional[str] = None
    ) -> CreateAccountResult:
        result = await self._store.create(username, password, display_name)
        if result.success and result.account is not None:
            await self._ledger.log_identity(
                account_id=result.account.id,
                message="Account created",
                details={"username": result.account.username},
            )
        return result

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self._store.find_by_id(account_id)

    async def get_or_create_anonymous_account(self) -> Account:
        """
        Shared account for unauthenticated submissions.

        It has an unusable random password, so nobody can log into it.
        """
        async with self._anonymous_lock:
            existing = await self._store.find_by_id(ANONYMOUS_ACCOUNT_ID)
            if existing is not None:
                return existing

            password_hash = await asyncio.to_thread(self._hasher.hash, tokens.session_token())
            account = Account(
                id=ANONYMOUS_ACCOUNT_ID,
                username=ANONYMOUS_USERNAME,
                password_hash=password_hash,
                display_name=ANONYMOUS_DISPLAY_NAME,
                credit_balance=UNLIMITED_CREDITS,
                role=AccountRole.USER,
                created_at=self._clock(),
            )
            if not await self._store.add_account(account):
                # The username was registered by a real user first.
                logger.error(
                    "Cannot create anonymous account: username %r is taken",
                    ANONYMOUS_USERNAME,
                )
                raise RuntimeError("anonymous account username is already taken")

            logger.info("Created anonymous account", extra={"account_id": ANONYMOUS_ACCOUNT_ID})
            return account

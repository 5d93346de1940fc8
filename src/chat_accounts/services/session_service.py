from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..db.base import BaseAccountStore, normalize_username
from ..models.account import Account
from ..models.base import utcnow
from ..models.results import AccountError, LoginResult
from ..security import tokens
from ..security.hasher import CredentialHasher


logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(days=30)


class SessionService:
    """
    Login, logout and session lookup on top of the account store.

    Each account has at most one session; logging in again replaces the
    previous token. Expiry is checked lazily when a token is looked up.
    """

    def __init__(
        self,
        store: BaseAccountStore,
        hasher: CredentialHasher,
        session_ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._session_ttl = session_ttl
        self._clock = clock
        self._decoy_hash: Optional[str] = None

    async def login(self, username: str, password: str) -> LoginResult:
        username = normalize_username(username)
        password = password or ""

        account = await self._store.find_by_username(username)
        if account is None:
            # Spend the same hashing work as a real check so timing does not
            # reveal whether the username exists.
            decoy = await self._get_decoy_hash()
            await asyncio.to_thread(self._hasher.verify, password, decoy)
            return _invalid_credentials()

        if not await asyncio.to_thread(self._hasher.verify, password, account.password_hash):
            logger.info("Failed login for %s", username, extra={"account_id": account.id})
            return _invalid_credentials()

        async with self._store.account_lock(account.id):
            live = self._store.get_for_update(account.id)
            if live is None:
                return _invalid_credentials()

            if live.session_token:
                self._store.unindex_session(live.session_token)

            token = tokens.session_token()
            live.session_token = token
            live.session_expires_at = self._clock() + self._session_ttl
            self._store.index_session(token, live.id)

            await self._store.persist()
            result_account = live.model_copy()

        logger.info("Login: %s", username, extra={"account_id": result_account.id})
        return LoginResult(success=True, account=result_account, session_token=token)

    async def resolve_session(self, token: Optional[str]) -> Optional[Account]:
        """Return the account for a live session token, else None."""
        if not token:
            return None

        account = await self._store.find_by_session_token(token)
        if account is None:
            return None

        if account.session_token != token or not account.has_live_session(self._clock()):
            logger.info("Session expired", extra={"account_id": account.id})
            await self._end_session(token, account.id)
            return None

        return account

    async def logout(self, token: Optional[str]) -> None:
        """End a session. Unknown or already expired tokens are ignored."""
        if not token:
            return

        account = await self._store.find_by_session_token(token)
        if account is None:
            return
        await self._end_session(token, account.id)
        logger.info("Logout", extra={"account_id": account.id})

    async def _end_session(self, token: str, account_id: str) -> None:
        async with self._store.account_lock(account_id):
            self._store.unindex_session(token)
            live = self._store.get_for_update(account_id)
            if live is not None and live.session_token == token:
                live.clear_session()
                await self._store.persist()

    async def _get_decoy_hash(self) -> str:
        if self._decoy_hash is None:
            self._decoy_hash = await asyncio.to_thread(
                self._hasher.hash, tokens.session_token()
            )
        return self._decoy_hash


def _invalid_credentials() -> LoginResult:
    return LoginResult(
        success=False,
        error=AccountError.INVALID_CREDENTIALS,
        message="Invalid username or password",
    )

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional

from .base import BaseAccountStore, normalize_username
from .snapshot import SnapshotError, SnapshotFile
from ..models.account import RESERVED_USERNAMES, Account
from ..models.base import utcnow
from ..models.results import AccountError, CreateAccountResult
from ..security.hasher import CredentialHasher


logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 4


class InMemoryAccountStore(BaseAccountStore):
    """
    Account collection held in memory with username, channel and session
    indexes, optionally backed by a JSON snapshot file.

    Without a snapshot the store is purely in-memory (tests, local
    development). With one, every `persist()` rewrites the file.
    """

    def __init__(
        self,
        snapshot: Optional[SnapshotFile] = None,
        hasher: Optional[CredentialHasher] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._snapshot = snapshot
        self._hasher = hasher or CredentialHasher()
        self._clock = clock

        self._accounts: Dict[str, Account] = {}
        self._username_index: Dict[str, str] = {}
        self._channel_index: Dict[str, str] = {}
        self._session_index: Dict[str, str] = {}

        self._locks: Dict[str, asyncio.Lock] = {}
        self._persist_lock = asyncio.Lock()
        self._dirty = False

    @classmethod
    async def open(
        cls,
        snapshot_path: Path,
        hasher: Optional[CredentialHasher] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "InMemoryAccountStore":
        store = cls(snapshot=SnapshotFile(snapshot_path), hasher=hasher, clock=clock)
        await store.load()
        return store

    @property
    def hasher(self) -> CredentialHasher:
        return self._hasher

    @property
    def dirty(self) -> bool:
        """True while the last snapshot write failed and needs a retry."""
        return self._dirty

    # Account lifecycle
    async def create(
        self, username: str, password: str, display_name: Optional[str] = None
    ) -> CreateAccountResult:
        username = normalize_username(username)

        if len(username) < MIN_USERNAME_LENGTH:
            return CreateAccountResult(
                success=False,
                error=AccountError.USERNAME_TOO_SHORT,
                message=f"Username must be at least {MIN_USERNAME_LENGTH} characters",
            )
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            return CreateAccountResult(
                success=False,
                error=AccountError.PASSWORD_TOO_SHORT,
                message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            )
        if username in self._username_index or username in RESERVED_USERNAMES:
            return _username_taken()

        password_hash = await asyncio.to_thread(self._hasher.hash, password)
        account = Account(
            username=username,
            password_hash=password_hash,
            display_name=(display_name or "").strip() or username,
            created_at=self._clock(),
        )

        # Re-check after hashing: another task may have registered the name meanwhile.
        if username in self._username_index:
            return _username_taken()
        self._accounts[account.id] = account
        self._username_index[username] = account.id

        await self.persist()
        logger.info(
            "Created account %s (%s)", username, account.id, extra={"account_id": account.id}
        )
        return CreateAccountResult(success=True, account=account.model_copy())

    async def add_account(self, account: Account) -> bool:
        account = account.model_copy()
        account.username = normalize_username(account.username)
        if account.id in self._accounts or account.username in self._username_index:
            return False
        if (
            account.linked_external_channel_id is not None
            and account.linked_external_channel_id in self._channel_index
        ):
            return False

        self._index_loaded(account, self._clock())
        await self.persist()
        return True

    # Lookups
    async def find_by_id(self, account_id: str) -> Optional[Account]:
        return _copy(self._accounts.get(account_id))

    async def find_by_username(self, username: str) -> Optional[Account]:
        account_id = self._username_index.get(normalize_username(username))
        if account_id is None:
            return None
        return _copy(self._accounts.get(account_id))

    async def find_by_linked_channel(self, channel_id: str) -> Optional[Account]:
        account_id = self._channel_index.get(channel_id)
        if account_id is None:
            return None
        return _copy(self._accounts.get(account_id))

    async def find_by_session_token(self, token: str) -> Optional[Account]:
        if not token:
            return None
        account_id = self._session_index.get(token)
        if account_id is None:
            return None
        return _copy(self._accounts.get(account_id))

    async def list_accounts(self) -> List[Account]:
        return [a.model_copy() for a in self._accounts.values()]

    # Exclusive access
    @asynccontextmanager
    async def account_lock(self, account_id: str) -> AsyncIterator[None]:
        # Locks exist only for stored accounts; callers then find no
        # account through get_for_update and give up.
        if account_id not in self._accounts:
            yield
            return
        lock = self._locks.setdefault(account_id, asyncio.Lock())
        async with lock:
            yield

    def get_for_update(self, account_id: str) -> Optional[Account]:
        return self._accounts.get(account_id)

    # Secondary indexes
    def index_session(self, token: str, account_id: str) -> None:
        self._session_index[token] = account_id

    def unindex_session(self, token: str) -> Optional[str]:
        return self._session_index.pop(token, None)

    def channel_owner(self, channel_id: str) -> Optional[str]:
        return self._channel_index.get(channel_id)

    def claim_channel(self, channel_id: str, account_id: str) -> bool:
        owner = self._channel_index.get(channel_id)
        if owner is not None and owner != account_id:
            return False
        account = self._accounts.get(account_id)
        if account is None:
            return False
        account.linked_external_channel_id = channel_id
        self._channel_index[channel_id] = account_id
        return True

    # Persistence
    async def persist(self) -> bool:
        if self._snapshot is None:
            return True

        async with self._persist_lock:
            # Serialize inside the lock so snapshots hit the disk in mutation order.
            records = [a.serialize_for_db() for a in self._accounts.values()]
            try:
                await asyncio.to_thread(self._snapshot.save, records)
            except SnapshotError:
                self._dirty = True
                logger.exception(
                    "Failed to save account snapshot; in-memory state kept, will retry",
                    extra={"path": str(self._snapshot.path)},
                )
                return False

            if self._dirty:
                logger.info("Account snapshot write recovered")
            self._dirty = False
            return True

    async def flush(self) -> bool:
        """Retry a failed snapshot write, if any."""
        if not self._dirty:
            return True
        return await self.persist()

    async def load(self) -> int:
        self._accounts.clear()
        self._username_index.clear()
        self._channel_index.clear()
        self._session_index.clear()

        if self._snapshot is None:
            return 0

        try:
            accounts = await asyncio.to_thread(self._snapshot.load)
        except SnapshotError:
            logger.exception("Account snapshot is unreadable; starting with an empty store")
            moved_to = self._snapshot.quarantine(self._clock())
            if moved_to is not None:
                logger.warning("Corrupt account snapshot moved to %s", moved_to)
            return 0

        now = self._clock()
        for account in accounts:
            if account.id in self._accounts or account.username in self._username_index:
                logger.warning(
                    "Skipping duplicate account %s (%s) in snapshot", account.username, account.id
                )
                continue
            channel = account.linked_external_channel_id
            if channel is not None and channel in self._channel_index:
                logger.warning(
                    "Channel %s linked to more than one account; keeping %s",
                    channel,
                    self._channel_index[channel],
                )
                account.linked_external_channel_id = None
                self._dirty = True
            self._index_loaded(account, now)

        logger.info("Loaded %d accounts from %s", len(self._accounts), self._snapshot.path)
        return len(self._accounts)

    def _index_loaded(self, account: Account, now: datetime) -> None:
        self._accounts[account.id] = account
        self._username_index[account.username] = account.id
        if account.linked_external_channel_id is not None:
            self._channel_index[account.linked_external_channel_id] = account.id
        if account.has_live_session(now):
            self._session_index[account.session_token] = account.id


def _copy(account: Optional[Account]) -> Optional[Account]:
    return account.model_copy() if account is not None else None


def _username_taken() -> CreateAccountResult:
    return CreateAccountResult(
        success=False,
        error=AccountError.USERNAME_TAKEN,
        message="Username already taken",
    )

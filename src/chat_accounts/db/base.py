from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import List, Optional

from ..models.account import Account
from ..models.results import CreateAccountResult


def normalize_username(username: Optional[str]) -> str:
    return (username or "").strip().lower()


class BaseAccountStore(ABC):
    """
    Storage-agnostic account store interface.

    Lookups return copies of the stored accounts. Mutations happen inside
    `account_lock(account_id)` on the live object from `get_for_update`,
    followed by `persist()`. The index helpers are synchronous on purpose:
    a field change and the index change derived from it must happen with
    no await in between, so concurrent readers never see them disagree.
    """

    # Account lifecycle
    @abstractmethod
    async def create(
        self, username: str, password: str, display_name: Optional[str] = None
    ) -> CreateAccountResult:
        """Validate, hash and insert a new account; never raises on bad input."""
        ...

    @abstractmethod
    async def add_account(self, account: Account) -> bool:
        """Insert a pre-built account; False if its id or username is taken."""
        ...

    # Lookups
    @abstractmethod
    async def find_by_id(self, account_id: str) -> Optional[Account]: ...

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[Account]: ...

    @abstractmethod
    async def find_by_linked_channel(self, channel_id: str) -> Optional[Account]: ...

    @abstractmethod
    async def find_by_session_token(self, token: str) -> Optional[Account]: ...

    @abstractmethod
    async def list_accounts(self) -> List[Account]: ...

    # Exclusive access
    @abstractmethod
    def account_lock(self, account_id: str) -> AbstractAsyncContextManager[None]:
        """
        Exclusive access to one account's state. Different accounts never
        block each other.
        """
        ...

    @abstractmethod
    def get_for_update(self, account_id: str) -> Optional[Account]:
        """The live stored account. Only call while holding its lock."""
        ...

    # Secondary indexes
    @abstractmethod
    def index_session(self, token: str, account_id: str) -> None: ...

    @abstractmethod
    def unindex_session(self, token: str) -> Optional[str]:
        """Drop a session token; returns the account id it pointed to."""
        ...

    @abstractmethod
    def channel_owner(self, channel_id: str) -> Optional[str]: ...

    @abstractmethod
    def claim_channel(self, channel_id: str, account_id: str) -> bool:
        """
        Point `channel_id` at `account_id` and set the account's linked
        channel in one step. False if another account already owns it.
        """
        ...

    # Persistence
    @abstractmethod
    async def persist(self) -> bool:
        """Write the whole collection; False (logged) if the write failed."""
        ...

    @abstractmethod
    async def load(self) -> int:
        """(Re)load from durable storage; returns the number of accounts."""
        ...

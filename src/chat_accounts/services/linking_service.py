from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..db.base import BaseAccountStore
from ..logging.ledger_logger import LedgerLogger
from ..models.account import Account
from ..models.base import utcnow
from ..models.results import LinkResult
from ..security import tokens


logger = logging.getLogger(__name__)

DEFAULT_LINK_CODE_TTL = timedelta(minutes=30)


class LinkingService:
    """
    Links an external chat identity (e.g. a YouTube channel) to a local account.

    Two paths exist:
    - Proof in chat: the account owner requests a short code and posts it
      in a chat message from the channel; `resolve_from_message` spots it.
    - Direct: an out-of-band handshake (OAuth) has already proven the
      channel, and `direct_link` records it.

    A channel belongs to at most one account and an account has at most
    one channel. Neither is changed once set.
    """

    def __init__(
        self,
        store: BaseAccountStore,
        ledger: LedgerLogger,
        code_ttl: timedelta = DEFAULT_LINK_CODE_TTL,
        code_prefix: str = "LINK-",
        code_length: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._code_ttl = code_ttl
        self._code_prefix = code_prefix
        self._code_length = code_length
        self._clock = clock

    async def generate_link_code(self, account_id: str) -> Optional[str]:
        """
        Issue a fresh challenge code, replacing any earlier one.

        Returns None for unknown accounts and for accounts that already
        have a linked channel.
        """
        async with self._store.account_lock(account_id):
            account = self._store.get_for_update(account_id)
            if account is None:
                return None
            if account.linked_external_channel_id is not None:
                logger.info(
                    "Link code refused: account already linked",
                    extra={"account_id": account_id},
                )
                return None

            code = tokens.short_code(self._code_prefix, self._code_length)
            expires_at = self._clock() + self._code_ttl
            account.pending_verification_code = code
            account.verification_code_expires_at = expires_at
            await self._store.persist()
            username = account.username

        await self._ledger.log_identity(
            account_id=account_id,
            message="Link code issued",
            details={"username": username, "expires_at": expires_at.isoformat()},
        )
        return code

    async def resolve_from_message(
        self,
        channel_id: str,
        message: str,
        display_name_hint: Optional[str] = None,
    ) -> LinkResult:
        """
        Link `channel_id` to whichever account's pending code appears in `message`.

        An already linked channel short-circuits to (False, owner id). If
        several live codes appear in the message, the first account found
        wins; the scan order is not defined.
        """
        if not channel_id:
            return LinkResult(linked=False)

        owner = self._store.channel_owner(channel_id)
        if owner is not None:
            return LinkResult(linked=False, account_id=owner)

        haystack = (message or "").casefold()
        if not haystack:
            return LinkResult(linked=False)

        for candidate in await self._store.list_accounts():
            if not self._matches(candidate, haystack, self._clock()):
                continue

            async with self._store.account_lock(candidate.id):
                account = self._store.get_for_update(candidate.id)
                # The challenge may have been replaced or used while we waited.
                if account is None or not self._matches(account, haystack, self._clock()):
                    continue

                if not self._store.claim_channel(channel_id, account.id):
                    return LinkResult(
                        linked=False, account_id=self._store.channel_owner(channel_id)
                    )
                account.clear_challenge()
                if display_name_hint and account.display_name == account.username:
                    account.display_name = display_name_hint
                await self._store.persist()
                username = account.username

            await self._ledger.log_identity(
                account_id=candidate.id,
                message="Channel linked from chat message",
                details={"channel_id": channel_id, "username": username},
            )
            return LinkResult(linked=True, account_id=candidate.id)

        return LinkResult(linked=False)

    async def direct_link(self, account_id: str, channel_id: str) -> bool:
        """
        Record a channel proven out-of-band.

        Fails without changes if the channel belongs to another account or
        the account already has a different channel. Repeating an existing
        link succeeds without changes.
        """
        if not channel_id:
            return False

        async with self._store.account_lock(account_id):
            account = self._store.get_for_update(account_id)
            if account is None:
                return False
            if account.linked_external_channel_id is not None:
                return account.linked_external_channel_id == channel_id

            if not self._store.claim_channel(channel_id, account_id):
                logger.info(
                    "Direct link refused: channel %s belongs to another account",
                    channel_id,
                    extra={"account_id": account_id},
                )
                return False
            account.clear_challenge()
            await self._store.persist()

        await self._ledger.log_identity(
            account_id=account_id,
            message="Channel linked directly",
            details={"channel_id": channel_id},
        )
        return True

    async def find_by_channel(self, channel_id: str) -> Optional[Account]:
        return await self._store.find_by_linked_channel(channel_id)

    @staticmethod
    def _matches(account: Account, haystack: str, now: datetime) -> bool:
        if account.linked_external_channel_id is not None:
            return False
        if not account.has_live_challenge(now):
            return False
        return account.pending_verification_code.casefold() in haystack

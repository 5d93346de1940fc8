from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, Inexact, InvalidOperation, localcontext
from typing import Callable, Optional, Union

from ..db.base import BaseAccountStore
from ..logging.ledger_logger import LedgerLogger
from ..models.base import utcnow
from ..models.results import RateLimitStatus


Amount = Union[Decimal, int, float, str]

DEFAULT_RATE_LIMIT = timedelta(seconds=20)


def to_amount(amount: Amount) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid amount: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise ValueError("amount must be positive")
    return value


def exact_sum(a: Decimal, b: Decimal) -> Optional[Decimal]:
    """Return `a + b`, or None if the current context would have to round it."""
    with localcontext() as ctx:
        ctx.traps[Inexact] = True
        try:
            return a + b
        except Inexact:
            return None


class CreditService:
    """
    Balance mutation and per-account rate limiting.

    Insufficient funds, rate limiting and balance changes that the decimal
    context would have to round are ordinary outcomes reported through
    return values. A non-positive amount is a caller bug and raises
    `ValueError`.
    """

    def __init__(
        self,
        store: BaseAccountStore,
        ledger: LedgerLogger,
        rate_limit: timedelta = DEFAULT_RATE_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._rate_limit = rate_limit
        self._clock = clock

    async def credit(
        self,
        account_id: str,
        amount: Amount,
        description: str | None = None,
        correlation_id: str | None = None,
    ) -> bool:
        value = to_amount(amount)

        async with self._store.account_lock(account_id):
            account = self._store.get_for_update(account_id)
            if account is None:
                await self._ledger.log_error(
                    message="Credit for unknown account",
                    details={"amount": str(value)},
                    account_id=account_id,
                    correlation_id=correlation_id,
                )
                return False

            new_balance = exact_sum(account.credit_balance, value)
            if new_balance is None:
                await self._ledger.log_error(
                    message="Credit would exceed balance precision",
                    details={"amount": str(value), "current": str(account.credit_balance)},
                    account_id=account_id,
                    correlation_id=correlation_id,
                )
                return False

            account.credit_balance = new_balance
            await self._store.persist()

        await self._ledger.log_transaction(
            account_id=account_id,
            message="Credits added",
            details={
                "amount": str(value),
                "new_balance": str(new_balance),
                "description": description or "",
            },
            correlation_id=correlation_id,
        )
        return True

    async def debit(
        self,
        account_id: str,
        amount: Amount,
        description: str | None = None,
        correlation_id: str | None = None,
    ) -> bool:
        """
        Take `amount` from the balance if it covers it.

        The balance check and the subtraction happen under the account's
        lock, so a passing pre-check by the caller can still fail here.
        """
        value = to_amount(amount)

        async with self._store.account_lock(account_id):
            account = self._store.get_for_update(account_id)
            if account is None:
                return False

            current = account.credit_balance
            if current < value:
                await self._ledger.log_error(
                    message="Insufficient credits for debit",
                    details={"requested": str(value), "current": str(current)},
                    account_id=account_id,
                    correlation_id=correlation_id,
                )
                return False

            new_balance = exact_sum(current, -value)
            total_spent = exact_sum(account.total_spent, value)
            if new_balance is None or total_spent is None:
                await self._ledger.log_error(
                    message="Debit would exceed balance precision",
                    details={"requested": str(value), "current": str(current)},
                    account_id=account_id,
                    correlation_id=correlation_id,
                )
                return False

            account.credit_balance = new_balance
            account.total_spent = total_spent
            account.last_request_time = self._clock()
            await self._store.persist()

        await self._ledger.log_transaction(
            account_id=account_id,
            message="Credits deducted",
            details={
                "amount": str(value),
                "new_balance": str(new_balance),
                "description": description or "",
            },
            correlation_id=correlation_id,
        )
        return True

    async def check_rate_limit(self, account_id: str) -> RateLimitStatus:
        account = await self._store.find_by_id(account_id)
        if account is None or account.last_request_time is None:
            return RateLimitStatus(allowed=True)

        elapsed = self._clock() - account.last_request_time
        if elapsed < self._rate_limit:
            remaining = (self._rate_limit - elapsed).total_seconds()
            return RateLimitStatus(allowed=False, wait_seconds=remaining)
        return RateLimitStatus(allowed=True)

    async def get_balance(self, account_id: str) -> Optional[Decimal]:
        account = await self._store.find_by_id(account_id)
        if account is None:
            return None
        return account.credit_balance

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import Settings, settings as default_settings
from .db.memory import InMemoryAccountStore
from .logging.ledger_logger import LedgerLogger
from .models.base import utcnow
from .security.hasher import CredentialHasher
from .services.account_service import AccountService
from .services.credit_service import CreditService
from .services.linking_service import LinkingService
from .services.session_service import SessionService


@dataclass
class AccountCore:
    """Everything the web, chat and command collaborators need, built once."""

    store: InMemoryAccountStore
    ledger: LedgerLogger
    accounts: AccountService
    sessions: SessionService
    credits: CreditService
    linking: LinkingService


async def create_account_core(
    config: Optional[Settings] = None,
    clock: Callable[[], datetime] = utcnow,
) -> AccountCore:
    """Load the snapshot and wire the services around one shared store."""
    config = config or default_settings

    hasher = CredentialHasher(iterations=config.PASSWORD_HASH_ITERATIONS)
    store = await InMemoryAccountStore.open(config.SNAPSHOT_PATH, hasher=hasher, clock=clock)
    ledger = LedgerLogger(file_path=config.LEDGER_PATH)

    return AccountCore(
        store=store,
        ledger=ledger,
        accounts=AccountService(store=store, hasher=hasher, ledger=ledger, clock=clock),
        sessions=SessionService(
            store=store,
            hasher=hasher,
            session_ttl=timedelta(days=config.SESSION_TTL_DAYS),
            clock=clock,
        ),
        credits=CreditService(
            store=store,
            ledger=ledger,
            rate_limit=timedelta(seconds=config.RATE_LIMIT_SECONDS),
            clock=clock,
        ),
        linking=LinkingService(
            store=store,
            ledger=ledger,
            code_ttl=timedelta(minutes=config.LINK_CODE_TTL_MINUTES),
            code_prefix=config.LINK_CODE_PREFIX,
            code_length=config.LINK_CODE_LENGTH,
            clock=clock,
        ),
    )

from __future__ import annotations

from decimal import Decimal

import pytest

from chat_accounts.db.memory import InMemoryAccountStore
from chat_accounts.logging.ledger_logger import LedgerLogger
from chat_accounts.services.credit_service import CreditService
from chat_accounts.services.linking_service import LinkingService
from chat_accounts.services.session_service import SessionService


@pytest.mark.asyncio
async def test_reload_rebuilds_equivalent_indexes(tmp_path, hasher, clock):
    path = tmp_path / "accounts.json"
    store = await InMemoryAccountStore.open(path, hasher=hasher, clock=clock)
    sessions = SessionService(store=store, hasher=hasher, clock=clock)
    ledger = LedgerLogger(file_path=tmp_path / "ledger.log")
    credits = CreditService(store=store, ledger=ledger, clock=clock)
    linking = LinkingService(store=store, ledger=ledger, clock=clock)

    alice = (await store.create("alice", "pass1234", display_name="Alice")).account
    bob = (await store.create("bob", "pass1234")).account
    carol = (await store.create("carol", "pass1234")).account

    bob_token = (await sessions.login("bob", "pass1234")).session_token
    clock.advance(days=20)
    alice_token = (await sessions.login("alice", "pass1234")).session_token

    await credits.credit(alice.id, Decimal("12.34"))
    await credits.debit(alice.id, Decimal("0.34"))
    assert await linking.direct_link(alice.id, "UC-alice")
    code = await linking.generate_link_code(carol.id)

    # Bob's 30-day session lapses while the process is down.
    clock.advance(days=15)
    reloaded = await InMemoryAccountStore.open(path, hasher=hasher, clock=clock)

    for account in (alice, bob, carol):
        assert (await reloaded.find_by_username(account.username)).id == account.id
    assert (await reloaded.find_by_linked_channel("UC-alice")).id == alice.id
    assert (await reloaded.find_by_session_token(alice_token)).id == alice.id
    assert await reloaded.find_by_session_token(bob_token) is None

    restored = await reloaded.find_by_id(alice.id)
    original = await store.find_by_id(alice.id)
    assert restored.model_dump() == original.model_dump()
    assert restored.credit_balance == Decimal("12.00")
    assert restored.total_spent == Decimal("0.34")
    assert restored.display_name == "Alice"

    assert (await reloaded.find_by_id(carol.id)).pending_verification_code == code
    assert hasher.verify("pass1234", (await reloaded.find_by_id(bob.id)).password_hash)


@pytest.mark.asyncio
async def test_reloaded_store_keeps_enforcing_uniqueness(tmp_path, hasher, clock):
    path = tmp_path / "accounts.json"
    store = await InMemoryAccountStore.open(path, hasher=hasher, clock=clock)
    first = (await store.create("dana", "pass1234")).account
    other = (await store.create("eve", "pass1234")).account
    linking = LinkingService(store=store, ledger=LedgerLogger(), clock=clock)
    assert await linking.direct_link(first.id, "UC-dana")

    reloaded = await InMemoryAccountStore.open(path, hasher=hasher, clock=clock)
    relinking = LinkingService(store=reloaded, ledger=LedgerLogger(), clock=clock)

    assert not (await reloaded.create("DANA", "pass1234")).success
    assert not await relinking.direct_link(other.id, "UC-dana")
    already = await relinking.resolve_from_message("UC-dana", "hello", "Dana")
    assert not already.linked
    assert already.account_id == first.id

from __future__ import annotations

import asyncio
import re
from datetime import timedelta

import pytest

from chat_accounts.db.memory import InMemoryAccountStore
from chat_accounts.logging.ledger_logger import LedgerLogger
from chat_accounts.models.ledger import LedgerEventType
from chat_accounts.services.linking_service import LinkingService


async def _setup(hasher, clock, *usernames):
    store = InMemoryAccountStore(hasher=hasher, clock=clock)
    linking = LinkingService(store=store, ledger=LedgerLogger(), clock=clock)
    ids = []
    for name in usernames or ("streamer",):
        ids.append((await store.create(name, "pass1234")).account.id)
    return store, linking, ids


@pytest.mark.asyncio
async def test_generate_link_code_stores_challenge(hasher, clock):
    store, linking, (account_id,) = await _setup(hasher, clock)

    code = await linking.generate_link_code(account_id)
    assert re.fullmatch(r"LINK-[A-Z2-9]{4}", code)

    account = await store.find_by_id(account_id)
    assert account.pending_verification_code == code
    assert account.verification_code_expires_at == clock.now + timedelta(minutes=30)


@pytest.mark.asyncio
async def test_new_code_replaces_previous_one(hasher, clock):
    store, linking, (account_id,) = await _setup(hasher, clock)

    first = await linking.generate_link_code(account_id)
    second = await linking.generate_link_code(account_id)
    assert (await store.find_by_id(account_id)).pending_verification_code == second

    if first != second:
        result = await linking.resolve_from_message("UC-1", f"here is {first}", "Chat Name")
        assert not result.linked


@pytest.mark.asyncio
async def test_generate_link_code_for_unknown_account(hasher, clock):
    _, linking, _ = await _setup(hasher, clock)
    assert await linking.generate_link_code("missing") is None


@pytest.mark.asyncio
async def test_message_with_code_links_channel_once(hasher, clock):
    store = InMemoryAccountStore(hasher=hasher, clock=clock)
    ledger = LedgerLogger()
    linking = LinkingService(store=store, ledger=ledger, clock=clock)
    account_id = (await store.create("streamer", "pass1234")).account.id
    code = await linking.generate_link_code(account_id)

    result = await linking.resolve_from_message(
        "UC-abc", f"hi stream! {code.lower()} :)", "Chat Name"
    )
    assert result.linked
    assert result.account_id == account_id

    account = await store.find_by_id(account_id)
    assert account.linked_external_channel_id == "UC-abc"
    assert account.pending_verification_code is None
    assert account.verification_code_expires_at is None
    assert (await linking.find_by_channel("UC-abc")).id == account_id

    again = await linking.resolve_from_message("UC-abc", f"{code} again", "Chat Name")
    assert not again.linked
    assert again.account_id == account_id

    assert any(
        e.event_type == LedgerEventType.IDENTITY and e.details.get("channel_id") == "UC-abc"
        for e in ledger.entries
    )


@pytest.mark.asyncio
async def test_used_code_cannot_link_another_channel(hasher, clock):
    _, linking, (account_id,) = await _setup(hasher, clock)
    code = await linking.generate_link_code(account_id)

    assert (await linking.resolve_from_message("UC-1", code, None)).linked
    other = await linking.resolve_from_message("UC-2", code, None)
    assert not other.linked
    assert other.account_id is None


@pytest.mark.asyncio
async def test_expired_code_is_never_matched(hasher, clock):
    store, linking, (account_id,) = await _setup(hasher, clock)
    code = await linking.generate_link_code(account_id)

    clock.advance(minutes=31)
    result = await linking.resolve_from_message("UC-1", f"verbatim {code}", "Chat Name")
    assert not result.linked
    assert result.account_id is None
    assert (await store.find_by_id(account_id)).linked_external_channel_id is None


@pytest.mark.asyncio
async def test_message_without_code_links_nothing(hasher, clock):
    _, linking, (account_id,) = await _setup(hasher, clock)
    await linking.generate_link_code(account_id)

    result = await linking.resolve_from_message("UC-1", "just chatting", "Chat Name")
    assert not result.linked
    assert result.account_id is None
    assert not (await linking.resolve_from_message("UC-1", "", "Chat Name")).linked


@pytest.mark.asyncio
async def test_display_name_hint_only_replaces_default_name(hasher, clock):
    store = InMemoryAccountStore(hasher=hasher, clock=clock)
    linking = LinkingService(store=store, ledger=LedgerLogger(), clock=clock)
    plain = (await store.create("plain", "pass1234")).account.id
    named = (await store.create("named", "pass1234", display_name="Chosen Name")).account.id

    plain_code = await linking.generate_link_code(plain)
    named_code = await linking.generate_link_code(named)
    await linking.resolve_from_message("UC-plain", plain_code, "Chat Plain")
    await linking.resolve_from_message("UC-named", named_code, "Chat Named")

    assert (await store.find_by_id(plain)).display_name == "Chat Plain"
    assert (await store.find_by_id(named)).display_name == "Chosen Name"


@pytest.mark.asyncio
async def test_concurrent_messages_link_a_channel_to_one_account(hasher, clock):
    store, linking, ids = await _setup(hasher, clock, "one", "two")
    codes = [await linking.generate_link_code(i) for i in ids]

    results = await asyncio.gather(
        linking.resolve_from_message("UC-shared", codes[0], None),
        linking.resolve_from_message("UC-shared", codes[1], None),
    )

    assert sum(r.linked for r in results) == 1
    owner = (await store.find_by_linked_channel("UC-shared")).id
    assert owner in ids
    linked_accounts = [
        a for a in await store.list_accounts() if a.linked_external_channel_id == "UC-shared"
    ]
    assert [a.id for a in linked_accounts] == [owner]


@pytest.mark.asyncio
async def test_direct_link(hasher, clock):
    store, linking, (account_id,) = await _setup(hasher, clock)
    await linking.generate_link_code(account_id)

    assert await linking.direct_link(account_id, "UC-oauth")
    account = await store.find_by_id(account_id)
    assert account.linked_external_channel_id == "UC-oauth"
    assert account.pending_verification_code is None
    assert (await store.find_by_linked_channel("UC-oauth")).id == account_id

    # Repeating the same link is harmless.
    assert await linking.direct_link(account_id, "UC-oauth")


@pytest.mark.asyncio
async def test_direct_link_refuses_channel_owned_by_someone_else(hasher, clock):
    store, linking, (first, second) = await _setup(hasher, clock, "first", "second")
    assert await linking.direct_link(first, "UC-taken")
    code = await linking.generate_link_code(second)
    before = await store.find_by_id(second)

    assert not await linking.direct_link(second, "UC-taken")

    after = await store.find_by_id(second)
    assert after.model_dump() == before.model_dump()
    assert after.pending_verification_code == code
    assert (await store.find_by_linked_channel("UC-taken")).id == first


@pytest.mark.asyncio
async def test_linked_account_keeps_its_channel(hasher, clock):
    store, linking, (account_id,) = await _setup(hasher, clock)
    assert await linking.direct_link(account_id, "UC-first")

    assert not await linking.direct_link(account_id, "UC-second")
    assert await linking.generate_link_code(account_id) is None
    assert await store.find_by_linked_channel("UC-second") is None
    assert (await store.find_by_id(account_id)).linked_external_channel_id == "UC-first"


@pytest.mark.asyncio
async def test_direct_link_unknown_account_or_empty_channel(hasher, clock):
    _, linking, (account_id,) = await _setup(hasher, clock)
    assert not await linking.direct_link("missing", "UC-1")
    assert not await linking.direct_link(account_id, "")


@pytest.mark.asyncio
async def test_message_from_empty_channel_links_nothing(hasher, clock):
    store, linking, (account_id,) = await _setup(hasher, clock)
    code = await linking.generate_link_code(account_id)

    for channel in ("", None):
        result = await linking.resolve_from_message(channel, f"hi {code}", "Chat Name")
        assert not result.linked
        assert result.account_id is None

    account = await store.find_by_id(account_id)
    assert account.linked_external_channel_id is None
    assert account.pending_verification_code == code
    assert await store.find_by_linked_channel("") is None

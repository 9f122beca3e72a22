"""Tests for share accounting into the open round."""

from unittest.mock import AsyncMock, patch

import pytest

from alph_pool.errors import StoreError
from alph_pool.payouts.keys import PENDING_BLOCKS_KEY, current_round_key, round_key
from alph_pool.payouts.round_ledger import RoundLedger, Share

from conftest import HASH_A, HASH_B, START_MILLIS


@pytest.mark.asyncio
async def test_shares_accumulate_per_worker_and_chain(store, clock):
    ledger = RoundLedger(store, clock)
    await ledger.record_share(Share(0, 0, "alice", 10))
    await ledger.record_share(Share(0, 0, "alice", 5))
    await ledger.record_share(Share(0, 0, "bob", 30))
    await ledger.record_share(Share(1, 2, "alice", 7))

    assert await store.hash_get_all(current_round_key(0, 0)) == {"alice": 15.0, "bob": 30.0}
    assert await store.hash_get_all(current_round_key(1, 2)) == {"alice": 7.0}
    assert await store.set_members(PENDING_BLOCKS_KEY) == []


@pytest.mark.asyncio
async def test_found_block_freezes_round_and_registers_pending(store, clock):
    ledger = RoundLedger(store, clock)
    await ledger.record_share(Share(0, 0, "bob", 30))
    await ledger.record_share(Share(1, 1, "carol", 3))
    await ledger.record_share(Share(0, 0, "alice", 10, found_block=True, block_hash=HASH_A))

    assert await store.hash_get_all(round_key(0, 0, HASH_A)) == {"alice": 10.0, "bob": 30.0}
    assert not await store.exists(current_round_key(0, 0))
    assert await store.set_members(PENDING_BLOCKS_KEY) == [f"{HASH_A}:{START_MILLIS}"]
    # other chain pairs keep their open round
    assert await store.hash_get_all(current_round_key(1, 1)) == {"carol": 3.0}


@pytest.mark.asyncio
async def test_next_share_opens_a_new_round(store, clock):
    ledger = RoundLedger(store, clock)
    await ledger.record_share(Share(0, 0, "alice", 10, found_block=True, block_hash=HASH_A))
    await ledger.record_share(Share(0, 0, "bob", 2))

    assert await store.hash_get_all(current_round_key(0, 0)) == {"bob": 2.0}
    assert await store.hash_get_all(round_key(0, 0, HASH_A)) == {"alice": 10.0}


@pytest.mark.asyncio
async def test_block_hash_bytes_are_hex_encoded(store, clock):
    ledger = RoundLedger(store, clock)
    await ledger.record_share(
        Share(2, 3, "alice", 1, found_block=True, block_hash=bytes.fromhex(HASH_A))
    )
    assert await store.hash_get_all(round_key(2, 3, HASH_A)) == {"alice": 1.0}


@pytest.mark.asyncio
async def test_found_block_without_hash_is_credited_but_not_frozen(store, clock):
    ledger = RoundLedger(store, clock)
    await ledger.record_share(Share(0, 0, "alice", 4, found_block=True))

    assert await store.hash_get_all(current_round_key(0, 0)) == {"alice": 4.0}
    assert await store.set_members(PENDING_BLOCKS_KEY) == []


@pytest.mark.asyncio
async def test_store_failure_abandons_whole_batch(store, clock, caplog):
    ledger = RoundLedger(store, clock)
    await ledger.record_share(Share(0, 0, "bob", 30))

    with patch.object(store, "_execute", AsyncMock(side_effect=StoreError("down"))):
        await ledger.record_share(
            Share(0, 0, "alice", 10, found_block=True, block_hash=HASH_A)
        )

    assert "Handle share failed" in caplog.text
    assert await store.hash_get_all(current_round_key(0, 0)) == {"bob": 30.0}
    assert not await store.exists(round_key(0, 0, HASH_A))
    assert await store.set_members(PENDING_BLOCKS_KEY) == []


@pytest.mark.asyncio
async def test_block_hash_reported_twice_keeps_first_frozen_round(store, clock):
    ledger = RoundLedger(store, clock)
    await ledger.record_share(Share(0, 0, "bob", 30))
    await ledger.record_share(Share(0, 0, "alice", 10, found_block=True, block_hash=HASH_A))

    clock.advance(5)
    await ledger.record_share(Share(0, 0, "carol", 7))
    await ledger.record_share(Share(0, 0, "carol", 1, found_block=True, block_hash=HASH_A))

    assert await store.hash_get_all(round_key(0, 0, HASH_A)) == {"alice": 10.0, "bob": 30.0}
    assert await store.set_members(PENDING_BLOCKS_KEY) == [f"{HASH_A}:{START_MILLIS}"]
    # the refused batch leaves the open round as it was
    assert await store.hash_get_all(current_round_key(0, 0)) == {"carol": 7.0}

    await ledger.record_share(Share(0, 0, "carol", 2, found_block=True, block_hash=HASH_B))
    assert await store.hash_get_all(round_key(0, 0, HASH_B)) == {"carol": 9.0}

"""Tests for the aiosqlite key-value store."""

import asyncio

import pytest

from alph_pool.db import store as store_module
from alph_pool.db.store import KeyValueStore
from alph_pool.errors import StoreError
from alph_pool.payouts.keys import PENDING_BLOCKS_KEY, current_round_key, round_key
from alph_pool.payouts.round_ledger import RoundLedger, Share

from conftest import HASH_A, START_MILLIS


@pytest.mark.asyncio
async def test_hash_increment_creates_and_accumulates(store):
    await store.hash_increment_float("round", "alice", 1.5)
    await store.hash_increment_float("round", "alice", 2.0)
    await store.hash_increment_float("round", "bob", 3.0)

    assert await store.hash_get_all("round") == {"alice": 3.5, "bob": 3.0}
    assert await store.hash_get("round", "alice") == 3.5
    assert await store.hash_get("round", "carol") is None


@pytest.mark.asyncio
async def test_missing_hash_reads_as_empty(store):
    assert await store.hash_get_all("nothing") == {}


@pytest.mark.asyncio
async def test_set_commands(store):
    await store.set_add("pending", "a")
    await store.set_add("pending", "b")
    await store.set_add("pending", "a")
    assert sorted(await store.set_members("pending")) == ["a", "b"]

    await store.set_remove("pending", "a")
    await store.set_remove("pending", "missing")
    assert await store.set_members("pending") == ["b"]


@pytest.mark.asyncio
async def test_rename_moves_hash_and_replaces_target(store):
    await store.hash_increment_float("old", "alice", 1.0)
    await store.hash_increment_float("new", "stale", 9.0)

    await store.rename("old", "new")

    assert await store.hash_get_all("new") == {"alice": 1.0}
    assert not await store.exists("old")


@pytest.mark.asyncio
async def test_rename_missing_key_fails(store):
    with pytest.raises(StoreError):
        await store.rename("missing", "new")


@pytest.mark.asyncio
async def test_delete_removes_hash_and_set(store):
    await store.hash_increment_float("key", "f", 1.0)
    await store.delete("key")
    assert not await store.exists("key")


@pytest.mark.asyncio
async def test_transaction_is_all_or_nothing(store):
    await store.set_add("pending", "keep")

    tx = store.transaction()
    tx.hash_increment_float("balances", "alice", 5.0)
    tx.set_remove("pending", "keep")
    tx.rename("missing", "other")
    assert len(tx) == 3

    with pytest.raises(StoreError):
        await tx.execute()

    assert await store.hash_get_all("balances") == {}
    assert await store.set_members("pending") == ["keep"]

    # the connection is usable again after the rollback
    await store.transaction().hash_increment_float("balances", "alice", 1.0).execute()
    assert await store.hash_get_all("balances") == {"alice": 1.0}


@pytest.mark.asyncio
async def test_empty_transaction_is_a_no_op(store):
    await store.transaction().execute()


@pytest.mark.asyncio
async def test_closed_store_raises_store_error(tmp_path):
    kv = KeyValueStore(tmp_path / "closed.db")
    with pytest.raises(StoreError):
        await kv.set_members("pending")


@pytest.mark.asyncio
async def test_state_survives_reopen(tmp_path):
    path = tmp_path / "pool.db"
    async with KeyValueStore(path) as kv:
        await kv.hash_increment_float("balances", "alice", 2.5)

    async with KeyValueStore(path) as kv:
        assert await kv.hash_get_all("balances") == {"alice": 2.5}


@pytest.mark.asyncio
async def test_rename_without_replace_keeps_existing_target(store):
    await store.hash_increment_float("old", "alice", 1.0)
    await store.hash_increment_float("new", "bob", 9.0)

    with pytest.raises(StoreError):
        await store.rename("old", "new", replace=False)

    assert await store.hash_get_all("old") == {"alice": 1.0}
    assert await store.hash_get_all("new") == {"bob": 9.0}


@pytest.mark.asyncio
async def test_unexpected_error_in_batch_rolls_back(store, monkeypatch):
    async def broken_set_add(db, key, member):
        raise RuntimeError("boom")

    monkeypatch.setattr(store_module, "_set_add", broken_set_add)

    tx = store.transaction()
    tx.hash_increment_float("balances", "alice", 5.0)
    tx.set_add("pending", "a")
    with pytest.raises(RuntimeError):
        await tx.execute()

    assert not store._db.in_transaction
    assert await store.hash_get_all("balances") == {}

    await store.hash_increment_float("balances", "alice", 1.0)
    assert await store.hash_get_all("balances") == {"alice": 1.0}


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_leave_batch_open(store, clock, monkeypatch):
    """A share task cancelled while its batch runs must not poison later batches"""
    entered = asyncio.Event()
    gate = asyncio.Event()
    real_rename = store_module._rename

    async def slow_rename(db, old_key, new_key, replace=True):
        entered.set()
        await gate.wait()
        await real_rename(db, old_key, new_key, replace)

    monkeypatch.setattr(store_module, "_rename", slow_rename)

    ledger = RoundLedger(store, clock)
    await ledger.record_share(Share(0, 0, "bob", 30))
    task = asyncio.create_task(
        ledger.record_share(Share(0, 0, "alice", 10, found_block=True, block_hash=HASH_A))
    )
    await entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    gate.set()
    await ledger.record_share(Share(1, 1, "carol", 3))

    assert not store._db.in_transaction
    assert await store.hash_get_all(current_round_key(1, 1)) == {"carol": 3.0}
    # the interrupted batch ran to its end, nothing half applied
    assert await store.hash_get_all(round_key(0, 0, HASH_A)) == {"alice": 10.0, "bob": 30.0}
    assert await store.set_members(PENDING_BLOCKS_KEY) == [f"{HASH_A}:{START_MILLIS}"]
    assert not await store.exists(current_round_key(0, 0))

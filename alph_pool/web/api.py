"""FastAPI read-only API for balances, pending blocks and open rounds"""

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
import logging

from ..db.store import KeyValueStore
from ..errors import StoreError
from ..payouts.keys import (
    BALANCES_KEY,
    PENDING_BLOCKS_KEY,
    PendingBlock,
    current_round_key,
)

logger = logging.getLogger("WebAPI")

app = FastAPI(title="Alephium Pool Payouts")

# Store reference and lock window (set on startup)
store: KeyValueStore = None
lock_duration_ms = 0


def set_store(pool_store: KeyValueStore, lock_duration_seconds: float = 0):
    """Set the global store reference"""
    global store, lock_duration_ms
    store = pool_store
    lock_duration_ms = int(lock_duration_seconds * 1000)


def _require_store() -> KeyValueStore:
    if store is None:
        raise HTTPException(status_code=503, detail="Store not initialized")
    return store


@app.get("/health")
async def health():
    return {"status": "ok" if store is not None else "starting"}


@app.get("/api/balances")
async def get_balances():
    """All worker balances, highest first"""
    kv = _require_store()
    try:
        balances = await kv.hash_get_all(BALANCES_KEY)
    except StoreError as e:
        logger.error("Failed to read balances: %s", e)
        raise HTTPException(status_code=503, detail="Store unavailable")

    workers = [
        {"worker": worker, "balance": balance}
        for worker, balance in sorted(balances.items(), key=lambda item: item[1], reverse=True)
    ]
    return JSONResponse({"workers": workers, "count": len(workers)})


@app.get("/api/balances/{worker}")
async def get_worker_balance(worker: str):
    kv = _require_store()
    try:
        balance = await kv.hash_get(BALANCES_KEY, worker)
    except StoreError as e:
        logger.error("Failed to read balance for %s: %s", worker, e)
        raise HTTPException(status_code=503, detail="Store unavailable")
    if balance is None:
        raise HTTPException(status_code=404, detail=f"Unknown worker {worker}")
    return {"worker": worker, "balance": balance}


@app.get("/api/pending_blocks")
async def get_pending_blocks():
    """Found blocks not yet rewarded or rolled back, oldest first"""
    kv = _require_store()
    try:
        values = await kv.set_members(PENDING_BLOCKS_KEY)
    except StoreError as e:
        logger.error("Failed to read pending blocks: %s", e)
        raise HTTPException(status_code=503, detail="Store unavailable")

    blocks = []
    malformed = []
    for value in values:
        try:
            pending = PendingBlock.parse(value)
        except ValueError:
            malformed.append(value)
            continue
        blocks.append(
            {
                "hash": pending.block_hash,
                "discovered_at": pending.discovered_at,
                "lock_expires_at": pending.matures_at(lock_duration_ms),
            }
        )
    blocks.sort(key=lambda b: b["discovered_at"])
    return {"blocks": blocks, "total": len(blocks), "malformed": malformed}


@app.get("/api/rounds/{from_group}/{to_group}")
async def get_current_round(from_group: int, to_group: int):
    """Shares accumulated in the open round of a chain pair"""
    kv = _require_store()
    try:
        shares = await kv.hash_get_all(current_round_key(from_group, to_group))
    except StoreError as e:
        logger.error("Failed to read round %d:%d: %s", from_group, to_group, e)
        raise HTTPException(status_code=503, detail="Store unavailable")
    return {
        "chain": f"{from_group}:{to_group}",
        "shares": shares,
        "total_difficulty": sum(shares.values()),
    }

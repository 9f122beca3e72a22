"""Proportional (PROP) reward split and settlement of matured blocks."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from ..db.store import KeyValueStore
from ..errors import StoreError
from ..utils.units import to_alph
from .chain_verifier import BlockData
from .keys import BALANCES_KEY, PENDING_BLOCKS_KEY, PendingBlock, round_key

logger = logging.getLogger("RewardAllocator")


@dataclass(frozen=True)
class ReadyBlock:
    """A pending block that is canonical and whose coinbase is spendable"""

    pending: PendingBlock
    block: BlockData


@dataclass
class Settlement:
    settled: List[ReadyBlock] = field(default_factory=list)
    # blocks whose frozen round could not be read, left pending for the next scan
    deferred: List[ReadyBlock] = field(default_factory=list)
    # extra entries for a block already settled in the same batch, removed unpaid
    duplicates: List[ReadyBlock] = field(default_factory=list)
    rewards: Dict[str, float] = field(default_factory=dict)
    committed: bool = False


def split_reward(reward_amount: int, shares: Dict[str, float]) -> Dict[str, float]:
    """
    Split a block reward between workers in proportion to their difficulty.

    Args:
        reward_amount: Coinbase subsidy in the smallest unit
        shares: Frozen round, worker -> cumulative difficulty

    Returns:
        worker -> reward in ALPH. Empty if the round holds no difficulty.
    """
    total = sum(float(difficulty) for difficulty in shares.values())
    if total <= 0:
        return {}
    return {
        worker: to_alph(reward_amount * (float(difficulty) / total))
        for worker, difficulty in shares.items()
    }


class RewardAllocator:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def allocate(self, ready_blocks: List[ReadyBlock]) -> Settlement:
        """
        Credit all ready blocks of one scan in a single transaction.

        Rewards are aggregated per worker across blocks, so each worker gets
        one balance increment. Frozen rounds and pendingBlocks entries of the
        settled blocks are removed in the same transaction, which is what
        keeps a block from being paid twice.
        """
        settlement = Settlement()
        if not ready_blocks:
            return settlement

        tx = self.store.transaction()
        paid_rounds = set()
        for ready in ready_blocks:
            block = ready.block
            frozen_round = round_key(block.from_group, block.to_group, ready.pending.block_hash)
            if frozen_round in paid_rounds:
                # another pendingBlocks entry for the same block, already paid in this batch
                logger.warning(
                    "Duplicate pending entry %s for round %s, removed without reward",
                    ready.pending.value,
                    frozen_round,
                )
                tx.set_remove(PENDING_BLOCKS_KEY, ready.pending.value)
                settlement.duplicates.append(ready)
                continue

            try:
                shares = await self.store.hash_get_all(frozen_round)
            except StoreError as e:
                logger.error(
                    "Get shares failed, error: %s, round: %s, block left pending",
                    e,
                    frozen_round,
                )
                settlement.deferred.append(ready)
                continue

            block_rewards = split_reward(block.reward_amount, shares)
            if block_rewards:
                logger.info(
                    "Reward miners for block: %s (%d workers)",
                    ready.pending.block_hash,
                    len(block_rewards),
                )
            else:
                logger.warning(
                    "Frozen round %s has no shares, block %s credits nobody",
                    frozen_round,
                    ready.pending.block_hash,
                )
            for worker, reward in block_rewards.items():
                settlement.rewards[worker] = settlement.rewards.get(worker, 0.0) + reward

            tx.delete(frozen_round)
            tx.set_remove(PENDING_BLOCKS_KEY, ready.pending.value)
            paid_rounds.add(frozen_round)
            settlement.settled.append(ready)

        if not settlement.settled:
            return settlement

        for worker, reward in settlement.rewards.items():
            tx.hash_increment_float(BALANCES_KEY, worker, reward)

        try:
            await tx.execute()
        except StoreError as e:
            logger.error("Allocate rewards failed, error: %s", e)
            return settlement

        settlement.committed = True
        logger.info(
            "Settled %d blocks, credited %d workers",
            len(settlement.settled),
            len(settlement.rewards),
        )
        return settlement

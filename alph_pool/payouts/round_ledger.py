"""Per chain pair share accounting for the open round."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from ..db.store import KeyValueStore
from ..errors import StoreError
from ..utils.units import now_millis
from .keys import PENDING_BLOCKS_KEY, PendingBlock, current_round_key, round_key

logger = logging.getLogger("RoundLedger")


@dataclass
class Share:
    """A validated share, as handed over by the share submission layer"""

    from_group: int
    to_group: int
    worker: str
    difficulty: float
    found_block: bool = False
    block_hash: Optional[Union[str, bytes]] = None

    @property
    def block_hash_hex(self) -> Optional[str]:
        if isinstance(self.block_hash, (bytes, bytearray)):
            return self.block_hash.hex()
        return self.block_hash


class RoundLedger:
    def __init__(self, store: KeyValueStore, clock: Callable[[], int] = now_millis):
        self.store = store
        self.clock = clock

    async def record_share(self, share: Share):
        """
        Credit a share to the open round of its chain pair.

        When the share also found a block, the open round is renamed to the
        block's frozen round and the block is added to pendingBlocks in the
        same transaction as the difficulty increment. A block hash that
        already has a frozen round is not frozen again; the batch is refused
        so the earlier snapshot and its pending entry stay as they are.
        Failures are only logged; the share's credit is lost if the store
        rejects the batch.
        """
        current_round = current_round_key(share.from_group, share.to_group)
        tx = self.store.transaction()
        tx.hash_increment_float(current_round, share.worker, share.difficulty)

        pending = None
        if share.found_block:
            block_hash = share.block_hash_hex
            if block_hash:
                pending = PendingBlock(block_hash=block_hash, discovered_at=self.clock())
                tx.rename(
                    current_round,
                    round_key(share.from_group, share.to_group, block_hash),
                    replace=False,
                )
                tx.set_add(PENDING_BLOCKS_KEY, pending.value)
            else:
                logger.error(
                    "Share from %s reported a found block without a block hash, "
                    "round %d:%d not frozen",
                    share.worker,
                    share.from_group,
                    share.to_group,
                )

        try:
            await tx.execute()
        except StoreError as e:
            logger.error("Handle share failed, error: %s", e)
            return

        if pending:
            logger.info(
                "Block %s found by %s on chain %d:%d, round frozen",
                pending.block_hash,
                share.worker,
                share.from_group,
                share.to_group,
            )

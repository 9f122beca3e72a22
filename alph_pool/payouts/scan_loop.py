"""
Pending block scanner - periodic task that matures found blocks.
Checks every pending block against the main chain once its lock window has
passed, rolls back orphans and hands spendable blocks to the reward allocator.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..db.store import KeyValueStore
from ..errors import BlockLookupError, BlockNotFoundError, StoreError
from ..utils.units import now_millis, to_alph
from .chain_verifier import BlockData, ChainVerifier
from .keys import PENDING_BLOCKS_KEY, PendingBlock, round_key
from .reward_allocator import ReadyBlock, RewardAllocator, Settlement

logger = logging.getLogger("ScanLoop")


@dataclass
class ScanReport:
    """What a single scan pass did with each pending entry"""

    locked: List[PendingBlock] = field(default_factory=list)
    immature: List[PendingBlock] = field(default_factory=list)
    retried: List[PendingBlock] = field(default_factory=list)
    rolled_back: List[PendingBlock] = field(default_factory=list)
    malformed: List[str] = field(default_factory=list)
    ready: List[ReadyBlock] = field(default_factory=list)
    settlement: Optional[Settlement] = None


class ScanLoop:
    """
    Drives pending blocks through verification and settlement.
    Entries are processed one at a time and scans never overlap.
    """

    def __init__(
        self,
        store: KeyValueStore,
        verifier: ChainVerifier,
        allocator: RewardAllocator,
        lock_duration_seconds: float,
        scan_interval_seconds: float,
        clock: Callable[[], int] = now_millis,
        notification_manager=None,
        failure_alert_threshold: int = 5,
    ):
        self.store = store
        self.verifier = verifier
        self.allocator = allocator
        self.lock_duration_ms = int(lock_duration_seconds * 1000)
        self.scan_interval = scan_interval_seconds
        self.clock = clock
        self.notification_manager = notification_manager
        self.failure_alert_threshold = failure_alert_threshold
        # consecutive failures per pending entry value
        self.failures: Dict[str, int] = {}
        self.task = None
        self.running = False

    async def scan_once(self) -> ScanReport:
        """Run one pass over pendingBlocks. Raises StoreError if the set cannot be listed."""
        report = ScanReport()
        values = await self.store.set_members(PENDING_BLOCKS_KEY)

        for value in values:
            try:
                pending = PendingBlock.parse(value)
            except ValueError as e:
                logger.warning("Skipping pending block entry: %s", e)
                report.malformed.append(value)
                continue
            await self._check_entry(pending, report)

        if report.ready:
            report.settlement = await self.allocator.allocate(report.ready)
            await self._after_settlement(report.settlement)

        self._forget_removed(values)
        return report

    async def _check_entry(self, pending: PendingBlock, report: ScanReport):
        now = self.clock()
        if now < pending.matures_at(self.lock_duration_ms):
            report.locked.append(pending)
            return

        try:
            in_main_chain, block = await self.verifier.is_canonical(pending.block_hash)
        except BlockNotFoundError as e:
            await self._rollback(pending, e.block, str(e), report)
            return
        except BlockLookupError as e:
            logger.warning("Verify block %s failed, retry next scan: %s", pending.block_hash, e)
            report.retried.append(pending)
            await self._record_failure(pending, str(e))
            return

        if not in_main_chain:
            await self._rollback(pending, block, "Not in main chain", report)
            return

        if block.lock_time > now:
            # coinbase still locked on chain, try again next scan
            logger.debug(
                "Block %s reward locked until %d", pending.block_hash, block.lock_time
            )
            report.immature.append(pending)
            return

        report.ready.append(ReadyBlock(pending=pending, block=block))

    async def _rollback(
        self, pending: PendingBlock, block: BlockData, reason: str, report: ScanReport
    ):
        logger.warning(
            "Remove block and shares, hash: %s, height: %d, reason: %s",
            pending.block_hash,
            block.height,
            reason,
        )
        tx = self.store.transaction()
        tx.delete(round_key(block.from_group, block.to_group, pending.block_hash))
        tx.set_remove(PENDING_BLOCKS_KEY, pending.value)
        try:
            await tx.execute()
        except StoreError as e:
            logger.error(
                "Remove block shares failed, error: %s, blockHash: %s",
                e,
                pending.block_hash,
            )
            await self._record_failure(pending, str(e))
            return

        report.rolled_back.append(pending)
        self.failures.pop(pending.value, None)
        if self.notification_manager:
            await self.notification_manager.notify_block_orphaned(
                block_hash=pending.block_hash,
                height=block.height,
                from_group=block.from_group,
                to_group=block.to_group,
                reason=reason,
            )

    async def _after_settlement(self, settlement: Settlement):
        for ready in settlement.deferred:
            await self._record_failure(ready.pending, "frozen round could not be read")

        if not settlement.committed:
            for ready in settlement.settled + settlement.duplicates:
                await self._record_failure(ready.pending, "settlement commit failed")
            return

        for ready in settlement.duplicates:
            self.failures.pop(ready.pending.value, None)

        for ready in settlement.settled:
            self.failures.pop(ready.pending.value, None)
            if self.notification_manager:
                await self.notification_manager.notify_block_rewarded(
                    block_hash=ready.pending.block_hash,
                    height=ready.block.height,
                    from_group=ready.block.from_group,
                    to_group=ready.block.to_group,
                    reward_alph=to_alph(ready.block.reward_amount),
                )

    async def _record_failure(self, pending: PendingBlock, error: str):
        count = self.failures.get(pending.value, 0) + 1
        self.failures[pending.value] = count
        if count < self.failure_alert_threshold:
            return

        logger.error(
            "Block %s failed to settle %d times in a row, needs operator attention: %s",
            pending.block_hash,
            count,
            error,
        )
        if count == self.failure_alert_threshold and self.notification_manager:
            await self.notification_manager.notify_payout_stalled(
                pending.block_hash, count, error
            )

    def _forget_removed(self, values: List[str]):
        live = set(values)
        for value in list(self.failures):
            if value not in live:
                del self.failures[value]

    async def scan_loop(self):
        """Main scan loop - one pass every scan interval"""
        logger.info(
            "Starting pending block scanner (scanning every %ss, lock duration %ss)",
            self.scan_interval,
            self.lock_duration_ms / 1000,
        )

        while self.running:
            try:
                report = await self.scan_once()
                if report.ready or report.rolled_back:
                    logger.info(
                        "Scan done: %d ready, %d rolled back, %d locked, %d retried",
                        len(report.ready),
                        len(report.rolled_back),
                        len(report.locked) + len(report.immature),
                        len(report.retried),
                    )
            except asyncio.CancelledError:
                break
            except StoreError as e:
                logger.error("Get pending blocks failed, error: %s", e)
            except Exception as e:
                logger.error("Error in pending block scan: %s", e)

            try:
                await asyncio.sleep(self.scan_interval)
            except asyncio.CancelledError:
                break

        logger.info("Pending block scanner stopped")

    async def start(self):
        """Start the periodic scan as a background task"""
        if self.running:
            logger.warning("Pending block scanner already running")
            return

        self.running = True
        self.task = asyncio.create_task(self.scan_loop())

    async def stop(self):
        """Stop the periodic scan"""
        self.running = False
        if self.task and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        self.task = None

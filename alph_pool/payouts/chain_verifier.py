"""Main chain checks for pending blocks."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Tuple

import aiohttp

from ..errors import BlockLookupError, BlockNotFoundError

logger = logging.getLogger("ChainVerifier")


@dataclass(frozen=True)
class BlockData:
    hash: str
    from_group: int
    to_group: int
    height: int
    reward_amount: int  # coinbase subsidy, smallest unit
    lock_time: int  # epoch millis after which the coinbase output is spendable


def _coinbase_output(block: dict) -> dict:
    # the coinbase transaction is the last one in an Alephium block
    reward_tx = block["transactions"][-1]
    outputs = reward_tx.get("outputs")
    if outputs is None:
        outputs = reward_tx["unsigned"]["fixedOutputs"]
    return outputs[0]


def parse_block(block: dict) -> BlockData:
    """Build BlockData from a node block response. Raises KeyError, IndexError, TypeError or ValueError."""
    output = _coinbase_output(block)
    amount = output.get("amount", output.get("attoAlphAmount"))
    if amount is None:
        raise KeyError("coinbase output has no amount")
    return BlockData(
        hash=block["hash"],
        from_group=int(block["chainFrom"]),
        to_group=int(block["chainTo"]),
        height=int(block["height"]),
        reward_amount=int(amount),
        lock_time=int(output.get("lockTime", 0)),
    )


class ChainVerifier:
    """Decides whether a found block is still the canonical header at its height."""

    def __init__(self, node):
        self.node = node

    async def fetch_block(self, block_hash: str) -> BlockData:
        try:
            response = await self.node.get_block(block_hash)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BlockLookupError(f"Get block failed, error: {e!r}", block_hash) from e

        if not response or response.get("error"):
            error = response.get("error") if response else "empty response"
            raise BlockLookupError(f"Get block failed, error: {error}", block_hash)

        try:
            return parse_block(response)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise BlockLookupError(
                f"Unexpected block format from node: {e!r}", block_hash
            ) from e

    async def is_canonical(self, block_hash: str) -> Tuple[bool, BlockData]:
        """
        Check a block hash against the node's main chain.

        Returns (in_main_chain, block). Raises BlockLookupError when the node
        cannot answer, so callers can retry instead of treating an outage as
        a reorg, and BlockNotFoundError when the node has no header at the
        block's height.
        """
        block = await self.fetch_block(block_hash)

        try:
            result = await self.node.get_hashes_at_height(
                block.height, block.from_group, block.to_group
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BlockLookupError(
                f"Check block in main chain failed, error: {e!r}", block_hash, block
            ) from e

        if not result or result.get("error"):
            error = result.get("error") if result else "empty response"
            raise BlockLookupError(
                f"Check block in main chain failed, error: {error}", block_hash, block
            )

        headers = result.get("headers") or []
        if not headers:
            raise BlockNotFoundError("Block not found", block_hash, block)

        in_main_chain = headers[0] == block_hash
        if not in_main_chain:
            logger.debug(
                "Block %s is not canonical at height %d, main chain has %s",
                block_hash,
                block.height,
                headers[0],
            )
        return in_main_chain, block

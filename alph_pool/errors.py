"""Exceptions raised by the reward accounting core."""


class PoolError(Exception):
    """Base class for pool accounting errors"""


class StoreError(PoolError):
    """A key-value store command or transaction failed"""


class VerificationError(PoolError):
    """A pending block could not be checked against the main chain"""

    def __init__(self, message: str, block_hash: str, block=None):
        super().__init__(message)
        self.block_hash = block_hash
        self.block = block


class BlockLookupError(VerificationError):
    """The node could not be queried; the block should be retried later"""


class BlockNotFoundError(VerificationError):
    """The node returned no canonical header at the block's height"""

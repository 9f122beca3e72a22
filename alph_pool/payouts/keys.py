"""Store key layout and the pending block record.

The layout matches existing pool deployments:

    {from}:{to}:shares:currentRound   open round, worker -> difficulty
    {from}:{to}:shares:{blockHash}    frozen round for a found block
    pendingBlocks                     set of "{blockHash}:{discoveredAtMillis}"
    balances                          worker -> credited ALPH
"""

from dataclasses import dataclass, field

PENDING_BLOCKS_KEY = "pendingBlocks"
BALANCES_KEY = "balances"


def current_round_key(from_group: int, to_group: int) -> str:
    return f"{from_group}:{to_group}:shares:currentRound"


def round_key(from_group: int, to_group: int, block_hash: str) -> str:
    return f"{from_group}:{to_group}:shares:{block_hash}"


@dataclass(frozen=True)
class PendingBlock:
    block_hash: str
    discovered_at: int  # epoch millis
    # member exactly as stored, so removal matches even unusual encodings
    raw: str = field(default="", compare=False)

    @property
    def value(self) -> str:
        """Encoded set member"""
        return self.raw or f"{self.block_hash}:{self.discovered_at}"

    def matures_at(self, lock_duration_ms: int) -> int:
        return self.discovered_at + lock_duration_ms

    @classmethod
    def parse(cls, value: str) -> "PendingBlock":
        """Decode a pendingBlocks member, raising ValueError if malformed"""
        block_hash, sep, timestamp = value.partition(":")
        if not sep or not block_hash or not timestamp:
            raise ValueError(f"malformed pending block entry: {value!r}")
        try:
            bytes.fromhex(block_hash)
            discovered_at = int(timestamp)
        except ValueError:
            raise ValueError(f"malformed pending block entry: {value!r}") from None
        return cls(block_hash=block_hash, discovered_at=discovered_at, raw=value)

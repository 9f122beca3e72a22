import pytest
import pytest_asyncio

from alph_pool.db.store import KeyValueStore

HASH_A = "aa" * 32
HASH_B = "bb" * 32
HASH_C = "cc" * 32

START_MILLIS = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = START_MILLIS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float):
        self.now += int(seconds * 1000)


class FakeNode:
    """In-memory stand-in for the node REST client"""

    def __init__(self):
        self.blocks = {}
        self.hashes = {}
        self.block_error = None
        self.hashes_error = None
        self.calls = []

    def add_block(
        self,
        block_hash,
        from_group=0,
        to_group=0,
        height=100,
        reward=4_000_000,
        lock_time=0,
        canonical=True,
    ):
        self.blocks[block_hash] = make_block(
            block_hash, from_group, to_group, height, reward, lock_time
        )
        if canonical:
            self.hashes[(height, from_group, to_group)] = [block_hash]

    async def get_block(self, block_hash):
        self.calls.append(("get_block", block_hash))
        if self.block_error:
            raise self.block_error
        block = self.blocks.get(block_hash)
        if block is None:
            return {"error": f"block {block_hash} not found", "status": 404}
        return block

    async def get_hashes_at_height(self, height, from_group, to_group):
        self.calls.append(("get_hashes_at_height", height, from_group, to_group))
        if self.hashes_error:
            raise self.hashes_error
        return {"headers": list(self.hashes.get((height, from_group, to_group), []))}


def make_block(block_hash, from_group=0, to_group=0, height=100, reward=4_000_000, lock_time=0):
    """Block as returned by GET /blockflow/blocks/{hash}"""
    return {
        "hash": block_hash,
        "timestamp": START_MILLIS,
        "chainFrom": from_group,
        "chainTo": to_group,
        "height": height,
        "transactions": [
            {"unsigned": {"txId": "11" * 32, "fixedOutputs": [{"attoAlphAmount": "5"}]}},
            {
                "unsigned": {
                    "txId": "22" * 32,
                    "fixedOutputs": [
                        {"attoAlphAmount": str(reward), "lockTime": lock_time}
                    ],
                }
            },
        ],
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def node():
    return FakeNode()


@pytest_asyncio.fixture
async def store(tmp_path):
    kv = KeyValueStore(tmp_path / "pool.db")
    await kv.open()
    yield kv
    await kv.close()

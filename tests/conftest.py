import pytest

from cache.ephemeral import EphemeralStore
from cache.models import ChainContext
from cache.policy import EligibilityPolicy
from cache.probe import ChainHeadProbe

BLOCK_HASH = "0x" + "ab" * 32
TX_HASH = "0x" + "cd" * 32


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = 0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeDurableStore:
    """Dict-backed stand-in for the Redis durable tier."""

    def __init__(self):
        self.data = {}
        self.puts = 0

    async def get(self, key):
        return self.data.get(key)

    async def put(self, key, payload):
        self.puts += 1
        self.data.setdefault(key, payload)
        return True


class HeadFetcher:
    """Returns a fixed head and counts how often it was asked."""

    def __init__(self, head="0x3e8", error=None):
        self.head = head
        self.error = error
        self.calls = 0

    async def __call__(self, context):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.head


@pytest.fixture
def context():
    """Chain 1 with the default 100-block margin."""
    return ChainContext(chain_id="1", safety_margin=100, default_margin=100)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ephemeral(clock):
    return EphemeralStore(max_size=100, clock=clock)


@pytest.fixture
def durable():
    return FakeDurableStore()


@pytest.fixture
def head_fetcher():
    """Head at block 1000 (0x3e8)."""
    return HeadFetcher()


@pytest.fixture
def policy(head_fetcher):
    return EligibilityPolicy(ChainHeadProbe(head_fetcher))

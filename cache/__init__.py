"""
Reorg-safe caching for blockchain JSON-RPC responses.

This package decides, per RPC method and per request, whether a response is
safe to cache, which tier it belongs in, and under which key:
- Durable tier for data deep enough behind the chain head to be final
- Ephemeral tier (2-second window) for numeric block lookups
- Passthrough for everything else
"""

from .blocks import parse_block_reference, parse_hex_to_int
from .coordinator import TieredCacheCoordinator
from .engine import CacheEngine
from .ephemeral import EPHEMERAL_TTL_MS, EphemeralStore
from .errors import (
    CacheLayerError,
    KeyInputMalformed,
    ProbeError,
    ProbeMalformed,
    ProbeUnreachable,
    StoreUnavailable
)
from .keys import CacheKeyCodec, key_for
from .models import (
    BlockReference,
    CacheDecision,
    CachedEntry,
    CacheOutcome,
    CacheTier,
    ChainContext,
    RpcMethod
)
from .policy import EligibilityPolicy, within_margin
from .probe import ChainHeadProbe, UpstreamHeadFetcher
from .redis_store import RedisDurableStore

__all__ = [
    'BlockReference',
    'CacheDecision',
    'CachedEntry',
    'CacheEngine',
    'CacheKeyCodec',
    'CacheLayerError',
    'CacheOutcome',
    'CacheTier',
    'ChainContext',
    'ChainHeadProbe',
    'EligibilityPolicy',
    'EphemeralStore',
    'EPHEMERAL_TTL_MS',
    'KeyInputMalformed',
    'ProbeError',
    'ProbeMalformed',
    'ProbeUnreachable',
    'RedisDurableStore',
    'RpcMethod',
    'StoreUnavailable',
    'TieredCacheCoordinator',
    'UpstreamHeadFetcher',
    'key_for',
    'parse_block_reference',
    'parse_hex_to_int',
    'within_margin'
]

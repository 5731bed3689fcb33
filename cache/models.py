"""
Data model shared by the RPC cache engine.

These types don't import from other cache modules to prevent
circular dependencies.
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class RpcMethod(str, Enum):
    """JSON-RPC methods the engine knows how to cache."""
    ETH_GET_LOGS = "eth_getLogs"
    ETH_GET_BLOCK_BY_NUMBER = "eth_getBlockByNumber"
    ETH_GET_BLOCK_BY_HASH = "eth_getBlockByHash"
    ETH_GET_TRANSACTION_RECEIPT = "eth_getTransactionReceipt"
    ETH_GET_BLOCK_RECEIPTS = "eth_getBlockReceipts"
    DEBUG_TRACE_BLOCK_BY_NUMBER = "debug_traceBlockByNumber"
    DEBUG_TRACE_BLOCK_BY_HASH = "debug_traceBlockByHash"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str) -> "RpcMethod":
        """Map a raw method name to a known method, or UNKNOWN."""
        try:
            method = cls(name)
        except ValueError:
            return cls.UNKNOWN
        return method


class CacheTier(str, Enum):
    """Where a cacheable response lives."""
    EPHEMERAL = "ephemeral"
    DURABLE = "durable"
    NONE = "none"


class BlockTag(str, Enum):
    """Symbolic block tags accepted by the JSON-RPC API."""
    LATEST = "latest"
    PENDING = "pending"
    EARLIEST = "earliest"
    SAFE = "safe"
    FINALIZED = "finalized"


class ReferenceKind(str, Enum):
    SYMBOLIC = "symbolic"
    NUMBER = "number"
    HASH = "hash"


class BlockReference(BaseModel):
    """A block referenced by tag, height or 32-byte hash.

    Exactly one of ``tag``, ``number`` or ``hash`` is set, matching ``kind``.
    """
    kind: ReferenceKind
    tag: Optional[BlockTag] = None
    number: Optional[int] = None
    hash: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def symbolic(cls, tag: BlockTag) -> "BlockReference":
        return cls(kind=ReferenceKind.SYMBOLIC, tag=tag)

    @classmethod
    def from_number(cls, number: int) -> "BlockReference":
        return cls(kind=ReferenceKind.NUMBER, number=number)

    @classmethod
    def from_hash(cls, block_hash: str) -> "BlockReference":
        return cls(kind=ReferenceKind.HASH, hash=block_hash.lower())

    @property
    def is_symbolic(self) -> bool:
        return self.kind == ReferenceKind.SYMBOLIC

    @property
    def is_hash(self) -> bool:
        return self.kind == ReferenceKind.HASH

    def identifier(self) -> str:
        """Canonical lowercase hex form used as a cache key suffix."""
        if self.kind == ReferenceKind.NUMBER:
            return hex(self.number)
        if self.kind == ReferenceKind.HASH:
            return self.hash
        return self.tag.value


class ChainContext(BaseModel):
    """Per-request view of the chain configuration.

    Attributes:
        chain_id: Chain identifier taken from the request path
        safety_margin: Blocks a block must trail the head by to be final
        default_margin: Process-wide default the margin was resolved against
    """
    chain_id: str
    safety_margin: int = Field(default=100, ge=0)
    default_margin: int = Field(default=100, ge=0)

    model_config = ConfigDict(frozen=True)


class CacheDecision(BaseModel):
    """Outcome of an eligibility check.

    A decision with ``requires_response`` set allows a lookup in ``tier``
    but no write; the write decision comes from evaluating the response.
    """
    cacheable: bool = False
    tier: CacheTier = CacheTier.NONE
    key: str = ""
    method: RpcMethod = RpcMethod.UNKNOWN
    requires_response: bool = False
    reason: str = ""

    model_config = ConfigDict(frozen=True)

    @classmethod
    def skip(cls, method: RpcMethod, reason: str) -> "CacheDecision":
        return cls(method=method, reason=reason)

    @property
    def can_lookup(self) -> bool:
        return self.cacheable and self.tier != CacheTier.NONE and bool(self.key)

    @property
    def can_store(self) -> bool:
        return self.can_lookup and not self.requires_response


class CachedEntry(BaseModel):
    """A payload held by the ephemeral tier with its write time."""
    key: str
    payload: Any = None
    written_at_ms: int


class CacheOutcome(str, Enum):
    """Terminal state of a request passing through the engine."""
    SERVED_FROM_CACHE = "served_from_cache"
    SERVED_FROM_UPSTREAM_STORED = "served_from_upstream_stored"
    SERVED_FROM_UPSTREAM_NOT_STORED = "served_from_upstream_not_stored"

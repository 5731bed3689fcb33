"""
Tiered cache coordination.

Routes lookups and writes to the ephemeral or durable tier named by a
CacheDecision. Store failures are logged and treated as misses or skipped
writes; they never fail the request.
"""
import json
from typing import Any, Awaitable, Optional, Protocol

import structlog

from config.logging import log_error
from monitoring.cache_metrics import CACHE_HITS, CACHE_MISSES, CACHE_STORES, record_error
from .ephemeral import EphemeralStore
from .errors import StoreUnavailable
from .models import CacheDecision, CacheTier

logger = structlog.get_logger()


class DurableStore(Protocol):
    def get(self, key: str) -> Awaitable[Optional[bytes]]: ...

    def put(self, key: str, payload: bytes) -> Awaitable[Any]: ...


def encode_payload(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_payload(raw: bytes) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw)


class TieredCacheCoordinator:
    """Serves and stores payloads across the ephemeral and durable tiers."""

    def __init__(self, ephemeral: EphemeralStore, durable: Optional[DurableStore] = None):
        self.ephemeral = ephemeral
        self.durable = durable
        if durable is None:
            logger.warning("durable_tier_disabled")

    async def lookup(self, decision: CacheDecision) -> Optional[Any]:
        """Fetch the payload for a decision from its tier, or None on a miss."""
        if not decision.can_lookup:
            return None

        if decision.tier == CacheTier.EPHEMERAL:
            payload = self._lookup_ephemeral(decision.key)
        else:
            payload = await self._lookup_durable(decision.key)

        labels = {"tier": decision.tier.value, "method": decision.method.value}
        if payload is None:
            CACHE_MISSES.labels(**labels).inc()
            logger.debug("cache_miss", key=decision.key, **labels)
        else:
            CACHE_HITS.labels(**labels).inc()
            logger.debug("cache_hit", key=decision.key, **labels)
        return payload

    async def store(self, decision: CacheDecision, payload: Any) -> bool:
        """
        Write a payload to the tier named by a decision.

        Returns:
            True if the payload was handed to a tier, False if skipped
        """
        if not decision.can_store:
            logger.debug("cache_store_skipped", key=decision.key, reason=decision.reason or "not_storable")
            return False
        if payload is None:
            logger.debug("cache_store_skipped", key=decision.key, reason="null_payload")
            return False

        if decision.tier == CacheTier.EPHEMERAL:
            self.ephemeral.put(decision.key, payload)
        else:
            if not await self._store_durable(decision.key, payload):
                return False

        CACHE_STORES.labels(tier=decision.tier.value, method=decision.method.value).inc()
        logger.info("cache_stored", key=decision.key, tier=decision.tier.value)
        return True

    def _lookup_ephemeral(self, key: str) -> Optional[Any]:
        found = self.ephemeral.get(key)
        if found is None:
            return None
        payload, _written_at = found
        return payload

    async def _lookup_durable(self, key: str) -> Optional[Any]:
        if self.durable is None:
            return None
        try:
            raw = await self.durable.get(key)
            if raw is None:
                return None
            return decode_payload(raw)
        except StoreUnavailable as e:
            self._degrade(e, key)
        except (UnicodeDecodeError, ValueError) as e:
            self._degrade(StoreUnavailable(f"Corrupt entry: {e}"), key)
        return None

    async def _store_durable(self, key: str, payload: Any) -> bool:
        if self.durable is None:
            logger.warning("durable_tier_unavailable", key=key)
            return False
        try:
            await self.durable.put(key, encode_payload(payload))
        except StoreUnavailable as e:
            self._degrade(e, key)
            return False
        return True

    def _degrade(self, error: StoreUnavailable, key: str) -> None:
        log_error(logger, error, {"key": key})
        record_error(error.kind)

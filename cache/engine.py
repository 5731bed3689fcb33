"""
Facade over the eligibility policy and the tiered cache.

Request handling glue talks to the engine only: it decides, looks up,
stores, and runs the whole per-request state machine through ``resolve``.
"""
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

import structlog

from .coordinator import DurableStore, TieredCacheCoordinator
from .ephemeral import EphemeralStore
from .models import CacheDecision, CacheOutcome, ChainContext, RpcMethod
from .policy import EligibilityPolicy
from .probe import ChainHeadProbe, HeadFetcher

logger = structlog.get_logger()

UpstreamFetch = Callable[[], Awaitable[Any]]


class CacheEngine:
    """Caching decisions and tier access for one process."""

    def __init__(self, policy: EligibilityPolicy, coordinator: TieredCacheCoordinator):
        self.policy = policy
        self.coordinator = coordinator

    @classmethod
    def create(
        cls,
        fetch_current_head: HeadFetcher,
        durable_store: Optional[DurableStore] = None,
        ephemeral_store: Optional[EphemeralStore] = None,
    ) -> "CacheEngine":
        """Wire an engine from its injected collaborators."""
        policy = EligibilityPolicy(ChainHeadProbe(fetch_current_head))
        coordinator = TieredCacheCoordinator(ephemeral_store or EphemeralStore(), durable_store)
        return cls(policy, coordinator)

    async def evaluate(self, context: ChainContext, method: Union[RpcMethod, str], params: Any) -> CacheDecision:
        return await self.policy.evaluate(context, method, params)

    async def evaluate_from_response(
        self,
        context: ChainContext,
        method: Union[RpcMethod, str],
        response_body: Any,
        params: Any = None,
    ) -> CacheDecision:
        return await self.policy.evaluate_from_response(context, method, response_body, params)

    async def lookup(self, decision: CacheDecision) -> Optional[Any]:
        return await self.coordinator.lookup(decision)

    async def store(self, decision: CacheDecision, payload: Any) -> bool:
        return await self.coordinator.store(decision, payload)

    async def resolve(
        self,
        context: ChainContext,
        method: Union[RpcMethod, str],
        params: Any,
        fetch: UpstreamFetch,
    ) -> Tuple[Any, CacheOutcome]:
        """
        Serve one request: decide, look up, fetch on a miss, then store or skip.

        The decision made before the fetch is reused for the write unless it
        requires the response, in which case the response is evaluated.
        Errors raised by ``fetch`` propagate to the caller.

        Args:
            context: Chain the request targets
            method: JSON-RPC method name
            params: Positional parameters
            fetch: Coroutine factory returning the upstream ``result`` payload

        Returns:
            The payload and the terminal state of the request
        """
        decision = await self.evaluate(context, method, params)

        if decision.can_lookup:
            cached = await self.lookup(decision)
            if cached is not None:
                return cached, CacheOutcome.SERVED_FROM_CACHE

        payload = await fetch()

        if decision.requires_response:
            decision = await self.evaluate_from_response(context, method, payload, params)

        if decision.can_store and await self.store(decision, payload):
            return payload, CacheOutcome.SERVED_FROM_UPSTREAM_STORED
        return payload, CacheOutcome.SERVED_FROM_UPSTREAM_NOT_STORED

"""
Cache eligibility rules.

Decides, per method and per request, whether a response may be cached and
in which tier. The core rule is reorg safety: a block is only treated as
final once ``number + safety_margin <= head``. Any failure while deciding
(unparseable parameters, an unreachable head probe) degrades to "not
cacheable" and never reaches the caller.
"""
import functools
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from config.logging import log_error
from monitoring.cache_metrics import record_decision, record_error
from .blocks import block_number_from_response, normalize_hash, parse_block_reference
from .errors import CacheLayerError, KeyInputMalformed
from .keys import CacheKeyCodec
from .models import BlockReference, CacheDecision, CacheTier, ChainContext, RpcMethod
from .probe import ChainHeadProbe

logger = structlog.get_logger()

Handler = Callable[[ChainContext, List[Any]], Awaitable[CacheDecision]]
ResponseHandler = Callable[[ChainContext, Any, Optional[List[Any]]], Awaitable[CacheDecision]]

BLOCK_ID_METHODS = (
    RpcMethod.ETH_GET_BLOCK_RECEIPTS,
    RpcMethod.DEBUG_TRACE_BLOCK_BY_NUMBER,
    RpcMethod.DEBUG_TRACE_BLOCK_BY_HASH,
)
TRACE_METHODS = (
    RpcMethod.DEBUG_TRACE_BLOCK_BY_NUMBER,
    RpcMethod.DEBUG_TRACE_BLOCK_BY_HASH,
)


def within_margin(number: int, margin: int, head: int) -> bool:
    """True when a block is deep enough behind the head to be final."""
    return number + margin <= head


def _as_list(params: Any) -> List[Any]:
    if params is None:
        return []
    if isinstance(params, list):
        return params
    raise KeyInputMalformed(f"Expected positional params, got {type(params).__name__}")


def _first_param(params: List[Any]) -> Any:
    if not params:
        raise KeyInputMalformed("Missing required parameter")
    return params[0]


def _hydrated_variant(params: List[Any]) -> Optional[Dict[str, Any]]:
    """The full-transactions flag of the block methods changes the payload shape."""
    if len(params) < 2 or params[1] is None:
        return None
    flag = params[1]
    if not isinstance(flag, bool):
        raise KeyInputMalformed(f"Hydrated flag must be a boolean, got {flag!r}")
    return {"hydrated": True} if flag else None


def _hydrated_variant_of(block: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Infer the hydrated flag from a block whose transactions are full objects."""
    transactions = block.get("transactions") or []
    return {"hydrated": True} if any(isinstance(tx, dict) for tx in transactions) else None


def _trace_variant(method: RpcMethod, params: List[Any]) -> Optional[Dict[str, Any]]:
    if method not in TRACE_METHODS or len(params) < 2 or params[1] is None:
        return None
    options = params[1]
    if not isinstance(options, dict):
        raise KeyInputMalformed(f"Tracer options must be an object, got {options!r}")
    return options or None


class EligibilityPolicy:
    """
    Decision table keyed by method family.

    ``evaluate`` decides from the request alone. Methods whose safety can
    only be judged from the upstream answer get a lookup-only decision
    (``requires_response``) and are re-judged by ``evaluate_from_response``.
    """

    def __init__(self, probe: ChainHeadProbe, codec: Optional[CacheKeyCodec] = None):
        self.probe = probe
        self.codec = codec or CacheKeyCodec()
        self._request_rules: Dict[RpcMethod, Handler] = {
            RpcMethod.ETH_GET_LOGS: self._logs,
            RpcMethod.ETH_GET_BLOCK_BY_NUMBER: self._block_by_number,
            RpcMethod.ETH_GET_BLOCK_BY_HASH: self._block_by_hash,
            RpcMethod.ETH_GET_TRANSACTION_RECEIPT: self._transaction_receipt,
        }
        self._response_rules: Dict[RpcMethod, ResponseHandler] = {
            RpcMethod.ETH_GET_BLOCK_BY_HASH: self._block_by_hash_response,
            RpcMethod.ETH_GET_TRANSACTION_RECEIPT: self._transaction_receipt_response,
        }
        for method in BLOCK_ID_METHODS:
            self._request_rules[method] = functools.partial(self._block_id, method)
            self._response_rules[method] = functools.partial(self._block_id_response, method)

    async def evaluate(
        self,
        context: ChainContext,
        method: Union[RpcMethod, str],
        params: Any,
    ) -> CacheDecision:
        """
        Decide whether and where a request may be served from cache.

        Args:
            context: Chain the request targets
            method: Method name or RpcMethod
            params: Positional JSON-RPC parameters

        Returns:
            A CacheDecision; never raises for cache-layer failures
        """
        method = self._coerce(method)
        rule = self._request_rules.get(method)
        if rule is None:
            return self._finish(context, CacheDecision.skip(method, "passthrough"))

        try:
            decision = await rule(context, _as_list(params))
        except CacheLayerError as e:
            decision = self._degrade(context, method, e)
        return self._finish(context, decision)

    async def evaluate_from_response(
        self,
        context: ChainContext,
        method: Union[RpcMethod, str],
        response_body: Any,
        params: Any = None,
    ) -> CacheDecision:
        """
        Decide whether an upstream answer may be written to cache.

        When ``params`` is omitted the identifier is recovered from the
        response itself where its shape allows.
        """
        method = self._coerce(method)
        if response_body is None:
            return self._finish(context, CacheDecision.skip(method, "null_response"))

        try:
            param_list = _as_list(params) if params is not None else None
            rule = self._response_rules.get(method)
            if rule is not None:
                decision = await rule(context, response_body, param_list)
            elif method in self._request_rules and param_list is not None:
                # Eligibility of these methods is fixed by the request alone.
                decision = await self._request_rules[method](context, param_list)
            else:
                decision = CacheDecision.skip(method, "passthrough")
        except CacheLayerError as e:
            decision = self._degrade(context, method, e)
        return self._finish(context, decision)

    async def is_final(self, context: ChainContext, number: int) -> bool:
        """Probe the head and apply the reorg-safety rule to one block."""
        head = await self.probe.current_head(context)
        final = within_margin(number, context.safety_margin, head)
        logger.debug(
            "block_finality_check",
            chain_id=context.chain_id,
            block_number=number,
            head=head,
            margin=context.safety_margin,
            final=final,
        )
        return final

    # Request rules

    async def _logs(self, context: ChainContext, params: List[Any]) -> CacheDecision:
        method = RpcMethod.ETH_GET_LOGS
        log_filter = _first_param(params)
        if not isinstance(log_filter, dict):
            raise KeyInputMalformed("Log filter must be an object")
        if "blockHash" in log_filter:
            return CacheDecision.skip(method, "block_hash_filter")

        from_ref = self._number_or_tag(log_filter.get("fromBlock", "latest"))
        to_ref = self._number_or_tag(log_filter.get("toBlock", "latest"))
        if from_ref.is_symbolic or to_ref.is_symbolic:
            return CacheDecision.skip(method, "symbolic_tag")

        if not await self.is_final(context, to_ref.number):
            return CacheDecision.skip(method, "within_margin")

        return CacheDecision(
            cacheable=True,
            tier=CacheTier.DURABLE,
            key=self.codec.key_for(method, context.chain_id, log_filter),
            method=method,
        )

    async def _block_by_number(self, context: ChainContext, params: List[Any]) -> CacheDecision:
        method = RpcMethod.ETH_GET_BLOCK_BY_NUMBER
        ref = self._number_or_tag(_first_param(params))
        if ref.is_symbolic:
            return CacheDecision.skip(method, "symbolic_tag")

        variant = _hydrated_variant(params)
        if not await self.is_final(context, ref.number):
            return CacheDecision.skip(method, "within_margin")

        # Numeric lookups stay in the short-lived tier even when final.
        return CacheDecision(
            cacheable=True,
            tier=CacheTier.EPHEMERAL,
            key=self.codec.key_for(method, context.chain_id, ref.identifier(), variant),
            method=method,
        )

    async def _block_by_hash(self, context: ChainContext, params: List[Any]) -> CacheDecision:
        method = RpcMethod.ETH_GET_BLOCK_BY_HASH
        block_hash = normalize_hash(_first_param(params))
        return CacheDecision(
            cacheable=True,
            tier=CacheTier.DURABLE,
            key=self.codec.key_for(method, context.chain_id, block_hash, _hydrated_variant(params)),
            method=method,
            requires_response=True,
        )

    async def _transaction_receipt(self, context: ChainContext, params: List[Any]) -> CacheDecision:
        method = RpcMethod.ETH_GET_TRANSACTION_RECEIPT
        tx_hash = normalize_hash(_first_param(params))
        return CacheDecision(
            cacheable=True,
            tier=CacheTier.DURABLE,
            key=self.codec.key_for(method, context.chain_id, tx_hash),
            method=method,
            requires_response=True,
        )

    async def _block_id(self, method: RpcMethod, context: ChainContext, params: List[Any]) -> CacheDecision:
        ref = parse_block_reference(_first_param(params))
        if ref.is_symbolic:
            return CacheDecision.skip(method, "symbolic_tag")

        key = self.codec.key_for(method, context.chain_id, ref.identifier(), _trace_variant(method, params))
        if ref.is_hash:
            # A hash may still point near the tip; the response decides.
            return CacheDecision(
                cacheable=True,
                tier=CacheTier.DURABLE,
                key=key,
                method=method,
                requires_response=True,
            )

        if not await self.is_final(context, ref.number):
            return CacheDecision.skip(method, "within_margin")
        return CacheDecision(cacheable=True, tier=CacheTier.DURABLE, key=key, method=method)

    # Response rules

    async def _transaction_receipt_response(
        self, context: ChainContext, receipt: Any, params: Optional[List[Any]]
    ) -> CacheDecision:
        method = RpcMethod.ETH_GET_TRANSACTION_RECEIPT
        if not isinstance(receipt, dict):
            return CacheDecision.skip(method, "unexpected_shape")

        block_number = receipt.get("blockNumber")
        if not isinstance(block_number, str) or not block_number or block_number == "null":
            return CacheDecision.skip(method, "pending_transaction")

        tx_hash = _first_param(params) if params else receipt.get("transactionHash")
        return CacheDecision(
            cacheable=True,
            tier=CacheTier.DURABLE,
            key=self.codec.key_for(method, context.chain_id, normalize_hash(tx_hash)),
            method=method,
        )

    async def _block_by_hash_response(
        self, context: ChainContext, block: Any, params: Optional[List[Any]]
    ) -> CacheDecision:
        method = RpcMethod.ETH_GET_BLOCK_BY_HASH
        if not isinstance(block, dict):
            return CacheDecision.skip(method, "unexpected_shape")

        number = block_number_from_response(block)
        if number is None:
            return CacheDecision.skip(method, "no_block_number")
        if not await self.is_final(context, number):
            return CacheDecision.skip(method, "within_margin")

        if params:
            block_hash, variant = _first_param(params), _hydrated_variant(params)
        else:
            block_hash, variant = block.get("hash"), _hydrated_variant_of(block)
        return CacheDecision(
            cacheable=True,
            tier=CacheTier.DURABLE,
            key=self.codec.key_for(method, context.chain_id, normalize_hash(block_hash), variant),
            method=method,
        )

    async def _block_id_response(
        self, method: RpcMethod, context: ChainContext, response: Any, params: Optional[List[Any]]
    ) -> CacheDecision:
        if params:
            ref = parse_block_reference(_first_param(params))
            if not ref.is_hash:
                return await self._block_id(method, context, params)
            identifier = ref.identifier()
        else:
            identifier = self._block_hash_from_response(response)
            if identifier is None:
                return CacheDecision.skip(method, "no_identifier")

        # Plain call-trace trees carry no block number; refuse rather than guess.
        number = block_number_from_response(response)
        if number is None:
            return CacheDecision.skip(method, "no_block_number")
        if not await self.is_final(context, number):
            return CacheDecision.skip(method, "within_margin")

        variant = _trace_variant(method, params) if params else None
        return CacheDecision(
            cacheable=True,
            tier=CacheTier.DURABLE,
            key=self.codec.key_for(method, context.chain_id, identifier, variant),
            method=method,
        )

    # Helpers

    @staticmethod
    def _number_or_tag(value: Any) -> BlockReference:
        ref = parse_block_reference(value)
        if ref.is_hash:
            raise KeyInputMalformed(f"Expected a block number or tag, got a hash: {value}")
        return ref

    @staticmethod
    def _block_hash_from_response(response: Any) -> Optional[str]:
        item = response[0] if isinstance(response, list) and response else response
        if isinstance(item, dict) and isinstance(item.get("blockHash"), str):
            return normalize_hash(item["blockHash"])
        return None

    @staticmethod
    def _coerce(method: Union[RpcMethod, str]) -> RpcMethod:
        if isinstance(method, RpcMethod):
            return method
        return RpcMethod.from_name(method)

    def _degrade(self, context: ChainContext, method: RpcMethod, error: CacheLayerError) -> CacheDecision:
        log_error(logger, error, {"chain_id": context.chain_id, "method": method.value})
        record_error(error.kind)
        return CacheDecision.skip(method, error.kind)

    def _finish(self, context: ChainContext, decision: CacheDecision) -> CacheDecision:
        record_decision(decision.method.value, decision.cacheable)
        logger.debug(
            "cache_decision",
            chain_id=context.chain_id,
            method=decision.method.value,
            cacheable=decision.cacheable,
            tier=decision.tier.value,
            reason=decision.reason,
        )
        return decision

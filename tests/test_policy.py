import pytest

from cache.errors import ProbeUnreachable
from cache.keys import key_for
from cache.models import CacheTier, ChainContext, RpcMethod
from cache.policy import EligibilityPolicy, within_margin
from cache.probe import ChainHeadProbe
from conftest import BLOCK_HASH, TX_HASH, HeadFetcher


def policy_with_head(head: str) -> EligibilityPolicy:
    return EligibilityPolicy(ChainHeadProbe(HeadFetcher(head=head)))


@pytest.mark.parametrize("number,head,margin,expected", [
    (850, 1000, 100, True),    # 850 + 100 = 950 <= 1000
    (901, 1000, 100, False),   # 901 + 100 = 1001 > 1000
    (900, 1000, 100, True),    # boundary
    (100, 1000, 100, True),    # very old blocks
    (990, 1000, 100, False),   # very recent blocks
    (800, 1000, 200, True),
    (801, 1000, 200, False),
    (0, 0, 0, True),
    (2 ** 64 - 1, 2 ** 64 - 1, 1, False),
])
def test_block_distance_logic(number, head, margin, expected):
    assert within_margin(number, margin, head) is expected


# eth_getLogs

@pytest.mark.asyncio
async def test_logs_scenario_at_boundary(policy, context):
    """Head 1000, margin 100: toBlock 900 is cacheable, 901 is not."""
    params = [{"fromBlock": "0x1", "toBlock": "0x384"}]
    decision = await policy.evaluate(context, "eth_getLogs", params)

    assert decision.cacheable
    assert decision.tier == CacheTier.DURABLE
    assert decision.key == key_for(RpcMethod.ETH_GET_LOGS, "1", params[0])
    assert not decision.requires_response

    decision = await policy.evaluate(context, "eth_getLogs", [{"fromBlock": "0x1", "toBlock": "0x385"}])
    assert not decision.cacheable
    assert decision.tier == CacheTier.NONE
    assert decision.reason == "within_margin"


@pytest.mark.asyncio
@pytest.mark.parametrize("from_block,to_block", [
    ("latest", "0x10"),
    ("0x10", "latest"),
    ("0x10", "pending"),
    ("pending", "pending"),
    ("0x10", "safe"),
    ("finalized", "0x10"),
])
async def test_logs_symbolic_tags_not_cacheable(policy, context, head_fetcher, from_block, to_block):
    decision = await policy.evaluate(context, "eth_getLogs", [{"fromBlock": from_block, "toBlock": to_block}])
    assert not decision.cacheable
    assert decision.reason == "symbolic_tag"
    assert head_fetcher.calls == 0


@pytest.mark.asyncio
async def test_logs_missing_bounds_default_to_latest(policy, context):
    decision = await policy.evaluate(context, "eth_getLogs", [{"address": "0x" + "11" * 20}])
    assert not decision.cacheable


@pytest.mark.asyncio
async def test_logs_earliest_follows_number_rule(policy, context):
    decision = await policy.evaluate(context, "eth_getLogs", [{"fromBlock": "earliest", "toBlock": "earliest"}])
    assert decision.cacheable


@pytest.mark.asyncio
async def test_logs_block_hash_filter_not_cacheable(policy, context):
    decision = await policy.evaluate(context, "eth_getLogs", [{"blockHash": BLOCK_HASH}])
    assert not decision.cacheable
    assert decision.reason == "block_hash_filter"


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [
    [],
    None,
    ["0x64"],
    [{"fromBlock": "0xzz", "toBlock": "0x10"}],
    [{"fromBlock": "0x1", "toBlock": BLOCK_HASH}],
    {"fromBlock": "0x1"},
])
async def test_logs_malformed_params_degrade(policy, context, params):
    decision = await policy.evaluate(context, "eth_getLogs", params)
    assert not decision.cacheable
    assert decision.reason == "key_input_malformed"


@pytest.mark.asyncio
async def test_per_chain_margin(head_fetcher):
    policy = EligibilityPolicy(ChainHeadProbe(head_fetcher))
    polygon = ChainContext(chain_id="137", safety_margin=200, default_margin=100)

    decision = await policy.evaluate(polygon, "eth_getLogs", [{"fromBlock": "0x1", "toBlock": "0x320"}])
    assert decision.cacheable  # 800 + 200 <= 1000

    decision = await policy.evaluate(polygon, "eth_getLogs", [{"fromBlock": "0x1", "toBlock": "0x321"}])
    assert not decision.cacheable


# Head probe failures

@pytest.mark.asyncio
async def test_probe_unreachable_degrades(context):
    policy = EligibilityPolicy(ChainHeadProbe(HeadFetcher(error=ConnectionError("refused"))))
    decision = await policy.evaluate(context, "eth_getLogs", [{"fromBlock": "0x1", "toBlock": "0x2"}])

    assert not decision.cacheable
    assert decision.reason == ProbeUnreachable.kind


@pytest.mark.asyncio
async def test_probe_malformed_degrades(context):
    policy = policy_with_head("not-a-number")
    decision = await policy.evaluate(context, "eth_getBlockByNumber", ["0x1", False])

    assert not decision.cacheable
    assert decision.reason == "probe_malformed"


@pytest.mark.asyncio
async def test_each_decision_probes_the_head(policy, context, head_fetcher):
    params = [{"fromBlock": "0x1", "toBlock": "0x2"}]
    await policy.evaluate(context, "eth_getLogs", params)
    await policy.evaluate(context, "eth_getLogs", params)
    assert head_fetcher.calls == 2


# eth_getBlockByNumber

@pytest.mark.asyncio
async def test_block_by_number_uses_ephemeral_tier(policy, context):
    decision = await policy.evaluate(context, "eth_getBlockByNumber", ["0x384", False])

    assert decision.cacheable
    assert decision.tier == CacheTier.EPHEMERAL
    assert decision.key == "eth_getBlockByNumber/1/0x384"


@pytest.mark.asyncio
async def test_block_by_number_hydrated_flag_in_key(policy, context):
    plain = await policy.evaluate(context, "eth_getBlockByNumber", ["0x384", False])
    hydrated = await policy.evaluate(context, "eth_getBlockByNumber", ["0x384", True])
    short = await policy.evaluate(context, "eth_getBlockByNumber", ["0x0384"])

    assert plain.key != hydrated.key
    assert plain.key == short.key


@pytest.mark.asyncio
async def test_block_by_number_recent_not_cacheable(policy, context):
    decision = await policy.evaluate(context, "eth_getBlockByNumber", ["0x3e7", False])
    assert not decision.cacheable


@pytest.mark.asyncio
@pytest.mark.parametrize("tag", ["latest", "pending"])
async def test_block_by_number_tags_never_cacheable(context, tag):
    # Even a huge head can't make a moving tag cacheable.
    policy = policy_with_head("0xffffffffffff")
    decision = await policy.evaluate(context, "eth_getBlockByNumber", [tag, False])
    assert not decision.cacheable


# eth_getTransactionReceipt

@pytest.mark.asyncio
async def test_receipt_request_allows_lookup_only(policy, context, head_fetcher):
    decision = await policy.evaluate(context, "eth_getTransactionReceipt", [TX_HASH])

    assert decision.can_lookup
    assert not decision.can_store
    assert decision.tier == CacheTier.DURABLE
    assert decision.key == f"eth_getTransactionReceipt/1/{TX_HASH}"
    assert head_fetcher.calls == 0


@pytest.mark.asyncio
async def test_null_receipt_not_cacheable(policy, context):
    decision = await policy.evaluate_from_response(context, "eth_getTransactionReceipt", None, [TX_HASH])
    assert not decision.cacheable


@pytest.mark.asyncio
async def test_confirmed_receipt_cacheable(policy, context):
    receipt = {"transactionHash": TX_HASH, "blockNumber": "0x64", "status": "0x1"}
    decision = await policy.evaluate_from_response(context, "eth_getTransactionReceipt", receipt, [TX_HASH])

    assert decision.can_store
    assert decision.tier == CacheTier.DURABLE
    assert decision.key == f"eth_getTransactionReceipt/1/{TX_HASH}"


@pytest.mark.asyncio
async def test_receipt_identifier_recovered_from_response(policy, context):
    receipt = {"transactionHash": TX_HASH.upper().replace("0X", "0x"), "blockNumber": "0x64"}
    decision = await policy.evaluate_from_response(context, "eth_getTransactionReceipt", receipt)
    assert decision.key == f"eth_getTransactionReceipt/1/{TX_HASH}"


@pytest.mark.asyncio
@pytest.mark.parametrize("receipt", [
    {"transactionHash": TX_HASH},
    {"transactionHash": TX_HASH, "blockNumber": None},
    {"transactionHash": TX_HASH, "blockNumber": ""},
    [],
])
async def test_pending_receipt_not_cacheable(policy, context, receipt):
    decision = await policy.evaluate_from_response(context, "eth_getTransactionReceipt", receipt, [TX_HASH])
    assert not decision.cacheable


@pytest.mark.asyncio
async def test_receipt_with_non_hash_param_degrades(policy, context):
    decision = await policy.evaluate(context, "eth_getTransactionReceipt", ["0x123"])
    assert not decision.cacheable
    assert decision.reason == "key_input_malformed"


# eth_getBlockByHash

@pytest.mark.asyncio
async def test_block_by_hash_checks_response_number(policy, context):
    request = await policy.evaluate(context, "eth_getBlockByHash", [BLOCK_HASH, False])
    assert request.can_lookup and request.requires_response

    old = await policy.evaluate_from_response(
        context, "eth_getBlockByHash", {"number": "0x352", "hash": BLOCK_HASH}, [BLOCK_HASH, False]
    )
    assert old.can_store
    assert old.key == request.key

    recent = await policy.evaluate_from_response(
        context, "eth_getBlockByHash", {"number": "0x3e0", "hash": BLOCK_HASH}, [BLOCK_HASH, False]
    )
    assert not recent.cacheable


@pytest.mark.asyncio
async def test_block_by_hash_without_number_not_cacheable(policy, context):
    decision = await policy.evaluate_from_response(context, "eth_getBlockByHash", {"hash": BLOCK_HASH}, [BLOCK_HASH])
    assert not decision.cacheable


@pytest.mark.asyncio
async def test_block_by_hash_hydration_inferred_from_response(policy, context):
    hydrated = await policy.evaluate(context, "eth_getBlockByHash", [BLOCK_HASH, True])
    plain = await policy.evaluate(context, "eth_getBlockByHash", [BLOCK_HASH, False])

    block = {"number": "0x352", "hash": BLOCK_HASH, "transactions": [{"hash": TX_HASH}]}
    from_full = await policy.evaluate_from_response(context, "eth_getBlockByHash", block)
    assert from_full.key == hydrated.key

    block["transactions"] = [TX_HASH]
    from_hashes = await policy.evaluate_from_response(context, "eth_getBlockByHash", block)
    assert from_hashes.key == plain.key


# Block-id methods

@pytest.mark.asyncio
async def test_block_receipts_by_hash_scenario(policy, context):
    """Hash literal with first receipt at block 800, head 1000, margin 100."""
    params = [BLOCK_HASH]
    receipts = [
        {"blockNumber": "0x320", "blockHash": BLOCK_HASH, "transactionIndex": "0x0"},
        {"blockNumber": "0x320", "blockHash": BLOCK_HASH, "transactionIndex": "0x1"},
    ]

    request = await policy.evaluate(context, "eth_getBlockReceipts", params)
    assert request.requires_response

    decision = await policy.evaluate_from_response(context, "eth_getBlockReceipts", receipts, params)
    assert decision.can_store
    assert decision.tier == CacheTier.DURABLE
    assert decision.key == f"eth_getBlockReceipts/1/{BLOCK_HASH}"


@pytest.mark.asyncio
async def test_block_receipts_by_number_needs_no_response(policy, context):
    decision = await policy.evaluate(context, "eth_getBlockReceipts", ["0x64"])

    assert decision.can_store
    assert decision.tier == CacheTier.DURABLE
    assert decision.key == "eth_getBlockReceipts/1/0x64"


@pytest.mark.asyncio
async def test_block_receipts_recent_number_not_cacheable(policy, context):
    decision = await policy.evaluate(context, "eth_getBlockReceipts", ["0x3e8"])
    assert not decision.cacheable


@pytest.mark.asyncio
async def test_trace_by_hash_tree_refused(policy, context):
    traces = [{"txHash": TX_HASH, "result": {"type": "CALL", "from": "0x00", "calls": []}}]
    decision = await policy.evaluate_from_response(context, "debug_traceBlockByHash", traces, [BLOCK_HASH])

    assert not decision.cacheable
    assert decision.reason == "no_block_number"


@pytest.mark.asyncio
async def test_trace_by_number_tracer_options_in_key(policy, context):
    plain = await policy.evaluate(context, "debug_traceBlockByNumber", ["0xc8"])
    with_tracer = await policy.evaluate(context, "debug_traceBlockByNumber", ["0xc8", {"tracer": "callTracer"}])
    empty_options = await policy.evaluate(context, "debug_traceBlockByNumber", ["0xc8", {}])

    assert plain.key == "debug_traceBlockByNumber/1/0xc8"
    assert with_tracer.cacheable
    assert with_tracer.key != plain.key
    assert empty_options.key == plain.key


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["eth_getBlockReceipts", "debug_traceBlockByNumber", "debug_traceBlockByHash"])
@pytest.mark.parametrize("tag", ["latest", "pending"])
async def test_block_id_tags_not_cacheable(policy, context, method, tag):
    decision = await policy.evaluate(context, method, [tag])
    assert not decision.cacheable


@pytest.mark.asyncio
async def test_block_id_response_for_number_reapplies_number_rule(policy, context):
    decision = await policy.evaluate_from_response(context, "eth_getBlockReceipts", [{"blockNumber": "0x64"}], ["0x64"])
    assert decision.can_store
    assert decision.key == "eth_getBlockReceipts/1/0x64"


# Everything else

@pytest.mark.asyncio
async def test_unknown_method_passes_through(policy, context, head_fetcher):
    decision = await policy.evaluate(context, "eth_sendRawTransaction", ["0xdeadbeef"])

    assert not decision.cacheable
    assert decision.method == RpcMethod.UNKNOWN
    assert decision.reason == "passthrough"
    assert head_fetcher.calls == 0

    decision = await policy.evaluate_from_response(context, "eth_chainId", "0x1")
    assert not decision.cacheable

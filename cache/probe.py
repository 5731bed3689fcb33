"""
Chain head probing.

Every caching decision that needs the current head asks the upstream node
for it again; the head value itself is never cached.
"""
import time
from typing import Awaitable, Callable, Optional

import aiohttp
import structlog

from monitoring.cache_metrics import HEAD_PROBE_DURATION
from .blocks import parse_hex_to_int
from .errors import KeyInputMalformed, ProbeMalformed, ProbeUnreachable
from .models import ChainContext

logger = structlog.get_logger()

HeadFetcher = Callable[[ChainContext], Awaitable[str]]


class UpstreamHeadFetcher:
    """
    Fetches the latest block number from a chain's upstream JSON-RPC node.

    The session is owned by the caller; timeouts are enforced per request so
    a hung upstream only disables caching for one decision.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url_for_chain: Callable[[str], str],
        timeout_seconds: float = 10.0,
    ):
        self.session = session
        self.url_for_chain = url_for_chain
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def __call__(self, context: ChainContext) -> str:
        rpc_request = {
            "jsonrpc": "2.0",
            "method": "eth_blockNumber",
            "params": [],
            "id": 1,
        }
        url = self.url_for_chain(context.chain_id)
        async with self.session.post(url, json=rpc_request, timeout=self.timeout) as response:
            response.raise_for_status()
            try:
                body = await response.json(content_type=None)
            except (ValueError, aiohttp.ContentTypeError) as e:
                raise ProbeMalformed(f"Non-JSON block number reply from {url}") from e

        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, str):
            raise ProbeMalformed(f"Failed to get block number from {url}")
        return result


class ChainHeadProbe:
    """Resolves the current head height of a chain on demand."""

    def __init__(self, fetch_current_head: HeadFetcher):
        self.fetch_current_head = fetch_current_head

    async def current_head(self, context: ChainContext) -> int:
        """
        Ask upstream for the latest block number.

        Raises:
            ProbeUnreachable: If the upstream call fails
            ProbeMalformed: If the answer isn't a parseable hex numeral
        """
        start_time = time.time()
        try:
            raw: Optional[str] = await self.fetch_current_head(context)
        except ProbeMalformed:
            raise
        except Exception as e:
            raise ProbeUnreachable(f"Head request for chain {context.chain_id} failed: {e}") from e
        finally:
            HEAD_PROBE_DURATION.observe(time.time() - start_time)

        if not isinstance(raw, str) or not raw.startswith("0x"):
            raise ProbeMalformed(f"Unparseable head {raw!r} for chain {context.chain_id}")
        try:
            head = parse_hex_to_int(raw)
        except KeyInputMalformed as e:
            raise ProbeMalformed(f"Unparseable head {raw!r} for chain {context.chain_id}") from e

        logger.debug("head_probed", chain_id=context.chain_id, head=head)
        return head

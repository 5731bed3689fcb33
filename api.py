import asyncio
from typing import Any, Dict, Optional

import aiohttp
import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field, ValidationError

from cache import CacheEngine, EphemeralStore, RedisDurableStore, RpcMethod, UpstreamHeadFetcher
from config.logging import configure_logging
from config.settings import ProxySettings, get_settings

logger = structlog.get_logger()

INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class RpcRequest(BaseModel):
    jsonrpc: str = "2.0"
    method: str
    params: Any = Field(default_factory=list)
    id: Any = None


class UpstreamRpcError(Exception):
    """The upstream node answered with a JSON-RPC error envelope."""

    def __init__(self, envelope: Dict[str, Any]):
        super().__init__(str(envelope.get("error")))
        self.envelope = envelope


class UpstreamClient:
    """Forwards JSON-RPC requests to the configured upstream node of a chain."""

    def __init__(self, session: aiohttp.ClientSession, settings: ProxySettings):
        self.session = session
        self.settings = settings
        self.timeout = aiohttp.ClientTimeout(total=settings.UPSTREAM_TIMEOUT_SECONDS)

    async def forward(self, chain_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Send a request upstream and return the decoded response envelope."""
        url = self.settings.upstream_url_for(chain_id)
        async with self.session.post(url, json=body, timeout=self.timeout) as response:
            logger.debug("upstream_response", chain_id=chain_id, status=response.status)
            return await response.json(content_type=None)

    async def fetch_result(self, chain_id: str, body: Dict[str, Any]) -> Any:
        """Send a request upstream and return only its ``result`` member."""
        envelope = await self.forward(chain_id, body)
        if not isinstance(envelope, dict) or "error" in envelope:
            raise UpstreamRpcError(envelope if isinstance(envelope, dict) else {"error": envelope})
        return envelope.get("result")


def rpc_error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }


def create_app(
    settings: Optional[ProxySettings] = None,
    engine: Optional[CacheEngine] = None,
    upstream: Optional[UpstreamClient] = None,
) -> FastAPI:
    """Build the caching JSON-RPC proxy.

    ``engine`` and ``upstream`` are created at startup unless injected.
    """
    settings = settings or get_settings()
    app = FastAPI(title="RPC Cache Proxy", version="0.1.0")
    app.state.settings = settings
    app.state.engine = engine
    app.state.upstream = upstream
    app.state.session = None
    app.state.durable = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.on_event("startup")
    async def startup() -> None:
        if app.state.engine is not None and app.state.upstream is not None:
            return
        app.state.session = aiohttp.ClientSession()
        if app.state.upstream is None:
            app.state.upstream = UpstreamClient(app.state.session, settings)
        if app.state.engine is None:
            if settings.REDIS_URL:
                app.state.durable = RedisDurableStore(settings.REDIS_URL)
            app.state.engine = CacheEngine.create(
                UpstreamHeadFetcher(
                    app.state.session,
                    settings.upstream_url_for,
                    settings.UPSTREAM_TIMEOUT_SECONDS,
                ),
                durable_store=app.state.durable,
                ephemeral_store=EphemeralStore(max_size=settings.EPHEMERAL_MAX_ENTRIES),
            )
        logger.info("proxy_started", default_chain_id=settings.DEFAULT_CHAIN_ID)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        if app.state.durable is not None:
            await app.state.durable.disconnect()
        if app.state.session is not None:
            await app.state.session.close()
        logger.info("proxy_stopped")

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        if not settings.ENABLE_METRICS:
            return PlainTextResponse("metrics disabled", status_code=404)
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/")
    @app.post("/{chain_id}")
    async def handle_rpc(request: Request, chain_id: Optional[str] = None) -> Response:
        chain_id = chain_id or settings.DEFAULT_CHAIN_ID
        try:
            body = await request.json()
            rpc_request = RpcRequest.model_validate(body)
        except (ValueError, ValidationError) as e:
            logger.warning("invalid_rpc_request", chain_id=chain_id, error=str(e))
            return PlainTextResponse("Invalid JSON-RPC request", status_code=400)

        logger.info("rpc_request", chain_id=chain_id, method=rpc_request.method, id=rpc_request.id)
        engine: CacheEngine = app.state.engine
        upstream: UpstreamClient = app.state.upstream
        method = RpcMethod.from_name(rpc_request.method)

        try:
            if method == RpcMethod.UNKNOWN:
                envelope = await upstream.forward(chain_id, rpc_request.model_dump())
                return JSONResponse(envelope)

            if not rpc_request.params:
                return JSONResponse(rpc_error(rpc_request.id, INVALID_PARAMS, "Invalid params"))

            result, outcome = await engine.resolve(
                settings.context_for(chain_id),
                method,
                rpc_request.params,
                lambda: upstream.fetch_result(chain_id, rpc_request.model_dump()),
            )
        except UpstreamRpcError as e:
            return JSONResponse(e.envelope)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("upstream_request_failed", chain_id=chain_id, method=rpc_request.method, error=str(e))
            return JSONResponse(
                rpc_error(rpc_request.id, INTERNAL_ERROR, "Upstream request failed"),
                status_code=502,
            )

        logger.info("rpc_request_completed", chain_id=chain_id, method=rpc_request.method, outcome=outcome.value)
        return JSONResponse(
            {"jsonrpc": "2.0", "id": rpc_request.id, "result": result},
            headers={"X-Cache-Status": outcome.value},
        )

    return app


def main() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(create_app(settings), host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    main()

import json
import time
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from iobabel.config.loader import GatewayConfig, load_config
from iobabel.constants import GATEWAY_VERSION, LOG_INCLUDE_REQUEST_CONTENT, LOG_MAX_PATH_LENGTH
from iobabel.logger import get_logger, set_level
from iobabel.metrics.collector import CONTENT_TYPE
from iobabel.node.gateway import Gateway, build_gateway
from iobabel.rpc.server import RPCError

logger = get_logger(__name__)

# Close code for "try again later" when the connection cap is hit
WS_CLOSE_TRY_AGAIN_LATER = 1013
WS_CLOSE_POLICY_VIOLATION = 1008


def _format_body(body_bytes: bytes) -> Optional[str]:
    """Pretty JSON for the request log, raw text otherwise."""
    if not body_bytes:
        return None
    try:
        parsed_value = json.loads(body_bytes.decode('utf-8'))
    except (ValueError, UnicodeDecodeError):
        return body_bytes.decode('utf-8', errors='replace') or None
    if isinstance(parsed_value, (dict, list)) and len(parsed_value) == 0:
        return None
    return json.dumps(parsed_value, indent=2)


def create_app(gateway: Optional[Gateway] = None, config: Optional[GatewayConfig] = None) -> FastAPI:
    """
    Build the gateway application.

    When no gateway is given one is assembled from configuration at
    startup, and torn down at shutdown.
    """
    if config is None:
        config = gateway.config if gateway is not None else load_config()
    config.validate()
    set_level(config.gateway.log_level)
    http_config = config.rpc.http

    app = FastAPI(title="iobabel", description="Ethereum JSON-RPC gateway for IoTeX.", version=GATEWAY_VERSION)
    app.state.gateway = gateway
    app.state.owns_gateway = gateway is None

    limiter = Limiter(key_func=get_remote_address)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    if http_config.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=http_config.cors_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @app.on_event("startup")
    async def startup():
        if app.state.gateway is None:
            app.state.gateway = build_gateway(config)
        logger.info(f"iobabel {GATEWAY_VERSION} serving on {http_config.host}:{http_config.port}")

    @app.on_event("shutdown")
    async def shutdown():
        """Clean shutdown"""
        if app.state.owns_gateway and app.state.gateway is not None:
            await app.state.gateway.close()
            app.state.gateway = None
        elif app.state.gateway is not None:
            await app.state.gateway.ws_manager.shutdown()

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"ok": False, "error": "Internal Server Error"})

    # ========================================================================
    # MIDDLEWARE
    # ========================================================================

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming HTTP requests using the logger."""
        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method
        full_path = request.url.path
        if request.query_params:
            full_path = f"{full_path}?{request.query_params}"

        # Truncate very long paths to prevent log spam from malicious requests
        if len(full_path) > LOG_MAX_PATH_LENGTH:
            full_path = full_path[:LOG_MAX_PATH_LENGTH] + "...[TRUNCATED]"

        body = None
        if LOG_INCLUDE_REQUEST_CONTENT and method == "POST":
            # Starlette caches the body, so the endpoint can still read it
            body = _format_body(await request.body())

        request_body_log = f"\n\nIncoming Request:\n{body}\n" if body else ""
        logger.info(f"<-- {client_ip} - \"{method} {full_path} HTTP/1.1\"{request_body_log}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(f"--> {client_ip} - \"{method} {full_path} HTTP/1.1\" ERROR ({process_time:.3f}s): {e}")
            raise

        process_time = time.time() - start_time
        logger.info(f"--> {client_ip} - \"{method} {full_path} HTTP/1.1\" {response.status_code} ({process_time:.3f}s)")
        return response

    # ========================================================================
    # JSON-RPC ENDPOINTS
    # ========================================================================

    @app.post("/")
    @limiter.limit(http_config.rate_limit_rule)
    async def rpc_endpoint(request: Request):
        """JSON-RPC 2.0 endpoint (single or batch)"""
        body = await request.body()
        if len(body) > http_config.max_request_size:
            return JSONResponse(status_code=413, content={"ok": False, "error": "Request Entity Too Large"})

        result = await app.state.gateway.rpc.handle_request(body, require_version=True)
        if result is None:
            return Response(status_code=204)
        # handle_request returns a JSON string; send it raw to avoid double-encoding
        return Response(content=result, media_type="application/json")

    @app.websocket("/")
    async def ws_endpoint(websocket: WebSocket):
        """JSON-RPC over WebSocket: one frame in, one frame out, plus pushed notifications."""
        if not config.rpc.websocket.enabled:
            await websocket.close(code=WS_CLOSE_POLICY_VIOLATION)
            return

        await websocket.accept()
        ws_manager = app.state.gateway.ws_manager
        try:
            conn = ws_manager.connect(websocket.send_text)
        except RPCError as e:
            logger.warning(f"Rejecting WebSocket client: {e}")
            await websocket.close(code=WS_CLOSE_TRY_AGAIN_LATER)
            return

        try:
            while True:
                raw = await websocket.receive_text()
                response = await ws_manager.handle_rpc_message(conn.id, raw)
                if response is not None:
                    await websocket.send_text(response)
        except WebSocketDisconnect:
            logger.debug(f"WebSocket client {conn.id} went away")
        finally:
            await ws_manager.disconnect(conn.id)

    # ========================================================================
    # OPS ENDPOINTS
    # ========================================================================

    if config.health.enabled:
        @app.get(config.health.path)
        async def ping():
            return PlainTextResponse("pong")

    if config.metrics.enabled:
        @app.get(config.metrics.path)
        async def metrics():
            body = app.state.gateway.metrics.expose()
            return Response(content=body, media_type=CONTENT_TYPE)

    return app


app = create_app()

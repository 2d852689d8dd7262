"""
iobabel Gateway Assembly

Builds the object graph shared by the HTTP and WebSocket transports:
chain client, Redis-backed filters, subscription manager, dispatcher.
"""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from ..chain.client import ChainClient, IoTeXGatewayClient
from ..config.loader import GatewayConfig
from ..filters.manager import FilterManager
from ..filters.store import FilterStore
from ..logger import get_logger
from ..metrics.collector import MetricsCollector
from ..rpc.context import GatewayContext
from ..rpc.modules import register_all
from ..rpc.server import RPCServer
from ..rpc.websocket import WebSocketManager

logger = get_logger(__name__)


@dataclass
class Gateway:
    """Everything a running gateway holds on to."""
    config: GatewayConfig
    client: ChainClient
    redis: redis.Redis
    filters: FilterManager
    ws_manager: WebSocketManager
    rpc: RPCServer
    metrics: MetricsCollector
    context: GatewayContext

    async def close(self) -> None:
        """Release subscriptions, the chain client and Redis."""
        await self.ws_manager.shutdown()
        await self.client.close()
        await self.redis.aclose()
        logger.info("Gateway closed.")


def build_gateway(
    config: GatewayConfig,
    client: Optional[ChainClient] = None,
    redis_client: Optional[redis.Redis] = None,
    metrics: Optional[MetricsCollector] = None,
) -> Gateway:
    """
    Assemble a gateway from configuration.

    Any of the chain client, Redis client or metrics collector may be
    passed in; the rest are created from ``config``.
    """
    if client is None:
        client = IoTeXGatewayClient(
            config.gateway.endpoint,
            timeout=config.gateway.request_timeout,
        )
    if redis_client is None:
        redis_client = redis.Redis.from_url(config.redis.url, decode_responses=True)
    if metrics is None:
        metrics = MetricsCollector()

    store = FilterStore(redis_client, ttl=config.redis.filter_ttl, prefix=config.redis.key_prefix)
    filters = FilterManager(client, store, max_blocks=config.rpc.filters.max_blocks)

    ws_config = config.rpc.websocket
    ws_manager = WebSocketManager(
        client,
        max_connections=ws_config.max_connections,
        max_subscriptions_per_conn=ws_config.max_subscriptions,
        metrics=metrics,
    )

    context = GatewayContext(
        client=client,
        filters=filters,
        subscriptions=ws_manager if ws_config.subscriptions_enabled else None,
        chain_id=config.gateway.chain_id,
    )
    rpc = register_all(context, RPCServer(metrics=metrics))
    ws_manager.rpc_server = rpc

    logger.info(
        f"Gateway assembled: chain_id={config.gateway.chain_id} "
        f"endpoint={config.gateway.endpoint} methods={len(rpc.get_methods())}"
    )
    return Gateway(
        config=config,
        client=client,
        redis=redis_client,
        filters=filters,
        ws_manager=ws_manager,
        rpc=rpc,
        metrics=metrics,
        context=context,
    )

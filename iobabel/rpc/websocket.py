"""
iobabel WebSocket JSON-RPC with Subscriptions

Provides real-time event streaming:
  - eth_subscribe / eth_unsubscribe (Ethereum-compatible)
  - newHeads    new block headers
  - logs        filtered contract event logs

Every subscription owns a live upstream stream from the chain client and
a pump task that forwards each item to the client socket as an
``eth_subscription`` notification.

Connection management:
  - Max connections enforced
  - Per-connection subscription limits
  - Closing a connection cancels every stream it owns
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..chain.client import ChainClient, ChainStream
from ..codec.translate import translate_block_header, translate_log
from ..exceptions import DecodeError
from ..filters.logs import build_native_filter
from ..filters.store import FilterKind, new_filter_id
from ..logger import get_logger
from ..metrics.collector import MetricsCollector
from .server import RPCError, RPCErrorCode, RPCServer

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Subscription types
# ---------------------------------------------------------------------------

class SubscriptionType(str, Enum):
    """Supported subscription channels."""
    NEW_HEADS = "newHeads"
    LOGS = "logs"


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass
class ActiveSubscription:
    """A live subscription held by a connection."""
    id: str
    sub_type: SubscriptionType
    stream: ChainStream
    task: Optional[asyncio.Task] = None
    filter_params: Optional[Dict[str, Any]] = None
    created_at: float = field(default_factory=time.time)


@dataclass
class WSConnection:
    """Tracks one WebSocket client connection."""
    id: str
    subscriptions: Dict[str, ActiveSubscription] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    # Async callable taking a text frame, bound by the transport
    send_fn: Optional[Callable] = None
    closed: bool = False

    @property
    def subscription_count(self) -> int:
        return len(self.subscriptions)


# ---------------------------------------------------------------------------
# WebSocket subscription manager
# ---------------------------------------------------------------------------

class WebSocketManager:
    """
    Manages WebSocket connections and their subscriptions.

    This class is transport-agnostic: it owns the connection side table
    and the stream lifecycle. The actual WebSocket I/O is handled by the
    transport layer (FastAPI/Starlette WebSocket).
    """

    def __init__(
        self,
        client: ChainClient,
        rpc_server: Optional[RPCServer] = None,
        max_connections: int = 1000,
        max_subscriptions_per_conn: int = 100,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.client = client
        self.rpc_server = rpc_server
        self.max_connections = max_connections
        self.max_subscriptions_per_conn = max_subscriptions_per_conn
        self.metrics = metrics

        # Active connections
        self._connections: Dict[str, WSConnection] = {}

    def _update_gauges(self) -> None:
        if self.metrics is not None:
            self.metrics.ws_connections.set(self.active_connections)
            self.metrics.ws_subscriptions.set(self.active_subscriptions)

    # -- Connection lifecycle -----------------------------------------------

    def connect(self, send_fn: Optional[Callable] = None) -> WSConnection:
        """
        Register a new WebSocket connection.

        Args:
            send_fn: Async callable to send a text frame to the client.

        Returns:
            WSConnection instance

        Raises:
            RPCError: if max connections exceeded
        """
        if len(self._connections) >= self.max_connections:
            raise RPCError(
                RPCErrorCode.LIMIT_EXCEEDED,
                f"Max WebSocket connections reached ({self.max_connections})"
            )

        conn_id = uuid.uuid4().hex[:16]
        conn = WSConnection(id=conn_id, send_fn=send_fn)
        self._connections[conn_id] = conn
        self._update_gauges()
        logger.info(f"WS connect: {conn_id} (active={len(self._connections)})")
        return conn

    def get_connection(self, conn_id: str) -> Optional[WSConnection]:
        return self._connections.get(conn_id)

    async def disconnect(self, conn_id: str) -> None:
        """
        Remove a connection and cancel every stream it owns.

        Args:
            conn_id: Connection ID to remove
        """
        conn = self._connections.pop(conn_id, None)
        if conn is None:
            return

        conn.closed = True
        subscriptions = list(conn.subscriptions.values())
        conn.subscriptions.clear()
        for sub in subscriptions:
            await self._cancel(sub)

        self._update_gauges()
        logger.info(
            f"WS disconnect: {conn_id} (active={len(self._connections)}, "
            f"cancelled={len(subscriptions)})"
        )

    async def shutdown(self) -> None:
        """Disconnect every connection, releasing all upstream streams."""
        for conn_id in list(self._connections):
            await self.disconnect(conn_id)

    # -- Subscriptions ------------------------------------------------------

    async def subscribe(
        self,
        connection: Optional[WSConnection],
        sub_type: str,
        filter_params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Open an upstream stream and start pushing it to the connection.

        Args:
            connection: Connection the request arrived on
            sub_type: Subscription type name ("newHeads" or "logs")
            filter_params: Address/topics filter for "logs"

        Returns:
            Subscription ID

        Raises:
            RPCError: without a connection, on an invalid type, or limit exceeded
        """
        if connection is None or connection.id not in self._connections:
            raise RPCError(
                RPCErrorCode.INVALID_REQUEST,
                "Subscriptions require a WebSocket connection"
            )

        try:
            st = SubscriptionType(sub_type)
        except ValueError:
            raise RPCError(
                RPCErrorCode.INVALID_PARAMS,
                f"Unknown subscription type: {sub_type}. "
                f"Valid: {[t.value for t in SubscriptionType]}"
            )

        if connection.subscription_count >= self.max_subscriptions_per_conn:
            raise RPCError(
                RPCErrorCode.LIMIT_EXCEEDED,
                f"Max subscriptions per connection reached ({self.max_subscriptions_per_conn})"
            )

        if st == SubscriptionType.LOGS:
            stream = self.client.stream_logs(build_native_filter(filter_params or {}))
        else:
            stream = self.client.stream_blocks()

        sub_id = new_filter_id(FilterKind.SUBSCRIPTION, {"type": st.value, "params": filter_params})
        sub = ActiveSubscription(id=sub_id, sub_type=st, stream=stream, filter_params=filter_params)
        connection.subscriptions[sub_id] = sub
        sub.task = asyncio.create_task(self._pump(connection, sub))
        self._update_gauges()

        logger.debug(f"WS subscribe: conn={connection.id} type={st.value} sub={sub_id}")
        return sub_id

    async def unsubscribe(self, connection: Optional[WSConnection], sub_id: str) -> bool:
        """
        Cancel a subscription.

        Returns:
            True if it existed on this connection, False otherwise
        """
        if connection is None:
            raise RPCError(
                RPCErrorCode.INVALID_REQUEST,
                "Subscriptions require a WebSocket connection"
            )

        sub = connection.subscriptions.pop(sub_id, None)
        if sub is None:
            return False

        await self._cancel(sub)
        self._update_gauges()
        logger.debug(f"WS unsubscribe: conn={connection.id} sub={sub_id}")
        return True

    async def _cancel(self, sub: ActiveSubscription) -> None:
        """Stop the pump, then release the upstream stream."""
        task = sub.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await sub.stream.cancel()

    # -- Event dispatch -----------------------------------------------------

    async def _send(self, conn: WSConnection, payload: Dict[str, Any]) -> bool:
        """Push one frame; failures are logged and the subscription stays open."""
        if conn.closed or conn.send_fn is None:
            return False
        try:
            await conn.send_fn(json.dumps(payload))
        except Exception as e:
            logger.warning(f"Failed to push to conn {conn.id}: {e}")
            return False
        return True

    async def _pump(self, conn: WSConnection, sub: ActiveSubscription) -> None:
        """Forward stream items as notifications until the stream ends or fails."""
        translate = translate_block_header if sub.sub_type == SubscriptionType.NEW_HEADS else translate_log
        try:
            async for item in sub.stream:
                try:
                    result = translate(item)
                except DecodeError as e:
                    logger.warning(f"Skipping untranslatable {sub.sub_type.value} item on {sub.id}: {e}")
                    continue
                await self._send(conn, {
                    "jsonrpc": "2.0",
                    "method": "eth_subscription",
                    "params": {
                        "subscription": sub.id,
                        "result": result,
                    },
                })
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Subscription {sub.id} stream failed: {e}")
        else:
            logger.info(f"Subscription {sub.id} stream ended")

        # Only this subscription is torn down; siblings keep streaming
        if conn.subscriptions.pop(sub.id, None) is not None:
            self._update_gauges()
        await sub.stream.cancel()

    # -- RPC handler --------------------------------------------------------

    async def handle_rpc_message(self, conn_id: str, raw_data: str) -> Optional[str]:
        """
        Handle a JSON-RPC frame arriving on a WebSocket.

        The frame goes through the shared dispatcher with the connection
        attached, so eth_subscribe / eth_unsubscribe can bind to it.
        WebSocket frames do not require the ``jsonrpc`` member.

        Returns:
            JSON response string, or None if nothing is to be sent
        """
        if self.rpc_server is None:
            logger.error("WebSocket frame received before the dispatcher was attached")
            return None
        return await self.rpc_server.handle_request(
            raw_data,
            connection=self._connections.get(conn_id),
            require_version=False,
        )

    # -- Diagnostics --------------------------------------------------------

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    @property
    def active_subscriptions(self) -> int:
        return sum(c.subscription_count for c in self._connections.values())

"""
iobabel RPC Module

Provides the Ethereum JSON-RPC 2.0 surface of the gateway:
- Method table and dispatcher shared by both transports
- WebSocket subscriptions (newHeads, logs)
"""

from .server import RPCServer, RPCError, RPCErrorCode, RPCModule, rpc_method
from .config import RPCConfig
from .context import GatewayContext

__all__ = [
    "RPCServer",
    "RPCError",
    "RPCErrorCode",
    "RPCModule",
    "rpc_method",
    "RPCConfig",
    "GatewayContext",
]

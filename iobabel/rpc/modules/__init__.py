"""
iobabel RPC Modules

Ethereum-compatible JSON-RPC method implementations.
"""

from typing import Optional

from ..server import RPCServer
from .eth import EthModule
from .net import NetModule
from .web3 import Web3Module

# Known Ethereum methods answered with the unsupported envelope
UNSUPPORTED_METHODS = (
    "eth_getStorageAt",
    "eth_getUncleCountByBlockHash",
    "eth_getUncleCountByBlockNumber",
    "eth_getUncleByBlockHashAndIndex",
    "eth_getUncleByBlockNumberAndIndex",
    "eth_sign",
    "eth_signTransaction",
    "eth_sendTransaction",
    "eth_newPendingTransactionFilter",
    "eth_getCompilers",
    "eth_compileSolidity",
    "eth_compileLLL",
    "eth_compileSerpent",
    "eth_getWork",
    "eth_submitWork",
    "eth_submitHashrate",
)


def register_all(context, server: Optional[RPCServer] = None) -> RPCServer:
    """Build the full method table over a gateway context."""
    server = server or RPCServer()
    server.register_module(EthModule(context))
    server.register_module(NetModule(context))
    server.register_module(Web3Module(context))
    server.register_unsupported(UNSUPPORTED_METHODS)
    return server


__all__ = [
    "EthModule",
    "NetModule",
    "Web3Module",
    "UNSUPPORTED_METHODS",
    "register_all",
]

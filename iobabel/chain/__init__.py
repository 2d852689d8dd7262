"""
iobabel Chain Module

Async access to the native chain RPC.
"""

from .client import ChainClient, ChainStream, IoTeXGatewayClient

__all__ = [
    "ChainClient",
    "ChainStream",
    "IoTeXGatewayClient",
]

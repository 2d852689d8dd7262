"""
iobabel: Ethereum JSON-RPC gateway for IoTeX

Submodules are loaded on first attribute access so that importing the
codec alone does not pull in the web stack:

    from iobabel.codec import to_compat_address
    from iobabel.node import build_gateway
"""

__version__ = "1.2.0"


def __getattr__(name):
    if name in ("Gateway", "build_gateway"):
        from . import node
        return getattr(node, name)
    if name == "create_app":
        from .node.main import create_app
        return create_app
    if name == "GatewayConfig":
        from .config import GatewayConfig
        return GatewayConfig
    raise AttributeError(f"module 'iobabel' has no attribute {name!r}")


__all__ = ["Gateway", "build_gateway", "create_app", "GatewayConfig"]

"""
iobabel RPC Configuration

The ``[rpc.*]`` tables of config.toml. HTTP and WebSocket share one
listener; the WebSocket upgrade is served on the same ``/`` path.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..constants import MAX_FILTER_BLOCKS


@dataclass
class HTTPConfig:
    """``[rpc.http]``: listener and request limits."""

    host: str = "0.0.0.0"
    port: int = 9000

    cors_enabled: bool = True
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # Requests per minute per client IP
    rate_limit: int = 1000

    # Larger bodies are refused with 413
    max_request_size: int = 5 * 1024 * 1024

    @property
    def rate_limit_rule(self) -> str:
        """slowapi limit string for the RPC route."""
        return f"{self.rate_limit}/minute"


@dataclass
class WebSocketConfig:
    """``[rpc.websocket]``: connection and subscription caps."""

    enabled: bool = True
    max_connections: int = 1000

    # eth_subscribe / eth_unsubscribe; calls fail as unsupported when off
    subscriptions_enabled: bool = True
    max_subscriptions: int = 100


@dataclass
class FilterConfig:
    """``[rpc.filters]``: poll filter limits."""

    # Block hashes returned per eth_getFilterChanges poll
    max_blocks: int = MAX_FILTER_BLOCKS


@dataclass
class RPCConfig:
    http: HTTPConfig = field(default_factory=HTTPConfig)
    websocket: WebSocketConfig = field(default_factory=WebSocketConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "RPCConfig":
        """Create from the parsed ``[rpc]`` table; unknown keys are an error."""
        return cls(
            http=HTTPConfig(**config.get("http", {})),
            websocket=WebSocketConfig(**config.get("websocket", {})),
            filters=FilterConfig(**config.get("filters", {})),
        )

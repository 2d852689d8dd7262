"""
iobabel RPC Context

Dependencies handed to every RPC module.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..chain.client import ChainClient
from ..constants import DEFAULT_CHAIN_ID
from ..filters.manager import FilterManager

if TYPE_CHECKING:
    from .websocket import WebSocketManager


@dataclass
class GatewayContext:
    """Chain client, poll filters and push subscriptions for the handlers."""
    client: ChainClient
    filters: Optional[FilterManager] = None
    subscriptions: Optional["WebSocketManager"] = None
    chain_id: int = DEFAULT_CHAIN_ID

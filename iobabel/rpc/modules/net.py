"""
iobabel net_* RPC Methods

Network-related JSON-RPC methods. The gateway is not a peer of the
native network, so peer information is a fixed answer.
"""

from typing import List

from ..server import RPCModule, rpc_method
from ...constants import PEER_COUNT


class NetModule(RPCModule):
    """
    Network RPC methods (net_* namespace).
    """

    namespace = "net"

    @rpc_method
    async def version(self) -> str:
        """
        Returns the network ID.

        Returns:
            Chain ID as a decimal string
        """
        return str(self.context.chain_id)

    @rpc_method
    async def listening(self) -> bool:
        return True

    @rpc_method
    async def peerCount(self) -> str:
        return PEER_COUNT

    @rpc_method
    async def peers(self) -> List:
        return []

"""
iobabel web3_* RPC Methods

Utility JSON-RPC methods.
"""

from eth_utils import encode_hex, keccak

from ..server import RPCModule, rpc_method
from ...codec.encoding import hex_to_bytes


class Web3Module(RPCModule):
    """
    Web3 utility methods (web3_* namespace).
    """

    namespace = "web3"

    @rpc_method
    async def clientVersion(self) -> str:
        """
        Returns the client version string.

        The version is the upstream node's, ``packageVersion/goVersion``.
        """
        meta = await self.context.client.get_server_meta()
        return f"{meta.get('packageVersion', '')}/{meta.get('goVersion', '')}"

    @rpc_method
    async def sha3(self, data: str) -> str:
        """
        Returns Keccak-256 hash of input.

        Args:
            data: Input data (hex string with 0x prefix)

        Returns:
            Hash (hex with 0x prefix)
        """
        return encode_hex(keccak(hex_to_bytes(data)))

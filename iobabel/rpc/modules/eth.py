"""
iobabel eth_* RPC Methods

Ethereum JSON-RPC namespace translated onto the native chain, for
web3.py, ethers.js, Hardhat, Foundry and other standard tooling.

Architecture:
    - self.context.client        -> ChainClient (native RPC)
    - self.context.filters       -> FilterManager (poll filters in Redis)
    - self.context.subscriptions -> WebSocketManager (push subscriptions)

Lookups that miss (block, transaction, receipt) answer ``None``; every
other failure propagates to the dispatcher, which reports it in the
result.
"""

from typing import Any, Dict, List, Optional, Union

from ..server import RPCModule, rpc_method, RPCError, RPCErrorCode
from ...codec.address import to_compat_address, to_native_address
from ...codec.encoding import bytes_to_hex, hex_to_bytes, hex_to_number, normalize_hash, number_to_hex
from ...codec.translate import translate_action, translate_block, translate_receipt
from ...constants import (
    CALL_EXCLUDED_CONTRACTS,
    EARLIEST_BLOCK_TAG,
    GENESIS_HEIGHT,
    HASHRATE,
    HEAD_BLOCK_TAGS,
    MAX_ACTIONS_PER_BLOCK,
    PROTOCOL_VERSION,
)
from ...exceptions import ChainClientError, ChainNotFoundError, DecodeError
from ...filters.logs import fetch_logs, resolve_range
from ...logger import get_logger

logger = get_logger(__name__)


def _not_implemented() -> RPCError:
    return RPCError(RPCErrorCode.METHOD_NOT_SUPPORTED, "function not implemented")


# ─── EthModule ────────────────────────────────────────────────────────────────

class EthModule(RPCModule):
    """
    Ethereum-compatible RPC methods (eth_* namespace).
    """

    namespace = "eth"

    @property
    def _client(self):
        return self.context.client

    # ── Internal helpers ──

    async def _resolve_block_tag(self, tag: Any) -> int:
        """Block tag to height: head tags (and no tag) follow the chain head."""
        if tag is None or (isinstance(tag, str) and tag in HEAD_BLOCK_TAGS):
            return await self._client.get_height()
        if tag == EARLIEST_BLOCK_TAG:
            return GENESIS_HEIGHT
        return hex_to_number(tag)

    async def _block_meta_by_height(self, height: int) -> Optional[Dict]:
        try:
            metas = await self._client.get_block_metas(start=height, count=1)
        except ChainNotFoundError:
            return None
        return metas[0] if metas else None

    async def _block_meta_by_hash(self, block_hash: str) -> Optional[Dict]:
        try:
            metas = await self._client.get_block_metas(block_hash=normalize_hash(block_hash))
        except ChainNotFoundError:
            return None
        return metas[0] if metas else None

    async def _block_actions(self, meta: Dict) -> List[Dict]:
        # The node refuses action queries for the genesis block
        if hex_to_number(meta.get("height") or 0) == GENESIS_HEIGHT:
            return []
        if hex_to_number(meta.get("numActions") or 0) == 0:
            return []
        return await self._client.get_actions(
            block_hash=meta["hash"], start=0, count=MAX_ACTIONS_PER_BLOCK,
        )

    async def _build_block(self, meta: Dict, full_detail: bool) -> Dict:
        actions = await self._block_actions(meta)
        block = translate_block(meta, actions, full_detail)
        if full_detail:
            for tx in block["transactions"]:
                await self._backfill_creates(tx)
        return block

    async def _backfill_creates(self, tx: Dict) -> Dict:
        """Recover the deployed contract address of a creation from its receipt."""
        if "creates" not in tx:
            return tx
        try:
            receipt_info = await self._client.get_receipt_by_action(tx["hash"])
            contract = ((receipt_info or {}).get("receipt") or {}).get("contractAddress")
            tx["creates"] = to_compat_address(contract) if contract else None
        except (ChainClientError, DecodeError) as e:
            logger.debug(f"No creates back-fill for {tx['hash']}: {e}")
            tx["creates"] = None
        return tx

    async def _tx_at_index(self, block_hash: str, index: Any) -> Optional[Dict]:
        position = hex_to_number(index)
        try:
            actions = await self._client.get_actions(block_hash=block_hash, start=position, count=1)
        except ChainNotFoundError:
            return None
        if not actions:
            return None
        return await self._backfill_creates(translate_action(actions[0], position))

    def _execution(self, tx: Dict) -> Dict:
        to = tx.get("to")
        return {
            "amount": str(hex_to_number(tx.get("value") or 0)),
            "contract": to_native_address(to) if to else "",
            "data": hex_to_bytes(tx.get("data") or tx.get("input") or "0x"),
        }

    # ── Chain state ──

    @rpc_method
    async def chainId(self) -> str:
        return number_to_hex(self.context.chain_id)

    @rpc_method
    async def blockNumber(self) -> str:
        return number_to_hex(await self._client.get_height())

    @rpc_method
    async def protocolVersion(self) -> str:
        return PROTOCOL_VERSION

    @rpc_method
    async def syncing(self) -> bool:
        return False

    @rpc_method
    async def coinbase(self) -> str:
        raise _not_implemented()

    @rpc_method
    async def mining(self) -> bool:
        return False

    @rpc_method
    async def hashrate(self) -> str:
        return HASHRATE

    @rpc_method
    async def accounts(self) -> List[str]:
        return []

    @rpc_method
    async def gasPrice(self) -> str:
        return number_to_hex(await self._client.suggest_gas_price())

    # ── Accounts ──

    @rpc_method
    async def getBalance(self, address: str, block_tag: Any = None) -> str:
        """
        Returns the balance of an account.

        The block tag is accepted but ignored; the native RPC has no
        historical state query.
        """
        account = await self._client.get_account(to_native_address(address))
        return number_to_hex(account.get("balance") or 0)

    @rpc_method
    async def getTransactionCount(self, address: str, block_tag: Any = None) -> str:
        account = await self._client.get_account(to_native_address(address))
        return number_to_hex(account.get("pendingNonce") or 0)

    @rpc_method
    async def getCode(self, address: str, block_tag: Any = None) -> str:
        account = await self._client.get_account(to_native_address(address))
        return bytes_to_hex(account.get("contractByteCode"))

    # ── Execution ──

    @rpc_method
    async def sendRawTransaction(self, raw_tx: str) -> str:
        action_hash = await self._client.send_raw_transaction(raw_tx, self.context.chain_id)
        return normalize_hash(action_hash)

    @rpc_method
    async def call(self, tx: Dict, block_tag: Any = None) -> str:
        """
        Executes a read-only contract call.

        Args:
            tx: Call object {to, data, from?, value?, gas?, gasPrice?}
            block_tag: Ignored

        Returns:
            Return data (hex)
        """
        to = (tx.get("to") or "").lower()
        if to in CALL_EXCLUDED_CONTRACTS:
            return "0x"

        caller = to_native_address(tx["from"]) if tx.get("from") else None
        try:
            return await self._client.read_contract(
                self._execution(tx),
                caller_address=caller,
                gas_limit=hex_to_number(tx.get("gas") or 0),
                gas_price=hex_to_number(tx.get("gasPrice") or 0),
            )
        except ChainClientError as e:
            raise RPCError(RPCErrorCode.SERVER_ERROR, str(e))

    @rpc_method
    async def estimateGas(self, tx: Dict, block_tag: Any = None) -> str:
        """
        Estimates gas for a transfer or contract execution.

        Calls carrying data, or without a recipient, are estimated as
        executions; the rest as plain transfers.
        """
        request: Dict[str, Any] = {
            "callerAddress": to_native_address(tx["from"]) if tx.get("from") else "",
        }
        data = tx.get("data") or tx.get("input")
        if data or not tx.get("to"):
            request["execution"] = self._execution(tx)
        else:
            request["transfer"] = {
                "amount": str(hex_to_number(tx.get("value") or 0)),
                "recipient": to_native_address(tx["to"]),
                "payload": b"",
            }
        return number_to_hex(await self._client.estimate_gas(request))

    # ── Blocks ──

    @rpc_method
    async def getBlockByNumber(self, block_tag: Any = None, full_detail: bool = False) -> Optional[Dict]:
        height = await self._resolve_block_tag(block_tag)
        meta = await self._block_meta_by_height(height)
        if meta is None:
            return None
        return await self._build_block(meta, bool(full_detail))

    @rpc_method
    async def getBlockByHash(self, block_hash: str, full_detail: bool = False) -> Optional[Dict]:
        meta = await self._block_meta_by_hash(block_hash)
        if meta is None:
            return None
        return await self._build_block(meta, bool(full_detail))

    @rpc_method
    async def getBlockTransactionCountByHash(self, block_hash: str) -> Optional[str]:
        meta = await self._block_meta_by_hash(block_hash)
        if meta is None:
            return None
        return number_to_hex(meta.get("numActions") or 0)

    @rpc_method
    async def getBlockTransactionCountByNumber(self, block_tag: Any = None) -> Optional[str]:
        meta = await self._block_meta_by_height(await self._resolve_block_tag(block_tag))
        if meta is None:
            return None
        return number_to_hex(meta.get("numActions") or 0)

    # ── Transactions ──

    @rpc_method
    async def getTransactionByHash(self, tx_hash: str) -> Optional[Dict]:
        try:
            actions = await self._client.get_actions(action_hash=normalize_hash(tx_hash), checking_pending=True)
        except ChainNotFoundError:
            return None
        if not actions:
            return None
        return await self._backfill_creates(translate_action(actions[0]))

    @rpc_method
    async def getTransactionByBlockHashAndIndex(self, block_hash: str, index: Union[str, int]) -> Optional[Dict]:
        meta = await self._block_meta_by_hash(block_hash)
        if meta is None:
            return None
        return await self._tx_at_index(meta["hash"], index)

    @rpc_method
    async def getTransactionByBlockNumberAndIndex(self, block_tag: Any, index: Union[str, int]) -> Optional[Dict]:
        meta = await self._block_meta_by_height(await self._resolve_block_tag(block_tag))
        if meta is None:
            return None
        return await self._tx_at_index(meta["hash"], index)

    @rpc_method
    async def getTransactionReceipt(self, tx_hash: str) -> Optional[Dict]:
        """
        Returns the receipt of a transaction.

        Receipts lack sender and recipient, so the transaction is fetched
        too; either lookup failing answers ``None``.
        """
        action_hash = normalize_hash(tx_hash)
        try:
            receipt_info = await self._client.get_receipt_by_action(action_hash)
            if not receipt_info:
                return None
            actions = await self._client.get_actions(action_hash=action_hash, checking_pending=True)
        except ChainClientError as e:
            logger.debug(f"Receipt lookup for {action_hash} failed: {e}")
            return None
        if not actions:
            return None
        return translate_receipt(receipt_info, translate_action(actions[0]))

    @rpc_method
    async def pendingTransactions(self) -> List[Dict]:
        raise _not_implemented()

    # ── Logs and filters ──

    @rpc_method
    async def getLogs(self, filter_params: Optional[Dict] = None) -> List[Dict]:
        query = await resolve_range(filter_params or {}, self._client)
        return await fetch_logs(self._client, query)

    @rpc_method
    async def newFilter(self, filter_params: Optional[Dict] = None) -> str:
        return await self.context.filters.new_log_filter(filter_params or {})

    @rpc_method
    async def newBlockFilter(self) -> str:
        return await self.context.filters.new_block_filter()

    @rpc_method
    async def getFilterChanges(self, filter_id: str) -> List:
        return await self.context.filters.get_filter_changes(filter_id)

    @rpc_method
    async def getFilterLogs(self, filter_id: str) -> List:
        return await self.context.filters.get_filter_logs(filter_id)

    @rpc_method
    async def uninstallFilter(self, filter_id: str) -> bool:
        return await self.context.filters.uninstall(filter_id)

    # ── Subscriptions (WebSocket only) ──

    @rpc_method(connection=True)
    async def subscribe(self, sub_type: str, filter_params: Optional[Dict] = None, connection=None) -> str:
        if self.context.subscriptions is None:
            raise _not_implemented()
        return await self.context.subscriptions.subscribe(connection, sub_type, filter_params)

    @rpc_method(connection=True)
    async def unsubscribe(self, sub_id: str, connection=None) -> bool:
        if self.context.subscriptions is None:
            raise _not_implemented()
        return await self.context.subscriptions.unsubscribe(connection, sub_id)

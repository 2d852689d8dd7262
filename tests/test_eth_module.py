"""
Tests for the eth_*, net_* and web3_* handlers over an in-memory chain.
"""

import pytest

from iobabel.codec.address import sender_from_public_key, to_native_address
from iobabel.constants import ZERO_ADDRESS
from iobabel.exceptions import ChainClientError, DecodeError
from iobabel.rpc.modules import register_all
from iobabel.rpc.modules.eth import EthModule
from iobabel.rpc.modules.net import NetModule
from iobabel.rpc.modules.web3 import Web3Module
from iobabel.rpc.server import RPCError, RPCErrorCode

from conftest import SENDER_PUBKEY, block_hash_for, make_deployment, make_log, make_transfer

ALICE = "0x" + "a1" * 20
CONTRACT = "0x" + "c0" * 20


@pytest.fixture
def eth(context):
    return EthModule(context)


# ============================================================================
# Chain state
# ============================================================================

class TestFixedAnswers:
    @pytest.mark.asyncio
    async def test_chain_id(self, eth):
        assert await eth.chainId() == "0x1251"

    @pytest.mark.asyncio
    async def test_block_number(self, eth, chain):
        assert await eth.blockNumber() == "0x64"
        chain.height = 101
        assert await eth.blockNumber() == "0x65"

    @pytest.mark.asyncio
    async def test_stubs(self, eth):
        assert await eth.protocolVersion() == "64"
        assert await eth.syncing() is False
        assert await eth.mining() is False
        assert await eth.hashrate() == "0x500000"
        assert await eth.accounts() == []

    @pytest.mark.asyncio
    async def test_gas_price(self, eth):
        assert await eth.gasPrice() == "0xe8d4a51000"

    @pytest.mark.asyncio
    async def test_coinbase_not_implemented(self, eth):
        with pytest.raises(RPCError) as exc:
            await eth.coinbase()
        assert exc.value.code == RPCErrorCode.METHOD_NOT_SUPPORTED
        assert exc.value.message == "function not implemented"

    @pytest.mark.asyncio
    async def test_pending_transactions_not_implemented(self, eth):
        with pytest.raises(RPCError):
            await eth.pendingTransactions()

    @pytest.mark.asyncio
    async def test_not_implemented_through_dispatcher(self, context):
        server = register_all(context)
        response = await server.dispatch({"jsonrpc": "2.0", "method": "eth_coinbase", "id": 1})
        assert response["result"] == {"error": {"message": "function not implemented"}}


# ============================================================================
# Accounts
# ============================================================================

class TestAccounts:
    @pytest.mark.asyncio
    async def test_balance(self, eth, chain):
        chain.accounts[to_native_address(ALICE)] = {"balance": "1000000000000000000", "pendingNonce": "5"}
        assert await eth.getBalance(ALICE, "latest") == "0xde0b6b3a7640000"

    @pytest.mark.asyncio
    async def test_transaction_count(self, eth, chain):
        chain.accounts[to_native_address(ALICE)] = {"balance": "0", "pendingNonce": "5"}
        assert await eth.getTransactionCount(ALICE) == "0x5"

    @pytest.mark.asyncio
    async def test_code(self, eth, chain):
        chain.accounts[to_native_address(CONTRACT)] = {"balance": "0", "contractByteCode": b"\x60\x80"}
        assert await eth.getCode(CONTRACT) == "0x6080"
        assert await eth.getCode(ALICE) == "0x"

    @pytest.mark.asyncio
    async def test_bad_address(self, eth):
        with pytest.raises(DecodeError):
            await eth.getBalance("0x1234")


# ============================================================================
# Execution
# ============================================================================

class TestExecution:
    @pytest.mark.asyncio
    async def test_send_raw_transaction(self, eth, chain):
        assert await eth.sendRawTransaction("0xf86c") == "0x" + "ab" * 32
        assert ("send_raw_transaction", "0xf86c", 4689) in chain.calls

    @pytest.mark.asyncio
    async def test_call(self, eth, chain):
        chain.read_result = "0x" + "00" * 31 + "2a"
        result = await eth.call({"to": CONTRACT, "data": "0x70a08231"}, "latest")
        assert result == chain.read_result
        _, execution, caller = chain.calls[-1]
        assert execution == {"amount": "0", "contract": to_native_address(CONTRACT), "data": b"\x70\xa0\x82\x31"}
        assert caller is None

    @pytest.mark.asyncio
    async def test_call_with_sender(self, eth, chain):
        await eth.call({"to": CONTRACT, "from": ALICE, "data": "0x"})
        assert chain.calls[-1][2] == to_native_address(ALICE)

    @pytest.mark.asyncio
    async def test_call_excluded_contract(self, eth, chain):
        result = await eth.call({"to": "0xB1F8E55C7F64D203C1400B9D8555D050F94ADF39", "data": "0x"})
        assert result == "0x"
        assert not any(c[0] == "read_contract" for c in chain.calls)

    @pytest.mark.asyncio
    async def test_call_failure(self, eth, chain):
        chain.read_result = ChainClientError("execution reverted")
        with pytest.raises(RPCError) as exc:
            await eth.call({"to": CONTRACT, "data": "0x"})
        assert exc.value.code == RPCErrorCode.SERVER_ERROR
        assert exc.value.message == "execution reverted"

    @pytest.mark.asyncio
    async def test_estimate_transfer(self, eth, chain):
        assert await eth.estimateGas({"from": ALICE, "to": CONTRACT, "value": "0x10"}) == "0x5208"
        request = chain.calls[-1][1]
        assert request["transfer"]["amount"] == "16"
        assert request["transfer"]["recipient"] == to_native_address(CONTRACT)
        assert request["callerAddress"] == to_native_address(ALICE)
        assert "execution" not in request

    @pytest.mark.asyncio
    async def test_estimate_execution(self, eth, chain):
        chain.gas_estimate = 50000
        assert await eth.estimateGas({"to": CONTRACT, "data": "0xabcd"}) == "0xc350"
        request = chain.calls[-1][1]
        assert request["execution"]["data"] == b"\xab\xcd"
        assert request["callerAddress"] == ""

    @pytest.mark.asyncio
    async def test_estimate_deployment(self, eth, chain):
        await eth.estimateGas({"from": ALICE, "data": "0x6080"})
        request = chain.calls[-1][1]
        assert request["execution"]["contract"] == ""


# ============================================================================
# Blocks
# ============================================================================

class TestBlocks:
    @pytest.mark.asyncio
    async def test_latest_block_with_hashes(self, eth, chain):
        chain.add_actions(100, [make_transfer("aa" * 32, 100), make_transfer("bb" * 32, 100)])
        block = await eth.getBlockByNumber("latest", False)
        assert block["number"] == "0x64"
        assert block["transactions"] == ["0x" + "aa" * 32, "0x" + "bb" * 32]

    @pytest.mark.asyncio
    async def test_block_with_full_transactions(self, eth, chain):
        chain.add_actions(50, [make_transfer("aa" * 32, 50)])
        block = await eth.getBlockByNumber("0x32", True)
        tx = block["transactions"][0]
        assert tx["hash"] == "0x" + "aa" * 32
        assert tx["blockNumber"] == "0x32"
        assert tx["from"] == sender_from_public_key(SENDER_PUBKEY)

    @pytest.mark.asyncio
    async def test_latest_matches_head_number(self, eth, chain):
        chain.add_actions(100, [make_transfer("aa" * 32, 100)])
        latest = await eth.getBlockByNumber("latest", True)
        assert latest["transactions"]
        assert latest == await eth.getBlockByNumber("0x64", True)

    @pytest.mark.asyncio
    async def test_earliest_skips_action_query(self, eth, chain):
        block = await eth.getBlockByNumber("earliest")
        assert block["number"] == "0x0"
        assert block["transactions"] == []
        assert not any(c[0] == "get_actions" for c in chain.calls)

    @pytest.mark.asyncio
    async def test_block_beyond_head(self, eth):
        assert await eth.getBlockByNumber("0x1000") is None

    @pytest.mark.asyncio
    async def test_block_by_hash(self, eth):
        block = await eth.getBlockByHash("0x" + block_hash_for(42))
        assert block["number"] == "0x2a"

    @pytest.mark.asyncio
    async def test_unknown_block_hash(self, eth):
        assert await eth.getBlockByHash("0x" + "ff" * 32) is None

    @pytest.mark.asyncio
    async def test_transaction_counts(self, eth, chain):
        chain.add_actions(60, [make_transfer("aa" * 32, 60), make_transfer("bb" * 32, 60)])
        assert await eth.getBlockTransactionCountByNumber("0x3c") == "0x2"
        assert await eth.getBlockTransactionCountByHash("0x" + block_hash_for(60)) == "0x2"
        assert await eth.getBlockTransactionCountByHash("0x" + "ff" * 32) is None


# ============================================================================
# Transactions and receipts
# ============================================================================

class TestTransactions:
    @pytest.mark.asyncio
    async def test_by_hash(self, eth, chain):
        chain.add_actions(70, [make_transfer("aa" * 32, 70)])
        tx = await eth.getTransactionByHash("0x" + "AA" * 32)
        assert tx["hash"] == "0x" + "aa" * 32
        assert tx["to"] == ZERO_ADDRESS

    @pytest.mark.asyncio
    async def test_unknown_hash(self, eth):
        assert await eth.getTransactionByHash("0x" + "99" * 32) is None

    @pytest.mark.asyncio
    async def test_by_block_and_index(self, eth, chain):
        chain.add_actions(80, [make_transfer("aa" * 32, 80), make_transfer("bb" * 32, 80)])
        tx = await eth.getTransactionByBlockNumberAndIndex("0x50", "0x1")
        assert tx["hash"] == "0x" + "bb" * 32
        assert tx["transactionIndex"] == "0x1"
        tx = await eth.getTransactionByBlockHashAndIndex("0x" + block_hash_for(80), "0x0")
        assert tx["hash"] == "0x" + "aa" * 32
        assert await eth.getTransactionByBlockNumberAndIndex("0x50", "0x5") is None

    @pytest.mark.asyncio
    async def test_deployment_creates_back_filled(self, eth, chain):
        chain.add_actions(90, [make_deployment("cc" * 32, 90)])
        chain.receipts["cc" * 32] = {"receipt": {"status": 1, "contractAddress": to_native_address(CONTRACT)}}
        tx = await eth.getTransactionByHash("0x" + "cc" * 32)
        assert tx["to"] is None
        assert tx["creates"] == CONTRACT

    @pytest.mark.asyncio
    async def test_deployment_without_receipt(self, eth, chain):
        chain.add_actions(90, [make_deployment("cc" * 32, 90)])
        tx = await eth.getTransactionByHash("0x" + "cc" * 32)
        assert tx["creates"] is None

    @pytest.mark.asyncio
    async def test_receipt(self, eth, chain):
        chain.add_actions(95, [make_transfer("dd" * 32, 95)])
        log = make_log(95)
        chain.receipts["dd" * 32] = {
            "blkHash": block_hash_for(95),
            "receipt": {"status": 1, "blkHeight": 95, "gasConsumed": 21000, "logs": [log]},
        }
        receipt = await eth.getTransactionReceipt("0x" + "dd" * 32)
        assert receipt["status"] == "0x1"
        assert receipt["transactionHash"] == "0x" + "dd" * 32
        assert receipt["blockHash"] == "0x" + block_hash_for(95)
        assert receipt["logs"][0]["transactionIndex"] == "0x0"

    @pytest.mark.asyncio
    async def test_missing_receipt(self, eth):
        assert await eth.getTransactionReceipt("0x" + "99" * 32) is None

    @pytest.mark.asyncio
    async def test_receipt_without_transaction(self, eth, chain):
        chain.receipts["ee" * 32] = {"receipt": {"status": 1}}
        assert await eth.getTransactionReceipt("0x" + "ee" * 32) is None


# ============================================================================
# Logs and filters
# ============================================================================

class TestLogs:
    @pytest.mark.asyncio
    async def test_get_logs_range(self, eth, chain):
        chain.logs = [make_log(10), make_log(20), make_log(30)]
        logs = await eth.getLogs({"fromBlock": "0xf", "toBlock": "0x1e"})
        assert [log["blockNumber"] for log in logs] == ["0x14", "0x1e"]

    @pytest.mark.asyncio
    async def test_get_logs_skips_zero_topic_entries(self, eth, chain):
        chain.logs = [make_log(10), make_log(11, topics=[])]
        logs = await eth.getLogs({"fromBlock": "earliest", "toBlock": "latest"})
        assert [log["blockNumber"] for log in logs] == ["0xa"]

    @pytest.mark.asyncio
    async def test_get_logs_inverted_range(self, eth, chain):
        chain.logs = [make_log(10)]
        assert await eth.getLogs({"fromBlock": "0x20", "toBlock": "0x10"}) == []
        assert not any(c[0] == "get_logs" for c in chain.calls)

    @pytest.mark.asyncio
    async def test_get_logs_by_block_hash(self, eth, chain):
        chain.logs = [make_log(10), make_log(20)]
        logs = await eth.getLogs({"blockHash": "0x" + block_hash_for(20)})
        assert [log["blockNumber"] for log in logs] == ["0x14"]

    @pytest.mark.asyncio
    async def test_filter_round_trip(self, eth, chain):
        filter_id = await eth.newFilter({"fromBlock": "latest"})
        assert filter_id.startswith("0x")
        chain.logs = [make_log(101)]
        chain.height = 101
        changes = await eth.getFilterChanges(filter_id)
        assert [log["blockNumber"] for log in changes] == ["0x65"]
        assert await eth.getFilterChanges(filter_id) == []
        assert await eth.uninstallFilter(filter_id) is True
        assert await eth.uninstallFilter(filter_id) is False

    @pytest.mark.asyncio
    async def test_block_filter(self, eth, chain):
        filter_id = await eth.newBlockFilter()
        chain.height = 102
        assert await eth.getFilterChanges(filter_id) == [
            "0x" + block_hash_for(101),
            "0x" + block_hash_for(102),
        ]

    @pytest.mark.asyncio
    async def test_subscribe_needs_websocket(self, eth):
        with pytest.raises(RPCError):
            await eth.subscribe("newHeads")


# ============================================================================
# net_* and web3_*
# ============================================================================

class TestNetAndWeb3:
    @pytest.mark.asyncio
    async def test_net(self, context):
        net = NetModule(context)
        assert await net.version() == "4689"
        assert await net.peerCount() == "0x64"
        assert await net.listening() is True
        assert await net.peers() == []

    @pytest.mark.asyncio
    async def test_client_version(self, context):
        assert await Web3Module(context).clientVersion() == "v1.14.0/go1.21.5"

    @pytest.mark.asyncio
    async def test_sha3(self, context):
        web3 = Web3Module(context)
        assert await web3.sha3("0x") == "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

"""
Tests for the gRPC-JSON gateway client, against an httpx mock transport.
"""

import base64
import json

import httpx
import pytest

from iobabel.chain.client import IoTeXGatewayClient
from iobabel.exceptions import ChainClientError, ChainNotFoundError

ENDPOINT = "https://gateway.test"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class FakeGateway:
    """Routes ``iotexapi.APIService`` calls to canned answers."""

    def __init__(self):
        self.requests = []
        self.routes = {}

    def route(self, method, status=200, body=None, content=None):
        self.routes[method] = (status, body, content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        self.requests.append((request.url.path, method, json.loads(request.content or b"{}")))
        if method not in self.routes:
            return httpx.Response(404, json={"code": 5, "message": f"{method} not routed"})
        status, body, content = self.routes[method]
        if content is not None:
            return httpx.Response(status, content=content)
        return httpx.Response(status, json=body)

    def payload(self, method):
        return next(p for _, m, p in self.requests if m == method)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(gateway):
    return IoTeXGatewayClient(ENDPOINT, client=httpx.AsyncClient(transport=httpx.MockTransport(gateway)))


# ============================================================================
# Unary calls
# ============================================================================

class TestUnary:
    @pytest.mark.asyncio
    async def test_chain_meta_and_height(self, client, gateway):
        gateway.route("GetChainMeta", body={"chainMeta": {"height": "123"}})
        assert await client.get_height() == 123
        assert gateway.requests[0][0] == "/iotexapi.APIService/GetChainMeta"

    @pytest.mark.asyncio
    async def test_account_decodes_bytecode(self, client, gateway):
        gateway.route("GetAccount", body={"accountMeta": {"balance": "5", "contractByteCode": b64(b"\x60\x80")}})
        account = await client.get_account("io1abc")
        assert account["contractByteCode"] == b"\x60\x80"
        assert gateway.payload("GetAccount") == {"address": "io1abc"}

    @pytest.mark.asyncio
    async def test_block_metas_by_index_and_hash(self, client, gateway):
        gateway.route("GetBlockMetas", body={"blkMetas": [{"height": "7"}]})
        assert await client.get_block_metas(start=7, count=2) == [{"height": "7"}]
        assert gateway.requests[-1][2] == {"byIndex": {"start": "7", "count": "2"}}
        await client.get_block_metas(block_hash="0xABCD")
        assert gateway.requests[-1][2] == {"byHash": {"blkHash": "abcd"}}

    @pytest.mark.asyncio
    async def test_actions_decode_byte_fields(self, client, gateway):
        gateway.route("GetActions", body={"actionInfo": [{
            "actHash": "aa" * 32,
            "action": {
                "core": {"transfer": {"amount": "1", "recipient": "io1x", "payload": b64(b"hi")}},
                "senderPubKey": b64(b"\x04\x01"),
                "signature": b64(b"\x02" * 65),
            },
        }]})
        actions = await client.get_actions(block_hash="0xBB", start=1, count=3)
        action = actions[0]["action"]
        assert action["senderPubKey"] == b"\x04\x01"
        assert action["signature"] == b"\x02" * 65
        assert action["core"]["transfer"]["payload"] == b"hi"
        assert gateway.payload("GetActions") == {"byBlk": {"blkHash": "bb", "start": "1", "count": "3"}}

    @pytest.mark.asyncio
    async def test_actions_by_hash(self, client, gateway):
        gateway.route("GetActions", body={"actionInfo": []})
        await client.get_actions(action_hash="0xAA")
        assert gateway.payload("GetActions") == {"byHash": {"actionHash": "aa", "checkPending": True}}

    @pytest.mark.asyncio
    async def test_receipt_decodes_logs(self, client, gateway):
        gateway.route("GetReceiptByAction", body={"receiptInfo": {
            "blkHash": "cc" * 32,
            "receipt": {"status": "1", "actHash": b64(b"\xaa" * 32), "logs": [
                {"topics": [b64(b"\x01" * 32)], "data": b64(b"\x2a")},
            ]},
        }})
        receipt_info = await client.get_receipt_by_action("0x" + "aa" * 32)
        receipt = receipt_info["receipt"]
        assert receipt["actHash"] == b"\xaa" * 32
        assert receipt["logs"][0]["topics"] == [b"\x01" * 32]
        assert receipt["logs"][0]["data"] == b"\x2a"

    @pytest.mark.asyncio
    async def test_empty_receipt(self, client, gateway):
        gateway.route("GetReceiptByAction", body={})
        assert await client.get_receipt_by_action("0xaa") is None

    @pytest.mark.asyncio
    async def test_logs_request_and_decoding(self, client, gateway):
        gateway.route("GetLogs", body={"logs": [{
            "contractAddress": "io1x",
            "topics": [b64(b"\x01" * 32)],
            "data": b64(b""),
            "blkHash": b64(b"\xcc" * 32),
            "actHash": b64(b"\xaa" * 32),
        }]})
        log_filter = {"address": ["io1x"], "topics": [{"topic": [b"\x01" * 32]}, {"topic": []}]}
        logs = await client.get_logs(log_filter, from_block=5, to_block=9)
        assert logs[0]["topics"] == [b"\x01" * 32]
        assert logs[0]["blkHash"] == b"\xcc" * 32
        assert gateway.payload("GetLogs") == {
            "filter": {"address": ["io1x"], "topics": [{"topic": [b64(b"\x01" * 32)]}, {"topic": []}]},
            "byRange": {"fromBlock": "5", "toBlock": "9"},
        }

    @pytest.mark.asyncio
    async def test_logs_by_block_hash(self, client, gateway):
        gateway.route("GetLogs", body={"logs": []})
        await client.get_logs({}, block_hash="0x" + "cc" * 32)
        assert gateway.payload("GetLogs")["byBlock"] == {"blockHash": b64(b"\xcc" * 32)}

    @pytest.mark.asyncio
    async def test_read_contract(self, client, gateway):
        gateway.route("ReadContract", body={"data": "002a"})
        result = await client.read_contract(
            {"amount": "0", "contract": "io1c", "data": b"\x70\xa0"}, caller_address="io1s", gas_limit=10,
        )
        assert result == "0x002a"
        payload = gateway.payload("ReadContract")
        assert payload["execution"]["data"] == b64(b"\x70\xa0")
        assert payload["callerAddress"] == "io1s"
        assert payload["gasLimit"] == "10"

    @pytest.mark.asyncio
    async def test_estimate_transfer(self, client, gateway):
        gateway.route("EstimateActionGasConsumption", body={"gas": "10000"})
        gas = await client.estimate_gas({"transfer": {"amount": "1", "recipient": "io1r", "payload": b""}})
        assert gas == 10000
        assert gateway.payload("EstimateActionGasConsumption")["transfer"]["payload"] == ""

    @pytest.mark.asyncio
    async def test_send_raw_transaction(self, client, gateway):
        gateway.route("SendRawTransaction", body={"actionHash": "dd" * 32})
        assert await client.send_raw_transaction("0xf86c", 4689) == "dd" * 32
        assert gateway.payload("SendRawTransaction") == {"chainID": 4689, "data": "0xf86c"}

    @pytest.mark.asyncio
    async def test_gas_price_and_server_meta(self, client, gateway):
        gateway.route("SuggestGasPrice", body={"gasPrice": "1000000000000"})
        gateway.route("GetServerMeta", body={"serverMeta": {"packageVersion": "v1", "goVersion": "go1"}})
        assert await client.suggest_gas_price() == 10 ** 12
        assert (await client.get_server_meta())["goVersion"] == "go1"


# ============================================================================
# Errors
# ============================================================================

class TestErrors:
    @pytest.mark.asyncio
    async def test_grpc_not_found(self, client, gateway):
        gateway.route("GetActions", status=400, body={"code": 5, "message": "action not found"})
        with pytest.raises(ChainNotFoundError, match="action not found"):
            await client.get_actions(action_hash="0xaa")

    @pytest.mark.asyncio
    async def test_http_404(self, client):
        with pytest.raises(ChainNotFoundError):
            await client.get_chain_meta()

    @pytest.mark.asyncio
    async def test_server_error(self, client, gateway):
        gateway.route("ReadContract", status=500, body={"code": 13, "message": "execution reverted"})
        with pytest.raises(ChainClientError, match="execution reverted") as exc:
            await client.read_contract({"data": b""})
        assert not isinstance(exc.value, ChainNotFoundError)

    @pytest.mark.asyncio
    async def test_non_json_error(self, client, gateway):
        gateway.route("GetChainMeta", status=502, content=b"bad gateway")
        with pytest.raises(ChainClientError, match="bad gateway"):
            await client.get_chain_meta()

    @pytest.mark.asyncio
    async def test_network_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = IoTeXGatewayClient(ENDPOINT, client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
        with pytest.raises(ChainClientError, match="connection refused"):
            await client.get_chain_meta()

    @pytest.mark.asyncio
    async def test_missing_action_hash(self, client, gateway):
        gateway.route("SendRawTransaction", body={})
        with pytest.raises(ChainClientError):
            await client.send_raw_transaction("0x00", 1)


# ============================================================================
# Streams
# ============================================================================

def ndjson(*frames) -> bytes:
    return b"\n".join(json.dumps(f).encode() for f in frames) + b"\n"


class TestStreams:
    @pytest.mark.asyncio
    async def test_block_stream_resolves_metas(self, client, gateway):
        gateway.route("StreamBlocks", content=ndjson(
            {"result": {"blockIdentifier": {"hash": "aa" * 32, "height": "10"}}},
            {"result": {}},
            {"result": {"blockIdentifier": {"hash": "bb" * 32, "height": "11"}}},
        ))
        gateway.route("GetBlockMetas", body={"blkMetas": [{"hash": "aa" * 32, "height": "10"}]})
        stream = client.stream_blocks()
        metas = [meta async for meta in stream]
        assert len(metas) == 2
        assert [p for _, m, p in gateway.requests if m == "GetBlockMetas"][1] == {"byHash": {"blkHash": "bb" * 32}}

    @pytest.mark.asyncio
    async def test_log_stream_decodes(self, client, gateway):
        gateway.route("StreamLogs", content=ndjson(
            {"result": {"log": {"topics": [b64(b"\x01" * 32)], "data": b64(b"\x2a")}}},
        ))
        stream = client.stream_logs({"address": [], "topics": []})
        logs = [log async for log in stream]
        assert logs[0]["topics"] == [b"\x01" * 32]
        assert gateway.payload("StreamLogs") == {"filter": {"address": [], "topics": []}}

    @pytest.mark.asyncio
    async def test_stream_error_frame(self, client, gateway):
        gateway.route("StreamLogs", content=ndjson({"error": {"code": 14, "message": "unavailable"}}))
        with pytest.raises(ChainClientError, match="unavailable"):
            async for _ in client.stream_logs({}):
                pass

    @pytest.mark.asyncio
    async def test_cancel_stops_iteration(self, client, gateway):
        gateway.route("StreamLogs", content=ndjson(
            {"result": {"log": {"topics": []}}},
            {"result": {"log": {"topics": []}}},
        ))
        stream = client.stream_logs({})
        await stream.__anext__()
        await stream.cancel()
        await stream.cancel()
        assert stream.cancelled
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

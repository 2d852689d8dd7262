"""
Shared fixtures: in-memory chain client and Redis fakes.

Native records follow the shapes the gateway client hands to the codec,
byte fields already decoded into ``bytes``.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from iobabel.chain.client import ChainClient, ChainStream
from iobabel.codec.encoding import strip_hex_prefix
from iobabel.exceptions import ChainNotFoundError
from iobabel.filters.manager import FilterManager
from iobabel.filters.store import FilterStore
from iobabel.rpc.context import GatewayContext

# Ends a QueueSource iteration
END = object()

SENDER_PUBKEY = b"\x04" + b"\x11" * 64
SIGNATURE = b"\x22" * 32 + b"\x33" * 32 + b"\x01"


def block_hash_for(height: int) -> str:
    """Native (unprefixed) hash of the fake block at ``height``."""
    return f"{height:064x}"


def make_block_meta(height: int, num_actions: int = 0) -> Dict[str, Any]:
    return {
        "hash": block_hash_for(height),
        "height": height,
        "numActions": num_actions,
        "producerAddress": "",
        "timestamp": {"seconds": 1600000000 + height},
        "txRoot": "ab" * 32,
        "deltaStateDigest": "cd" * 32,
        "receiptRoot": "ef" * 32,
        "previousBlockHash": block_hash_for(max(height - 1, 0)),
        "gasLimit": "20000000",
        "gasUsed": "21000",
    }


def make_transfer(act_hash: str, height: int, amount: str = "1000", nonce: int = 1) -> Dict[str, Any]:
    return {
        "actHash": act_hash,
        "blkHash": block_hash_for(height),
        "blkHeight": str(height),
        "index": 0,
        "sender": "",
        "action": {
            "core": {
                "nonce": str(nonce),
                "gasLimit": "21000",
                "gasPrice": "1000000000000",
                "transfer": {"amount": amount, "recipient": "", "payload": b""},
            },
            "senderPubKey": SENDER_PUBKEY,
            "signature": SIGNATURE,
        },
    }


def make_deployment(act_hash: str, height: int) -> Dict[str, Any]:
    info = make_transfer(act_hash, height)
    info["action"]["core"].pop("transfer")
    info["action"]["core"]["execution"] = {"amount": "0", "contract": "", "data": b"\x60\x80"}
    return info


def make_log(height: int, topics: Optional[List[bytes]] = None, index: int = 0) -> Dict[str, Any]:
    return {
        "contractAddress": "",
        "topics": [b"\x01" * 32] if topics is None else topics,
        "data": b"\x00\x2a",
        "blkHeight": str(height),
        "actHash": b"\xaa" * 32,
        "blkHash": bytes.fromhex(block_hash_for(height)),
        "index": index,
        "txIndex": 0,
    }


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class QueueSource:
    """Stream source fed from a queue; END stops it, an exception fails it."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is END:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self):
        self.closed += 1


class FakeChainClient(ChainClient):
    """In-memory chain: blocks are synthesized up to ``height``."""

    def __init__(self, height: int = 100):
        self.height = height
        self.blocks: Dict[int, Dict[str, Any]] = {}
        self.actions: Dict[str, List[Dict[str, Any]]] = {}
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.logs: List[Dict[str, Any]] = []
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.server_meta = {"packageVersion": "v1.14.0", "goVersion": "go1.21.5"}
        self.read_result: Any = "0x"
        self.gas_estimate = 21000
        self.gas_price = 10 ** 12
        self.sources: List[QueueSource] = []
        self.log_filters: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.closed = False

    def _meta(self, height: int) -> Optional[Dict[str, Any]]:
        if height in self.blocks:
            return self.blocks[height]
        if 0 <= height <= self.height:
            return make_block_meta(height)
        return None

    def add_actions(self, height: int, actions: List[Dict[str, Any]]) -> None:
        self.blocks[height] = make_block_meta(height, num_actions=len(actions))
        self.actions[block_hash_for(height)] = actions

    async def get_chain_meta(self):
        return {"height": str(self.height)}

    async def get_account(self, address):
        self.calls.append(("get_account", address))
        return self.accounts.get(address, {"balance": "0", "pendingNonce": "0"})

    async def get_block_metas(self, start=None, count=1, block_hash=None):
        self.calls.append(("get_block_metas", start, count, block_hash))
        if block_hash is not None:
            key = strip_hex_prefix(block_hash)
            for height in range(self.height + 1):
                meta = self._meta(height)
                if meta["hash"] == key:
                    return [meta]
            raise ChainNotFoundError(f"block {block_hash} not found")
        metas = (self._meta(h) for h in range(start, start + count))
        return [meta for meta in metas if meta is not None]

    async def get_actions(self, action_hash=None, block_hash=None, start=0, count=1, checking_pending=True):
        self.calls.append(("get_actions", action_hash, block_hash, start, count))
        if action_hash is not None:
            key = strip_hex_prefix(action_hash)
            for actions in self.actions.values():
                for info in actions:
                    if strip_hex_prefix(info["actHash"]) == key:
                        return [info]
            raise ChainNotFoundError(f"action {action_hash} not found")
        return self.actions.get(strip_hex_prefix(block_hash), [])[start:start + count]

    async def get_receipt_by_action(self, action_hash):
        receipt_info = self.receipts.get(strip_hex_prefix(action_hash))
        if receipt_info is None:
            raise ChainNotFoundError(f"receipt {action_hash} not found")
        return receipt_info

    async def get_logs(self, log_filter, from_block=None, to_block=None, block_hash=None):
        self.calls.append(("get_logs", from_block, to_block, block_hash))
        logs = self.logs
        if block_hash is not None:
            target = bytes.fromhex(strip_hex_prefix(block_hash))
            return [log for log in logs if log["blkHash"] == target]
        if from_block is not None:
            logs = [log for log in logs if int(log["blkHeight"]) >= from_block]
        if to_block is not None:
            logs = [log for log in logs if int(log["blkHeight"]) <= to_block]
        return logs

    def _open(self, name: str) -> ChainStream:
        source = QueueSource()
        self.sources.append(source)
        return ChainStream(source, name=name)

    def stream_blocks(self):
        return self._open("StreamBlocks")

    def stream_logs(self, log_filter):
        self.log_filters.append(log_filter)
        return self._open("StreamLogs")

    async def send_raw_transaction(self, data, chain_id):
        self.calls.append(("send_raw_transaction", data, chain_id))
        return "ab" * 32

    async def read_contract(self, execution, caller_address=None, gas_limit=0, gas_price=0):
        self.calls.append(("read_contract", execution, caller_address))
        if isinstance(self.read_result, Exception):
            raise self.read_result
        return self.read_result

    async def estimate_gas(self, request):
        self.calls.append(("estimate_gas", request))
        return self.gas_estimate

    async def suggest_gas_price(self):
        return self.gas_price

    async def get_server_meta(self):
        return self.server_meta

    async def close(self):
        self.closed = True


class FakeRedis:
    """Dict-backed stand-in for the ``redis.asyncio`` string commands used."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.expiries: Dict[str, int] = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        if ex is not None:
            self.expiries[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiries.pop(key, None)
        return removed

    async def aclose(self):
        self.closed = True


@pytest.fixture
def chain():
    return FakeChainClient(height=100)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return FilterStore(fake_redis)


@pytest.fixture
def filters(chain, store):
    return FilterManager(chain, store)


@pytest.fixture
def context(chain, filters):
    return GatewayContext(client=chain, filters=filters, chain_id=4689)

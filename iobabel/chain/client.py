"""
iobabel Chain Client

Uniform async interface over the native chain RPC, plus the concrete
client talking to the chain's gRPC-JSON gateway.

The gateway speaks the ``iotexapi.APIService`` methods as JSON over HTTP:
    POST {endpoint}/iotexapi.APIService/{Method}

Protobuf ``bytes`` fields travel base64-encoded; this module decodes them
into ``bytes`` so the codec never sees transport encodings. Server-streaming
methods answer with newline-delimited ``{"result": ...}`` frames.
"""

import base64
import json
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..codec.encoding import hex_to_bytes, hex_to_number, strip_hex_prefix
from ..constants import LOG_INCLUDE_REQUEST_CONTENT
from ..exceptions import ChainClientError, ChainNotFoundError
from ..logger import get_logger

logger = get_logger(__name__)

# gRPC status code for NOT_FOUND
GRPC_NOT_FOUND = 5

SERVICE_PATH = "iotexapi.APIService"


# ══════════════════════════════════════════════════════════════════════
#  STREAM HANDLE
# ══════════════════════════════════════════════════════════════════════

class ChainStream:
    """
    Live handle on a server-streaming chain call.

    Iterate it with ``async for``; ``cancel()`` releases the upstream
    connection. A cancelled stream stops iterating.
    """

    def __init__(self, source: AsyncIterator[Dict[str, Any]], name: str = ""):
        self._source = source
        self.name = name
        self.cancelled = False

    def __aiter__(self) -> "ChainStream":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.cancelled:
            raise StopAsyncIteration
        return await self._source.__anext__()

    async def cancel(self) -> None:
        """Close the upstream stream. Safe to call more than once."""
        if self.cancelled:
            return
        self.cancelled = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.debug(f"Stream cancelled: {self.name}")


# ══════════════════════════════════════════════════════════════════════
#  BASE CHAIN CLIENT  (Abstract)
# ══════════════════════════════════════════════════════════════════════

class ChainClient(ABC):
    """
    Abstract interface to the native chain.

    Every call may fail with ``ChainClientError``; resources the chain
    reports as absent raise ``ChainNotFoundError``. Records are returned
    in the chain's own shape with byte fields as ``bytes``.
    """

    @abstractmethod
    async def get_chain_meta(self) -> Dict[str, Any]:
        """Summary chain state, including ``height``."""

    async def get_height(self) -> int:
        """Current chain head height."""
        meta = await self.get_chain_meta()
        return hex_to_number(meta.get("height") or 0)

    @abstractmethod
    async def get_account(self, address: str) -> Dict[str, Any]:
        """Account meta for a native address (``balance``, ``pendingNonce``)."""

    @abstractmethod
    async def get_block_metas(
        self,
        start: Optional[int] = None,
        count: int = 1,
        block_hash: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Block metas by height range or by block hash."""

    @abstractmethod
    async def get_actions(
        self,
        action_hash: Optional[str] = None,
        block_hash: Optional[str] = None,
        start: int = 0,
        count: int = 1,
        checking_pending: bool = True,
    ) -> List[Dict[str, Any]]:
        """Action infos by action hash or by position within a block."""

    @abstractmethod
    async def get_receipt_by_action(self, action_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt info (``receipt`` + ``blkHash``) for an action."""

    @abstractmethod
    async def get_logs(
        self,
        log_filter: Dict[str, Any],
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        block_hash: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Logs matching an address/topic filter over a range or a single block."""

    @abstractmethod
    def stream_blocks(self) -> ChainStream:
        """Open a stream of new block metas."""

    @abstractmethod
    def stream_logs(self, log_filter: Dict[str, Any]) -> ChainStream:
        """Open a stream of new logs matching a filter."""

    @abstractmethod
    async def send_raw_transaction(self, data: str, chain_id: int) -> str:
        """Submit a signed raw transaction; returns the action hash."""

    @abstractmethod
    async def read_contract(
        self,
        execution: Dict[str, Any],
        caller_address: Optional[str] = None,
        gas_limit: int = 0,
        gas_price: int = 0,
    ) -> str:
        """Read-only contract execution; returns the output as ``0x`` hex."""

    @abstractmethod
    async def estimate_gas(self, request: Dict[str, Any]) -> int:
        """Gas estimate for an execution or transfer."""

    @abstractmethod
    async def suggest_gas_price(self) -> int:
        """Suggested gas price."""

    @abstractmethod
    async def get_server_meta(self) -> Dict[str, Any]:
        """Node build information (``packageVersion``, ``goVersion``)."""

    async def close(self) -> None:
        """Release transport resources."""


# ══════════════════════════════════════════════════════════════════════
#  BYTE FIELD CODING
# ══════════════════════════════════════════════════════════════════════

def _b64decode(value: Any) -> bytes:
    if value is None or value == "":
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return base64.b64decode(value)
    except (ValueError, TypeError) as e:
        raise ChainClientError(f"Malformed bytes field from chain: {e}") from e


def _b64encode(value: Any) -> str:
    if isinstance(value, str):
        value = hex_to_bytes(value)
    return base64.b64encode(bytes(value or b"")).decode("ascii")


def _decode_action_info(info: Dict[str, Any]) -> Dict[str, Any]:
    action = info.get("action") or {}
    for key in ("senderPubKey", "signature"):
        if key in action:
            action[key] = _b64decode(action[key])
    core = action.get("core") or {}
    if core.get("transfer") is not None and "payload" in core["transfer"]:
        core["transfer"]["payload"] = _b64decode(core["transfer"]["payload"])
    if core.get("execution") is not None and "data" in core["execution"]:
        core["execution"]["data"] = _b64decode(core["execution"]["data"])
    return info


def _decode_log(log: Dict[str, Any]) -> Dict[str, Any]:
    log["topics"] = [_b64decode(topic) for topic in log.get("topics") or []]
    for key in ("data", "actHash", "blkHash"):
        if key in log:
            log[key] = _b64decode(log[key])
    return log


def _decode_receipt_info(receipt_info: Dict[str, Any]) -> Dict[str, Any]:
    receipt = receipt_info.get("receipt") or {}
    if "actHash" in receipt:
        receipt["actHash"] = _b64decode(receipt["actHash"])
    receipt["logs"] = [_decode_log(log) for log in receipt.get("logs") or []]
    return receipt_info


def _encode_log_filter(log_filter: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "address": list(log_filter.get("address") or []),
        "topics": [
            {"topic": [_b64encode(topic) for topic in entry.get("topic") or []]}
            for entry in log_filter.get("topics") or []
        ],
    }


def _encode_execution(execution: Dict[str, Any]) -> Dict[str, Any]:
    encoded = dict(execution)
    encoded["data"] = _b64encode(execution.get("data") or b"")
    return encoded


# ══════════════════════════════════════════════════════════════════════
#  GRPC-JSON GATEWAY CLIENT
# ══════════════════════════════════════════════════════════════════════

class IoTeXGatewayClient(ChainClient):
    """
    Chain client for the native node's gRPC-JSON gateway.

    Args:
        endpoint: Gateway base URL, e.g. ``https://api.iotex.one:443``
        timeout: Per-request timeout for unary calls (seconds)
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject a mock transport)
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, method: str) -> str:
        return f"{self.endpoint}/{SERVICE_PATH}/{method}"

    @staticmethod
    def _raise_for_error(method: str, status_code: int, body: Any) -> None:
        """Map a gateway error body onto the client error taxonomy."""
        error = body if isinstance(body, dict) else {}
        if isinstance(error.get("error"), dict):
            error = error["error"]
        message = error.get("message") or error.get("error") or f"HTTP {status_code}"
        if error.get("code") == GRPC_NOT_FOUND or status_code == 404:
            raise ChainNotFoundError(f"{method}: {message}")
        raise ChainClientError(f"{method}: {message}")

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST one unary gateway method and return its decoded JSON body."""
        start_time = time.time()
        body_log = f" {json.dumps(payload)}" if LOG_INCLUDE_REQUEST_CONTENT else ""
        logger.debug(f"--> {method}{body_log}")

        try:
            response = await self._client.post(self._url(method), json=payload)
        except httpx.RequestError as e:
            process_time = time.time() - start_time
            logger.warning(f"<-- {method} NETWORK_ERROR ({process_time:.3f}s): {e}")
            raise ChainClientError(f"{method}: {e}") from e

        process_time = time.time() - start_time
        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}

        if response.status_code != 200:
            logger.debug(f"<-- {method} {response.status_code} ({process_time:.3f}s)")
            self._raise_for_error(method, response.status_code, body)

        logger.debug(f"<-- {method} {response.status_code} ({process_time:.3f}s)")
        return body if isinstance(body, dict) else {}

    async def _stream(self, method: str, payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """Yield the ``result`` of each newline-delimited frame of a streaming method."""
        logger.debug(f"--> {method} (stream)")
        try:
            async with self._client.stream(
                "POST", self._url(method), json=payload, timeout=None,
            ) as response:
                if response.status_code != 200:
                    raw = await response.aread()
                    try:
                        body = json.loads(raw)
                    except ValueError:
                        body = {"message": raw.decode("utf-8", errors="replace")}
                    self._raise_for_error(method, response.status_code, body)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        frame = json.loads(line)
                    except ValueError as e:
                        raise ChainClientError(f"{method}: malformed stream frame") from e
                    if frame.get("error"):
                        self._raise_for_error(method, 200, frame)
                    yield frame.get("result") or {}
        except httpx.RequestError as e:
            logger.warning(f"<-- {method} stream NETWORK_ERROR: {e}")
            raise ChainClientError(f"{method}: {e}") from e

    # ── Unary methods ───────────────────────────────────────────────

    async def get_chain_meta(self) -> Dict[str, Any]:
        body = await self._call("GetChainMeta", {})
        return body.get("chainMeta") or {}

    async def get_account(self, address: str) -> Dict[str, Any]:
        body = await self._call("GetAccount", {"address": address})
        account = body.get("accountMeta") or {}
        if "contractByteCode" in account:
            account["contractByteCode"] = _b64decode(account["contractByteCode"])
        return account

    async def get_block_metas(
        self,
        start: Optional[int] = None,
        count: int = 1,
        block_hash: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        if block_hash is not None:
            payload = {"byHash": {"blkHash": strip_hex_prefix(block_hash)}}
        else:
            payload = {"byIndex": {"start": str(start or 0), "count": str(count)}}
        body = await self._call("GetBlockMetas", payload)
        return body.get("blkMetas") or []

    async def get_actions(
        self,
        action_hash: Optional[str] = None,
        block_hash: Optional[str] = None,
        start: int = 0,
        count: int = 1,
        checking_pending: bool = True,
    ) -> List[Dict[str, Any]]:
        if action_hash is not None:
            payload = {"byHash": {
                "actionHash": strip_hex_prefix(action_hash),
                "checkPending": checking_pending,
            }}
        elif block_hash is not None:
            payload = {"byBlk": {
                "blkHash": strip_hex_prefix(block_hash),
                "start": str(start),
                "count": str(count),
            }}
        else:
            payload = {"byIndex": {"start": str(start), "count": str(count)}}
        body = await self._call("GetActions", payload)
        return [_decode_action_info(info) for info in body.get("actionInfo") or []]

    async def get_receipt_by_action(self, action_hash: str) -> Optional[Dict[str, Any]]:
        body = await self._call("GetReceiptByAction", {"actionHash": strip_hex_prefix(action_hash)})
        receipt_info = body.get("receiptInfo")
        if not receipt_info:
            return None
        return _decode_receipt_info(receipt_info)

    async def get_logs(
        self,
        log_filter: Dict[str, Any],
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        block_hash: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"filter": _encode_log_filter(log_filter)}
        if block_hash is not None:
            payload["byBlock"] = {"blockHash": _b64encode(block_hash)}
        elif from_block is not None or to_block is not None:
            payload["byRange"] = {
                "fromBlock": str(from_block or 0),
                "toBlock": str(to_block or 0),
            }
        body = await self._call("GetLogs", payload)
        return [_decode_log(log) for log in body.get("logs") or []]

    async def send_raw_transaction(self, data: str, chain_id: int) -> str:
        body = await self._call("SendRawTransaction", {"chainID": chain_id, "data": data})
        action_hash = body.get("actionHash")
        if not action_hash:
            raise ChainClientError("SendRawTransaction: no action hash returned")
        return action_hash

    async def read_contract(
        self,
        execution: Dict[str, Any],
        caller_address: Optional[str] = None,
        gas_limit: int = 0,
        gas_price: int = 0,
    ) -> str:
        payload = {
            "execution": _encode_execution(execution),
            "callerAddress": caller_address or "",
            "gasLimit": str(gas_limit),
            "gasPrice": str(gas_price),
        }
        body = await self._call("ReadContract", payload)
        return "0x" + strip_hex_prefix(body.get("data") or "")

    async def estimate_gas(self, request: Dict[str, Any]) -> int:
        payload = dict(request)
        if "execution" in payload:
            payload["execution"] = _encode_execution(payload["execution"])
        if "transfer" in payload:
            transfer = dict(payload["transfer"])
            transfer["payload"] = _b64encode(transfer.get("payload") or b"")
            payload["transfer"] = transfer
        body = await self._call("EstimateActionGasConsumption", payload)
        return hex_to_number(body.get("gas") or 0)

    async def suggest_gas_price(self) -> int:
        body = await self._call("SuggestGasPrice", {})
        return hex_to_number(body.get("gasPrice") or 0)

    async def get_server_meta(self) -> Dict[str, Any]:
        body = await self._call("GetServerMeta", {})
        return body.get("serverMeta") or {}

    # ── Streaming methods ───────────────────────────────────────────

    async def _block_meta_stream(self) -> AsyncIterator[Dict[str, Any]]:
        async for result in self._stream("StreamBlocks", {}):
            identifier = result.get("blockIdentifier") or {}
            block_hash = identifier.get("hash")
            if not block_hash:
                continue
            metas = await self.get_block_metas(block_hash=block_hash)
            if metas:
                yield metas[0]

    async def _log_stream(self, log_filter: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        payload = {"filter": _encode_log_filter(log_filter)}
        async for result in self._stream("StreamLogs", payload):
            log = result.get("log")
            if log:
                yield _decode_log(log)

    def stream_blocks(self) -> ChainStream:
        return ChainStream(self._block_meta_stream(), name="StreamBlocks")

    def stream_logs(self, log_filter: Dict[str, Any]) -> ChainStream:
        return ChainStream(self._log_stream(log_filter), name="StreamLogs")

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Chain client closed.")

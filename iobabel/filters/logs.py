"""
iobabel Log Queries

Builds native log queries from Ethereum ``eth_getLogs`` / ``eth_newFilter``
parameters:

- ``fromBlock`` / ``toBlock`` resolve independently; ``latest``-like tags
  map to the chain head and ``earliest`` to height 1
- ``address`` may be a single address or a list
- ``topics`` keep their per-position alternative sets (OR within a
  position, AND across positions); ``null`` is a wildcard
- ``blockHash`` selects a single block instead of a range
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..chain.client import ChainClient
from ..codec.address import to_native_address
from ..codec.encoding import hex_to_bytes, hex_to_number, normalize_hash
from ..codec.translate import translate_log
from ..constants import EARLIEST_BLOCK_TAG, EARLIEST_LOG_HEIGHT, HEAD_BLOCK_TAGS
from ..exceptions import DecodeError


@dataclass
class LogQuery:
    """A resolved native log query."""
    log_filter: Dict[str, Any] = field(default_factory=dict)
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    block_hash: Optional[str] = None

    @property
    def bounded(self) -> bool:
        return self.from_block is not None or self.to_block is not None


def normalize_addresses(address: Any) -> List[str]:
    """Scalar or list of ``0x`` addresses to native addresses."""
    if address is None:
        return []
    if isinstance(address, str):
        address = [address]
    if not isinstance(address, (list, tuple)):
        raise DecodeError(f"Invalid address filter: {address!r}")
    return [to_native_address(a) for a in address]


def normalize_topics(topics: Any) -> List[Dict[str, List[bytes]]]:
    """
    Translate Ethereum topic positions into the native topic filter shape.

    Each position becomes ``{"topic": [alternatives...]}``; an empty list
    matches anything at that position.
    """
    if topics is None:
        return []
    if isinstance(topics, str):
        topics = [topics]
    if not isinstance(topics, (list, tuple)):
        raise DecodeError(f"Invalid topics filter: {topics!r}")

    positions = []
    for entry in topics:
        if entry is None:
            alternatives = []
        elif isinstance(entry, str):
            alternatives = [hex_to_bytes(entry)]
        elif isinstance(entry, (list, tuple)):
            alternatives = [hex_to_bytes(t) for t in entry if t is not None]
        else:
            raise DecodeError(f"Invalid topic: {entry!r}")
        positions.append({"topic": alternatives})
    return positions


def build_native_filter(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "address": normalize_addresses(params.get("address")),
        "topics": normalize_topics(params.get("topics")),
    }


class _Head:
    """Fetches the chain head at most once per query."""

    def __init__(self, client: ChainClient):
        self.client = client
        self._height: Optional[int] = None

    async def get(self) -> int:
        if self._height is None:
            self._height = await self.client.get_height()
        return self._height


async def _resolve_endpoint(tag: Any, head: _Head) -> int:
    if isinstance(tag, str) and tag in HEAD_BLOCK_TAGS:
        return await head.get()
    if tag == EARLIEST_BLOCK_TAG:
        return EARLIEST_LOG_HEIGHT
    return hex_to_number(tag)


async def resolve_range(params: Dict[str, Any], client: ChainClient) -> LogQuery:
    """
    Resolve ``fromBlock`` / ``toBlock`` (or ``blockHash``) into a query.

    When both endpoints are absent the range is unbounded. When only one
    is given the other defaults to height 1 (from) or the head (to).
    """
    query = LogQuery(log_filter=build_native_filter(params))

    block_hash = params.get("blockHash")
    if block_hash:
        query.block_hash = normalize_hash(block_hash)
        return query

    from_tag = params.get("fromBlock")
    to_tag = params.get("toBlock")
    if from_tag is None and to_tag is None:
        return query

    head = _Head(client)
    if from_tag is None:
        query.from_block = EARLIEST_LOG_HEIGHT
    else:
        query.from_block = await _resolve_endpoint(from_tag, head)
    if to_tag is None:
        query.to_block = await head.get()
    else:
        query.to_block = await _resolve_endpoint(to_tag, head)
    return query


async def fetch_logs(client: ChainClient, query: LogQuery) -> List[Dict[str, Any]]:
    """Run a query and translate the results, skipping zero-topic entries."""
    if query.bounded and query.from_block > query.to_block:
        return []
    logs = await client.get_logs(
        query.log_filter,
        from_block=query.from_block,
        to_block=query.to_block,
        block_hash=query.block_hash,
    )
    return [translate_log(log) for log in logs if log.get("topics")]

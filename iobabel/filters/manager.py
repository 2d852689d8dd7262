"""
iobabel Poll Filters

Implements ``eth_newFilter`` / ``eth_newBlockFilter`` / ``eth_getFilterChanges``
/ ``eth_getFilterLogs`` / ``eth_uninstallFilter`` over the filter store.

Each filter owns a descriptor and a cursor. The cursor is the next height
the filter has not reported yet; it starts one past the head at creation,
so a filter only ever reports data that arrived after it was installed.
Cursor updates are read-modify-write; a filter id is expected to be polled
by a single client.
"""

from typing import Any, Dict, List, Optional, Tuple

from ..chain.client import ChainClient
from ..codec.encoding import hex_to_number, normalize_hash
from ..constants import EARLIEST_BLOCK_TAG, EARLIEST_LOG_HEIGHT, HEAD_BLOCK_TAGS, MAX_FILTER_BLOCKS
from ..exceptions import DecodeError
from ..logger import get_logger
from .logs import LogQuery, build_native_filter, fetch_logs, resolve_range
from .store import FilterKind, FilterStore, new_filter_id

logger = get_logger(__name__)


def _numeric_bound(tag: Any) -> Optional[int]:
    """A filter bound that does not move with the head, or None."""
    if tag is None or (isinstance(tag, str) and tag in HEAD_BLOCK_TAGS):
        return None
    if tag == EARLIEST_BLOCK_TAG:
        return EARLIEST_LOG_HEIGHT
    return hex_to_number(tag)


class FilterManager:
    """
    Poll-based filter state machine.

    A filter is ACTIVE while its descriptor is in the store and becomes
    EXPIRED or UNINSTALLED once the descriptor is gone; polling a gone
    filter yields an empty result, not an error.
    """

    def __init__(
        self,
        client: ChainClient,
        store: FilterStore,
        max_blocks: int = MAX_FILTER_BLOCKS,
    ):
        self.client = client
        self.store = store
        self.max_blocks = max_blocks

    # ── Creation ────────────────────────────────────────────────────

    async def new_log_filter(self, params: Optional[Dict[str, Any]] = None) -> str:
        params = dict(params or {})
        if params.get("blockHash"):
            raise DecodeError("blockHash is not supported for polled filters")
        # Reject malformed bounds, addresses and topics at install time
        build_native_filter(params)
        _numeric_bound(params.get("fromBlock"))
        _numeric_bound(params.get("toBlock"))

        filter_id = new_filter_id(FilterKind.LOG, params)
        head = await self.client.get_height()
        await self.store.save_descriptor(filter_id, {"type": FilterKind.LOG, "params": params})
        await self.store.save_cursor(filter_id, head + 1)
        logger.debug(f"Installed log filter {filter_id} at head {head}")
        return filter_id

    async def new_block_filter(self) -> str:
        filter_id = new_filter_id(FilterKind.BLOCK)
        head = await self.client.get_height()
        await self.store.save_descriptor(filter_id, {"type": FilterKind.BLOCK})
        await self.store.save_cursor(filter_id, head + 1)
        logger.debug(f"Installed block filter {filter_id} at head {head}")
        return filter_id

    # ── Polling ─────────────────────────────────────────────────────

    async def get_filter_changes(self, filter_id: str) -> List[Any]:
        """
        Report what arrived since the last poll and advance the cursor.

        Log filters report logs over ``[cursor, head]`` and move the cursor
        to ``head + 1``. Block filters report at most ``max_blocks`` block
        hashes per poll.
        """
        descriptor = await self.store.get_descriptor(filter_id)
        if descriptor is None:
            return []

        head = await self.client.get_height()
        cursor = await self.store.get_cursor(filter_id)
        if cursor is None:
            cursor = head + 1
        await self.store.save_descriptor(filter_id, descriptor)

        if cursor > head:
            await self.store.save_cursor(filter_id, cursor)
            return []

        if descriptor.get("type") == FilterKind.BLOCK:
            hashes, next_cursor = await self._scan_blocks(cursor, head)
            await self.store.save_cursor(filter_id, next_cursor)
            return hashes

        logs = await self._logs_in_window(descriptor.get("params") or {}, cursor, head)
        await self.store.save_cursor(filter_id, head + 1)
        return logs

    async def get_filter_logs(self, filter_id: str) -> List[Any]:
        """
        Non-destructive read of a filter.

        Log filters replay their full original range; block filters scan
        from the cursor without moving it.
        """
        descriptor = await self.store.get_descriptor(filter_id)
        if descriptor is None:
            return []
        await self.store.save_descriptor(filter_id, descriptor)

        if descriptor.get("type") == FilterKind.BLOCK:
            head = await self.client.get_height()
            cursor = await self.store.get_cursor(filter_id)
            if cursor is None or cursor > head:
                return []
            hashes, _ = await self._scan_blocks(cursor, head)
            return hashes

        query = await resolve_range(descriptor.get("params") or {}, self.client)
        return await fetch_logs(self.client, query)

    async def uninstall(self, filter_id: str) -> bool:
        removed = await self.store.remove(filter_id)
        if removed:
            logger.debug(f"Uninstalled filter {filter_id}")
        return removed

    # ── Helpers ─────────────────────────────────────────────────────

    async def _logs_in_window(self, params: Dict[str, Any], cursor: int, head: int) -> List[Dict[str, Any]]:
        """Logs over ``[cursor, head]`` clamped to the filter's numeric bounds."""
        start, end = cursor, head
        lower = _numeric_bound(params.get("fromBlock"))
        upper = _numeric_bound(params.get("toBlock"))
        if lower is not None:
            start = max(start, lower)
        if upper is not None:
            end = min(end, upper)
        if start > end:
            return []
        query = LogQuery(log_filter=build_native_filter(params), from_block=start, to_block=end)
        return await fetch_logs(self.client, query)

    async def _scan_blocks(self, cursor: int, head: int) -> Tuple[List[str], int]:
        count = min(self.max_blocks, head - cursor + 1)
        metas = await self.client.get_block_metas(start=cursor, count=count)
        hashes = [normalize_hash(meta.get("hash", "")) for meta in metas]
        return hashes, min(cursor + self.max_blocks, head + 1)

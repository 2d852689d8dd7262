"""
iobabel Filter Store

Ephemeral filter state in Redis: one descriptor and one cursor per filter
id, both with a sliding expiry refreshed on every write.
"""

import json
import secrets
import time
from typing import Any, Dict, Optional

import redis.asyncio as redis
from eth_utils import encode_hex, keccak

from ..constants import FILTER_TTL
from ..logger import get_logger

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX = "babel:"


class FilterKind:
    LOG = "filter"
    BLOCK = "block_filter"
    SUBSCRIPTION = "subscription"


def new_filter_id(kind: str, params: Any = None) -> str:
    """
    Derive an opaque filter id.

    keccak256 over the canonical JSON of the parameters, a random nonce,
    the creation time and the kind tag, so identical parameters created
    back-to-back still get distinct, unpredictable ids.
    """
    material = "|".join((
        json.dumps(params, sort_keys=True, separators=(",", ":"), default=str),
        secrets.token_hex(16),
        repr(time.time()),
        kind,
    ))
    return encode_hex(keccak(text=material))


class FilterStore:
    """
    Thin get / set-with-expiry / delete layer over ``redis.asyncio``.

    The Redis client must be created with ``decode_responses=True``.
    """

    def __init__(
        self,
        client: redis.Redis,
        ttl: int = FILTER_TTL,
        prefix: str = DEFAULT_KEY_PREFIX,
    ):
        self.client = client
        self.ttl = ttl
        self.prefix = prefix

    def _descriptor_key(self, filter_id: str) -> str:
        return f"{self.prefix}filter:{filter_id.lower()}"

    def _cursor_key(self, filter_id: str) -> str:
        return f"{self.prefix}cursor:{filter_id.lower()}"

    # ── Generic ─────────────────────────────────────────────────────

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set_with_expiry(self, key: str, value: str, seconds: int) -> None:
        await self.client.set(key, value, ex=seconds)

    async def delete(self, key: str) -> bool:
        return bool(await self.client.delete(key))

    # ── Descriptors ─────────────────────────────────────────────────

    async def get_descriptor(self, filter_id: str) -> Optional[Dict[str, Any]]:
        raw = await self.get(self._descriptor_key(filter_id))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Dropping corrupt filter descriptor {filter_id}")
            await self.delete(self._descriptor_key(filter_id))
            return None

    async def save_descriptor(self, filter_id: str, descriptor: Dict[str, Any]) -> None:
        await self.set_with_expiry(
            self._descriptor_key(filter_id),
            json.dumps(descriptor, sort_keys=True),
            self.ttl,
        )

    # ── Cursors ─────────────────────────────────────────────────────

    async def get_cursor(self, filter_id: str) -> Optional[int]:
        raw = await self.get(self._cursor_key(filter_id))
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    async def save_cursor(self, filter_id: str, height: int) -> None:
        await self.set_with_expiry(self._cursor_key(filter_id), str(height), self.ttl)

    async def remove(self, filter_id: str) -> bool:
        """Delete a filter's descriptor and cursor; True if the descriptor existed."""
        existed = await self.delete(self._descriptor_key(filter_id))
        await self.delete(self._cursor_key(filter_id))
        return existed

"""
iobabel Codec Module

Pure conversions between native chain values and Ethereum JSON-RPC shapes:
- address formats (``io1...`` <-> ``0x...``)
- quantities and byte strings
- block / transaction / receipt / log views
"""

from .address import (
    sender_from_public_key,
    to_compat_address,
    to_native_address,
)
from .encoding import (
    bytes_to_hex,
    hex_to_bytes,
    hex_to_int,
    hex_to_number,
    normalize_hash,
    number_to_hex,
    split_signature,
    strip_hex_prefix,
)
from .translate import (
    translate_action,
    translate_block,
    translate_block_header,
    translate_log,
    translate_receipt,
)

__all__ = [
    "sender_from_public_key",
    "to_compat_address",
    "to_native_address",
    "bytes_to_hex",
    "hex_to_bytes",
    "hex_to_int",
    "hex_to_number",
    "normalize_hash",
    "number_to_hex",
    "split_signature",
    "strip_hex_prefix",
    "translate_action",
    "translate_block",
    "translate_block_header",
    "translate_log",
    "translate_receipt",
]

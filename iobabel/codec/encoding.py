"""
iobabel Codec - Number and Byte Encoding

Conversions between native chain values and Ethereum JSON-RPC quantities:
- quantities render as minimal ``0x`` hex, zero as ``0x0``
- negative quantities carry the sign out-of-band as ``-0x``
- byte strings render as lowercase ``0x`` hex, empty as ``0x``
"""

from typing import Any, Optional, Tuple, Union

from eth_utils import decode_hex, encode_hex, remove_0x_prefix

from ..constants import VALID_HEX_PATTERN, VALID_DECIMAL_PATTERN
from ..exceptions import DecodeError

BytesLike = Union[bytes, bytearray, memoryview]


def _is_hex_prefixed(value: str) -> bool:
    return value[:2] in ("0x", "0X")


def hex_to_number(value: Any) -> int:
    """
    Parse an integer given as int, ``0x`` hex, ``-0x`` hex or decimal string.

    Raises:
        DecodeError: on anything that is not a well-formed integer
    """
    if isinstance(value, bool):
        raise DecodeError(f"Invalid number: {value!r}")
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise DecodeError(f"Invalid number: {value!r}")

    text = value.strip()
    negative = text.startswith("-")
    if negative:
        text = text[1:]

    if _is_hex_prefixed(text):
        digits = text[2:]
        if not digits or not VALID_HEX_PATTERN.match(digits):
            raise DecodeError(f"Invalid hex number: {value!r}")
        number = int(digits, 16)
    elif text and VALID_DECIMAL_PATTERN.match(text) and not text.startswith("-"):
        number = int(text, 10)
    else:
        raise DecodeError(f"Invalid number: {value!r}")

    return -number if negative else number


def hex_to_int(value: str) -> int:
    """
    Strict hex parse: hex digits with an optional ``0x`` prefix only.
    """
    if not isinstance(value, str):
        raise DecodeError(f"Invalid hex: {value!r}")
    digits = remove_0x_prefix(value.strip())
    if not digits or not VALID_HEX_PATTERN.match(digits):
        raise DecodeError(f"Invalid hex: {value!r}")
    return int(digits, 16)


def number_to_hex(value: Any) -> str:
    """
    Convert an integer (or its decimal/hex string form) to a quantity.

    Examples:
        >>> number_to_hex(0)
        '0x0'
        >>> number_to_hex("255")
        '0xff'
        >>> number_to_hex(-16)
        '-0x10'
    """
    number = hex_to_number(value)
    if number < 0:
        return "-0x" + format(-number, "x")
    return "0x" + format(number, "x")


def strip_hex_prefix(value: str) -> str:
    """Lowercase hex without prefix, the native hash form."""
    return remove_0x_prefix(value).lower()


def normalize_hash(value: Optional[str]) -> Optional[str]:
    """Single lowercase ``0x`` prefix; adapter hashes may omit it."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes_to_hex(value)
    return "0x" + strip_hex_prefix(value)


def bytes_to_hex(data: Union[BytesLike, str, None]) -> str:
    """
    Render bytes as lowercase ``0x`` hex. Absent or empty input is ``0x``.

    Hex strings are accepted and normalized, so values already decoded by
    the chain client and raw hex strings render the same way.
    """
    if data is None:
        return "0x"
    if isinstance(data, (bytes, bytearray, memoryview)):
        return encode_hex(bytes(data))
    if isinstance(data, str):
        digits = remove_0x_prefix(data)
        if len(digits) % 2 or not VALID_HEX_PATTERN.match(digits):
            raise DecodeError(f"Invalid hex data: {data!r}")
        return "0x" + digits.lower()
    raise DecodeError(f"Cannot hex-encode {type(data).__name__}")


def hex_to_bytes(value: Union[str, BytesLike, None]) -> bytes:
    """Inverse of :func:`bytes_to_hex`, accepting either case and an optional prefix."""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if not isinstance(value, str):
        raise DecodeError(f"Invalid hex data: {value!r}")
    digits = remove_0x_prefix(value)
    if len(digits) % 2 or not VALID_HEX_PATTERN.match(digits):
        raise DecodeError(f"Invalid hex data: {value!r}")
    return decode_hex(digits)


def split_signature(signature: Union[BytesLike, str]) -> Tuple[str, str, str]:
    """
    Split a 65-byte ``r || s || v`` signature into Ethereum ``(r, s, v)``.

    The recovery byte is normalized into the 27/28 convention.

    Raises:
        DecodeError: if the signature is not exactly 65 bytes
    """
    raw = hex_to_bytes(signature)
    if len(raw) != 65:
        raise DecodeError(f"Invalid signature length: {len(raw)}")
    v = raw[64]
    if v < 27:
        v += 27
    return encode_hex(raw[:32]), encode_hex(raw[32:64]), number_to_hex(v)

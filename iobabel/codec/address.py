"""
iobabel Codec - Addresses

Native addresses are bech32 strings (``io1...``) over a 20-byte account
hash. The Ethereum form is the same 20 bytes as lowercase ``0x`` hex.
"""

from typing import Optional, Union

from bech32 import bech32_decode, bech32_encode, convertbits
from eth_utils import encode_hex, keccak, remove_0x_prefix

from ..constants import ADDRESS_BYTES, NATIVE_ADDRESS_HRP, VALID_HEX_PATTERN, ZERO_ADDRESS
from ..exceptions import InvalidAddressError
from .encoding import hex_to_bytes


def to_compat_address(native: Optional[str]) -> str:
    """
    Convert a native ``io1...`` address to its ``0x`` form.

    An empty or absent address maps to the zero address.

    Raises:
        InvalidAddressError: if the address is not valid bech32 with the ``io`` prefix
    """
    if not native:
        return ZERO_ADDRESS
    if not isinstance(native, str):
        raise InvalidAddressError(f"Invalid native address: {native!r}")

    hrp, data = bech32_decode(native)
    if hrp != NATIVE_ADDRESS_HRP or data is None:
        raise InvalidAddressError(f"Invalid native address: {native}")

    payload = convertbits(data, 5, 8, False)
    if payload is None or len(payload) != ADDRESS_BYTES:
        raise InvalidAddressError(f"Invalid native address payload: {native}")
    return encode_hex(bytes(payload))


def to_native_address(address: Optional[str]) -> str:
    """
    Convert a ``0x`` hex address to its native ``io1...`` form.

    Raises:
        InvalidAddressError: on malformed hex or a payload that is not 20 bytes
    """
    if not isinstance(address, str):
        raise InvalidAddressError(f"Invalid address: {address!r}")

    digits = remove_0x_prefix(address.strip())
    if len(digits) % 2 or not VALID_HEX_PATTERN.match(digits):
        raise InvalidAddressError(f"Invalid hex address: {address}")

    raw = bytes.fromhex(digits)
    if len(raw) != ADDRESS_BYTES:
        raise InvalidAddressError(f"Address must be {ADDRESS_BYTES} bytes: {address}")
    return bech32_encode(NATIVE_ADDRESS_HRP, convertbits(raw, 8, 5))


def sender_from_public_key(public_key: Union[bytes, str]) -> str:
    """
    Derive the sender address from an uncompressed secp256k1 public key.

    Last 20 bytes of keccak256 over the key without its ``04`` marker byte.
    """
    raw = hex_to_bytes(public_key)
    if len(raw) < 2:
        raise InvalidAddressError("Public key is empty")
    return encode_hex(keccak(raw[1:])[-ADDRESS_BYTES:])

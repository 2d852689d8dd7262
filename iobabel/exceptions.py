"""
iobabel Exceptions

Custom exception classes for the gateway.
"""


class BabelException(Exception):
    """Base exception for iobabel."""
    pass


class DecodeError(BabelException):
    """Malformed hex, number or byte input."""
    pass


class InvalidAddressError(DecodeError):
    """Invalid address format."""
    pass


class ChainClientError(BabelException):
    """Upstream chain RPC call failed."""
    pass


class ChainNotFoundError(ChainClientError):
    """Upstream chain reports the requested resource does not exist."""
    pass


class ConfigurationError(BabelException):
    """Invalid gateway configuration."""
    pass

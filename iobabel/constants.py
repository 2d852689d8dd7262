"""
iobabel Gateway Constants

This module consolidates the global constants and environment configuration
used throughout the gateway. Constants are organized by category for easy
reference and maintenance.
"""
import ast
import re
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

GATEWAY_DEFAULTS = {
    'BABEL_HOST':                      '0.0.0.0',
    'BABEL_PORT':                      '9000',
    'END_POINT':                       'https://api.iotex.one:443',
    'CHAIN_ID':                        '4689',
    'REDIS_URL':                       'redis://127.0.0.1:6379/0',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_TO_FILE':                     'False',
    'LOG_INCLUDE_REQUEST_CONTENT':     'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_MAX_PATH_LENGTH = 320  # Maximum URL path length to log (truncates longer paths)
LOG_BACKUP_COUNT = 5


# ==================================================================================
# GATEWAY VERSION
# ==================================================================================
GATEWAY_VERSION = '1.2.0'


# ==================================================================================
# NATIVE CHAIN PARAMETERS
# ==================================================================================
NATIVE_ADDRESS_HRP = 'io'  # bech32 human-readable part of native addresses
ADDRESS_BYTES = 20
DEFAULT_CHAIN_ID = 4689

# Genesis height; the native node refuses action queries for it
GENESIS_HEIGHT = 0

# Maximum actions fetched when expanding a block
MAX_ACTIONS_PER_BLOCK = 1000


# ==================================================================================
# FILTER PARAMETERS
# ==================================================================================
# Sliding expiry of filter descriptors and cursors (15 minutes)
FILTER_TTL = 15 * 60

# Maximum block headers returned by one block-filter poll
MAX_FILTER_BLOCKS = 1000

# Block tags that resolve against the live chain head
HEAD_BLOCK_TAGS = ('latest', 'pending', 'safe', 'finalized')
EARLIEST_BLOCK_TAG = 'earliest'

# Height that 'earliest' maps to in log ranges
EARLIEST_LOG_HEIGHT = 1


# ==================================================================================
# ETHEREUM COMPATIBILITY PLACEHOLDERS
# ==================================================================================
# The native chain has no equivalent for these fields. Tooling requires them
# to be present and well formed, not accurate.
ZERO_ADDRESS = '0x' + '0' * 40
EMPTY_BLOOM = '0x' + '00' * 256
EMPTY_UNCLES_HASH = '0x1dcc4de8dec75d7aab85b567b6ccd41ad312451b948a7413f0a142fd40d49347'
EMPTY_TRANSACTIONS_ROOT = '0x56e81f171bcc55a6ff8345e692c0f86e5b48e01b996cadc001622fb5e363b421'
BLOCK_NONCE = '0x0000000000000001'
PLACEHOLDER_DIFFICULTY = 21345678965432
PLACEHOLDER_TOTAL_DIFFICULTY = 324567845321
PLACEHOLDER_STEP = '373422302'
PLACEHOLDER_SIGNATURE = '0x' + '00' * 65
DEFAULT_BLOCK_GAS_LIMIT = 0xbebc20

# Stub node answers
PEER_COUNT = '0x64'
PROTOCOL_VERSION = '64'
HASHRATE = '0x500000'

# Contract whose eth_call is answered with empty data without hitting the node
CALL_EXCLUDED_CONTRACTS = frozenset({
    '0xb1f8e55c7f64d203c1400b9d8555d050f94adf39',
})


# ==================================================================================
# VALIDATION PATTERNS
# ==================================================================================
# Regex pattern for validating hexadecimal strings (no prefix)
VALID_HEX_PATTERN = re.compile(r'^[0-9a-fA-F]*$')

# Regex pattern for validating decimal integer strings
VALID_DECIMAL_PATTERN = re.compile(r'^-?[0-9]+$')


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = {**GATEWAY_DEFAULTS, **LOGGER_DEFAULTS}
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    # Parses only boolean-literals. Leaves other values untouched.
    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)

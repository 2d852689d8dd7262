"""
iobabel TOML Configuration Loader

Loads every section of config.toml at startup with environment variable
overrides. Each section is a dataclass with from_dict / apply_env.

Environment variable mapping:
    [gateway] chain_id  → BABEL_CHAIN_ID
    [gateway] endpoint  → BABEL_END_POINT
    [rpc.http] port     → BABEL_RPC_HTTP_PORT
    [redis] url         → BABEL_REDIS_URL
    ...

Values missing from both fall back to the .env-backed defaults in
``iobabel.constants``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    try:
        import tomli  # type: ignore[no-redef]
    except ImportError:
        tomli = None  # type: ignore[assignment]

from .. import constants
from ..constants import FILTER_TTL
from ..exceptions import ConfigurationError
from ..logger import get_logger
from ..rpc.config import RPCConfig

logger = get_logger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


def _reject_unknown(section: str, data: Dict[str, Any], cls: type) -> None:
    unknown = set(data) - {f.name for f in fields(cls)}
    if unknown:
        raise ConfigurationError(f"Unknown setting in [{section}]: {', '.join(sorted(unknown))}")


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass
class GatewaySectionConfig:
    """[gateway] section."""
    chain_id: int = field(default_factory=lambda: int(constants.CHAIN_ID))
    endpoint: str = field(default_factory=lambda: str(constants.END_POINT))
    request_timeout: float = 30.0
    log_level: str = field(default_factory=lambda: str(constants.LOG_LEVEL).upper())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GatewaySectionConfig":
        _reject_unknown("gateway", data, cls)
        defaults = cls()
        return cls(
            chain_id=data.get("chain_id", defaults.chain_id),
            endpoint=data.get("endpoint", defaults.endpoint),
            request_timeout=data.get("request_timeout", defaults.request_timeout),
            log_level=data.get("log_level", defaults.log_level),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("BABEL_CHAIN_ID"):
            self.chain_id = int(v)
        if v := os.environ.get("BABEL_END_POINT"):
            self.endpoint = v
        if v := os.environ.get("BABEL_REQUEST_TIMEOUT"):
            self.request_timeout = float(v)
        if v := os.environ.get("BABEL_LOG_LEVEL"):
            self.log_level = v.upper()


@dataclass
class RedisConfig:
    """[redis] section. Holds poll-filter descriptors and cursors."""
    url: str = field(default_factory=lambda: str(constants.REDIS_URL))
    filter_ttl: int = FILTER_TTL
    key_prefix: str = "babel:"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RedisConfig":
        _reject_unknown("redis", data, cls)
        defaults = cls()
        return cls(
            url=data.get("url", defaults.url),
            filter_ttl=data.get("filter_ttl", FILTER_TTL),
            key_prefix=data.get("key_prefix", "babel:"),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("BABEL_REDIS_URL"):
            self.url = v
        if v := os.environ.get("BABEL_FILTER_TTL"):
            self.filter_ttl = int(v)


@dataclass
class MetricsConfig:
    """[metrics] section. Prometheus text served by the RPC app."""
    enabled: bool = True
    path: str = "/metrics"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricsConfig":
        _reject_unknown("metrics", data, cls)
        return cls(
            enabled=data.get("enabled", True),
            path=data.get("path", "/metrics"),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("BABEL_METRICS_ENABLED"):
            self.enabled = _env_bool(v)


@dataclass
class HealthConfig:
    """[health] section. Liveness probe answering ``pong``."""
    enabled: bool = True
    path: str = "/ping"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthConfig":
        _reject_unknown("health", data, cls)
        return cls(
            enabled=data.get("enabled", True),
            path=data.get("path", "/ping"),
        )


# -----------------------------------------------------------------------
# Top-level config
# -----------------------------------------------------------------------

@dataclass
class GatewayConfig:
    """
    Unified gateway configuration.

    Loads every section of config.toml and applies environment variable
    overrides. This is the single source of truth at runtime.
    """
    gateway: GatewaySectionConfig = field(default_factory=GatewaySectionConfig)
    rpc: RPCConfig = field(default_factory=RPCConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    health: HealthConfig = field(default_factory=HealthConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GatewayConfig":
        """
        Create GatewayConfig from a parsed TOML dict.

        Raises:
            ConfigurationError: on a section or key the gateway does not know
        """
        _reject_unknown("config", data, cls)
        try:
            rpc = RPCConfig.from_dict(data.get("rpc", {}))
        except TypeError as e:
            raise ConfigurationError(f"Unknown setting in [rpc]: {e}") from e
        if "rpc" not in data or "host" not in data["rpc"].get("http", {}):
            rpc.http.host = str(constants.BABEL_HOST)
        if "rpc" not in data or "port" not in data["rpc"].get("http", {}):
            rpc.http.port = int(constants.BABEL_PORT)

        return cls(
            gateway=GatewaySectionConfig.from_dict(data.get("gateway", {})),
            rpc=rpc,
            redis=RedisConfig.from_dict(data.get("redis", {})),
            metrics=MetricsConfig.from_dict(data.get("metrics", {})),
            health=HealthConfig.from_dict(data.get("health", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "GatewayConfig":
        """
        Load configuration from a TOML file.

        Args:
            config_path: Path to config.toml

        Returns:
            GatewayConfig instance
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            cfg = cls.from_dict({})
            cfg.apply_env()
            return cfg

        if tomli is None:
            raise ConfigurationError(
                "tomli is required for TOML config loading. "
                "Install it: pip install tomli"
            )

        try:
            with open(path, "rb") as f:
                raw = tomli.load(f)
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        logger.info(f"Loaded configuration from {config_path}")
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.gateway.apply_env()
        self.redis.apply_env()
        self.metrics.apply_env()

        if v := os.environ.get("BABEL_RPC_HTTP_HOST"):
            self.rpc.http.host = v
        if v := os.environ.get("BABEL_RPC_HTTP_PORT"):
            self.rpc.http.port = int(v)
        if v := os.environ.get("BABEL_RPC_RATE_LIMIT"):
            self.rpc.http.rate_limit = int(v)
        if v := os.environ.get("BABEL_WS_ENABLED"):
            self.rpc.websocket.enabled = _env_bool(v)

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Returns:
            True if all valid

        Raises:
            ConfigurationError: on invalid config
        """
        if self.gateway.chain_id < 1:
            raise ConfigurationError("chain_id must be >= 1")
        if self.gateway.log_level not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid log_level: {self.gateway.log_level}")
        if not self.gateway.endpoint:
            raise ConfigurationError("endpoint must be set")
        if self.gateway.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be > 0")
        if not 0 < self.rpc.http.port < 65536:
            raise ConfigurationError(f"Invalid HTTP port: {self.rpc.http.port}")
        if self.rpc.http.rate_limit < 1:
            raise ConfigurationError("rate_limit must be >= 1")
        if self.rpc.websocket.max_connections < 1:
            raise ConfigurationError("max_connections must be >= 1")
        if self.rpc.websocket.max_subscriptions < 1:
            raise ConfigurationError("max_subscriptions must be >= 1")
        if self.rpc.filters.max_blocks < 1:
            raise ConfigurationError("filters.max_blocks must be >= 1")
        if self.redis.filter_ttl < 1:
            raise ConfigurationError("filter_ttl must be >= 1")
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "gateway": {
                "chain_id": self.gateway.chain_id,
                "endpoint": self.gateway.endpoint,
                "request_timeout": self.gateway.request_timeout,
                "log_level": self.gateway.log_level,
            },
            "rpc": {
                "http": {
                    "host": self.rpc.http.host,
                    "port": self.rpc.http.port,
                    "rate_limit": self.rpc.http.rate_limit,
                    "cors_enabled": self.rpc.http.cors_enabled,
                },
                "websocket": {
                    "enabled": self.rpc.websocket.enabled,
                    "max_connections": self.rpc.websocket.max_connections,
                    "max_subscriptions": self.rpc.websocket.max_subscriptions,
                },
                "filters": {
                    "max_blocks": self.rpc.filters.max_blocks,
                },
            },
            "redis": {
                "filter_ttl": self.redis.filter_ttl,
                "key_prefix": self.redis.key_prefix,
            },
            "metrics": {
                "enabled": self.metrics.enabled,
                "path": self.metrics.path,
            },
            "health": {
                "enabled": self.health.enabled,
                "path": self.health.path,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> GatewayConfig:
    """
    Load gateway configuration.

    Resolution order:
        1. Explicit *path* argument
        2. BABEL_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("BABEL_CONFIG", "config.toml")

    return GatewayConfig.from_file(path)

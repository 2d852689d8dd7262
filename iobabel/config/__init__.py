"""
iobabel Configuration

Loads all sections of config.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    GatewayConfig,
    GatewaySectionConfig,
    RedisConfig,
    MetricsConfig,
    HealthConfig,
    load_config,
)

__all__ = [
    "GatewayConfig",
    "GatewaySectionConfig",
    "RedisConfig",
    "MetricsConfig",
    "HealthConfig",
    "load_config",
]

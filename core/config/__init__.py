"""
Configuration loading

Bundled defaults (config/resilience.yaml) deep-merged with the user's
config file (<config dir>/config.yaml or --config).
"""

from core.config.loader import ConfigError, ConfigLoader, build_reconnect_config

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "build_reconnect_config",
]

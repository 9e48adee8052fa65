"""
Configuration loader

Merges the bundled defaults (config/resilience.yaml) with the user's
config file. Sections:

    retry:      RetryConfig fields
    timeout:    TimeoutConfig fields
    reconnect:  ReconnectConfig fields
    follow:     default values for ``follow`` flags (queue, debounce, ...)

Usage:
    loader = ConfigLoader(user_config_path)
    retry, timeout = await loader.get_resilience_configs()
"""

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import aiofiles
import yaml

from core.follow.supervisor import ReconnectConfig
from infra.resilience.config import apply_resilience_config, load_resilience_config
from infra.resilience.retry import RetryConfig, parse_duration
from infra.resilience.timeout import TimeoutConfig
from logger import get_logger
from utils.app_paths import get_default_config_file

logger = get_logger(__name__)


class ConfigError(ValueError):
    """The config file exists but is not valid YAML or has the wrong shape."""


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """
    Merge ``override`` into a copy of ``base``; nested dicts merge recursively.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


async def _load_yaml(path: Path) -> Dict[str, Any]:
    """Mapping from a YAML file; {} when the file does not exist."""
    if not path.exists():
        return {}
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
        data = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return data


def build_reconnect_config(section: Optional[Mapping[str, Any]]) -> ReconnectConfig:
    config = ReconnectConfig()
    for key, value in (section or {}).items():
        if hasattr(config, key) and value is not None:
            setattr(config, key, parse_duration(value))
    return config


class ConfigLoader:
    def __init__(self, config_path: Optional[Path] = None,
                 defaults_path: Optional[Path] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self.config_path = Path(config_path) if config_path else get_default_config_file()
        self.defaults_path = defaults_path
        self.environ = environ
        self._merged: Optional[Dict[str, Any]] = None

    async def load(self) -> Dict[str, Any]:
        """Defaults deep-merged with the user file (cached)."""
        if self._merged is not None:
            return self._merged

        try:
            defaults = await load_resilience_config(self.defaults_path)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigError(str(e)) from e
        user = await _load_yaml(self.config_path)
        self._merged = _deep_merge(defaults, user)

        logger.debug(
            "Config loaded",
            extra={"path": str(self.config_path), "defaults": len(defaults), "user": len(user)},
        )
        return self._merged

    async def get_resilience_configs(self) -> Tuple[RetryConfig, TimeoutConfig]:
        """
        Raises:
            ConfigError: a value could not be parsed
        """
        config = await self.load()
        try:
            return apply_resilience_config(config, self.environ)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid retry/timeout config: {e}") from e

    async def get_reconnect_config(self) -> ReconnectConfig:
        config = await self.load()
        try:
            return build_reconnect_config(config.get("reconnect"))
        except ValueError as e:
            raise ConfigError(f"invalid reconnect config: {e}") from e

    async def get_follow_defaults(self) -> Dict[str, Any]:
        """``follow`` section with ``-`` in keys normalized to ``_``."""
        config = await self.load()
        section = config.get("follow") or {}
        if not isinstance(section, dict):
            raise ConfigError("follow: expected a mapping")
        return {str(key).replace("-", "_"): value for key, value in section.items()}

"""
Resilience configuration loading

Builds RetryConfig / TimeoutConfig from the ``retry`` and ``timeout`` sections
of a YAML file, with CHATWOOT_* environment overrides applied on top.
"""

import os

import yaml
import aiofiles
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from logger import get_logger
from infra.resilience.retry import RetryConfig, read_env_overrides, parse_duration
from infra.resilience.timeout import TimeoutConfig

logger = get_logger(__name__)


async def load_resilience_config(config_path: Optional[Path] = None) -> dict:
    """
    Load the resilience defaults file.

    Args:
        config_path: YAML path, defaults to config/resilience.yaml in the bundle

    Returns:
        config dict ({} when missing)
    """
    if config_path is None:
        from utils.app_paths import get_bundle_dir
        config_path = get_bundle_dir() / "config" / "resilience.yaml"

    if not config_path.exists():
        logger.debug("Resilience config not found, using defaults", extra={"path": str(config_path)})
        return {}

    async with aiofiles.open(config_path, 'r', encoding='utf-8') as f:
        content = await f.read()
    config = yaml.safe_load(content) or {}
    if not isinstance(config, dict):
        raise ValueError(f"{config_path}: expected a mapping at the top level")
    return config


def build_timeout_config(section: Optional[Mapping[str, Any]]) -> TimeoutConfig:
    """TimeoutConfig from a ``timeout`` section; unknown keys are ignored."""
    config = TimeoutConfig()
    for key, value in (section or {}).items():
        if hasattr(config, key) and value is not None:
            setattr(config, key, parse_duration(value))
    return config


def build_retry_config(
    section: Optional[Mapping[str, Any]],
    environ: Optional[Mapping[str, str]] = None,
) -> RetryConfig:
    """
    RetryConfig from a ``retry`` section.

    Precedence: defaults < YAML < environment.
    """
    environ = os.environ if environ is None else environ
    config = RetryConfig().with_overrides(section or {})
    return config.with_overrides(read_env_overrides(environ))


def apply_resilience_config(
    config: Dict[str, Any],
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[RetryConfig, TimeoutConfig]:
    """
    Build the executor's configs from a loaded dict.

    Returns:
        (retry_config, timeout_config)
    """
    retry_config = build_retry_config(config.get("retry"), environ)
    timeout_config = build_timeout_config(config.get("timeout"))
    logger.debug(
        "Resilience config applied",
        extra={
            "max_rate_limit_retries": retry_config.max_rate_limit_retries,
            "max_5xx_retries": retry_config.max_5xx_retries,
            "http_timeout": timeout_config.http_timeout,
        },
    )
    return retry_config, timeout_config

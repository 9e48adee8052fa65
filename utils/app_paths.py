"""
Application path management.

Two kinds of paths:
- config_dir: user configuration (config.yaml, follow cursors)
  - CHATWOOT_CONFIG_DIR, else $XDG_CONFIG_HOME/chatwoot-cli, else ~/.config/chatwoot-cli
- data_dir: writable runtime data (logs)
  - CHATWOOT_DATA_DIR, else $XDG_STATE_HOME/chatwoot-cli, else ~/.local/state/chatwoot-cli

The bundle dir holds read-only resources shipped with the code (config/).
"""

import os
from pathlib import Path
from typing import Optional

APP_NAME = "chatwoot-cli"

# Cache (avoid recomputation)
_config_dir: Optional[Path] = None
_data_dir: Optional[Path] = None


def get_bundle_dir() -> Path:
    """Project root (utils/app_paths.py -> two levels up)."""
    return Path(__file__).parent.parent


def get_config_dir() -> Path:
    """
    User configuration directory.

    Priority:
    1. CHATWOOT_CONFIG_DIR
    2. $XDG_CONFIG_HOME/chatwoot-cli
    3. ~/.config/chatwoot-cli
    """
    global _config_dir
    if _config_dir is not None:
        return _config_dir

    env_dir = os.getenv("CHATWOOT_CONFIG_DIR")
    if env_dir:
        _config_dir = Path(env_dir).expanduser()
    else:
        base = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
        _config_dir = Path(base) / APP_NAME
    return _config_dir


def get_data_dir() -> Path:
    """
    Writable data directory (logs).

    Priority:
    1. CHATWOOT_DATA_DIR
    2. $XDG_STATE_HOME/chatwoot-cli
    3. ~/.local/state/chatwoot-cli
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir

    env_dir = os.getenv("CHATWOOT_DATA_DIR")
    if env_dir:
        _data_dir = Path(env_dir).expanduser()
    else:
        base = os.getenv("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
        _data_dir = Path(base) / APP_NAME
    return _data_dir


def get_logs_dir() -> Path:
    """Log directory under the data dir (not created here)."""
    return get_data_dir() / "logs"


def get_default_config_file() -> Path:
    return get_config_dir() / "config.yaml"


def get_default_cursor_file(account_id: int) -> Path:
    """Default follow cursor location for an account."""
    return get_config_dir() / "cursors" / f"follow-{account_id}.json"


def reset_cache() -> None:
    """Forget cached directories (tests change env vars between cases)."""
    global _config_dir, _data_dir
    _config_dir = None
    _data_dir = None

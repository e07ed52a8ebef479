"""Default filesystem locations following XDG conventions."""

from __future__ import annotations

import os
from pathlib import Path

APP_DIRECTORY_NAME = "prompt-retro"
CONFIG_PATH_ENV_VAR = "PROMPT_RETRO_CONFIG"


def get_default_config_path() -> Path:
    """Return the config file path, honoring PROMPT_RETRO_CONFIG and XDG_CONFIG_HOME."""
    override = os.environ.get(CONFIG_PATH_ENV_VAR)
    if override:
        return Path(override).expanduser()
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        base_config_dir = Path(xdg_config_home).expanduser()
    else:
        base_config_dir = Path("~/.config").expanduser()
    return base_config_dir / APP_DIRECTORY_NAME / "config.json"


def get_default_data_dir() -> Path:
    """Return the default data directory following XDG data directory conventions."""
    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    if xdg_data_home:
        base_data_dir = Path(xdg_data_home).expanduser()
    else:
        base_data_dir = Path("~/.local/share").expanduser()
    return base_data_dir / APP_DIRECTORY_NAME

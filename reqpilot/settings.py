"""Settings loader.

Reads application settings from a TOML file into AppSettings. The shipped
defaults live in reqpilot/config/defaults.toml; REQPILOT_SETTINGS points
at an alternative file.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from reqpilot.schemas.settings import AppSettings

logger = logging.getLogger(__name__)

# Default config directory relative to the reqpilot package
_CONFIG_DIR = Path(__file__).parent / "config"

SETTINGS_ENV = "REQPILOT_SETTINGS"


def load_settings(config_path: Path | None = None) -> AppSettings:
    """Load application settings from a TOML file.

    Args:
        config_path: Path to a settings TOML. Defaults to $REQPILOT_SETTINGS,
            then reqpilot/config/defaults.toml.

    Returns:
        AppSettings populated from the file; missing sections use defaults.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the TOML content does not validate.
    """
    env_path = os.environ.get(SETTINGS_ENV, "")
    path = config_path or (Path(env_path) if env_path else _CONFIG_DIR / "defaults.toml")
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    try:
        settings = AppSettings.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid settings in {path}: {e}") from e

    logger.debug("Loaded settings from %s", path)
    return settings

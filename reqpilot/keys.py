"""Secret management for reqpilot.

The encryption secret for stored API keys is read from the environment,
loaded with this priority:
  1. Environment variables (highest, already set in shell)
  2. ~/.reqpilot/keys.env
  3. .env in current directory
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from reqpilot.errors import ConfigurationError

logger = logging.getLogger(__name__)

REQPILOT_HOME = Path.home() / ".reqpilot"
KEYS_FILE = REQPILOT_HOME / "keys.env"

ENCRYPTION_KEY_ENV = "REQPILOT_ENCRYPTION_KEY"


def load_keys_env() -> None:
    """Load ~/.reqpilot/keys.env and ./.env into os.environ.

    Existing env vars are not overwritten, and earlier files win.
    """
    for env_file in (KEYS_FILE, Path.cwd() / ".env"):
        if env_file.is_file():
            _load_env_file(env_file)


def _load_env_file(path: Path) -> None:
    """Parse a simple KEY=VALUE .env file and set vars that aren't already set."""
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key and not os.environ.get(key):
                os.environ[key] = value
                logger.debug("Loaded %s from %s", key, path)
    except OSError:
        logger.debug("Could not read %s", path)


def get_encryption_key() -> str:
    """Return the secret used to encrypt stored API keys.

    Raises:
        ConfigurationError: The secret is not set.
    """
    secret = os.environ.get(ENCRYPTION_KEY_ENV, "")
    if not secret:
        raise ConfigurationError(
            f"{ENCRYPTION_KEY_ENV} is not set; stored API keys cannot be decrypted"
        )
    return secret

"""Process-wide cache of the default model connection.

The default configuration is read from the store and its API key
decrypted once, then reused until invalidate() is called (for example
after the default is changed). The cache is an injectable object rather
than module state so tests and multiple apps can hold their own.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from reqpilot.errors import ConfigurationError
from reqpilot.schemas.conversation import ModelConnection
from reqpilot.schemas.model_config import ModelConfigRecord
from reqpilot.schemas.settings import ProviderSettings

logger = logging.getLogger(__name__)


class DefaultConfigSource(Protocol):
    async def get_default_config(self) -> ModelConfigRecord | None: ...


class DefaultConfigCache:
    """Memoised resolution of the default ModelConnection.

    Args:
        store: Anything exposing ``get_default_config()``.
        decrypt: Turns a stored encrypted API key into plaintext.
        provider: Defaults applied to every connection (max_tokens).
    """

    def __init__(
        self,
        store: DefaultConfigSource,
        decrypt: Callable[[str], str],
        provider: ProviderSettings | None = None,
    ) -> None:
        self._store = store
        self._decrypt = decrypt
        self._provider = provider or ProviderSettings()
        self._cached: ModelConnection | None = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> ModelConnection | None:
        return self._cached

    async def get(self) -> ModelConnection:
        """Return the default connection, loading it on first use.

        Raises:
            ConfigurationError: No default is stored, or its key cannot
                be decrypted.
        """
        if self._cached is not None:
            return self._cached
        async with self._lock:
            if self._cached is None:
                self._cached = await self._load()
        return self._cached

    def invalidate(self) -> None:
        if self._cached is not None:
            logger.info("Default model configuration cache invalidated")
        self._cached = None

    async def _load(self) -> ModelConnection:
        record = await self._store.get_default_config()
        if record is None:
            raise ConfigurationError("No default model configuration found")

        try:
            api_key = self._decrypt(record.api_key_encrypted)
        except ConfigurationError:
            raise
        except ValueError as e:
            raise ConfigurationError(
                f"API key for model configuration '{record.name}' could not be decrypted"
            ) from e

        logger.info("Loaded default model configuration '%s' (%s)", record.name, record.model)
        return ModelConnection(
            model=record.model,
            base_url=record.base_url,
            api_key=api_key,
            temperature=record.temperature,
            max_tokens=self._provider.max_tokens,
        )

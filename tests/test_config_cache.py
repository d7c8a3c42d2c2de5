"""Tests for reqpilot.orchestration.config_cache."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from reqpilot.errors import ConfigurationError
from reqpilot.orchestration.config_cache import DefaultConfigCache
from reqpilot.schemas.model_config import ModelConfigRecord
from reqpilot.schemas.settings import ProviderSettings


def _make_record(**overrides) -> ModelConfigRecord:
    defaults = {
        "id": "cfg1",
        "name": "Primary",
        "model": "openai/gpt-4o-mini",
        "base_url": "https://api.example.com/v1",
        "api_key_encrypted": "enc:sk-live",
        "temperature": 0.2,
        "is_default": True,
    }
    defaults.update(overrides)
    return ModelConfigRecord(**defaults)


def _decrypt(token: str) -> str:
    if not token.startswith("enc:"):
        raise ValueError("bad token")
    return token[4:]


def _make_store(record: ModelConfigRecord | None) -> AsyncMock:
    store = AsyncMock()
    store.get_default_config.return_value = record
    return store


class TestDefaultConfigCache:
    @pytest.mark.asyncio
    async def test_resolves_connection(self):
        cache = DefaultConfigCache(_make_store(_make_record()), _decrypt, ProviderSettings(max_tokens=2048))
        connection = await cache.get()
        assert connection.model == "openai/gpt-4o-mini"
        assert connection.api_key == "sk-live"
        assert connection.base_url == "https://api.example.com/v1"
        assert connection.temperature == 0.2
        assert connection.max_tokens == 2048

    @pytest.mark.asyncio
    async def test_memoised(self):
        store = _make_store(_make_record())
        cache = DefaultConfigCache(store, _decrypt)
        first = await cache.get()
        second = await cache.get()
        assert first is second
        assert store.get_default_config.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_use_loads_once(self):
        store = _make_store(_make_record())
        cache = DefaultConfigCache(store, _decrypt)
        results = await asyncio.gather(*(cache.get() for _ in range(5)))
        assert all(r is results[0] for r in results)
        assert store.get_default_config.await_count == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self):
        store = _make_store(_make_record())
        cache = DefaultConfigCache(store, _decrypt)
        await cache.get()
        cache.invalidate()
        assert cache.cached is None
        store.get_default_config.return_value = _make_record(model="anthropic/claude-sonnet-4-5")
        assert (await cache.get()).model == "anthropic/claude-sonnet-4-5"

    @pytest.mark.asyncio
    async def test_missing_default(self):
        cache = DefaultConfigCache(_make_store(None), _decrypt)
        with pytest.raises(ConfigurationError, match="No default model configuration"):
            await cache.get()

    @pytest.mark.asyncio
    async def test_undecryptable_key(self):
        cache = DefaultConfigCache(_make_store(_make_record(api_key_encrypted="garbage")), _decrypt)
        with pytest.raises(ConfigurationError, match="could not be decrypted"):
            await cache.get()

    @pytest.mark.asyncio
    async def test_missing_secret_propagates(self):
        def _no_secret(token: str) -> str:
            raise ConfigurationError("REQPILOT_ENCRYPTION_KEY is not set")

        cache = DefaultConfigCache(_make_store(_make_record()), _no_secret)
        with pytest.raises(ConfigurationError, match="REQPILOT_ENCRYPTION_KEY"):
            await cache.get()

    @pytest.mark.asyncio
    async def test_failure_not_cached(self):
        store = _make_store(None)
        cache = DefaultConfigCache(store, _decrypt)
        with pytest.raises(ConfigurationError):
            await cache.get()
        store.get_default_config.return_value = _make_record()
        assert (await cache.get()).api_key == "sk-live"

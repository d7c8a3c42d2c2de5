"""Store for model configurations.

The first configuration added becomes the default; at most one row is
marked default at any time.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

import aiosqlite

from reqpilot.schemas.model_config import ModelConfigRecord, ModelConfigSummary

logger = logging.getLogger(__name__)


class ConfigStore:
    """Persistent model-configuration store backed by SQLite."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def add_config(
        self,
        *,
        name: str,
        model: str,
        api_key_encrypted: str = "",
        base_url: str = "",
        temperature: float = 0.7,
        make_default: bool = False,
    ) -> ModelConfigRecord:
        """Insert a configuration, promoting it to default if requested
        or if it is the first one."""
        async with self._db.execute("SELECT COUNT(*) FROM ai_model_configs") as cursor:
            (count,) = await cursor.fetchone()

        record = ModelConfigRecord(
            id=uuid.uuid4().hex,
            name=name,
            model=model,
            base_url=base_url,
            api_key_encrypted=api_key_encrypted,
            temperature=temperature,
            is_default=make_default or count == 0,
        )
        if record.is_default:
            await self._db.execute("UPDATE ai_model_configs SET is_default = 0")
        await self._db.execute(
            """
            INSERT INTO ai_model_configs
                (id, name, model, base_url, api_key_encrypted, temperature,
                 is_default, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.name,
                record.model,
                record.base_url,
                record.api_key_encrypted,
                record.temperature,
                int(record.is_default),
                record.created_at.isoformat(),
            ),
        )
        await self._db.commit()
        logger.info("Added model config %s (%s)", record.name, record.model)
        return record

    async def get_config(self, config_id: str) -> ModelConfigRecord | None:
        async with self._db.execute(
            "SELECT * FROM ai_model_configs WHERE id = ?", (config_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def get_default_config(self) -> ModelConfigRecord | None:
        async with self._db.execute(
            "SELECT * FROM ai_model_configs WHERE is_default = 1 LIMIT 1",
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def list_configs(self) -> list[ModelConfigSummary]:
        async with self._db.execute(
            "SELECT * FROM ai_model_configs ORDER BY created_at",
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_summary(row) for row in rows]

    async def set_default(self, config_id: str) -> bool:
        """Mark one configuration as default. Returns False if unknown."""
        if await self.get_config(config_id) is None:
            return False
        await self._db.execute("UPDATE ai_model_configs SET is_default = 0")
        await self._db.execute(
            "UPDATE ai_model_configs SET is_default = 1 WHERE id = ?", (config_id,),
        )
        await self._db.commit()
        logger.info("Default model config is now %s", config_id)
        return True

    async def delete_config(self, config_id: str) -> bool:
        """Delete a configuration.

        If the default is deleted, the oldest remaining config is promoted.
        """
        record = await self.get_config(config_id)
        if record is None:
            return False
        await self._db.execute("DELETE FROM ai_model_configs WHERE id = ?", (config_id,))
        if record.is_default:
            await self._db.execute(
                """
                UPDATE ai_model_configs SET is_default = 1
                WHERE id = (SELECT id FROM ai_model_configs ORDER BY created_at LIMIT 1)
                """,
            )
        await self._db.commit()
        logger.info("Deleted model config %s", config_id)
        return True


def _row_to_record(row: aiosqlite.Row) -> ModelConfigRecord:
    return ModelConfigRecord(
        id=row["id"],
        name=row["name"],
        model=row["model"],
        base_url=row["base_url"],
        api_key_encrypted=row["api_key_encrypted"],
        temperature=row["temperature"],
        is_default=bool(row["is_default"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_summary(row: aiosqlite.Row) -> ModelConfigSummary:
    return ModelConfigSummary(
        id=row["id"],
        name=row["name"],
        model=row["model"],
        base_url=row["base_url"],
        temperature=row["temperature"],
        is_default=bool(row["is_default"]),
        has_api_key=bool(row["api_key_encrypted"]),
    )

"""Stored model configuration records.

API keys are stored encrypted (see reqpilot.crypto) and only decrypted
when a ModelConnection is resolved for a request.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ModelConfigRecord(BaseModel):
    """One row of the ai_model_configs table."""

    id: str = Field(description="Unique config identifier (UUID hex)")
    name: str = Field(description="Display name")
    model: str = Field(description="LiteLLM model identifier")
    base_url: str = Field(default="", description="Custom API base URL")
    api_key_encrypted: str = Field(default="", repr=False, description="Encrypted API key")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    is_default: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.now)


class ModelConfigSummary(BaseModel):
    """Config metadata safe to display (no key material)."""

    id: str
    name: str
    model: str
    base_url: str = ""
    temperature: float = 0.7
    is_default: bool = False
    has_api_key: bool = False


class ModelConfigCreate(BaseModel):
    """Body of POST /api/ai-config; the API key arrives in plaintext."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    model: str
    api_key: str = Field(default="", alias="apiKey", repr=False)
    base_url: str = Field(default="", alias="baseURL")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    is_default: bool = Field(default=False, alias="isDefault")

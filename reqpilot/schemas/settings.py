"""Application settings schemas.

Loaded from config/defaults.toml (or the file named by REQPILOT_SETTINGS)
by reqpilot.settings.load_settings().
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ServerSettings(BaseModel):
    """HTTP server bind address."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, gt=0, lt=65536)


class DatabaseSettings(BaseModel):
    """Location of the configuration database."""

    path: str = Field(default="~/.reqpilot/reqpilot.db", description="SQLite file path")


class StreamSettings(BaseModel):
    """Client-side stream aggregation policy."""

    max_consecutive_failures: int | None = Field(
        default=None,
        ge=1,
        description="Fail the stream after this many consecutive unparseable lines "
        "(unset = never fail on parse noise)",
    )
    timeout: float = Field(default=120.0, gt=0, description="HTTP read timeout in seconds")


class ToolSettings(BaseModel):
    """Tool-server launch policy and session lifetimes."""

    allowed_commands: list[str] = Field(
        default_factory=lambda: ["node", "npx", "python", "python3", "uv", "uvx"]
    )
    npm_allowlist: list[str] = Field(
        default_factory=list, description="Packages allowed for 'npx -y'; '*' allows all"
    )
    session_idle_seconds: int = Field(default=30 * 60, gt=0)
    session_lifetime_seconds: int = Field(default=2 * 60 * 60, gt=0)
    sweep_interval_seconds: int = Field(default=5 * 60, gt=0)


class ProviderSettings(BaseModel):
    """Defaults applied to every model call."""

    max_tokens: int = Field(default=1000, gt=0)
    timeout: int = Field(default=120, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class AppSettings(BaseModel):
    """Top-level settings for the API server and CLI."""

    server: ServerSettings = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)

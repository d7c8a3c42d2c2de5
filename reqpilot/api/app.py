"""FastAPI application.

Routes:
    POST   /api/ai/stream                  NDJSON stream from the default model
    POST   /api/mcp/conversation           one orchestrated conversation turn
    POST   /api/mcp/session                open a tool-server session
    GET    /api/mcp/session                list live sessions
    DELETE /api/mcp/session/{session_id}   close a session
    GET    /api/ai-config                  list stored model configs
    POST   /api/ai-config                  add a model config
    POST   /api/ai-config/{id}/default     make a config the default
    DELETE /api/ai-config/{id}             delete a config
    POST   /api/ai-config/default/invalidate
    GET    /health

Errors are returned as ``{"error": message}`` bodies.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from reqpilot import __version__
from reqpilot.crypto import decrypt, encrypt
from reqpilot.errors import ConfigurationError, ToolConfigError, ToolError
from reqpilot.keys import get_encryption_key, load_keys_env
from reqpilot.orchestration.config_cache import DefaultConfigCache
from reqpilot.orchestration.conversation import ConversationOrchestrator, ProviderFactory
from reqpilot.persistence.config_store import ConfigStore
from reqpilot.persistence.database import close_db, init_db
from reqpilot.providers.litellm_provider import LiteLLMProvider
from reqpilot.schemas.conversation import (
    ChatMessage,
    ConversationRequest,
    ModelConnection,
    SessionRequest,
)
from reqpilot.schemas.model_config import ModelConfigCreate
from reqpilot.schemas.settings import AppSettings
from reqpilot.schemas.streaming import StreamRequest
from reqpilot.settings import load_settings
from reqpilot.streaming.relay import NDJSON_MEDIA_TYPE, relay_ndjson
from reqpilot.tools.connection import McpToolServer, ToolServer
from reqpilot.tools.registry import SessionRegistry

logger = logging.getLogger(__name__)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _decrypt_stored(token: str) -> str:
    return decrypt(token, get_encryption_key())


async def _sweep_loop(orchestrator: ConversationOrchestrator, tool_server: ToolServer, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await orchestrator.registry.sweep(tool_server)
        except Exception:
            logger.exception("Session sweep failed")


def create_app(
    settings: AppSettings | None = None,
    *,
    store: ConfigStore | None = None,
    tool_server: ToolServer | None = None,
    provider_factory: ProviderFactory | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators not supplied are built from settings when the app
    starts: a SQLite-backed ConfigStore, an McpToolServer, and LiteLLM
    providers.
    """
    if settings is None:
        load_keys_env()
        settings = load_settings()
    tool_server = tool_server or McpToolServer()

    if provider_factory is None:
        timeout = settings.provider.timeout

        def provider_factory(connection: ModelConnection) -> LiteLLMProvider:
            return LiteLLMProvider(connection, timeout=timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = None
        config_store = store
        if config_store is None:
            db = await init_db(settings.database.path)
            config_store = ConfigStore(db)

        cache = DefaultConfigCache(config_store, _decrypt_stored, settings.provider)
        registry = SessionRegistry(
            settings.tools.session_idle_seconds, settings.tools.session_lifetime_seconds,
        )
        orchestrator = ConversationOrchestrator(
            cache, tool_server, registry, provider_factory, settings.tools,
        )
        app.state.store = config_store
        app.state.config_cache = cache
        app.state.orchestrator = orchestrator

        sweeper = asyncio.create_task(
            _sweep_loop(orchestrator, tool_server, settings.tools.sweep_interval_seconds),
        )
        logger.info("reqpilot API %s started", __version__)
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            await tool_server.close_all()
            if db is not None:
                await close_db(db)

    app = FastAPI(title="reqpilot", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("Configuration error on %s: %s", request.url.path, exc)
        return _error(str(exc), 500)

    # ── Streaming ────────────────────────────────────────────────

    @app.post("/api/ai/stream", response_model=None)
    async def stream(body: StreamRequest, request: Request) -> StreamingResponse | JSONResponse:
        """Relay the default model's output as newline-delimited JSON."""
        if not body.prompt:
            return _error("Missing required parameter: prompt", 400)

        connection = await request.app.state.config_cache.get()
        provider = provider_factory(connection)
        messages: list[dict[str, Any]] = []
        if body.system:
            messages.append(ChatMessage(role="system", content=body.system).to_wire())
        messages.append(ChatMessage(role="user", content=body.prompt).to_wire())

        return StreamingResponse(
            relay_ndjson(provider.stream(messages)),
            media_type=NDJSON_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache"},
        )

    # ── Conversation ─────────────────────────────────────────────

    @app.post("/api/mcp/conversation")
    async def conversation(body: ConversationRequest, request: Request) -> JSONResponse:
        if not body.user_message:
            return _error("Missing required parameter: userMessage", 400)

        orchestrator: ConversationOrchestrator = request.app.state.orchestrator
        try:
            response = await orchestrator.handle(body)
        except (RuntimeError, TimeoutError) as e:
            logger.error("Conversation turn failed: %s", e)
            return _error(str(e), 500)
        return JSONResponse(response.model_dump(by_alias=True, exclude_none=True))

    @app.post("/api/mcp/session")
    async def open_session(body: SessionRequest, request: Request) -> JSONResponse:
        orchestrator: ConversationOrchestrator = request.app.state.orchestrator
        try:
            entry = await orchestrator.open_session(body.member_info)
        except ToolConfigError as e:
            return _error(str(e), 400)
        except ToolError as e:
            return _error(str(e), 502)
        return JSONResponse({
            "sessionId": entry.session_id,
            "tools": [tool.model_dump() for tool in entry.tools],
        })

    @app.get("/api/mcp/session")
    async def list_sessions(request: Request) -> list[dict]:
        registry: SessionRegistry = request.app.state.orchestrator.registry
        return [entry.to_summary() for entry in registry.entries()]

    @app.delete("/api/mcp/session/{session_id}")
    async def close_session(session_id: str, request: Request) -> JSONResponse:
        orchestrator: ConversationOrchestrator = request.app.state.orchestrator
        if not await orchestrator.close_session(session_id):
            return _error(f"Session {session_id} does not exist or has expired", 404)
        return JSONResponse({"success": True})

    # ── Model configuration ──────────────────────────────────────

    @app.get("/api/ai-config")
    async def list_configs(request: Request) -> list[dict]:
        configs = await request.app.state.store.list_configs()
        return [c.model_dump() for c in configs]

    @app.post("/api/ai-config")
    async def add_config(body: ModelConfigCreate, request: Request) -> JSONResponse:
        encrypted = encrypt(body.api_key, get_encryption_key()) if body.api_key else ""
        record = await request.app.state.store.add_config(
            name=body.name,
            model=body.model,
            api_key_encrypted=encrypted,
            base_url=body.base_url,
            temperature=body.temperature,
            make_default=body.is_default,
        )
        if record.is_default:
            request.app.state.config_cache.invalidate()
        return JSONResponse({"id": record.id, "isDefault": record.is_default}, status_code=201)

    @app.post("/api/ai-config/{config_id}/default")
    async def set_default(config_id: str, request: Request) -> JSONResponse:
        if not await request.app.state.store.set_default(config_id):
            return _error(f"Model configuration {config_id} not found", 404)
        request.app.state.config_cache.invalidate()
        return JSONResponse({"success": True})

    @app.delete("/api/ai-config/{config_id}")
    async def delete_config(config_id: str, request: Request) -> JSONResponse:
        if not await request.app.state.store.delete_config(config_id):
            return _error(f"Model configuration {config_id} not found", 404)
        request.app.state.config_cache.invalidate()
        return JSONResponse({"success": True})

    @app.post("/api/ai-config/default/invalidate")
    async def invalidate_default(request: Request) -> JSONResponse:
        request.app.state.config_cache.invalidate()
        return JSONResponse({"success": True})

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "version": __version__}

    return app

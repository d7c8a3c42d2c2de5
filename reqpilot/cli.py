"""reqpilot CLI: Typer + Rich terminal interface.

Commands: serve, stream, config (add/list/default/delete).
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from reqpilot import __version__
from reqpilot.crypto import encrypt
from reqpilot.errors import ConfigurationError, StreamError
from reqpilot.keys import get_encryption_key, load_keys_env
from reqpilot.persistence.config_store import ConfigStore
from reqpilot.persistence.database import close_db, init_db
from reqpilot.schemas.settings import AppSettings
from reqpilot.schemas.streaming import StreamChunk
from reqpilot.settings import load_settings
from reqpilot.streaming.client import StreamClient

# Load secrets from ~/.reqpilot/keys.env and .env on startup
load_keys_env()

console = Console()

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="reqpilot",
    help="Streamed LLM text aggregation and tool-calling conversation server.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    name="config",
    help="Manage stored model configurations.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"reqpilot {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """reqpilot: stream aggregation and tool-calling conversations."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


# ── Helpers ──────────────────────────────────────────────────────


def _load_settings(path: Path | None = None) -> AppSettings:
    """Load settings, exit on error."""
    try:
        return load_settings(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading settings:[/red] {e}")
        raise typer.Exit(1) from None


async def _with_store(settings: AppSettings, action):
    db = await init_db(settings.database.path)
    try:
        return await action(ConfigStore(db))
    finally:
        await close_db(db)


# ── serve ───────────────────────────────────────────────────────


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (default from settings)"),
    port: int = typer.Option(None, "--port", "-p", help="Port (default from settings)"),
    settings_path: Path = typer.Option(None, "--settings", help="Settings TOML file"),
) -> None:
    """Run the HTTP API server."""
    import uvicorn

    from reqpilot.api.app import create_app

    settings = _load_settings(settings_path)
    bind_host = host or settings.server.host
    bind_port = port or settings.server.port

    console.print(Panel(
        f"[bold]reqpilot {__version__}[/bold]\n"
        f"Listening on http://{bind_host}:{bind_port}",
        border_style="cyan",
    ))
    uvicorn.run(create_app(settings), host=bind_host, port=bind_port, log_level="warning")


# ── stream ──────────────────────────────────────────────────────


@app.command()
def stream(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    url: str = typer.Option("http://127.0.0.1:8000", "--url", help="Server base URL"),
    path: str = typer.Option("/api/ai/stream", "--path", help="Streaming endpoint path"),
    system: str = typer.Option("", "--system", help="Optional system prompt"),
    show_reasoning: bool = typer.Option(
        False, "--reasoning", help="Also show the reasoning field",
    ),
    settings_path: Path = typer.Option(None, "--settings", help="Settings TOML file"),
) -> None:
    """Stream a reply and render it live as it accumulates."""
    settings = _load_settings(settings_path)
    fields = ("content", "reasoning") if show_reasoning else ("content",)
    latest: dict[str, str] = {field: "" for field in fields}

    def _render() -> Text:
        text = Text()
        if show_reasoning and latest["reasoning"]:
            text.append(latest["reasoning"] + "\n\n", style="dim italic")
        text.append(latest["content"])
        return text

    async def _run() -> None:
        with Live(_render(), console=console, refresh_per_second=12) as live:

            def on_chunk(chunk: StreamChunk) -> None:
                latest[chunk.field] = chunk.accumulated
                live.update(_render())

            async with StreamClient(
                url,
                timeout=settings.stream.timeout,
                max_consecutive_failures=settings.stream.max_consecutive_failures,
            ) as client:
                await client.stream_fields(
                    path,
                    {"prompt": prompt, "system": system},
                    fields,
                    on_chunk=on_chunk,
                )

    try:
        asyncio.run(_run())
    except StreamError as e:
        console.print(f"[red]Stream failed:[/red] {e}")
        raise typer.Exit(1) from None


# ── config ──────────────────────────────────────────────────────


@config_app.command("add")
def config_add(
    name: str = typer.Argument(..., help="Display name"),
    model: str = typer.Option(..., "--model", "-m", help="LiteLLM model identifier"),
    api_key: str = typer.Option(
        "", "--api-key", help="API key (stored encrypted)", prompt=True, hide_input=True,
    ),
    base_url: str = typer.Option("", "--base-url", help="Custom API base URL"),
    temperature: float = typer.Option(0.7, "--temperature", "-t"),
    default: bool = typer.Option(False, "--default", help="Make this the default"),
) -> None:
    """Add a model configuration."""
    settings = _load_settings()
    try:
        encrypted = encrypt(api_key, get_encryption_key()) if api_key else ""
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None

    record = asyncio.run(_with_store(settings, lambda store: store.add_config(
        name=name,
        model=model,
        api_key_encrypted=encrypted,
        base_url=base_url,
        temperature=temperature,
        make_default=default,
    )))
    suffix = " [green](default)[/green]" if record.is_default else ""
    console.print(f"Added [cyan]{record.name}[/cyan] as {record.id[:8]}{suffix}")


@config_app.command("list")
def config_list() -> None:
    """Show stored model configurations."""
    settings = _load_settings()
    configs = asyncio.run(_with_store(settings, lambda store: store.list_configs()))

    if not configs:
        console.print("[dim]No model configurations stored.[/dim]")
        return

    table = Table(title="Model Configurations")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Model", style="dim")
    table.add_column("Base URL", style="dim")
    table.add_column("Temp", justify="right")
    table.add_column("Key")
    table.add_column("Default")

    for c in configs:
        table.add_row(
            c.id[:8],
            c.name,
            c.model,
            c.base_url or "-",
            f"{c.temperature:.2f}",
            Text("set", style="green") if c.has_api_key else Text("none", style="red"),
            Text("✓", style="green") if c.is_default else "",
        )

    console.print(table)


async def _resolve_id(store: ConfigStore, prefix: str) -> str | None:
    matches = [c.id for c in await store.list_configs() if c.id.startswith(prefix)]
    return matches[0] if len(matches) == 1 else None


@config_app.command("default")
def config_default(
    config_id: str = typer.Argument(..., help="Config ID or unique prefix"),
) -> None:
    """Make a configuration the default."""
    settings = _load_settings()

    async def _set(store: ConfigStore) -> bool:
        full_id = await _resolve_id(store, config_id)
        return bool(full_id) and await store.set_default(full_id)

    if not asyncio.run(_with_store(settings, _set)):
        console.print(f"[red]No unique configuration matches '{config_id}'[/red]")
        raise typer.Exit(1)
    console.print(f"Default configuration set to [cyan]{config_id}[/cyan]")


@config_app.command("delete")
def config_delete(
    config_id: str = typer.Argument(..., help="Config ID or unique prefix"),
) -> None:
    """Delete a configuration."""
    settings = _load_settings()

    async def _delete(store: ConfigStore) -> bool:
        full_id = await _resolve_id(store, config_id)
        return bool(full_id) and await store.delete_config(full_id)

    if not asyncio.run(_with_store(settings, _delete)):
        console.print(f"[red]No unique configuration matches '{config_id}'[/red]")
        raise typer.Exit(1)
    console.print(f"Deleted configuration [cyan]{config_id}[/cyan]")

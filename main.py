"""
LLM Gateway - Main Entry Point

CLI for sending requests through the gateway pipeline and for inspecting
the configured backends and cache.

    python main.py generate "Explain TCP slow start" --backend openai
    python main.py stream "Write a haiku" --param temperature=0.9
    python main.py backends
    python main.py cache-stats
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import typer
import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gateway.config.loader import (
    build_cache,
    build_pipeline,
    find_config_path,
    load_gateway_config,
)
from gateway.config.schema import GatewayConfig
from gateway.contracts.models import FinishReason, GenerateResponse, PartialResponse, create_request
from gateway.exceptions import GatewayError
from gateway.observability.logging_config import configure_logging

root_env = Path(__file__).parent / ".env"
if root_env.exists():
    load_dotenv(root_env, override=True)
else:
    load_dotenv(override=True)

app = typer.Typer(
    name="gateway",
    help="LLM Gateway - canonical requests, cached responses, any backend",
)
console = Console()
logger = logging.getLogger("gateway.cli")

ConfigOption = typer.Option(None, "--config", "-c", help="Path to gateway.yaml")


def _setup_logging(verbose: bool) -> None:
    configure_logging(level=logging.DEBUG if verbose else logging.WARNING)


def _get_config(config_path: Optional[Path]) -> GatewayConfig:
    """Load the gateway config, with a friendly error on failure."""
    try:
        return load_gateway_config(config_path)
    except FileNotFoundError:
        path = find_config_path(config_path)
        console.print(Panel(
            f"[red]Config not found:[/] [bold]{path}[/]\n\n"
            f"Create gateway.yaml or point GATEWAY_CONFIG at one:\n"
            f"  [dim]backends:\n"
            f"    openai: {{type: openai}}[/]",
            title="⚠ Configuration Error",
            border_style="red",
        ))
        raise typer.Exit(code=1)
    except GatewayError as e:
        console.print(Panel(f"[red]{e}[/]", title="⚠ Configuration Error", border_style="red"))
        raise typer.Exit(code=1)


def _parse_params(raw: list[str]) -> dict[str, Any]:
    """Turn ["temperature=0.2", "stop=[END]"] into typed values via YAML scalars."""
    params: dict[str, Any] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{item}'", param_hint="--param")
        params[key.strip()] = yaml.safe_load(value)
    return params


def _build_request(
    prompt: str,
    system: Optional[str],
    backend: Optional[str],
    model: Optional[str],
    params: list[str],
):
    parameters = _parse_params(params)
    if model:
        parameters["model"] = model
    return create_request(
        prompt=prompt,
        system_prompt=system,
        route_hint=backend,
        parameters=parameters,
    )


def _close_cache(cache: Any) -> None:
    close = getattr(cache, "close", None)
    if close is not None:
        close()


def _render_response(response: GenerateResponse, *, show_text: bool = True) -> None:
    failed = response.finish_reason == FinishReason.ERROR.value
    style = "red" if failed else "green"

    if show_text:
        console.print(Panel(
            response.output_text or "[dim](no text)[/]",
            title=f"Response ({response.metadata.get('backend', '?')})",
            border_style=style,
        ))

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("finish_reason", f"[{style}]{response.finish_reason}[/{style}]")
    table.add_row("model", str(response.metadata.get("model", "")))
    table.add_row("routed_to", str(response.metadata.get("routed_to", "")))
    table.add_row("cache", str(response.metadata.get("cache_status", "n/a")))
    table.add_row("latency", f"{response.latency_ms} ms")
    table.add_row(
        "tokens",
        f"{response.usage.prompt_tokens} in / {response.usage.completion_tokens} out",
    )
    if response.tool_calls:
        for call in response.tool_calls:
            table.add_row("tool_call", f"{call.name}({json.dumps(call.arguments)})")
    if failed:
        table.add_row("error", f"[red]{response.metadata.get('error', '')}[/]")
    console.print(table)


# =========================================================================
# Commands
# =========================================================================


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Prompt text"),
    system: Optional[str] = typer.Option(None, "--system", "-s", help="System prompt"),
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="Backend id (route hint)"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model id override"),
    param: list[str] = typer.Option([], "--param", "-p", help="Extra parameter as key=value"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw response JSON"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Send one request through the pipeline."""
    _setup_logging(verbose)

    async def _run():
        config = _get_config(config_path)
        request = _build_request(prompt, system, backend, model, param)
        pipeline = build_pipeline(config)
        try:
            return await pipeline.generate(request)
        finally:
            _close_cache(pipeline.cache)

    try:
        response = asyncio.run(_run())
    except GatewayError as e:
        console.print(f"[red]Request failed:[/] {e}")
        if e.context:
            console.print(f"[dim]{json.dumps(e.context, default=str)}[/]")
        raise typer.Exit(1)

    if as_json:
        console.print_json(response.model_dump_json())
    else:
        _render_response(response)

    if response.finish_reason == FinishReason.ERROR.value:
        raise typer.Exit(2)


@app.command()
def stream(
    prompt: str = typer.Argument(..., help="Prompt text"),
    system: Optional[str] = typer.Option(None, "--system", "-s", help="System prompt"),
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="Backend id (route hint)"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model id override"),
    param: list[str] = typer.Option([], "--param", "-p", help="Extra parameter as key=value"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Stream a response, printing text as it arrives. Streams skip the cache."""
    from gateway.backends.streaming import collect_stream

    _setup_logging(verbose)

    async def _echo(partials: AsyncIterator[PartialResponse]) -> AsyncIterator[PartialResponse]:
        printed = 0
        async for partial in partials:
            console.print(partial.output_text[printed:], end="", markup=False, highlight=False)
            printed = len(partial.output_text)
            yield partial
        console.print()

    async def _run():
        config = _get_config(config_path)
        request = _build_request(prompt, system, backend, model, param)
        pipeline = build_pipeline(config)
        try:
            return await collect_stream(_echo(pipeline.generate_stream(request)), request)
        finally:
            _close_cache(pipeline.cache)

    try:
        response = asyncio.run(_run())
    except GatewayError as e:
        console.print(f"\n[red]Stream failed:[/] {e}")
        raise typer.Exit(1)

    _render_response(response, show_text=False)
    if response.finish_reason == FinishReason.ERROR.value:
        raise typer.Exit(2)


@app.command()
def backends(config_path: Optional[Path] = ConfigOption):
    """List configured backends."""
    config = _get_config(config_path)

    table = Table(title="Configured Backends")
    table.add_column("Backend ID", style="cyan")
    table.add_column("Type", style="white")
    table.add_column("Default Model", style="green")
    table.add_column("Default", style="yellow")

    for backend_id, entry in config.backends.items():
        table.add_row(
            backend_id,
            entry.type.value,
            str(entry.config.get("default_model", "(adapter default)")),
            "✓" if backend_id == config.default_backend else "",
        )

    console.print(table)
    console.print(
        f"Cache: [cyan]{config.cache.type.value}[/]"
        + (f" (ttl {config.cache.ttl:g}s)" if config.cache.ttl else "")
    )


@app.command()
def validate(config_path: Optional[Path] = ConfigOption):
    """Validate gateway.yaml and check API keys for every backend."""
    from gateway.config.loader import build_backends

    config = _get_config(config_path)
    try:
        built = build_backends(config)
    except GatewayError as e:
        console.print(f"[red]Validation failed:[/] {e}")
        raise typer.Exit(1)

    console.print(Panel(
        f"[green]Configuration valid![/]\n\n"
        f"Backends: {', '.join(built)}\n"
        f"Default backend: {config.default_backend}\n"
        f"Cache: {config.cache.type.value}\n"
        f"Default parameters: {config.default_parameters or 'none'}",
        title=f"Config: {find_config_path(config_path)}",
    ))


@app.command("cache-stats")
def cache_stats(config_path: Optional[Path] = ConfigOption):
    """Show cache counters (only meaningful for persistent caches)."""
    config = _get_config(config_path)
    cache = build_cache(config)
    if cache is None:
        console.print("[yellow]Caching is disabled in this config.[/]")
        return

    try:
        stats = cache.get_stats()
    finally:
        _close_cache(cache)

    table = Table(title=f"Cache ({config.cache.type.value})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    for key, value in stats.to_dict().items():
        table.add_row(key, f"{value:.2%}" if key == "hit_rate" else str(value))
    console.print(table)


@app.command("cache-clear")
def cache_clear(
    config_path: Optional[Path] = ConfigOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Remove every cached response."""
    config = _get_config(config_path)
    cache = build_cache(config)
    if cache is None:
        console.print("[yellow]Caching is disabled in this config.[/]")
        return

    if not yes and not typer.confirm(f"Clear the {config.cache.type.value} cache?"):
        _close_cache(cache)
        raise typer.Exit()

    async def _run():
        try:
            await cache.clear()
        finally:
            _close_cache(cache)

    asyncio.run(_run())
    console.print("[green]Cache cleared.[/]")


if __name__ == "__main__":
    app()

"""
CLI interface for AI Relay.

Provides command-line access to routing, quota tracking, context assembly
and chat.
"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer
from openai import OpenAIError
from rich.console import Console
from rich.table import Table

from ai_relay.config.loader import RelayConfig, default_relay_config, load_relay_config
from ai_relay.config.settings import SettingsStore, YamlSettingsStore
from ai_relay.core.capabilities import Capability, RoutingStrategy
from ai_relay.core.context import ContextAssembler
from ai_relay.core.errors import NoBackendAvailableError, RelayError
from ai_relay.core.pipeline import ChatPipeline
from ai_relay.core.providers import CompletionOptions, ProviderRegistry
from ai_relay.core.quota import QuotaTracker
from ai_relay.core.router import ProviderRouter
from ai_relay.logging_config import configure_logging
from ai_relay.sdk.openai_backend import build_backends
from ai_relay.sdk.workspace import LocalWorkspace
from ai_relay.storage.repository import SelectionRepository, UsageLedger, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# Used for persisted settings when no config file is given
DEFAULT_SETTINGS_PATH = ".ai-relay-settings.yaml"


@dataclass
class Session:
    """Objects shared by the commands of one invocation."""
    config: RelayConfig
    settings: SettingsStore
    registry: ProviderRegistry
    quota: QuotaTracker
    router: ProviderRouter


def _load_config(config_path: Optional[str]) -> RelayConfig:
    if config_path is None:
        return default_relay_config()
    return load_relay_config(config_path)


def _settings_store(config_path: Optional[str]) -> SettingsStore:
    return YamlSettingsStore(config_path or DEFAULT_SETTINGS_PATH)


def _build_session(ctx: typer.Context) -> Session:
    config_path = ctx.obj["config_path"]
    config = _load_config(config_path)
    settings = _settings_store(config_path)

    registry = ProviderRegistry(lambda: build_backends(config))
    quota = QuotaTracker(registry, UsageLedger(config.ledger_path), settings)
    router = ProviderRouter(
        registry,
        quota,
        settings,
        selection_repository=SelectionRepository(config.ledger_path)
    )
    return Session(config=config, settings=settings, registry=registry, quota=quota, router=router)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _print_no_backend(capability: Capability, config: RelayConfig) -> None:
    console.print(f"[bold yellow]No configured backend supports '{capability.value}'[/]")
    console.print("\nSet an API key for at least one backend, for example:")
    for backend in config.backends:
        if capability in backend.capabilities:
            console.print(f"  export {backend.api_key_env}=...   # {backend.name}")


def _workspace(
    file: Optional[str],
    start: int,
    end: Optional[int],
    open_files: Optional[List[str]],
) -> LocalWorkspace:
    return LocalWorkspace(
        active_file=file,
        start_line=start,
        end_line=end,
        open_files=open_files or []
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="AI_RELAY_CONFIG",
        help="Path to relay YAML configuration"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logs"
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit logs as JSON lines"
    )
):
    """AI Relay CLI."""
    configure_logging(json_logs=json_logs, log_level="DEBUG" if verbose else "WARNING")
    ctx.obj = {"config_path": config}
    if ctx.invoked_subcommand is None:
        console.print("AI Relay - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage ledger database."""
    try:
        config = _load_config(ctx.obj["config_path"])
        initialize_schema(config.ledger_path)
        console.print(f"[green]✓[/] Ledger initialized at {config.ledger_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing ledger:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show configured backends and their free-tier state."""
    try:
        session = _build_session(ctx)
    except Exception as e:
        _fail(str(e))

    backends = session.router.backends()
    console.print(f"[bold]Routing strategy:[/] {session.settings.get_routing_strategy()}")

    if not backends:
        console.print("\n[bold yellow]No backends configured[/]")
        console.print("\nSet an API key environment variable for at least one backend:")
        for backend in session.config.backends:
            console.print(f"  {backend.api_key_env}   # {backend.name} ({backend.provider})")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Configured backends")
    table.add_column("Backend")
    table.add_column("Provider")
    table.add_column("Cost / 1K", justify="right")
    table.add_column("Context", justify="right")
    table.add_column("Free tier")

    for backend in backends:
        descriptor = backend.get_config()
        if descriptor.free_tier is None:
            free = "[dim]none[/]"
        elif session.quota.can_use_free_tier(descriptor.name):
            free = "[green]available[/]"
        else:
            free = "[yellow]exhausted[/]"
        table.add_row(
            descriptor.name,
            descriptor.provider,
            _format_currency(descriptor.cost_per_1k_tokens),
            f"{descriptor.max_context_tokens:,}",
            free
        )

    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def usage(ctx: typer.Context):
    """Show token usage and estimated cost over the last 30 days."""
    try:
        session = _build_session(ctx)
        stats = session.quota.usage_stats()
    except Exception as e:
        _fail(str(e))

    if not stats.by_backend:
        console.print("\n[bold yellow]No usage recorded in the last 30 days[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Usage (last 30 days)")
    table.add_column("Backend")
    table.add_column("Requests", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Free tier used", justify="right")

    for name, backend_usage in sorted(stats.by_backend.items()):
        percent = f"{backend_usage.percent_used:.1f}%" if backend_usage.percent_used else "-"
        table.add_row(
            name,
            str(backend_usage.requests),
            f"{backend_usage.tokens_used:,}",
            _format_currency(backend_usage.estimated_cost),
            percent
        )

    console.print(table)
    console.print(f"Total tokens: {stats.total_tokens:,} (today: {stats.tokens_today:,})")
    console.print(f"Total cost: {_format_currency(stats.total_cost)}")
    console.print(f"Average tokens/day: {stats.avg_tokens_per_day:,}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def route(
    ctx: typer.Context,
    capability: Capability = typer.Argument(
        Capability.GENERAL_CHAT,
        help="Task category to route"
    ),
    tokens: int = typer.Option(
        0,
        "--tokens",
        "-t",
        min=0,
        help="Context size in tokens"
    ),
    prefer_free: Optional[bool] = typer.Option(
        None,
        "--prefer-free/--allow-paid",
        help="Override the stored free-tier preference"
    )
):
    """Show which backend would serve a request."""
    try:
        session = _build_session(ctx)
        if prefer_free is None:
            prefer_free = session.settings.get_prefer_free_tier()
        descriptor = session.router.select_backend(capability, tokens, prefer_free, record=False)
    except Exception as e:
        _fail(str(e))

    if descriptor is None:
        _print_no_backend(capability, session.config)
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[bold]Selected:[/] {descriptor.name} ({descriptor.provider})")
    console.print(f"Recommended context budget: {session.quota.recommended_budget(descriptor.name):,} tokens")
    console.print(session.router.recommended_models(capability), markup=False)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def budget(
    ctx: typer.Context,
    backend: str = typer.Argument(..., help="Backend name")
):
    """Show the recommended context budget for a backend."""
    try:
        session = _build_session(ctx)
        recommended = session.quota.recommended_budget(backend)
        free = session.quota.can_use_free_tier(backend)
    except Exception as e:
        _fail(str(e))

    if session.registry.get(backend) is None:
        console.print(f"[yellow]Backend '{backend}' is not configured; using conservative defaults[/]")
    console.print(f"Recommended context budget: {recommended:,} tokens")
    console.print(f"Free tier available: {'yes' if free else 'no'}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def strategy(
    ctx: typer.Context,
    value: Optional[RoutingStrategy] = typer.Argument(
        None,
        help="New routing strategy; omit to show current settings"
    ),
    max_tokens: Optional[int] = typer.Option(
        None,
        "--max-tokens",
        help="Set the maximum context tokens"
    ),
    prefer_free: Optional[bool] = typer.Option(
        None,
        "--prefer-free/--allow-paid",
        help="Set the free-tier preference"
    )
):
    """Show or change routing settings."""
    settings = _settings_store(ctx.obj["config_path"])
    try:
        if value is not None:
            settings.set_routing_strategy(value.value)
        if max_tokens is not None:
            settings.set_max_context_tokens(max_tokens)
        if prefer_free is not None:
            settings.set_prefer_free_tier(prefer_free)

        console.print(f"Routing strategy: {settings.get_routing_strategy()}")
        console.print(f"Max context tokens: {settings.get_max_context_tokens():,}")
        console.print(f"Prefer free tier: {'yes' if settings.get_prefer_free_tier() else 'no'}")
    except Exception as e:
        _fail(str(e))
    sys.exit(EXIT_CODE_PASS)


@app.command()
def context(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Query the context is built for"),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Active file"),
    start: int = typer.Option(0, "--start", min=0, help="First selected line (0-based)"),
    end: Optional[int] = typer.Option(None, "--end", min=0, help="Last selected line (0-based)"),
    open_files: Optional[List[str]] = typer.Option(None, "--open", "-o", help="Other open files"),
    token_budget: Optional[int] = typer.Option(None, "--budget", "-b", min=1, help="Token budget")
):
    """Show the context that would be sent with a query."""
    try:
        workspace = _workspace(file, start, end, open_files)
        if token_budget is None:
            token_budget = _settings_store(ctx.obj["config_path"]).get_max_context_tokens()
        built = ContextAssembler(workspace).build_context(query, token_budget)
    except Exception as e:
        _fail(str(e))

    console.print(f"[bold]{built.summary}[/]")
    if built.context:
        console.print()
        console.print(built.context, markup=False, highlight=False)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def chat(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Message to send"),
    capability: Capability = typer.Option(
        Capability.GENERAL_CHAT,
        "--capability",
        help="Task category used for routing"
    ),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Active file"),
    start: int = typer.Option(0, "--start", min=0, help="First selected line (0-based)"),
    end: Optional[int] = typer.Option(None, "--end", min=0, help="Last selected line (0-based)"),
    open_files: Optional[List[str]] = typer.Option(None, "--open", "-o", help="Other open files"),
    prefer_free: Optional[bool] = typer.Option(
        None,
        "--prefer-free/--allow-paid",
        help="Override the stored free-tier preference"
    ),
    backend: Optional[str] = typer.Option(
        None,
        "--backend",
        help="Send to this backend instead of routing automatically"
    ),
    max_tokens: int = typer.Option(1000, "--max-tokens", min=1, help="Maximum response tokens"),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Stream the response")
):
    """Send a chat message to the best available backend."""
    try:
        session = _build_session(ctx)
        pipeline = ChatPipeline(
            ContextAssembler(_workspace(file, start, end, open_files)),
            session.router,
            session.quota,
            session.settings,
            options=CompletionOptions(max_tokens=max_tokens)
        )
    except Exception as e:
        _fail(str(e))

    def print_chunk(chunk: str) -> None:
        console.print(chunk, end="", markup=False, highlight=False)

    try:
        result = pipeline.run(
            query,
            capability=capability,
            prefer_free_tier=prefer_free,
            on_chunk=print_chunk if stream else None,
            preferred_backend=backend
        )
    except NoBackendAvailableError:
        _print_no_backend(capability, session.config)
        sys.exit(EXIT_CODE_FAIL)
    except (OpenAIError, RelayError, ValueError) as e:
        _fail(str(e))

    if stream:
        console.print()
    else:
        console.print(result.response.content, markup=False, highlight=False)

    usage_line = (
        f"{result.backend_name} | {result.response.tokens_used.total_tokens:,} tokens | "
        f"{_format_currency(result.response.cost)} | {result.context.summary}"
    )
    console.print(f"\n[dim]{usage_line}[/]")
    if result.ledger_error is not None:
        console.print(f"[yellow]Warning:[/] usage was not recorded ({result.ledger_error}); try again later")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def prune(ctx: typer.Context):
    """Delete ledger records older than 30 days."""
    try:
        session = _build_session(ctx)
        removed = session.quota.prune_expired()
    except Exception as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Removed {removed} expired record(s)")
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    """Format currency with enough precision for per-token prices."""
    return f"${abs(amount):,.6f}".rstrip("0").rstrip(".") if amount else "$0"


if __name__ == "__main__":
    app()

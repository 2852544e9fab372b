"""Command line interface for ShowImages."""

import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich.table import Table

from .acquisition import (
    AcquisitionEngine, Candidate, ResourceState, build_registry, display_stats
)
from .config import Config, default_config_path, get_default_config, load_config, save_config
from .utils import append_jsonl, console, format_duration, get_timestamp, setup_logging, shorten_url

app = typer.Typer(help="ShowImages - load full-resolution originals through a chain of image proxies")

STATE_STYLES = {
    ResourceState.SUCCEEDED: "green",
    ResourceState.FAILED: "red",
    ResourceState.FILTERED: "yellow",
}


def _load(config_path: Optional[str], log_level: Optional[str] = None) -> Config:
    config = load_config(config_path)
    if log_level:
        config.logging.level = log_level
    setup_logging(config)
    return config


def _results_table(instances) -> Table:
    table = Table(title="Results")
    table.add_column("#", style="dim")
    table.add_column("State")
    table.add_column("Strategy", style="cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("URL", overflow="fold")

    for instance in instances:
        style = STATE_STYLES.get(instance.state, "white")
        if instance.state is ResourceState.FAILED:
            state = f"{instance.state.value} ({instance.failure_reason.value})"
        else:
            state = instance.state.value
        strategy = instance.used_strategy_name or ('direct' if instance.ok else '-')
        if instance.tag:
            strategy = f"[{instance.tag}]{strategy}[/]"
        table.add_row(
            str(instance.id), f"[{style}]{state}[/{style}]", strategy,
            str(len(instance.attempts)), shorten_url(instance.current_source, 100)
        )
    return table


@app.command()
def fetch(
    urls: List[str] = typer.Argument(..., help="Image URLs to load"),
    anchor: Optional[str] = typer.Option(None, "--anchor", "-a", help="Anchor URL pointing at the original (single URL only)"),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", "-t", help="Per-attempt timeout, <= 0 disables"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="serial or parallel"),
    strategies: Optional[List[str]] = typer.Option(None, "--strategy", "-s", help="Strategy to use, in order (repeatable)"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", help="Resources loaded at once"),
    report: Optional[Path] = typer.Option(None, "--report", "-r", help="Append JSONL results to this file"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Load each URL directly, falling back through the proxy chain."""
    if anchor and len(urls) > 1:
        console.print("[red]✗ --anchor applies to a single URL[/red]")
        raise typer.Exit(code=2)

    config = _load(config_path, log_level)

    if timeout_ms is not None:
        config.acquisition.load_timeout_ms = timeout_ms
    if mode is not None:
        config.acquisition.load_mode = mode
    if strategies:
        config.acquisition.strategies = list(strategies)

    try:
        config = Config.model_validate(config.model_dump())
        registry = build_registry(config)
    except (ValidationError, KeyError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=2)

    candidates = [Candidate(id=i, url=url, anchor=anchor) for i, url in enumerate(urls, 1)]

    async def run():
        async with AcquisitionEngine(config, strategies=registry) as engine:
            return await engine.acquire_many(candidates, concurrency=concurrency)

    stats = asyncio.run(run())

    console.print(_results_table(stats['instances']))
    display_stats(stats)

    if report:
        for instance in stats['instances']:
            record = instance.to_dict()
            record['reported_at'] = get_timestamp()
            append_jsonl(report, record)
        console.print(f"[dim]Report appended to {report}[/dim]")

    if stats['failed']:
        raise typer.Exit(code=1)


@app.command()
def proxies(
    url: Optional[str] = typer.Argument(None, help="Show each strategy's candidate for this URL"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """List the configured strategies in fallback order."""
    config = load_config(config_path)
    registry = build_registry(config)

    table = Table(title="Strategies")
    table.add_column("#", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Tag")
    if url:
        table.add_column("Candidate", overflow="fold")

    for i, strategy in enumerate(registry, 1):
        tag = f"[{strategy.tag}]{strategy.tag}[/]" if strategy.tag else "-"
        row = [str(i), strategy.name, tag]
        if url:
            row.append(strategy.apply(url))
        table.add_row(*row)

    console.print(table)


@app.command()
def reverse(
    url: str = typer.Argument(..., help="A proxied URL"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Recover the original URL from a proxied one."""
    config = load_config(config_path)
    registry = build_registry(config)
    original = registry.reverse_any(url)
    if original == url:
        console.print("[yellow]No strategy recognises this URL[/yellow]")
        raise typer.Exit(code=1)
    console.print(original)


@app.command("show-config")
def show_config(
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Configuration file path")
):
    """Show the effective configuration."""
    config = load_config(config_path)
    acquisition = config.acquisition

    console.print("\n[bold]Current Configuration:[/bold]")
    console.print(f"  Config File: {config_path or default_config_path()}")

    console.print("\n  Acquisition:")
    console.print(f"    Load Timeout: {format_duration(acquisition.load_timeout_ms / 1000) if acquisition.load_timeout_ms > 0 else 'none'}")
    console.print(f"    Load Mode: {acquisition.load_mode}")
    console.print(f"    Strategies: {', '.join(acquisition.strategies)}")
    for custom in acquisition.custom_strategies:
        console.print(f"      + {custom.name} → {custom.prefix}")
    console.print(f"    Max Concurrency: {acquisition.max_concurrency}")

    console.print("\n  HTTP:")
    console.print(f"    Timeouts: connect {config.http.timeout_connect_s}s, read {config.http.timeout_read_s}s")
    console.print(f"    HTTP/2: {config.http.http2}")

    console.print("\n  Logging:")
    console.print(f"    Level: {config.logging.level}")
    console.print(f"    File: {config.logging.file or '-'}")


@app.command("init-config")
def init_config(
    path: Optional[str] = typer.Argument(None, help="Where to write the configuration"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file")
):
    """Write the default configuration to a YAML file."""
    target = Path(path) if path else default_config_path()
    if target.exists() and not force:
        console.print(f"[yellow]{target} already exists, use --force to overwrite[/yellow]")
        raise typer.Exit(code=1)
    save_config(get_default_config(), str(target))
    console.print(f"[green]✓ Configuration written to {target}[/green]")


def main():
    app()


if __name__ == "__main__":
    main()

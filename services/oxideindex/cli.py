"""
CLI interface for the plugin indexer.

Provides commands for:
- Running the search crawl (single cycle or continuous)
- Inspecting crawl state, index and rate limit
- Listing search variants
- Resetting crawl state
- Running the clone-based repository crawler
- Configuration validation

Usage Examples:
    # One full cycle with detailed logging
    oxideindex run --once --verbose

    # Keep crawling, 30 minutes between cycles
    oxideindex run --continuous --cycle-delay-ms 1800000

    # Where is the crawl, and how much quota is left?
    python -m services.oxideindex.cli status --rate-limit
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
import yaml
from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .auth import build_token_chain
from .config import Config
from .utils import (
    AuthError,
    ConfigError,
    GitHubAPIError,
    NetworkError,
    Sleeper,
    iso_timestamp,
    read_json,
    setup_detailed_logging,
    setup_logging,
)

app = typer.Typer(
    name="oxideindex",
    help="Oxide/uMod plugin indexer for GitHub code search",
    add_completion=False,
)

console = Console()

EXIT_OK = 0
EXIT_AUTH_OR_CONFIG = 1
EXIT_FATAL_FETCH = 2
EXIT_INCOMPLETE = 3


def _configure_logging(config: Config, verbose: bool, debug: bool) -> None:
    if debug:
        setup_detailed_logging(level="DEBUG", log_file=config.logging.file)
        return
    setup_logging(
        level="DEBUG" if verbose else config.logging.level,
        log_file=config.logging.file,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count,
        verbose=not verbose,
    )


def _load_config(config_path: Optional[Path]) -> Config:
    try:
        return Config.load(config_path)
    except (OSError, ConfigError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(EXIT_AUTH_OR_CONFIG)


def _open_client(config: Config, sleeper: Optional[Sleeper] = None):
    """Authenticate and return a GitHubClient; exits 1 when no credentials work."""
    from .github_client import GitHubClient

    chain = build_token_chain(config.auth, config.github)
    try:
        chain.get_token()
    except AuthError as e:
        console.print(f"[red]GitHub authentication failed: {e}[/red]")
        raise typer.Exit(EXIT_AUTH_OR_CONFIG)

    logger.info(f"Authentication: {chain.describe()}")
    return GitHubClient(
        config.github,
        token_provider=chain,
        sleep=sleeper if sleeper is not None else Sleeper(),
    )


# =============================================================================
# Crawl Commands
# =============================================================================

@app.command("run")
def run(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to indexer_config.yaml",
    ),
    continuous: Optional[bool] = typer.Option(
        None,
        "--continuous/--once",
        help="Loop forever or run a single cycle (default from config)",
    ),
    cycle_delay_ms: Optional[int] = typer.Option(
        None,
        "--cycle-delay-ms",
        help="Delay between continuous cycles in milliseconds",
    ),
    query: Optional[str] = typer.Option(
        None,
        "--query", "-q",
        help="Base code-search query",
    ),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir", "-o",
        help="Directory for the index and state files",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug logging (most detailed)",
    ),
):
    """
    Crawl GitHub code search and update the plugin index.

    Resumes from the saved state. Exit codes: 0 done or stopped by signal,
    1 authentication/config failure, 2 fatal API failure, 3 cycle left
    incomplete (run again to resume).
    """
    config = _load_config(config_path)
    if query:
        config.crawl.query = query
    if output_dir:
        config.output.dir = str(output_dir)
    if cycle_delay_ms is not None:
        config.crawl.cycle_delay_ms = cycle_delay_ms

    _configure_logging(config, verbose, debug)

    errors = config.validate()
    if errors:
        for error in errors:
            console.print(f"[red]• {error}[/red]")
        raise typer.Exit(EXIT_AUTH_OR_CONFIG)

    from .indexer import PluginIndexer

    sleeper = Sleeper()
    client = _open_client(config, sleeper)
    try:
        indexer = PluginIndexer(config, client, sleeper=sleeper)
        indexer.install_signal_handlers()
        result = indexer.run(continuous)
    except AuthError as e:
        console.print(f"[red]Authentication failed: {e}[/red]")
        raise typer.Exit(EXIT_AUTH_OR_CONFIG)
    except GitHubAPIError as e:
        console.print(f"[red]Fatal GitHub API error ({e.status_code}): {e}[/red]")
        raise typer.Exit(EXIT_FATAL_FETCH)
    finally:
        client.close()

    stats = result.stats
    console.print(Panel(
        f"Processed: {stats.processed}\n"
        f"New entries: {stats.new_entries}\n"
        f"Already seen: {stats.skipped_seen}\n"
        f"Failed: {stats.failed}\n"
        f"Pages: {stats.pages}\n"
        f"Total entries: {result.total_entries}",
        title="Cycle complete" if result.completed else "Cycle stopped",
        box=box.ROUNDED,
    ))

    if result.interrupted or result.completed:
        raise typer.Exit(EXIT_OK)
    console.print(f"[yellow]{result.message}. Run again to resume.[/yellow]")
    raise typer.Exit(EXIT_INCOMPLETE)


@app.command("crawl-repos")
def crawl_repos(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to indexer_config.yaml",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
):
    """Shallow-clone indexed repositories and scan them for plugin files."""
    config = _load_config(config_path)
    _configure_logging(config, verbose, debug=False)

    from .repo_crawler import RepositoryCrawler

    crawler = RepositoryCrawler(config)
    crawler.install_signal_handlers()
    stats = crawler.crawl()

    console.print(Panel(
        f"Repositories in source: {stats.total_found}\n"
        f"Already processed: {stats.already_processed}\n"
        f"Newly processed: {stats.newly_processed} "
        f"([green]{stats.successful} ok[/green], [red]{stats.failed} failed[/red])\n"
        f"Plugins found: {stats.plugins_found} ({stats.new_plugins} new)",
        title="Repository Crawl",
        box=box.ROUNDED,
    ))


# =============================================================================
# Inspection Commands
# =============================================================================

@app.command("status")
def status(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to indexer_config.yaml",
    ),
    rate_limit: bool = typer.Option(
        False,
        "--rate-limit", "-r",
        help="Also query the GitHub rate limit",
    ),
):
    """Show crawl state, index statistics and optionally the rate limit."""
    config = _load_config(config_path)
    setup_logging(level="WARNING", log_file=config.logging.file)

    from .output import PluginIndex
    from .state import StateStore
    from .variants import build_search_variants

    variants = build_search_variants(config.crawl.query, config.crawl.language)
    store = StateStore(config.output.state_path)

    table = Table(title="Crawl State", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    if store.exists():
        state = store.load(config.crawl.query)
        if state.current_variant < len(variants):
            variant = f"{state.current_variant + 1}/{len(variants)} ({variants[state.current_variant].name})"
        else:
            variant = "cycle complete"
        table.add_row("Variant", variant)
        table.add_row("Page", str(state.current_page))
        table.add_row("Seen keys", str(len(state.seen_keys)))
        table.add_row("Cached repositories", str(len(state.repo_cache)))
        table.add_row("Last full scan", state.last_full_scan_at or "never")
        table.add_row("Updated", state.updated_at or "-")
    else:
        table.add_row("State", f"[yellow]none at {store.path}[/yellow]")

    index_path = config.output.index_path
    if index_path.exists():
        index = PluginIndex.load(index_path)
        try:
            generated_at = read_json(index_path).get("generated_at", "-")
        except (OSError, ValueError, AttributeError):
            generated_at = "-"
        table.add_row("Index entries", str(len(index)))
        table.add_row("Unique repositories", str(len(index.repositories())))
        table.add_row("Generated at", str(generated_at))
    else:
        table.add_row("Index", f"[yellow]none at {index_path}[/yellow]")

    console.print(table)

    if not rate_limit:
        return

    client = _open_client(config)
    try:
        resources = client.check_rate_limit()
    finally:
        client.close()

    if not resources:
        console.print("[red]Could not fetch rate limit[/red]")
        raise typer.Exit(EXIT_FATAL_FETCH)

    limits = Table(title="Rate Limit", box=box.ROUNDED)
    limits.add_column("Resource", style="cyan")
    limits.add_column("Remaining", style="green")
    limits.add_column("Limit", style="yellow")
    limits.add_column("Resets", style="magenta")
    for name in ("core", "search", "code_search"):
        info = resources.get(name)
        if not info:
            continue
        reset = iso_timestamp(datetime.fromtimestamp(int(info.get("reset", 0)), tz=timezone.utc))
        limits.add_row(name, str(info.get("remaining")), str(info.get("limit")), reset)
    console.print(limits)


@app.command("variants")
def variants(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to indexer_config.yaml",
    ),
    counts: bool = typer.Option(
        False,
        "--counts",
        help="Query total_count for every variant (one search request each)",
    ),
):
    """List the search variant sequence."""
    config = _load_config(config_path)
    setup_logging(level="WARNING", log_file=config.logging.file)

    from .variants import build_search_variants

    sequence = build_search_variants(config.crawl.query, config.crawl.language)

    table = Table(title=f"Search Variants ({len(sequence)})", box=box.ROUNDED)
    table.add_column("#", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Query", style="green")
    if counts:
        table.add_column("Results", style="yellow")

    client = _open_client(config) if counts else None
    try:
        for i, variant in enumerate(sequence):
            row = [str(i), variant.name, variant.query]
            if client is not None:
                try:
                    row.append(str(client.search_code_count(variant.query)))
                except (GitHubAPIError, NetworkError) as e:
                    row.append(f"[red]error: {e.status_code if isinstance(e, GitHubAPIError) else e}[/red]")
            table.add_row(*row)
    finally:
        if client is not None:
            client.close()

    console.print(table)


# =============================================================================
# Maintenance Commands
# =============================================================================

@app.command("reset-state")
def reset_state(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to indexer_config.yaml",
    ),
    force: bool = typer.Option(
        False,
        "--force", "-f",
        help="Skip confirmation",
    ),
):
    """Delete the crawl state so the next run starts a fresh cycle."""
    config = _load_config(config_path)
    setup_logging(level="INFO", log_file=config.logging.file)

    from .state import StateStore

    store = StateStore(config.output.state_path)
    if not store.exists():
        console.print(f"[yellow]No state file at {store.path}[/yellow]")
        raise typer.Exit(EXIT_OK)

    if not force:
        if not typer.confirm(f"Delete crawl state {store.path}?"):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(EXIT_OK)

    store.delete()
    console.print("[green]✓ Crawl state deleted[/green]")


@app.command("validate-config")
def validate_config(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Path to indexer_config.yaml",
    ),
):
    """Validate configuration file."""
    config = _load_config(config_path)

    errors = config.validate()

    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  • {error}")
        raise typer.Exit(EXIT_AUTH_OR_CONFIG)

    console.print("[green]✓ Configuration is valid[/green]")
    auth = "GitHub App" if config.auth.app_configured else (
        "Personal Access Token" if config.auth.token else "[yellow]none[/yellow]"
    )
    console.print(f"\nQuery: {config.crawl.query}")
    console.print(f"Auth: {auth}")
    console.print(f"Output: {config.output.index_path}")


# =============================================================================
# Entry Point
# =============================================================================

def main():
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()

"""
Discovery CLI Commands
======================

CLI commands for running discovery and managing strategies, budget,
runs, feedback, the query cache and the platform adapters.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from pydantic import ValidationError as PydanticValidationError
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from discovery_agent.config import get_default_config
from discovery_agent.core.enums import Country, DiscoveryMode, Platform, RunKind, RunStatus
from discovery_agent.core.exceptions import NotFoundError
from discovery_agent.core.schema import DiscoveryStartRequest, ScraperRun
from discovery_agent.db.engine import get_session
from discovery_agent.discovery.adapters import get_adapter_info, list_adapters
from discovery_agent.discovery.jobs import enqueue_run, execute_run_sync
from discovery_agent.services.budget import BudgetGovernor
from discovery_agent.services.feedback_service import FeedbackService
from discovery_agent.services.query_cache import QueryCache
from discovery_agent.services.run_tracker import RunTracker
from discovery_agent.services.strategy_store import StrategyStore

console = Console()
discovery_app = typer.Typer(help="Discovery run commands")
strategies_app = typer.Typer(help="Query strategy commands")
budget_app = typer.Typer(help="Budget commands")
runs_app = typer.Typer(help="Run inspection commands")
feedback_app = typer.Typer(help="Review feedback commands")
cache_app = typer.Typer(help="Query cache commands")
adapters_app = typer.Typer(help="Platform adapter commands")

STATUS_COLORS = {
    "completed": "green",
    "running": "blue",
    "pending": "yellow",
    "failed": "red",
    "cancelled": "magenta",
}


def _split(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


# Discovery subcommands


@discovery_app.command("run")
def run_discovery(
    countries: str = typer.Option(..., "--countries", "-c", help="Comma-separated country codes, e.g. CH,DE"),
    platforms: Optional[str] = typer.Option(None, "--platforms", "-p", help="Comma-separated platforms"),
    mode: DiscoveryMode = typer.Option(DiscoveryMode.EXPLORE, "--mode", "-m", help="Discovery mode"),
    chain: Optional[str] = typer.Option(None, "--chain", help="Chain name (enumerate mode)"),
    max_queries: int = typer.Option(50, "--max-queries", "-q", help="Maximum search queries"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Search without staging anything"),
    sync: bool = typer.Option(False, "--sync", help="Run synchronously (blocking)"),
) -> None:
    """
    Start a discovery run.

    Examples:
        discovery-agent discovery run --countries=CH,DE --sync
        discovery-agent discovery run -c CH --mode enumerate --chain "dean&david"
    """
    try:
        request = DiscoveryStartRequest(
            countries=[Country(c.upper()) for c in _split(countries)],
            platforms=[Platform(p) for p in _split(platforms)],
            mode=mode,
            chain_id=chain,
            max_queries=max_queries,
            dry_run=dry_run,
        )
    except (ValueError, PydanticValidationError) as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    config = get_default_config()
    with get_session() as session:
        governor = BudgetGovernor(session, config.budget)
        affordability = governor.can_afford_scraper_run(
            request.max_queries, 0, use_free_tier=config.discovery.use_free_tier
        )
        session.commit()
        if not affordability.can_afford:
            rprint(f"[red]Budget refused:[/red] {affordability.reason}")
            raise typer.Exit(1)

        scraper_id = f"discovery-{request.mode.value}-{'-'.join(c.value for c in request.countries)}"
        run = RunTracker(session).create(
            RunKind.DISCOVERY, request.model_dump(mode="json", by_alias=True), scraper_id=scraper_id
        )
        session.commit()

    rprint(f"\n[bold]Discovery run {run.id}[/bold]")
    rprint(f"  Mode: {request.mode.value}")
    rprint(f"  Countries: {', '.join(c.value for c in request.countries)}")
    rprint(f"  Platforms: {', '.join(p.value for p in request.platforms) or 'all'}")
    rprint(f"  Max queries: {request.max_queries}")
    rprint(f"  Estimated cost: ${affordability.estimated_cost:.4f}")
    if request.dry_run:
        rprint("  [yellow]Dry run: nothing will be staged[/yellow]")

    if sync:
        rprint("\n[dim]Running synchronously...[/dim]\n")
        with console.status("[bold blue]Discovering...[/bold blue]"):
            result = asyncio.run(execute_run_sync(RunKind.DISCOVERY, run.id))
        _display_run_result(result)
        if result.get("status") != RunStatus.COMPLETED.value:
            raise typer.Exit(1)
        return

    rprint("\n[dim]Enqueueing run for the worker...[/dim]")
    try:
        job_id = asyncio.run(enqueue_run(RunKind.DISCOVERY, run.id))
    except Exception as e:
        rprint(f"\n[yellow]Warning:[/yellow] Failed to enqueue job: {e}")
        rprint("The run stays pending and is picked up when a worker starts.")
        raise typer.Exit(1)
    rprint("[green]Run enqueued successfully![/green]")
    rprint(f"Job ID: [bold]{job_id}[/bold]")
    rprint("\nCheck status with:")
    rprint(f"  discovery-agent runs status {run.id}")


@discovery_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the run worker.

    The worker executes queued discovery and extraction runs from Redis.
    """
    from arq import run_worker

    from discovery_agent.discovery.jobs import WorkerSettings

    rprint("[bold]Starting discovery worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")
    try:
        run_worker(WorkerSettings, burst=burst)
    except Exception as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running and REDIS_HOST / REDIS_PORT are set.")
        raise typer.Exit(1)


# Strategies subcommands


@strategies_app.command("seed")
def seed_strategies() -> None:
    """Insert the built-in seed strategies that are not stored yet."""
    with get_session() as session:
        created = StrategyStore(session).seed_strategies()
        session.commit()
    rprint(f"[green]Seeded {created} strategies[/green]")


@strategies_app.command("list")
def list_strategies(
    platform: Optional[Platform] = typer.Option(None, "--platform", "-p"),
    country: Optional[str] = typer.Option(None, "--country", "-c"),
    all_strategies: bool = typer.Option(False, "--all", "-a", help="Include deprecated strategies"),
    limit: int = typer.Option(50, "--limit", "-n"),
) -> None:
    """List strategies, best first."""
    with get_session() as session:
        strategies = StrategyStore(session).list_strategies(
            platform, Country(country.upper()) if country else None, all_strategies, limit
        )

    if not strategies:
        rprint("[yellow]No strategies found. Run 'discovery-agent strategies seed' first.[/yellow]")
        return

    table = Table(title="Strategies")
    table.add_column("ID", style="dim")
    table.add_column("Platform")
    table.add_column("Country")
    table.add_column("Template")
    table.add_column("Rate", justify="right")
    table.add_column("Uses", justify="right")
    table.add_column("Status")
    for s in strategies:
        table.add_row(
            str(s.id)[:8],
            s.platform.value,
            s.country.value,
            s.query_template,
            f"{s.success_rate}%",
            str(s.total_uses),
            "[green]active[/green]" if s.is_active else "[red]deprecated[/red]",
        )
    console.print(table)


@strategies_app.command("tiers")
def strategy_tiers(
    platform: Optional[Platform] = typer.Option(None, "--platform", "-p"),
    country: Optional[str] = typer.Option(None, "--country", "-c"),
) -> None:
    """Show active strategies grouped by performance tier."""
    with get_session() as session:
        tiers = StrategyStore(session).get_strategy_tiers(platform, Country(country.upper()) if country else None)

    for name, color, strategies in [
        ("High", "green", tiers.high),
        ("Medium", "yellow", tiers.medium),
        ("Low", "red", tiers.low),
        ("Untested", "dim", tiers.untested),
    ]:
        rprint(f"\n[bold {color}]{name} ({len(strategies)})[/bold {color}]")
        for s in strategies[:10]:
            rprint(f"  {s.success_rate:>3}%  {s.total_uses:>4} uses  {s.platform.value}/{s.country.value}  {s.query_template}")
        if len(strategies) > 10:
            rprint(f"  ... and {len(strategies) - 10} more")


@strategies_app.command("show")
def show_strategy(
    strategy_id: str = typer.Argument(..., help="Strategy ID"),
    limit: int = typer.Option(20, "--limit", "-n", help="Usage records to show"),
) -> None:
    """Show a strategy with its most recent recorded outcomes."""
    with get_session() as session:
        store = StrategyStore(session)
        try:
            strategy = store.get(strategy_id)
            history = store.get_usage_history(strategy_id, limit=limit)
        except NotFoundError as e:
            rprint(f"[yellow]{e}[/yellow]")
            raise typer.Exit(1)

    rprint(f"[bold]Strategy {strategy.id}[/bold]")
    rprint(f"  Target: {strategy.platform.value}/{strategy.country.value}")
    rprint(f"  Template: {strategy.query_template}")
    rprint(f"  Rate: {strategy.success_rate}%")
    rprint(
        f"  Uses: {strategy.total_uses} "
        f"({strategy.successful_discoveries} successful, {strategy.false_positives} false positives)"
    )
    if not strategy.is_active:
        rprint(f"  [red]Deprecated: {strategy.deprecation_reason or '-'}[/red]")

    if not history:
        rprint("[dim]No recorded usage yet[/dim]")
        return

    table = Table(title="Recent usage")
    table.add_column("When")
    table.add_column("Outcome")
    table.add_column("Run", style="dim")
    for usage in history:
        if usage.success:
            outcome = "[green]success[/green]"
        elif usage.was_false_positive:
            outcome = "[red]false positive[/red]"
        else:
            outcome = "[yellow]miss[/yellow]"
        table.add_row(
            usage.created_at.strftime("%Y-%m-%d %H:%M"),
            outcome,
            str(usage.run_id)[:8] if usage.run_id else "-",
        )
    console.print(table)


# Budget subcommands


@budget_app.command("status")
def budget_status() -> None:
    """Show today's spend and the throttle state."""
    config = get_default_config()
    with get_session() as session:
        status = BudgetGovernor(session, config.budget).get_status()

    throttle = status.throttle
    rprint("\n[bold]Budget[/bold]")
    rprint(f"  Today: ${throttle.current_cost:.2f} of ${throttle.daily_limit:.2f} ({throttle.percentage_used:.1f}%)")
    rprint(f"  Remaining today: ${throttle.remaining_budget:.2f}")
    rprint(f"  Month: ${status.monthly_cost:.2f} of ${throttle.monthly_limit:.2f}")
    rprint(f"  Queries today: {status.today.search_queries_free} free, {status.today.search_queries_paid} paid")
    if throttle.throttle:
        rprint(f"  [red]Throttled:[/red] {throttle.reason}")
    else:
        rprint("  [green]Not throttled[/green]")


# Runs subcommands


@runs_app.command("status")
def run_status(
    run_id: Optional[str] = typer.Argument(None, help="Run ID to check"),
    limit: int = typer.Option(10, "--limit", "-n", help="Runs to list when no ID is given"),
) -> None:
    """
    Show one run, or the most recent runs.

    Examples:
        discovery-agent runs status
        discovery-agent runs status 3f2c...
    """
    with get_session() as session:
        tracker = RunTracker(session)
        if run_id is None:
            runs = tracker.list_runs(limit=limit)
        else:
            try:
                run = tracker.get(run_id)
            except NotFoundError as e:
                rprint(f"[yellow]{e}[/yellow]")
                raise typer.Exit(1)

    if run_id is not None:
        _display_run(run)
        return

    table = Table(title="Recent runs")
    table.add_column("ID", style="dim")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Queries", justify="right")
    table.add_column("Venues", justify="right")
    for r in runs:
        color = STATUS_COLORS.get(r.status.value, "white")
        table.add_row(
            str(r.id),
            r.kind.value,
            f"[{color}]{r.status.value}[/{color}]",
            r.created_at.strftime("%Y-%m-%d %H:%M"),
            str(r.stats.get("queries_executed", 0)),
            str(r.stats.get("venues_discovered", 0)),
        )
    console.print(table)


# Feedback subcommands


@feedback_app.command("process")
def process_feedback(
    deprecate: bool = typer.Option(False, "--deprecate", help="Deprecate problematic strategies"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report without changing anything"),
) -> None:
    """Find strategies whose reviewed results are too often wrong."""
    with get_session() as session:
        summary = FeedbackService(session).process_feedback(deprecate_problematic=deprecate, dry_run=dry_run)
        session.commit()

    problematic = summary["problematic"]
    if not problematic:
        rprint("[green]No problematic strategies[/green]")
        return
    rprint(f"\n[bold]Problematic strategies ({len(problematic)}):[/bold]")
    for perf in problematic:
        rprint(f"  • {perf['strategy_id']}: {perf['error_rate']}% errors over {perf['total']} reviews")
    if summary["deprecated"]:
        rprint(f"\n[yellow]Deprecated {len(summary['deprecated'])} strategies[/yellow]")
    elif dry_run:
        rprint("\n[dim]Dry run: nothing changed[/dim]")


# Cache subcommands


@cache_app.command("cleanup")
def cleanup_cache() -> None:
    """Remove expired query cache entries."""
    with get_session() as session:
        cache = QueryCache(session)
        removed = cache.cleanup_expired()
        stats = cache.get_stats()
        session.commit()
    rprint(f"[green]Removed {removed} expired entries[/green]")
    rprint(f"  Live entries: {stats.total_cached} ({stats.with_results} with results)")


# Adapter subcommands


@adapters_app.command("list")
def list_platform_adapters() -> None:
    """List the registered platform adapters and their markets."""
    table = Table(title="Platform adapters")
    table.add_column("Platform")
    table.add_column("Countries")
    table.add_column("Base URL")
    table.add_column("Adapter", style="dim")
    for platform in list_adapters():
        info = get_adapter_info(platform)
        if info is None:
            continue
        table.add_row(info["platform"], ", ".join(info["countries"]), info["base_url"], info["class"])
    console.print(table)


# Display helpers


def _display_run(run: ScraperRun) -> None:
    """Display a stored run."""
    color = STATUS_COLORS.get(run.status.value, "white")
    rprint(f"\n[bold]Run: {run.id}[/bold]")
    rprint(f"  Kind: {run.kind.value}")
    rprint(f"  Status: [{color}]{run.status.value}[/{color}]")
    if run.cancel_requested:
        rprint("  [magenta]Cancellation requested[/magenta]")
    if run.duration_seconds is not None:
        rprint(f"  Duration: {run.duration_seconds:.1f}s")
    _display_run_result({"stats": run.stats, "errors": run.errors})


def _display_run_result(result: dict) -> None:
    """Display a run summary in a formatted block."""
    status = result.get("status")
    if status:
        color = STATUS_COLORS.get(status, "white")
        rprint("\n[bold]Results:[/bold]")
        rprint(f"  Status: [{color}]{status}[/{color}]")
        if result.get("duration_seconds"):
            rprint(f"  Duration: {result['duration_seconds']:.1f}s")

    stats = result.get("stats") or {}
    if stats:
        rprint("\n[bold]Statistics:[/bold]")
        for key, value in sorted(stats.items()):
            rprint(f"  {key.replace('_', ' ').capitalize()}: {value}")

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:  # Show first 10
            rprint(f"  • {error}")
        if len(errors) > 10:
            rprint(f"  ... and {len(errors) - 10} more")

"""Discovery Agent CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from discovery_agent import __version__

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

from discovery_agent.cli.discovery import (  # noqa: E402
    adapters_app,
    budget_app,
    cache_app,
    discovery_app,
    feedback_app,
    runs_app,
    strategies_app,
)

app = typer.Typer(
    name="discovery-agent",
    help="Discovery Agent - finds venues serving planted products on delivery platforms",
    add_completion=False,
)
app.add_typer(discovery_app, name="discovery")
app.add_typer(strategies_app, name="strategies")
app.add_typer(budget_app, name="budget")
app.add_typer(runs_app, name="runs")
app.add_typer(feedback_app, name="feedback")
app.add_typer(cache_app, name="cache")
app.add_typer(adapters_app, name="adapters")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _check_search_config() -> None:
    """Check and display search backend configuration status."""
    if os.environ.get("SERPAPI_API_KEY"):
        typer.echo("  Search: SerpAPI (configured)")
    else:
        typer.echo("  Search: Not configured (discovery runs will fail)")
        typer.echo("  Tip: Set SERPAPI_API_KEY in .env file to enable discovery")


@app.command()
def run(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(
        False, "--reload", "-r", help="Enable auto-reload for development"
    ),
) -> None:
    """Start the control-plane web server."""
    import uvicorn

    typer.echo(f"Starting Discovery Agent on http://{host}:{port}")
    _check_search_config()
    typer.echo("Press Ctrl+C to stop the server")
    typer.echo("")

    uvicorn.run(
        "discovery_agent.web.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def init_db(
    migrate: bool = typer.Option(False, "--migrate", help="Run Alembic migrations instead of create_all"),
) -> None:
    """Initialize the database (create tables)."""
    from discovery_agent.db.engine import init_db as db_init
    from discovery_agent.db.engine import run_migrations

    typer.echo("Initializing database...")
    if migrate:
        run_migrations()
    else:
        db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def check_config() -> None:
    """Show where configuration comes from and what is enabled."""
    from discovery_agent.config import get_default_config
    from discovery_agent.db.engine import get_database_url
    from discovery_agent.discovery.jobs import get_redis_settings

    config = get_default_config()
    env_file = next((p for p in _env_paths if p.exists()), None)
    redis = get_redis_settings()

    typer.echo("Discovery Agent Configuration")
    typer.echo("=" * 40)
    typer.echo(f"  .env file: {env_file or 'Not found'}")
    typer.echo(f"  Config file: {os.environ.get('DISCOVERY_CONFIG_PATH', 'default')}")
    _check_search_config()
    typer.echo(f"  Database: {get_database_url()}")
    typer.echo(f"  Redis: {redis.host}:{redis.port}/{redis.database}")
    typer.echo(f"  Budget: ${config.budget.daily_limit:.2f}/day, ${config.budget.monthly_limit:.2f}/month")
    if config.disabled_platforms:
        typer.echo(f"  Disabled platforms: {', '.join(config.disabled_platforms)}")


@app.command()
def version() -> None:
    """Show the Discovery Agent version."""
    typer.echo(f"Discovery Agent v{__version__}")


if __name__ == "__main__":
    app()

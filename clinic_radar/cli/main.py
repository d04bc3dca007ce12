"""Clinic Radar CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
import yaml
from dotenv import load_dotenv
from rich.logging import RichHandler

from clinic_radar.cli.crawl import catalog_app, crawl_app, signals_app, sites_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

__version__ = "0.1.0"

app = typer.Typer(
    name="clinic-radar",
    help="Clinic Radar - tracks clinic websites and raises sales signals when they change",
    add_completion=False,
)
app.add_typer(crawl_app, name="crawl")
app.add_typer(catalog_app, name="catalog")
app.add_typer(sites_app, name="sites")
app.add_typer(signals_app, name="signals")


def configure_logging(verbose: bool = False) -> None:
    """Route log records through rich, DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # SQL and HTTP chatter stays at WARNING unless explicitly enabled
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Clinic Radar command line."""
    configure_logging(verbose)


@app.command()
def init_db() -> None:
    """Initialize the database (create tables)."""
    from clinic_radar.db.engine import create_db_engine
    from clinic_radar.db.engine import init_db as db_init

    typer.echo("Initializing database...")
    engine = create_db_engine()
    db_init(engine)
    engine.dispose()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Clinic Radar version."""
    typer.echo(f"Clinic Radar v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from clinic_radar.core.errors import ConfigError
    from clinic_radar.db.engine import get_database_url
    from clinic_radar.ingestion.config import (
        DEFAULT_CONFIG_PATH,
        CatalogSeed,
        get_default_config,
    )

    typer.echo("Clinic Radar Configuration")
    typer.echo("=" * 40)

    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    typer.echo(f"  Database: {get_database_url()}")

    config_path = os.environ.get("CLINIC_RADAR_CONFIG") or str(DEFAULT_CONFIG_PATH)
    try:
        config = get_default_config()
    except (ConfigError, FileNotFoundError) as e:
        typer.echo(f"  Pipeline config: INVALID ({config_path}): {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"  Pipeline config: {config.config_path or 'built-in defaults'}")
    typer.echo(f"  Fuzzy threshold: {config.matching.fuzzy_threshold}")
    intervals = ", ".join(f"{t.value}={d}d" for t, d in config.scheduling.interval_days.items())
    typer.echo(f"  Crawl intervals: {intervals}")
    typer.echo(f"  Archive: {config.archive_path}")

    try:
        seed = CatalogSeed.load()
    except (FileNotFoundError, KeyError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"  Catalog seed: INVALID: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"  Catalog seed: {len(seed.entries)} entries, {len(seed.compounds)} compounds")


if __name__ == "__main__":
    app()

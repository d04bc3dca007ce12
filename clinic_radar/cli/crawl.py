"""
Crawl CLI Commands
==================

CLI commands for running the crawl pipeline and managing sites, the
catalog and signal rules.
"""

from __future__ import annotations

import json
import signal
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich import print as rprint
from rich.console import Console
from rich.table import Table
from sqlalchemy import inspect

from clinic_radar.core.enums import ProfileGrade, SignalStatus, Tier
from clinic_radar.core.errors import ConfigError, PersistenceError, RuleValidationError
from clinic_radar.core.schema import ClientProduct, TrackedSite
from clinic_radar.db.engine import create_db_engine, create_session_factory, init_db, session_scope
from clinic_radar.db.models import TrackedSiteDB
from clinic_radar.db.store import PipelineStore
from clinic_radar.ingestion.config import CatalogSeed, PipelineConfig, get_default_config
from clinic_radar.ingestion.matcher import CatalogMatcher
from clinic_radar.ingestion.signals import load_rule

console = Console()
crawl_app = typer.Typer(help="Crawl pipeline commands")
catalog_app = typer.Typer(help="Catalog management commands")
sites_app = typer.Typer(help="Tracked site commands")
signals_app = typer.Typer(help="Sales signal commands")


@contextmanager
def open_store(
    db_path: Path | None = None, create_tables: bool = True
) -> Generator[PipelineStore, None, None]:
    """
    Open a PipelineStore over a fresh engine.

    Tables are created if needed unless ``create_tables`` is False, in which
    case an uninitialized database exits with an error instead.
    """
    engine = create_db_engine(db_path)
    if create_tables:
        init_db(engine)
    elif not inspect(engine).has_table(TrackedSiteDB.__tablename__):
        engine.dispose()
        rprint("[red]Error:[/red] Database is not initialized (run 'clinic-radar init-db')")
        raise typer.Exit(1)
    try:
        with session_scope(create_session_factory(engine)) as session:
            yield PipelineStore(session)
    finally:
        engine.dispose()


def _load_config(config_path: Path | None) -> PipelineConfig:
    try:
        return PipelineConfig.load(config_path) if config_path else get_default_config()
    except (ConfigError, FileNotFoundError) as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _load_catalog(store: PipelineStore) -> CatalogSeed:
    """Use the curated catalog in the database, or the YAML seed when it is empty."""
    entries = store.catalog.list_entries()
    if entries:
        return CatalogSeed(entries=entries, compounds=store.catalog.list_compounds())
    rprint("[yellow]Catalog table is empty; using the YAML seed (run 'catalog seed')[/yellow]")
    return CatalogSeed.load()


def _parse_tier(tier: str | None) -> Tier | None:
    if tier is None:
        return None
    try:
        return Tier(tier.lower())
    except ValueError:
        rprint(f"[red]Error:[/red] Unknown tier '{tier}' (expected tier1, tier2 or tier3)")
        raise typer.Exit(1)


@crawl_app.command("run")
def run_crawl(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum sites to process"),
    offset: int = typer.Option(0, "--offset", help="Eligible sites to skip (paging)"),
    tier: Optional[str] = typer.Option(None, "--tier", "-t", help="Only this tier (tier1/tier2/tier3)"),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Only sites from this channel"),
    text_only: bool = typer.Option(False, "--text-only", help="Skip the visual recognition pass"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Estimate cost without crawling"),
    analyzer: str = typer.Option("keyword", "--analyzer", help="Content analyzer to use"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Pipeline config file"),
    as_json: bool = typer.Option(False, "--json", help="Print statistics as JSON"),
) -> None:
    """
    Crawl eligible sites and record snapshots, changes and signals.

    Examples:
        clinic-radar crawl run --limit 20 --tier tier1
        clinic-radar crawl run --dry-run --text-only
    """
    from clinic_radar.collaborators import HttpCollector, get_analyzer, list_analyzers
    from clinic_radar.ingestion.archive import LocalFileArchive
    from clinic_radar.ingestion.pipeline import BatchOptions, BatchRunner

    config = _load_config(config_path)
    options = BatchOptions(
        limit=limit,
        offset=offset,
        tier=_parse_tier(tier),
        source=source,
        text_only=text_only,
        dry_run=dry_run,
    )

    with open_store(create_tables=not dry_run) as store:
        catalog = _load_catalog(store)
        matcher = CatalogMatcher(catalog.entries, catalog.compounds, config.matching)
        content_analyzer = get_analyzer(analyzer, matcher, config.matching)
        if content_analyzer is None:
            rprint(f"[red]Error:[/red] Analyzer '{analyzer}' not found")
            rprint(f"Available analyzers: {', '.join(list_analyzers())}")
            raise typer.Exit(1)

        collector = HttpCollector(config.collection)
        runner = BatchRunner(
            store,
            collector,
            content_analyzer,
            matcher,
            config,
            compounds=catalog.compounds,
            archive=LocalFileArchive(config.archive_path),
        )

        previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: runner.request_stop())
        try:
            if not dry_run:
                rprint("[dim]Press Ctrl+C to stop after the current site[/dim]")
            stats = runner.run(options)
        finally:
            signal.signal(signal.SIGINT, previous_handler)
            collector.close()

    if as_json:
        typer.echo(json.dumps(stats.to_dict(), ensure_ascii=False, indent=2))
        return
    _display_stats(stats.to_dict(), stats.planned_sites)


def _display_stats(result: dict, planned_sites: list[str]) -> None:
    """Display batch statistics."""
    if result.get("dry_run"):
        estimate = result.get("estimate") or {}
        rprint("\n[bold]Dry run[/bold]")
        rprint(f"  Eligible sites: {result.get('eligible', 0)}")
        rprint(f"  Not yet due: {result.get('skipped_by_schedule', 0)}")
        for name in planned_sites[:20]:
            rprint(f"  • {name}")
        if len(planned_sites) > 20:
            rprint(f"  ... and {len(planned_sites) - 20} more")
        rprint("\n[bold]Estimate:[/bold]")
        rprint(f"  Tokens per site: {estimate.get('tokens_per_site', 0):,}")
        rprint(f"  Total tokens: {estimate.get('total_tokens', 0):,}")
        rprint(f"  Cost: ${estimate.get('cost_usd', 0):.4f}")
        rprint(f"  Time: {estimate.get('total_seconds', 0) / 60:.1f} min")
        return

    table = Table(title="Crawl Results")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    for label, key in [
        ("Processed", "processed"),
        ("Succeeded", "succeeded"),
        ("Failed", "failed"),
        ("Skipped (schedule)", "skipped_by_schedule"),
        ("Skipped (no change)", "skipped_no_change"),
        ("Equipment", "equipment_total"),
        ("Treatments", "treatment_total"),
        ("Prices", "price_total"),
        ("Signals", "signals_emitted"),
        ("Tokens", "tokens_used"),
    ]:
        table.add_row(label, str(result.get(key, 0)))
    match_rate = result.get("match_rate")
    table.add_row("Match rate", f"{match_rate:.1%}" if match_rate is not None else "-")
    if result.get("duration_seconds") is not None:
        table.add_row("Duration", f"{result['duration_seconds']:.1f}s")
    console.print(table)

    compounds = result.get("new_compounds", [])
    if compounds:
        rprint(f"\n[bold]New compound candidates ({len(compounds)}):[/bold] {', '.join(compounds[:20])}")

    if result.get("stopped_early"):
        rprint("\n[yellow]Batch stopped early on request[/yellow]")

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:
            rprint(f"  • {error['site']}: {error['message']}")
        if len(errors) > 10:
            rprint(f"  ... and {len(errors) - 10} more")


# Catalog subcommands


@catalog_app.command("seed")
def seed_catalog(
    path: Optional[Path] = typer.Option(None, "--file", "-f", help="Catalog YAML (default: config/catalog.yaml)"),
) -> None:
    """Load catalog entries and compound words from YAML into the database."""
    try:
        seed = CatalogSeed.load(path)
    except (FileNotFoundError, KeyError, ValueError, yaml.YAMLError) as e:
        rprint(f"[red]Error:[/red] Could not load catalog: {e}")
        raise typer.Exit(1)

    with open_store() as store:
        with store.transaction():
            for entry in seed.entries:
                store.catalog.upsert_entry(entry)
            for word in seed.compounds:
                store.catalog.upsert_compound(word)

    rprint(f"[green]Seeded {len(seed.entries)} entries and {len(seed.compounds)} compound words[/green]")


@catalog_app.command("match")
def match_name(
    name: str = typer.Argument(..., help="Raw name to resolve"),
) -> None:
    """Resolve a raw name against the catalog and show how it matched."""
    from clinic_radar.ingestion.decomposer import Decomposer

    config = get_default_config()
    with open_store() as store:
        catalog = _load_catalog(store)

    matcher = CatalogMatcher(catalog.entries, catalog.compounds, config.matching)
    result = matcher.match(name)
    if result.matched:
        rprint(f"[green]{name}[/green] → [bold]{result.canonical_name}[/bold]")
        rprint(f"  Category: {result.category}")
        rprint(f"  Method: {result.method.value if result.method else '-'} (score {result.score:.2f})")
        if result.matched_keyword:
            rprint(f"  Keyword: {result.matched_keyword}")
        return

    rprint(f"[yellow]{name}[/yellow] is not in the catalog")
    decomposition = Decomposer(matcher, catalog.compounds).decompose(name)
    if decomposition.source is None:
        rprint("  No known keywords found")
        return
    rprint(f"  Decomposed via {decomposition.source.value}: {' + '.join(decomposition.components) or '-'}")
    if decomposition.residual:
        rprint(f"  Residual: {decomposition.residual}")


@catalog_app.command("candidates")
def list_candidates(
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum candidates to show"),
) -> None:
    """List compound candidates awaiting curation."""
    with open_store() as store:
        candidates = store.candidates.list_all(limit=limit)

    if not candidates:
        rprint("[yellow]No compound candidates[/yellow]")
        return

    table = Table(title="Compound Candidates")
    table.add_column("Raw text", style="bold")
    table.add_column("Keywords")
    table.add_column("Residual")
    table.add_column("Source")
    table.add_column("Seen", justify="right")
    table.add_column("Status")
    for c in candidates:
        table.add_row(
            c.raw_text,
            ", ".join(c.matched_keywords) or "-",
            c.residual or "-",
            c.source.value,
            str(c.discovery_count),
            c.status.value,
        )
    console.print(table)


# Sites subcommands


@sites_app.command("add")
def add_site(
    name: str = typer.Argument(..., help="Site name"),
    website: str = typer.Argument(..., help="Website address"),
    grade: Optional[str] = typer.Option(None, "--grade", "-g", help="Profile grade (PRIME/HIGH/MID/LOW)"),
    source: str = typer.Option("manual", "--source", "-s", help="Acquisition channel"),
) -> None:
    """Start tracking a site."""
    profile_grade = None
    if grade is not None:
        try:
            profile_grade = ProfileGrade(grade.upper())
        except ValueError:
            rprint(f"[red]Error:[/red] Unknown grade '{grade}'")
            raise typer.Exit(1)

    with open_store() as store:
        if store.sites.get_by_website(website):
            rprint(f"[red]Error:[/red] {website} is already tracked")
            raise typer.Exit(1)
        try:
            with store.transaction():
                site = store.sites.create(
                    TrackedSite(name=name, website=website, source=source, profile_grade=profile_grade)
                )
        except PersistenceError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    rprint(f"[green]Tracking {site.name}[/green] ({site.website}) id={site.id}")


@sites_app.command("list")
def list_sites(
    all_sites: bool = typer.Option(False, "--all", "-a", help="Include inactive sites"),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Only this channel"),
) -> None:
    """List tracked sites."""
    with open_store() as store:
        sites = store.sites.list_all(active_only=not all_sites, source=source)

    if not sites:
        rprint("[yellow]No sites tracked[/yellow]")
        rprint("\nAdd one with: clinic-radar sites add NAME WEBSITE")
        return

    table = Table(title="Tracked Sites")
    table.add_column("Name", style="bold")
    table.add_column("Website")
    table.add_column("Grade")
    table.add_column("Tier")
    table.add_column("Source")
    table.add_column("Last crawled")
    for site in sites:
        table.add_row(
            site.name,
            site.website,
            site.profile_grade.value if site.profile_grade else "-",
            site.tier.value,
            site.source,
            site.last_crawled_at.strftime("%Y-%m-%d %H:%M") if site.last_crawled_at else "never",
        )
    console.print(table)


# Signals subcommands


@signals_app.command("load-rules")
def load_rules(
    path: Path = typer.Argument(..., help="YAML file with a product and its rules"),
) -> None:
    """
    Load a product's sales signal rules from YAML.

    The file holds a ``product`` name and a ``rules`` list. Every rule is
    validated before anything is written.
    """
    if not path.exists():
        rprint(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    product_name = data.get("product")
    if not product_name:
        rprint("[red]Error:[/red] Rules file must name a 'product'")
        raise typer.Exit(1)

    with open_store() as store:
        product = store.products.get_by_name(product_name) or ClientProduct(name=product_name)
        try:
            rules = [load_rule(payload, product.id) for payload in data.get("rules", [])]
        except RuleValidationError as e:
            rprint(f"[red]Error:[/red] Invalid rule: {e}")
            raise typer.Exit(1)

        with store.transaction():
            if store.products.get_by_name(product_name) is None:
                store.products.create(product)
            for rule in rules:
                store.rules.create(rule)

    rprint(f"[green]Loaded {len(rules)} rules for {product_name}[/green]")


@signals_app.command("list")
def list_signals(
    status: Optional[str] = typer.Option(None, "--status", help="Filter by status (NEW, REVIEWED, ...)"),
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum signals to show"),
) -> None:
    """List emitted sales signals, newest first."""
    signal_status = None
    if status is not None:
        try:
            signal_status = SignalStatus(status.upper())
        except ValueError:
            rprint(f"[red]Error:[/red] Unknown status '{status}'")
            raise typer.Exit(1)

    with open_store() as store:
        signals = store.signals.list_all(status=signal_status, limit=limit)
        site_names = {s.id: s.name for s in store.sites.list_all(active_only=False)}

    if not signals:
        rprint("[yellow]No signals[/yellow]")
        return

    table = Table(title="Sales Signals")
    table.add_column("Priority", style="bold")
    table.add_column("Type")
    table.add_column("Site")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Created")
    for s in signals:
        table.add_row(
            s.priority.value,
            s.signal_type,
            site_names.get(s.site_id, str(s.site_id)),
            s.title,
            s.status.value,
            s.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)

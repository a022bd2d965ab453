"""Command-line interface for AdaptiveCrawl."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from adaptivecrawl import __version__
from adaptivecrawl.adaptive import ProfileStore
from adaptivecrawl.auth import Authenticator
from adaptivecrawl.config import Settings, get_settings, load_auth_config, set_settings
from adaptivecrawl.crawler.scheduler import Scheduler
from adaptivecrawl.errors import CrawlerError, InvalidConfig
from adaptivecrawl.observability import MetricsServer, configure_logging
from adaptivecrawl.strategies import BrowserPool

console = Console()
logger = structlog.get_logger(__name__)

DEFAULT_PROFILES_FILE = "adaptivecrawl_profiles.json"


def _load_store(path: Path) -> ProfileStore:
    store = ProfileStore()
    if path.is_file():
        store.import_json(path.read_text(encoding="utf-8"))
    return store


def _save_store(store: ProfileStore, path: Path) -> None:
    path.write_text(store.export_json(), encoding="utf-8")


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Configuration file path")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level (overrides the configuration file)",
)
@click.option(
    "--profiles-file",
    default=DEFAULT_PROFILES_FILE,
    type=click.Path(dir_okay=False),
    show_default=True,
    help="Where learned website profiles are kept between runs",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: Optional[str], profiles_file: str) -> None:
    """AdaptiveCrawl - crawl whole domains, learning how to fetch each site."""
    ctx.ensure_object(dict)
    settings = Settings.from_yaml(Path(config)) if config else get_settings()
    if log_level:
        settings.monitoring.log_level = log_level
    set_settings(settings)
    configure_logging(settings.monitoring)
    ctx.obj["settings"] = settings
    ctx.obj["profiles_file"] = Path(profiles_file)


@cli.command()
@click.argument("url")
@click.option("--max-pages", default=100, show_default=True, help="Maximum pages to crawl")
@click.option("--max-depth", default=5, show_default=True, help="Maximum link depth from the start URL")
@click.option("--concurrent", default=3, show_default=True, help="Parallel workers")
@click.option("--delay", default=1000, show_default=True, help="Per-domain delay between requests (ms)")
@click.option("--timeout", default=30000, show_default=True, help="Per-request timeout (ms)")
@click.option(
    "--method",
    default="adaptive",
    type=click.Choice(["adaptive", "static", "dynamic", "stealth", "api"]),
    show_default=True,
    help="Force one fetch method instead of adaptive selection",
)
@click.option("--no-robots", is_flag=True, help="Ignore robots.txt")
@click.option("--include", multiple=True, help="Regex a URL must match (repeatable)")
@click.option("--exclude", multiple=True, help="Regex that rejects a URL (repeatable)")
@click.option("--data-type", "data_types", multiple=True, help="Structured data schema to extract (repeatable)")
@click.option("--quality-threshold", default=0.7, show_default=True, help="Minimum structured item quality")
@click.option(
    "--stealth-level",
    default="advanced",
    type=click.Choice(["basic", "advanced", "maximum"]),
    show_default=True,
)
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write results as JSON to this file")
@click.pass_context
def crawl(
    ctx: click.Context,
    url: str,
    max_pages: int,
    max_depth: int,
    concurrent: int,
    delay: int,
    timeout: int,
    method: str,
    no_robots: bool,
    include: List[str],
    exclude: List[str],
    data_types: List[str],
    quality_threshold: float,
    stealth_level: str,
    output: Optional[str],
) -> None:
    """Crawl the domain of URL."""
    settings: Settings = ctx.obj["settings"]
    profiles_file: Path = ctx.obj["profiles_file"]
    config: Dict[str, Any] = {
        "max_pages": max_pages,
        "max_depth": max_depth,
        "concurrent": concurrent,
        "delay": delay,
        "timeout": timeout,
        "force_method": method,
        "respect_robots": not no_robots,
        "include_patterns": list(include),
        "exclude_patterns": list(exclude),
        "stealth_level": stealth_level,
        "extraction": {"data_types": list(data_types), "quality_threshold": quality_threshold},
    }

    async def run_crawl() -> Dict[str, Any]:
        metrics = MetricsServer(settings.monitoring)
        metrics.start()
        store = _load_store(profiles_file)
        scheduler = Scheduler.create(settings, store=store)
        try:
            session_id = await scheduler.start_crawl(url, config)
            events = scheduler.subscribe(session_id)
            await _show_progress(scheduler, session_id, events, max_pages)
            session = await scheduler.wait(session_id)
            metrics.update_process_metrics()
            content = scheduler.get_content(session_id, page=1, limit=max(1, session.stats.processed_urls))
            return {
                "session": session.to_dict(),
                "content": [c.to_dict() for c in content["content"]],
                "structured_data": [i.to_dict() for i in scheduler.get_structured_data(session_id)],
                "profile": scheduler.selector.get_stats(session.domain),
            }
        finally:
            await scheduler.close()
            _save_store(store, profiles_file)

    try:
        result = asyncio.run(run_crawl())
    except InvalidConfig as e:
        console.print(f"[red]Invalid configuration: {e.reason}[/red]")
        sys.exit(2)

    stats = result["session"]["stats"]
    status = result["session"]["status"]
    console.print(
        Panel(
            f"Status: {status}\n"
            f"Processed: {stats['processed_urls']}\n"
            f"Failed: {stats['failed_urls']}\n"
            f"Skipped: {stats['skipped_urls']}\n"
            f"Structured items: {stats['extracted_items']}",
            title="Crawl Results",
            border_style="green" if status == "completed" else "red",
        )
    )
    if result["session"]["error"]:
        console.print(f"[red]{result['session']['error']}[/red]")
    if output:
        Path(output).write_text(json.dumps(result, indent=2, ensure_ascii=False), encoding="utf-8")
        console.print(f"Results written to {output}")
    if status == "failed":
        sys.exit(1)


async def _show_progress(scheduler: Scheduler, session_id: str, events: asyncio.Queue, max_pages: int) -> None:
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
    )
    with progress:
        task = progress.add_task("Crawling", total=1)
        while True:
            event = await events.get()
            stats = event["stats"]
            progress.update(
                task,
                total=max(stats["total_urls"], 1),
                completed=stats["processed_urls"] + stats["failed_urls"],
                description=f"Crawling ({event['type']})",
            )
            if event["type"] in ("completed", "failed"):
                return


@cli.group()
def profiles() -> None:
    """Manage learned website profiles."""


@profiles.command("export")
@click.argument("destination", type=click.Path(dir_okay=False))
@click.pass_context
def profiles_export(ctx: click.Context, destination: str) -> None:
    """Write all profiles to DESTINATION as JSON."""
    store = _load_store(ctx.obj["profiles_file"])
    Path(destination).write_text(store.export_json(), encoding="utf-8")
    console.print(f"Exported {len(store)} profile(s) to {destination}")


@profiles.command("import")
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def profiles_import(ctx: click.Context, source: str) -> None:
    """Merge profiles from SOURCE into the profile file."""
    path: Path = ctx.obj["profiles_file"]
    store = _load_store(path)
    try:
        count = store.import_json(Path(source).read_text(encoding="utf-8"))
    except InvalidConfig as e:
        console.print(f"[red]{e.reason}[/red]")
        sys.exit(2)
    _save_store(store, path)
    console.print(f"Imported {count} profile(s)")


@profiles.command("clear")
@click.option("--domain", help="Clear only this domain")
@click.pass_context
def profiles_clear(ctx: click.Context, domain: Optional[str]) -> None:
    """Forget learned profiles."""
    path: Path = ctx.obj["profiles_file"]
    store = _load_store(path)
    cleared = store.clear(domain)
    _save_store(store, path)
    console.print(f"Cleared {cleared} profile(s)")


@profiles.command("stats")
@click.option("--domain", help="Show the full profile of one domain")
@click.pass_context
def profiles_stats(ctx: click.Context, domain: Optional[str]) -> None:
    """Show learned success rates per domain."""
    store = _load_store(ctx.obj["profiles_file"])
    if domain:
        profile = store.get(domain)
        if profile is None:
            console.print(f"[yellow]No profile for {domain}[/yellow]")
            sys.exit(1)
        console.print_json(json.dumps(profile.to_dict()))
        return

    table = Table(title="Website Profiles")
    table.add_column("Domain", style="cyan")
    table.add_column("Difficulty")
    table.add_column("Optimal")
    for method in ("static", "dynamic", "stealth", "api"):
        table.add_column(method, justify="right")
    table.add_column("Attempts", justify="right")
    for profile in store.all():
        rates = [f"{profile.success_rates.get(m, 0.0):.2f}" for m in ("static", "dynamic", "stealth", "api")]
        table.add_row(
            profile.domain,
            profile.characteristics.difficulty,
            profile.optimal_strategy or "-",
            *rates,
            str(profile.total_attempts),
        )
    console.print(table)


@cli.command("test-auth")
@click.argument("url")
@click.option(
    "--type",
    "auth_type",
    required=True,
    type=click.Choice(["basic", "form", "bearer", "cookie"]),
    help="Authentication scheme",
)
@click.option("--username")
@click.option("--password")
@click.option("--token")
@click.option("--cookie", "cookies", multiple=True, help="name=value (repeatable)")
@click.option("--login-url")
@click.option("--username-field", default="username", show_default=True)
@click.option("--password-field", default="password", show_default=True)
@click.option("--submit-selector")
@click.option("--success-indicator")
@click.pass_context
def test_auth(
    ctx: click.Context,
    url: str,
    auth_type: str,
    username: Optional[str],
    password: Optional[str],
    token: Optional[str],
    cookies: List[str],
    login_url: Optional[str],
    username_field: str,
    password_field: str,
    submit_selector: Optional[str],
    success_indicator: Optional[str],
) -> None:
    """Try logging into URL without crawling."""
    settings: Settings = ctx.obj["settings"]
    credentials: Dict[str, Any] = {
        "username": username,
        "password": password,
        "token": token,
        "cookies": dict(c.split("=", 1) for c in cookies if "=" in c),
        "login_url": login_url,
        "username_field": username_field,
        "password_field": password_field,
        "success_indicator": success_indicator,
    }
    if submit_selector:
        credentials["submit_selector"] = submit_selector

    try:
        auth_config = load_auth_config({"type": auth_type, "credentials": credentials})
    except InvalidConfig as e:
        console.print(f"[red]{e.reason}[/red]")
        sys.exit(2)

    async def run_test() -> Dict[str, Any]:
        pool = BrowserPool(settings.browser)
        try:
            return await Authenticator(pool).test_authentication(url, auth_config)
        finally:
            await pool.close()

    try:
        result = asyncio.run(run_test())
    except CrawlerError as e:
        console.print(f"[red]{e.reason}[/red]")
        sys.exit(1)

    console.print_json(json.dumps(result))
    if not result["success"]:
        sys.exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()

#!/usr/bin/env python3

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from config.settings import (
    APP_NAME,
    PACKAGES_DIR,
    VERSION,
    AppSettings,
    base_directory,
    config_file_path,
    default_config_text,
    default_directory,
    default_search_database,
    default_session_candidates,
)
from observability.logging import setup_logging
from pipelines import (
    ConfigurationError,
    CrawlConfig,
    CrawlStats,
    DocHarborError,
    DocumentationCrawler,
    FetchConfig,
    FetchStats,
    GitHubCatalog,
    PackageFetcher,
    RateLimitedError,
    SwiftEvolutionCrawler,
    discover_session,
    list_active_sessions,
    run_jobs,
)
from pipelines.frontier import normalize_url
from indexer.build_index import SearchIndexBuilder
from server.mcp_server import MCPServer, serve_stdio
from sources import SourceDefinition, SourceLoader

console = Console()
app = typer.Typer(help=f"{APP_NAME} - crawl Apple and Swift documentation into a searchable local corpus",
                  no_args_is_help=True)
config_app = typer.Typer(help="Show or create the settings file", no_args_is_help=True)
app.add_typer(config_app, name="config")

EXIT_FAILURE = 1
EXIT_RATE_LIMITED = 2

state: Dict[str, Any] = {}


def settings() -> AppSettings:
    if "settings" not in state:
        state["settings"] = AppSettings.from_env()
    return state["settings"]


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write JSON logs to this file"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Log JSON lines to the console"),
):
    """Load settings and configure logging once for every command."""
    state.pop("settings_error", None)
    try:
        current = AppSettings.from_env()
    except ValueError as e:
        if ctx.invoked_subcommand != "config":
            console.print(f"❌ {e}", style="bold red")
            raise typer.Exit(EXIT_FAILURE)
        # "config init --force" must still be able to replace a broken file
        state["settings_error"] = str(e)
        current = AppSettings()
    state["settings"] = current
    setup_logging(
        level=log_level or current.log_level,
        log_file=str(log_file) if log_file else None,
        use_json=json_logs,
    )


@app.command()
def version():
    """Show the version"""
    console.print(f"{APP_NAME} {VERSION}")


def _split_prefixes(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]


def _crawl_summary(title: str, stats: CrawlStats) -> Table:
    table = Table(title=title)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("New", str(stats.new_pages))
    table.add_row("Updated", str(stats.updated_pages))
    table.add_row("Skipped", str(stats.skipped_pages))
    table.add_row("Errors", str(stats.errors))
    table.add_row("Total", str(stats.total_pages))
    if stats.duration is not None:
        table.add_row("Duration", f"{stats.duration.total_seconds():.0f}s")
    return table


def _crawl_job(source: SourceDefinition,
               start_url: Optional[str] = None,
               max_pages: Optional[int] = None,
               max_depth: Optional[int] = None,
               output_dir: Optional[Path] = None,
               allowed_prefixes: Optional[List[str]] = None,
               force: bool = False,
               resume: bool = False,
               only_accepted: Optional[bool] = None,
               on_progress: Optional[Callable] = None) -> Callable[[], Awaitable[CrawlStats]]:
    """Build the coroutine factory for one source; configuration errors surface here."""
    if source.kind == "evolution":
        crawler = SwiftEvolutionCrawler(
            output_directory=output_dir or source.output_directory,
            catalog=GitHubCatalog(token=settings().github_token, user_agent=settings().user_agent),
            only_accepted=source.only_accepted if only_accepted is None else only_accepted,
            force=force,
        )
        return lambda: crawler.crawl(on_progress=on_progress)

    url = normalize_url(start_url or source.start_url)
    if allowed_prefixes:
        prefixes = allowed_prefixes
    elif url == normalize_url(source.start_url):
        prefixes = source.allowed_prefixes
    else:
        prefixes = []

    if output_dir is None:
        output_dir = (discover_session(url, default_session_candidates(), base_directory())
                      or source.output_directory)

    config = CrawlConfig(
        start_url=url,
        output_directory=output_dir,
        allowed_prefixes=prefixes,
        max_pages=max_pages or source.max_pages,
        max_depth=source.max_depth if max_depth is None else max_depth,
        force=force,
        user_agent=settings().user_agent,
    )
    crawler = DocumentationCrawler(config, resume=resume)
    return lambda: crawler.crawl(on_progress=on_progress)


def _run_single(title: str, factory_builder: Callable[[Callable], Callable[[], Awaitable[CrawlStats]]]):
    with console.status(f"[bold blue]{title}...") as status:
        def on_progress(progress):
            label = getattr(progress, "current_url", None) or getattr(progress, "item_name", "")
            status.update(f"[bold blue]{title}[/bold blue] {progress.percentage:5.1f}% {label}")

        try:
            stats = asyncio.run(factory_builder(on_progress)())
        except RateLimitedError as e:
            console.print(f"⏸️  {e}. Wait for the quota to reset or set GITHUB_TOKEN, then rerun.",
                          style="bold yellow")
            raise typer.Exit(EXIT_RATE_LIMITED)
        except DocHarborError as e:
            console.print(f"❌ {e}", style="bold red")
            raise typer.Exit(EXIT_FAILURE)

    console.print(_crawl_summary(f"✅ {title}", stats))


def _run_all(loader: SourceLoader, force: bool, only_accepted: Optional[bool]):
    sources = loader.get_enabled_sources()
    jobs = {}
    for name, source in sources.items():
        try:
            jobs[name] = _crawl_job(source, force=force, only_accepted=only_accepted)
        except DocHarborError as e:
            console.print(f"❌ {name}: {e}", style="bold red")
            raise typer.Exit(EXIT_FAILURE)

    console.print(f"📚 Crawling {len(jobs)} sources in parallel: {', '.join(jobs)}")
    report = asyncio.run(run_jobs(jobs))

    table = Table(title="Crawl results")
    table.add_column("Source", style="bold")
    table.add_column("Status")
    table.add_column("New", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Errors", justify="right")
    for result in report.results:
        if result.succeeded:
            stats = result.result
            table.add_row(result.name, "[green]ok[/green]", str(stats.new_pages),
                          str(stats.updated_pages), str(stats.errors))
        else:
            table.add_row(result.name, f"[red]failed: {result.error}[/red]", "-", "-", "-")
    console.print(table)

    if not report.succeeded:
        console.print(f"⚠️  Completed with {report.failures} failure(s)", style="bold red")
        raise typer.Exit(EXIT_FAILURE)
    console.print("✅ All sources crawled successfully", style="bold green")


@app.command()
def crawl(
    type: str = typer.Option("docs", "--type", help="Source to crawl: docs, swift, swift-book, evolution or all"),
    start_url: Optional[str] = typer.Option(None, "--start-url", help="Start URL (overrides the source default)"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", help="Maximum number of pages to crawl"),
    max_depth: Optional[int] = typer.Option(None, "--max-depth", help="Maximum link depth from the start URL"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Output directory"),
    allowed_prefixes: Optional[str] = typer.Option(None, "--allowed-prefixes", help="Comma-separated URL prefixes"),
    force: bool = typer.Option(False, "--force", help="Rewrite pages even when unchanged"),
    resume: bool = typer.Option(False, "--resume", help="Resume the saved session for this start URL"),
    only_accepted: bool = typer.Option(False, "--only-accepted", help="Evolution: only accepted/implemented proposals"),
):
    """Crawl documentation and save it as Markdown"""
    loader = SourceLoader()

    if type == "all":
        if start_url or output_dir:
            console.print("--start-url and --output-dir are ignored with --type all", style="yellow")
        _run_all(loader, force, only_accepted or None)
        return

    try:
        source = loader.load_source(type)
    except ConfigurationError as e:
        console.print(f"❌ {e}", style="bold red")
        raise typer.Exit(EXIT_FAILURE)

    def build(on_progress):
        return _crawl_job(
            source,
            start_url=start_url,
            max_pages=max_pages,
            max_depth=max_depth,
            output_dir=output_dir,
            allowed_prefixes=_split_prefixes(allowed_prefixes),
            force=force,
            resume=resume,
            only_accepted=only_accepted or None,
            on_progress=on_progress,
        )

    _run_single(f"Crawling {source.display_name}", build)


@app.command()
def resume(
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Session directory to resume"),
):
    """Resume an interrupted crawl"""
    try:
        if output_dir is not None:
            sessions = list_active_sessions([output_dir])
        else:
            sessions = list_active_sessions(default_session_candidates(), base_directory())
    except DocHarborError as e:
        console.print(f"❌ {e}", style="bold red")
        raise typer.Exit(EXIT_FAILURE)

    if not sessions:
        console.print("No interrupted crawl found. Start one with 'docharbor crawl'.", style="yellow")
        raise typer.Exit(EXIT_FAILURE)
    if len(sessions) > 1:
        console.print("❌ Several interrupted crawls found; pass --output-dir to pick one:", style="bold red")
        for directory, session in sessions:
            console.print(f"  • {directory} ({session.start_url}, {len(session.visited)} visited)")
        raise typer.Exit(EXIT_FAILURE)

    directory, session = sessions[0]

    def build(on_progress):
        config = CrawlConfig(
            start_url=session.start_url,
            output_directory=directory,
            allowed_prefixes=sorted(session.allowed_prefixes),
            max_pages=session.max_pages,
            max_depth=session.max_depth,
            user_agent=settings().user_agent,
        )
        crawler = DocumentationCrawler(config, resume=True)
        return lambda: crawler.crawl(on_progress=on_progress)

    _run_single(f"Resuming {session.start_url}", build)


@app.command()
def update(
    force: bool = typer.Option(False, "--force", help="Rewrite pages even when unchanged"),
):
    """Re-crawl every enabled source definition"""
    _run_all(SourceLoader(), force, None)


@app.command()
def fetch(
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Output directory"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Only process the N most starred packages"),
    resume: bool = typer.Option(False, "--resume", help="Continue from checkpoint.json"),
    package_list_url: Optional[str] = typer.Option(None, "--package-list-url", help="JSON array of GitHub URLs"),
):
    """Fetch GitHub metadata for the Swift package catalog"""
    token = settings().github_token
    if not token:
        console.print("ℹ️  GITHUB_TOKEN not set; the API allows only 60 requests per hour", style="yellow")

    try:
        config = FetchConfig(
            output_directory=output_dir or default_directory(PACKAGES_DIR),
            limit=limit,
            resume=resume,
            github_token=token,
            package_list_url=package_list_url,
        )
        fetcher = PackageFetcher(
            config,
            catalog=GitHubCatalog(token=token, user_agent=settings().user_agent),
        )
    except DocHarborError as e:
        console.print(f"❌ {e}", style="bold red")
        raise typer.Exit(EXIT_FAILURE)

    with console.status("[bold blue]Fetching package metadata...") as status:
        def on_progress(progress):
            status.update(f"[bold blue]Fetching[/bold blue] {progress.current}/{progress.total} "
                          f"({progress.percentage:.1f}%) {progress.item_name}")

        try:
            stats: FetchStats = asyncio.run(fetcher.fetch(on_progress=on_progress))
        except DocHarborError as e:
            console.print(f"❌ {e}", style="bold red")
            raise typer.Exit(EXIT_FAILURE)

    table = Table(title="📦 Package fetch")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Processed", str(stats.processed))
    table.add_row("Fetched", str(stats.successful_fetches))
    table.add_row("Errors", str(stats.errors))
    table.add_row("Written", str(stats.total_packages))
    console.print(table)
    console.print(f"Output: {fetcher.output_path}")

    if stats.rate_limited:
        console.print(
            f"⏸️  Rate limited at package {stats.stopped_at + 1}. "
            f"Wait for the quota to reset or set GITHUB_TOKEN, then rerun with --resume.",
            style="bold yellow",
        )
        raise typer.Exit(EXIT_RATE_LIMITED)


def _index_roots(loader: SourceLoader) -> Dict[str, Path]:
    roots = {}
    for source in loader.load_all_sources().values():
        roots[source.output_directory.name] = source.output_directory
    return roots


@app.command()
def index(
    db: Optional[Path] = typer.Option(None, "--db", help="Search database path"),
    clear: bool = typer.Option(False, "--clear", help="Rebuild the index from scratch"),
):
    """Build the full-text search index"""
    try:
        roots = _index_roots(SourceLoader())
    except DocHarborError as e:
        console.print(f"❌ {e}", style="bold red")
        raise typer.Exit(EXIT_FAILURE)

    builder = SearchIndexBuilder(db or default_search_database(), roots)
    with console.status("[bold blue]Building search index...") as status:
        stats = builder.build(
            clear=clear,
            on_progress=lambda done, total: status.update(f"[bold blue]Indexing[/bold blue] {done}/{total}"),
        )

    table = Table(title=f"🔎 Search index ({builder.db_path})")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Indexed", str(stats.indexed))
    table.add_row("Unchanged", str(stats.unchanged))
    table.add_row("Removed", str(stats.removed))
    table.add_row("Chunks", str(stats.chunks))
    console.print(table)


@app.command()
def serve(
    db: Optional[Path] = typer.Option(None, "--db", help="Search database path"),
):
    """Serve the index to MCP clients over stdio"""
    try:
        roots = _index_roots(SourceLoader())
    except DocHarborError as e:
        Console(stderr=True).print(f"❌ {e}", style="bold red")
        raise typer.Exit(EXIT_FAILURE)

    server = MCPServer(db or default_search_database(), roots)
    asyncio.run(serve_stdio(server))


@config_app.command("show")
def config_show():
    """Show the effective settings and where they came from"""
    if "settings_error" in state:
        console.print(f"❌ {state['settings_error']}", style="bold red")
        console.print("Run 'docharbor config init --force' to replace it.", style="yellow")
        raise typer.Exit(EXIT_FAILURE)

    current = settings()
    table = Table(title="⚙️  Settings")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Config file", str(current.config_path or config_file_path()))
    table.add_row("Data directory", str(current.base_directory))
    table.add_row("User-Agent", current.user_agent)
    table.add_row("Log level", current.log_level)
    table.add_row("GitHub token", "set" if current.github_token else "not set")
    console.print(table)
    if current.config_path is None:
        console.print("No settings file; using defaults (see 'docharbor config init')", style="yellow")


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing settings file"),
):
    """Write a settings file with the default values"""
    path = config_file_path()
    if path.exists() and not force:
        console.print(f"❌ {path} already exists; pass --force to overwrite it", style="bold red")
        raise typer.Exit(EXIT_FAILURE)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(default_config_text(), encoding="utf-8")
    console.print(f"✅ Wrote {path}", style="bold green")


if __name__ == "__main__":
    app()

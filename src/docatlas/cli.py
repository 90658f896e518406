"""Command line interface for DocAtlas."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from docatlas.config import AppConfig, load_config
from docatlas.index.coordinator import Coordinator
from docatlas.models import IndexJob, JobStatus, format_timestamp

console = Console()
app = typer.Typer(help="DocAtlas - indexing jobs, incremental updates and cached search over PageIndex")

_STATUS_STYLES = {
    JobStatus.PENDING: "yellow",
    JobStatus.RUNNING: "cyan",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELLED: "magenta",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _load_config(home: Optional[Path], config_file: Optional[Path]) -> AppConfig:
    config = load_config(config_file)
    if home is not None:
        config.home = home
    if config.debug:
        logging.getLogger("docatlas").setLevel(logging.DEBUG)
    return config


def _open(home: Optional[Path], config_file: Optional[Path]) -> Coordinator:
    return Coordinator(_load_config(home, config_file))


def _status_text(status: JobStatus) -> str:
    style = _STATUS_STYLES[status]
    return f"[{style}]{status.value}[/{style}]"


def _print_job(job: IndexJob) -> None:
    console.print(f"Job [bold]{job.id}[/bold]: {_status_text(job.status)}")
    console.print(f"  Target: {job.target_path}")
    if job.collection:
        shard = f" (shard {job.shard_name})" if job.shard_name else ""
        console.print(f"  Collection: {job.collection}{shard}")
    console.print(
        f"  Documents: {job.total_documents} total, {job.processed_documents} indexed, "
        f"{job.skipped_documents} unchanged, {job.failed_documents} failed"
    )
    if job.eta and not job.status.is_terminal:
        console.print(f"  ETA: {format_timestamp(job.eta)}")
    if job.error:
        console.print(f"  Error: {job.error}")


@app.command()
def index(
    path: Path = typer.Argument(..., help="Document or directory to index."),
    collection: Optional[str] = typer.Option(None, "--collection", "-c", help="Collection name"),
    shard: Optional[str] = typer.Option(None, "--shard", help="Record the run as this shard"),
    incremental: bool = typer.Option(
        True, "--incremental/--full", help="Skip documents whose content is unchanged"
    ),
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run an indexing job and wait for it to finish."""
    _setup_logging(verbose)
    with _open(home, config_file) as coordinator:
        coordinator.probe_engine()
        try:
            job_id = coordinator.start_index_job(
                path, collection, incremental=incremental, shard_name=shard
            )
        except (ValueError, FileNotFoundError) as exc:
            raise typer.BadParameter(str(exc)) from exc

        console.print(f"Started job [bold]{job_id}[/bold]")
        with console.status("Indexing..."):
            job = coordinator.wait_for_job(job_id)

    _print_job(job)
    if job.status is JobStatus.FAILED:
        raise typer.Exit(code=1)


@app.command("job-status")
def job_status(
    job_id: str = typer.Argument(..., help="Job identifier"),
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Show the status of one job."""
    with _open(home, config_file) as coordinator:
        job = coordinator.get_job_status(job_id)
    if job is None:
        console.print(f"[red]Job not found: {job_id}[/red]")
        raise typer.Exit(code=1)
    _print_job(job)


@app.command()
def jobs(
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """List indexing jobs, newest first."""
    with _open(home, config_file) as coordinator:
        all_jobs = coordinator.list_jobs()
    if not all_jobs:
        console.print("[yellow]No jobs found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Target")
    table.add_column("Collection")
    table.add_column("Progress")
    table.add_column("Failed")

    for job in all_jobs:
        table.add_row(
            job.id,
            _status_text(job.status),
            job.target_path,
            job.collection or "",
            f"{job.handled_documents}/{job.total_documents}",
            str(job.failed_documents),
        )
    console.print(table)


@app.command()
def cancel(
    job_id: str = typer.Argument(..., help="Job identifier"),
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Cancel a pending or running job."""
    with _open(home, config_file) as coordinator:
        job = coordinator.cancel_job(job_id)
    if job is None:
        console.print(f"[red]Job not found: {job_id}[/red]")
        raise typer.Exit(code=1)
    console.print(f"Job [bold]{job.id}[/bold] is {_status_text(job.status)}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    collection: Optional[str] = typer.Option(None, "--collection", "-c", help="Collection to search"),
    max_results: Optional[int] = typer.Option(None, "--max-results", "-n", help="Result cap"),
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search indexed documents, using cached results when fresh."""
    _setup_logging(verbose)
    with _open(home, config_file) as coordinator:
        try:
            outcome = coordinator.search(query, collection, max_results)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc

    if outcome.error:
        console.print(f"[red]Search engine unavailable: {outcome.error}[/red]")
        raise typer.Exit(code=1)
    if not outcome.results:
        console.print(f'[yellow]No results found for "{outcome.query}".[/yellow]')
        return

    source = " (cached)" if outcome.cached else ""
    console.print(f'Found {len(outcome.results)} result(s) for "{outcome.query}"{source}')
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Citation")
    table.add_column("Page")
    table.add_column("Section")
    table.add_column("Snippet")

    for hit in outcome.results:
        snippet = hit.content.replace("\n", " ")
        table.add_row(
            f"{hit.score:.4f}" if hit.score is not None else "",
            hit.citation,
            str(hit.page) if hit.page is not None else "",
            hit.section or "",
            snippet[:180],
        )
    console.print(table)


@app.command("cache-stats")
def cache_stats(
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Show search cache statistics."""
    with _open(home, config_file) as coordinator:
        stats = coordinator.cache_stats()
    console.print(f"Entries: {stats.entry_count}")
    console.print(f"Hits: {stats.total_hits}, misses: {stats.total_misses}")
    console.print(f"Hit rate: {stats.hit_rate:.1%}")
    console.print(f"Size: {stats.size_bytes / 1024:.2f} KB")
    if stats.oldest_entry:
        console.print(f"Oldest: {format_timestamp(stats.oldest_entry)}")
        console.print(f"Newest: {format_timestamp(stats.newest_entry)}")


@app.command("cache-clear")
def cache_clear(
    expired_only: bool = typer.Option(
        False, "--expired-only", help="Only drop entries whose TTL has passed"
    ),
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Remove cached search results."""
    with _open(home, config_file) as coordinator:
        removed = coordinator.clear_cache(expired_only=expired_only)
    if expired_only:
        console.print(f"Purged {removed} expired cache entries.")
    else:
        console.print(f"Cleared {removed} cache entries.")


@app.command()
def register(
    name: str = typer.Argument(..., help="Collection name"),
    path: Path = typer.Argument(..., help="Collection root directory"),
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Register a document collection."""
    with _open(home, config_file) as coordinator:
        try:
            collection = coordinator.register_collection(name, path)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
    console.print(f"Registered collection [bold]{collection.name}[/bold] at {collection.path}")


@app.command()
def collections(
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """List registered collections."""
    with _open(home, config_file) as coordinator:
        registered = coordinator.list_collections()
    if not registered:
        console.print("[yellow]No collections found. Index documents to get started.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name")
    table.add_column("Path")
    table.add_column("Documents")
    table.add_column("Shards")
    table.add_column("Indexed")

    for coll in registered:
        shards = ", ".join(f"{s.name} ({s.range}: {s.count})" for s in coll.shards)
        table.add_row(
            coll.name,
            coll.path,
            str(coll.document_count),
            shards,
            format_timestamp(coll.indexed_at) or "",
        )
    console.print(table)


@app.command()
def status(
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Show engine availability and index statistics."""
    with _open(home, config_file) as coordinator:
        coordinator.probe_engine()
        overview = coordinator.status()
    engine = "available" if overview["engine_available"] else "not available"
    console.print(f"PageIndex: {engine}")
    console.print(f"Collections: {overview['collections']}")
    console.print(f"Total documents: {overview['total_documents']}")
    console.print(f"Active jobs: {len(overview['active_jobs'])}")
    console.print(f"Completed jobs: {overview['completed_jobs']}")
    console.print(f"Cached searches: {overview['cache']['entry_count']}")


@app.command()
def recover(
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Mark jobs left behind by a crashed process as failed."""
    with _open(home, config_file) as coordinator:
        recovered = coordinator.recover_interrupted_jobs()
    console.print(f"Recovered {len(recovered)} interrupted jobs.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    home: Path = typer.Option(None, "--home", help="State directory"),
    config_file: Path = typer.Option(None, "--config", help="JSON configuration file"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from docatlas.web.app import create_app

    config = _load_config(home, config_file)
    console.print(f"Starting DocAtlas API on http://{host}:{port} (state: {config.resolve_home()})")
    uvicorn.run(
        create_app(config=config),
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )

"""
ChatUniverse CLI - Main command-line interface for ChatUniverse.

Minimal CLI for ingesting normalized chat exports, rebuilding the lexical
index and browsing the indexed universe.
"""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from chatuniverse.logging_config import setup_logging

app = typer.Typer(
    name="chatuniverse",
    help="ChatUniverse - Cross-provider chat history index",
    no_args_is_help=True,
)

console = Console()


def _init_logging() -> None:
    # Fall back to console logging if file logging is not permitted
    try:
        setup_logging(context="cli")
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.INFO)


def _print_page_footer(page) -> None:
    console.print(
        f"[dim]Showing {len(page.items)} of {page.total} "
        f"(offset {page.offset}, limit {page.limit})[/dim]"
    )


@app.command("init-db")
def init_db() -> None:
    """Create the database tables (development; use alembic in production)."""
    from chatuniverse.db.connection import check_connection
    from chatuniverse.db.connection import init_db as create_tables

    _init_logging()

    if not check_connection():
        console.print("[bold red]Error:[/bold red] Database connection failed")
        raise typer.Exit(1)

    create_tables()
    console.print("[green]✓ Database tables created[/green]")


@app.command()
def ingest(
    path: Optional[str] = typer.Argument(
        None, help="Intake directory (defaults to INTAKE_DIRECTORY)"
    ),
    save: bool = typer.Option(
        False, "--save", help="Store conversations (default is a dry run)"
    ),
    limit: Optional[int] = typer.Option(
        None, help="Maximum number of files to scan"
    ),
    report_dir: Optional[str] = typer.Option(
        None, help="Directory for the JSON ingest report"
    ),
) -> None:
    """
    Ingest normalized chat exports from an intake directory.

    Files are checked against the intake policy, conversations are paired
    and indexed, and the batch is recorded as an ingest run.
    """
    from chatuniverse.config import settings
    from chatuniverse.services.ingestion_service import UniverseIngestService

    _init_logging()

    root = path or settings.intake_directory
    console.print(f"[bold blue]Ingesting exports from:[/bold blue] {root}")
    console.print(f"  Mode: {'save' if save else 'dry-run'}")
    console.print()

    report = UniverseIngestService().run(
        root_dir=root, save=save, limit=limit, report_dir=report_dir
    )

    for quarantined in report.quarantined_files:
        console.print(
            f"  [yellow]⊘ Quarantined:[/yellow] {quarantined['path']} "
            f"({'; '.join(quarantined['reasons'])})"
        )
    for skipped in report.skipped_files:
        console.print(
            f"  [yellow]Skipped:[/yellow] {skipped['path']} ({skipped['reason']})"
        )
    for failed in report.failed_conversations:
        console.print(f"  [red]✗ Failed:[/red] {failed['path']} ({failed['error']})")

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Run: {report.run_id}")
    console.print(f"  Status: {report.status}")
    console.print(f"  Files scanned: {report.files_scanned}")
    console.print(f"  Files ingested: {report.files_ingested}")
    console.print(f"  Files quarantined: {report.files_quarantined}")
    console.print(f"  Chats: {report.chats_ingested}")
    console.print(f"  Turns: {report.turns_ingested}")
    if report.report_path:
        console.print(f"  Report: {report.report_path}")

    if report.failed_conversations:
        raise typer.Exit(1)


@app.command()
def reindex(
    wait: bool = typer.Option(
        False, "--wait", help="Block until the reindex run finishes"
    ),
) -> None:
    """Rebuild the lexicon, term occurrences and co-occurrence network."""
    from chatuniverse.services.reindex import ReindexService

    _init_logging()

    service = ReindexService()
    run_id = service.start()
    console.print(f"[green]✓ Started reindex run[/green] {run_id}")

    if not wait:
        return

    service.join(run_id)
    run = service.status(run_id)
    color = "green" if run.status.value == "completed" else "red"
    console.print(f"  [{color}]{run.status.value}[/{color}]")
    result = run.metadata.get("result")
    if result:
        console.print(
            f"  Threads: {result['threads_indexed']}, "
            f"turns: {result['turns_indexed']}, "
            f"terms: {result['terms_indexed']}, "
            f"occurrences: {result['occurrences_indexed']}, "
            f"edges: {result['network_edges_indexed']}"
        )
    if run.status.value != "completed":
        console.print(f"  [red]Error:[/red] {run.metadata.get('error')}")
        raise typer.Exit(1)


@app.command("run-status")
def run_status(
    run_id: str = typer.Argument(..., help="Ingest or reindex run id"),
) -> None:
    """Show the status of an ingest or reindex run."""
    from chatuniverse.db.connection import db_session
    from chatuniverse.indexing import IndexingStore

    with db_session() as session:
        run = IndexingStore(session).get_ingest_run(run_id)

    if run is None:
        console.print(f"[bold red]Error:[/bold red] Run not found: {run_id}")
        raise typer.Exit(1)

    console.print(f"[bold]Run {run.id}[/bold]")
    console.print(f"  Source: {run.source_root}")
    console.print(f"  Status: {run.status.value}")
    console.print(f"  Started: {run.started_at}")
    console.print(f"  Completed: {run.completed_at or '-'}")
    console.print(
        f"  Files: {run.files_scanned} scanned, {run.files_ingested} ingested, "
        f"{run.files_quarantined} quarantined"
    )
    console.print(f"  Chats: {run.chats_ingested}, turns: {run.turns_ingested}")


@app.command()
def runs(
    limit: int = typer.Option(20, help="Page size"),
    offset: int = typer.Option(0, help="Page offset"),
) -> None:
    """List recent ingest and reindex runs."""
    from chatuniverse.db.connection import db_session
    from chatuniverse.indexing import IndexingStore

    with db_session() as session:
        page = IndexingStore(session).list_ingest_runs(limit=limit, offset=offset)

    table = Table(title="Ingest runs")
    table.add_column("Run")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Chats", justify="right")
    table.add_column("Started")
    for run in page.items:
        table.add_row(
            str(run.id),
            run.source_root,
            run.status.value,
            str(run.chats_ingested),
            str(run.started_at),
        )
    console.print(table)
    _print_page_footer(page)


@app.command()
def summary() -> None:
    """Show global counts for the indexed universe."""
    from chatuniverse.db.connection import db_session
    from chatuniverse.indexing import IndexingStore

    with db_session() as session:
        universe = IndexingStore(session).get_universe_summary()

    console.print("[bold]Universe summary:[/bold]")
    console.print(f"  Providers: {universe.providers}")
    console.print(f"  Accounts: {universe.accounts}")
    console.print(f"  Chats: {universe.chats}")
    console.print(f"  Turns: {universe.turns}")
    console.print(f"  Terms: {universe.terms}")
    console.print(f"  Occurrences: {universe.occurrences}")
    console.print(f"  Network edges: {universe.edges}")


@app.command()
def providers(
    limit: int = typer.Option(25, help="Page size"),
    offset: int = typer.Option(0, help="Page offset"),
) -> None:
    """List chat providers."""
    from chatuniverse.db.connection import db_session
    from chatuniverse.indexing import IndexingStore

    with db_session() as session:
        page = IndexingStore(session).list_providers(limit=limit, offset=offset)

    table = Table(title="Providers")
    table.add_column("Provider")
    table.add_column("Name")
    table.add_column("Updated")
    for provider in page.items:
        table.add_row(
            provider.provider_id, provider.display_name, str(provider.updated_at)
        )
    console.print(table)
    _print_page_footer(page)


@app.command()
def chats(
    provider_id: str = typer.Argument(..., help="Provider id (e.g. chatgpt)"),
    limit: int = typer.Option(50, help="Page size"),
    offset: int = typer.Option(0, help="Page offset"),
) -> None:
    """List a provider's chats, most recently active first."""
    from chatuniverse.db.connection import db_session
    from chatuniverse.indexing import IndexingStore

    with db_session() as session:
        page = IndexingStore(session).list_provider_chats(
            provider_id, limit=limit, offset=offset
        )

    table = Table(title=f"Chats for {provider_id}")
    table.add_column("Chat")
    table.add_column("Title")
    table.add_column("Turns", justify="right")
    table.add_column("Updated")
    for chat in page.items:
        table.add_row(
            str(chat.id),
            chat.title,
            str(chat.turn_count),
            str(chat.updated_at or chat.created_at or "-"),
        )
    console.print(table)
    _print_page_footer(page)


@app.command()
def turns(
    chat_id: str = typer.Argument(..., help="Chat thread id"),
    limit: int = typer.Option(200, help="Page size"),
    offset: int = typer.Option(0, help="Page offset"),
) -> None:
    """Print a chat's turns in order."""
    from chatuniverse.db.connection import db_session
    from chatuniverse.indexing import IndexingStore

    with db_session() as session:
        store = IndexingStore(session)
        chat = store.get_chat(chat_id)
        if chat is None:
            console.print(f"[bold red]Error:[/bold red] Chat not found: {chat_id}")
            raise typer.Exit(1)
        page = store.list_chat_turns(chat_id, limit=limit, offset=offset)

    console.print(f"[bold]{chat.title}[/bold] ({chat.provider_name})")
    for turn in page.items:
        console.print(f"[cyan]#{turn.turn_index} {turn.role.value}:[/cyan]")
        console.print(turn.content, markup=False)
    _print_page_footer(page)


@app.command()
def terms(
    term: str = typer.Argument(..., help="Term to look up"),
    limit: int = typer.Option(100, help="Page size"),
    offset: int = typer.Option(0, help="Page offset"),
) -> None:
    """Find occurrences of a term across every provider."""
    from chatuniverse.db.connection import db_session
    from chatuniverse.indexing import IndexingStore

    with db_session() as session:
        page = IndexingStore(session).find_term_occurrences(
            term, limit=limit, offset=offset
        )

    for occurrence in page.items:
        console.print(
            f"[cyan]{occurrence.provider_id.value}[/cyan] "
            f"{occurrence.chat_title} #{occurrence.turn_index}: ",
            end="",
        )
        console.print(
            f"...{occurrence.context_before or ''}"
            f"[{occurrence.term}]"
            f"{occurrence.context_after or ''}...",
            markup=False,
        )
    _print_page_footer(page)


@app.command()
def network(
    chat_id: Optional[str] = typer.Argument(
        None, help="Chat thread id (omit for the global network)"
    ),
    min_weight: float = typer.Option(1, help="Minimum edge weight (global only)"),
    limit: int = typer.Option(100, help="Page size"),
    offset: int = typer.Option(0, help="Page offset"),
) -> None:
    """Show co-occurrence edges for one chat or across the universe."""
    from chatuniverse.db.connection import db_session
    from chatuniverse.indexing import IndexingStore

    with db_session() as session:
        store = IndexingStore(session)
        if chat_id:
            page = store.get_chat_network(chat_id, limit=limit, offset=offset)
        else:
            page = store.list_parallel_networks(
                limit=limit, offset=offset, min_weight=min_weight
            )

    table = Table(title="Co-occurrence network")
    table.add_column("Source")
    table.add_column("Target")
    table.add_column("Weight", justify="right")
    for edge in page.items:
        table.add_row(
            str(edge.source_thread_id), str(edge.target_thread_id), f"{edge.weight:g}"
        )
    console.print(table)
    _print_page_footer(page)


if __name__ == "__main__":
    app()

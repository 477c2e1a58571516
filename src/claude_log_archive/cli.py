"""Command-line interface for Claude Log Archive.

This module provides a CLI built with Typer for syncing, searching and
browsing the archive of Claude CLI conversation logs.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import Config, load_config
from .database import Database, NotFoundError
from .etl import get_last_sync_at, sync, sync_if_stale
from .fts import rebuild_search_indexes
from .reports import build_report
from .search import search as run_search
from .search import search_session

app = typer.Typer(
    name="claude-log-archive",
    help="Create a searchable archive of Claude CLI conversation logs.",
    no_args_is_help=True,
)
console = Console()

DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db", "-d",
        help="Path to SQLite database file (default: $CLAUDE_LOG_ARCHIVE_DB or claude_logs.db).",
        dir_okay=False,
    ),
]

ClaudeDirOption = Annotated[
    Optional[Path],
    typer.Option(
        "--claude-dir", "-c",
        help="Claude log directory (default: $CLAUDE_LOG_ARCHIVE_DIR or ~/.claude).",
        file_okay=False,
    ),
]


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        console.print(f"claude-log-archive version {__version__}")
        raise typer.Exit()


def format_timestamp(ts: int | None) -> str:
    """Convert an epoch-milliseconds timestamp to a human-readable date string."""
    if ts is None:
        return "Unknown"
    try:
        return datetime.fromtimestamp(ts / 1000).strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, OSError, OverflowError):
        return str(ts)


def _config(db: Path | None, claude_dir: Path | None = None) -> Config:
    return load_config(claude_dir=claude_dir, db_path=db)


def _open_existing(config: Config) -> Database:
    if not config.db_path.exists():
        console.print(f"[red]Error: Database file '{config.db_path}' not found.[/red]")
        console.print("Run 'claude-log-archive sync' first to import your logs.")
        raise typer.Exit(1)
    return Database(config.db_path)


def _print_stats(stats) -> None:
    console.print(f"  {stats.projects} projects")
    console.print(f"  {stats.sessions} sessions")
    console.print(f"  {stats.messages} messages")
    console.print(f"  {stats.tool_uses} tool uses")
    console.print(f"  {stats.global_history} history entries")
    console.print(f"  {stats.tasks} tasks")
    console.print(f"  {stats.plans} plans")


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version", "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
):
    """Claude Log Archive - Create a searchable archive of Claude CLI conversation logs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.command("sync")
def sync_command(
    db: DbOption = None,
    claude_dir: ClaudeDirOption = None,
    if_stale: Annotated[
        bool,
        typer.Option("--if-stale", help="Only sync when the last sync is older than the max age."),
    ] = False,
):
    """Rebuild the archive from the Claude log directory.

    Every sync is a full rebuild: existing rows are replaced by what is on disk now.
    """
    config = _config(db, claude_dir)
    database = Database(config.db_path)

    console.print(f"Syncing Claude logs from {config.claude_dir}...")
    stats = sync_if_stale(database, config) if if_stale else sync(database, config)
    if stats is None:
        console.print("[green]Archive is up to date, nothing to do.[/green]")
        return

    console.print(f"\n[green]Sync complete in {stats.duration_ms}ms:[/green]")
    _print_stats(stats)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query.")],
    db: DbOption = None,
    page: Annotated[int, typer.Option("--page", "-p", help="Page number.")] = 1,
    show_all: Annotated[bool, typer.Option("--all", "-a", help="Show every match.")] = False,
    sort_by: Annotated[
        str,
        typer.Option("--sort", "-s", help="Sort order: 'date' or 'relevance'."),
    ] = "date",
    session: Annotated[
        Optional[int],
        typer.Option("--session", help="Only search within this session (row id)."),
    ] = None,
    full_content: Annotated[
        bool,
        typer.Option("--full", "-F", help="Show full content instead of truncated snippets."),
    ] = False,
):
    """Search messages, tool inputs and prompt history."""
    if sort_by not in ("date", "relevance"):
        console.print("[red]Error: sort must be 'date' or 'relevance'[/red]")
        raise typer.Exit(1)

    config = _config(db)
    database = _open_existing(config)

    try:
        if session is not None:
            result = search_session(
                database, session, query, page=page, show_all=show_all,
                sort_by=sort_by, page_size=config.page_size,
            )
        else:
            result = run_search(
                database, query, page=page, show_all=show_all,
                sort_by=sort_by, page_size=config.page_size,
            )
    except NotFoundError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1) from exc

    if not result.results:
        console.print(f"[yellow]No results found for '{query}'[/yellow]")
        return

    console.print(
        f"[green bold]Found {result.total} result(s) for '{query}' "
        f"(page {result.page} of {result.total_pages}):[/green bold]\n"
    )

    for i, item in enumerate(result.results, 1):
        console.print(f"[cyan bold]━━━ Result {i} ━━━[/cyan bold]")
        console.print(f"[bright_blue bold]Source:[/bright_blue bold]  {item['source']}")
        if item.get("project"):
            console.print(f"[bright_blue bold]Project:[/bright_blue bold] [yellow]{item['project']}[/yellow]")
        if item.get("tool_name"):
            console.print(f"[bright_blue bold]Tool:[/bright_blue bold]    [cyan]{item['tool_name']}[/cyan]")
        if item.get("role"):
            role_color = "green" if item["role"] == "user" else "magenta"
            console.print(f"[bright_blue bold]Role:[/bright_blue bold]    [{role_color}]{item['role']}[/{role_color}]")
        console.print(f"[bright_blue bold]Date:[/bright_blue bold]    [dim]{format_timestamp(item['timestamp'])}[/dim]")

        content = item["content"] or ""
        if not full_content and len(content) > 200:
            content = escape(content[:200]) + "[dim]... (use --full to see more)[/dim]"
        else:
            content = escape(content)
        console.print(f"[bright_blue bold]Content:[/bright_blue bold] {content}")
        console.print()


@app.command()
def stats(db: DbOption = None):
    """Show database statistics."""
    database = _open_existing(_config(db))
    counts = database.get_stats()

    table = Table(title="Database Statistics")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right", style="green")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)

    last_sync = get_last_sync_at(database)
    console.print(f"Last sync: {last_sync.isoformat() if last_sync else 'never'}")


@app.command()
def projects(db: DbOption = None):
    """List projects, most recently active first."""
    database = _open_existing(_config(db))

    table = Table(title="Projects")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Path")
    table.add_column("Sessions", justify="right")
    table.add_column("Messages", justify="right")
    table.add_column("Last Session", style="dim")
    for p in database.list_projects():
        table.add_row(
            str(p["id"]),
            p["name"],
            p["path"],
            str(p["session_count"]),
            str(p["message_count"]),
            format_timestamp(p["last_session"]),
        )
    console.print(table)


@app.command()
def sessions(
    db: DbOption = None,
    page: Annotated[int, typer.Option("--page", "-p", help="Page number.")] = 1,
    project: Annotated[
        Optional[int],
        typer.Option("--project", help="Only sessions of this project (row id)."),
    ] = None,
):
    """List top-level sessions, newest first."""
    config = _config(db)
    database = _open_existing(config)

    if project is not None:
        try:
            rows = database.list_project_sessions(project)
        except NotFoundError as exc:
            console.print(f"[red]Error: {exc}[/red]")
            raise typer.Exit(1) from exc
        title = f"Sessions of project {project}"
    else:
        page = max(1, page)
        rows = database.list_sessions(limit=config.page_size, offset=(page - 1) * config.page_size)
        title = f"Sessions (page {page})"

    table = Table(title=title)
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Started", style="dim")
    table.add_column("Messages", justify="right")
    table.add_column("Summary")
    for s in rows:
        summary = (s["summary"] or "").replace("\n", " ")
        table.add_row(str(s["id"]), format_timestamp(s["started_at"]), str(s["message_count"]), summary[:80])
    console.print(table)


@app.command()
def show(
    session: Annotated[int, typer.Argument(help="Session row id.")],
    db: DbOption = None,
):
    """Show the messages of one session in order."""
    database = _open_existing(_config(db))
    try:
        info = database.get_session(session)
        messages = database.get_session_messages(session)
    except NotFoundError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1) from exc

    console.print(f"[bold]{info['summary'] or info['session_id']}[/bold]")
    console.print(f"[dim]{info['project']} · {info['git_branch'] or '-'} · {format_timestamp(info['started_at'])}[/dim]\n")
    for message in messages:
        role_color = "green" if message["role"] == "user" else "magenta"
        console.print(f"[{role_color} bold]{message['role']}[/{role_color} bold] [dim]{format_timestamp(message['timestamp'])}[/dim]")
        if message["content"]:
            console.print(message["content"], markup=False)
        for tool in database.get_tool_uses(message["id"]):
            console.print(f"  [cyan]⚙ {tool['tool_name']}[/cyan] {escape(tool['input_text'] or '')}", highlight=False)
        console.print()


@app.command()
def tasks(
    db: DbOption = None,
    status: Annotated[Optional[str], typer.Option("--status", help="Filter by task status.")] = None,
):
    """List tracked tasks."""
    database = _open_existing(_config(db))

    table = Table(title="Tasks")
    table.add_column("Session", style="dim")
    table.add_column("#", justify="right")
    table.add_column("Status", style="cyan")
    table.add_column("Subject")
    for t in database.list_tasks(status=status):
        table.add_row(t["source_session_id"], t["task_number"], t["status"], t["subject"])
    console.print(table)


@app.command()
def plans(db: DbOption = None):
    """List plan documents."""
    database = _open_existing(_config(db))

    table = Table(title="Plans")
    table.add_column("Slug", style="cyan")
    table.add_column("Title")
    for p in database.list_plans():
        table.add_row(p["slug"], p["title"] or "")
    console.print(table)


@app.command()
def report(db: DbOption = None):
    """Show usage totals and estimated cost."""
    database = _open_existing(_config(db))
    data = build_report(database)
    summary = data["summary"]

    console.print("[bold]Usage Summary:[/bold]")
    console.print(f"  Sessions: {summary['total_sessions']}")
    console.print(f"  Projects: {summary['total_projects']}")
    console.print(f"  Prompts sent: {summary['prompts_sent']}")
    console.print(f"  Responses received: {summary['responses_received']}")
    console.print(f"  Tool uses: {summary['total_tool_uses']}")
    console.print(f"  Input tokens: {summary['total_input_tokens']:,}")
    console.print(f"  Output tokens: {summary['total_output_tokens']:,}")
    console.print(f"  Estimated cost: ${data['total_cost']:,.2f}")

    if data["tool_usage"]:
        console.print("\n[bold]Top tools:[/bold]")
        for row in data["tool_usage"][:10]:
            console.print(f"  {row['tool_name']}: {row['count']}")


@app.command()
def reindex(db: DbOption = None):
    """Repopulate the full-text indexes from the base tables."""
    database = _open_existing(_config(db))
    with database.connection() as conn:
        rebuild_search_indexes(conn)
    console.print("[green]Search indexes rebuilt.[/green]")


@app.command()
def serve(
    db: DbOption = None,
    claude_dir: ClaudeDirOption = None,
    host: Annotated[str, typer.Option("--host", "-h", help="Host to bind to.")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind to.")] = 5000,
    auto_sync: Annotated[
        bool,
        typer.Option("--auto-sync/--no-auto-sync", help="Sync on startup when the archive is stale."),
    ] = True,
    debug: Annotated[bool, typer.Option("--debug", help="Enable Flask debug mode.")] = False,
):
    """Serve the archive as a JSON API."""
    from .webapp import run_server

    config = _config(db, claude_dir)
    console.print(f"Serving {config.db_path} on http://{host}:{port}")
    run_server(host=host, port=port, config=config, auto_sync=auto_sync, debug=debug)


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()

"""CLI for txts."""

import logging
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn

from txts import __version__
from txts.errors import TxtsError
from txts.models import IndexProgress

app = typer.Typer(
    name="txts",
    help="Fuzzy search through Apple Messages. Run `txts mcp` for MCP server mode.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

AFTER_HELP = "Only messages after this date (e.g. 2024-01-01, 30d)"


def version_callback(value: bool) -> None:
    if value:
        console.print(f"txts {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="Show debug logging")] = False,
) -> None:
    """Search Apple Messages with typo-tolerant matching."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def fail(message: str) -> NoReturn:
    err_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(1)


def run_index_build(quiet: bool = False, force: bool = False) -> None:
    """Build (or, unless forced, refresh) the index with a progress bar."""
    from txts.formatter import phase_label
    from txts.indexer import build_index, ensure_index

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=err_console,
        disable=quiet,
    ) as progress:
        tasks: dict[str, int] = {}

        def on_progress(event: IndexProgress) -> None:
            if event.phase not in tasks:
                tasks[event.phase] = progress.add_task(phase_label(event.phase), total=event.total)
            progress.update(tasks[event.phase], completed=event.current, total=event.total)

        try:
            if force:
                build_index(on_progress)
            elif ensure_index(on_progress) and not quiet:
                progress.console.print("[dim]Index was out of date and has been rebuilt.[/dim]")
        except TxtsError as e:
            fail(str(e))


@app.command()
def index(
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Suppress progress output")] = False,
) -> None:
    """Force rebuild the search index from Apple Messages."""
    from txts.formatter import format_stats
    from txts.indexer import MESSAGES_DB_PATH, get_stats

    console.print("[bold]Rebuilding search index...[/bold]")
    console.print(f"[dim]Reading from {MESSAGES_DB_PATH} (requires Full Disk Access)[/dim]\n")

    run_index_build(quiet=quiet, force=True)

    console.print("[green]✓ Index rebuilt successfully![/green]\n")
    stats = get_stats()
    if stats is not None:
        console.print(format_stats(stats))


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query (typos are tolerated)")],
    sender: Annotated[
        str | None, typer.Option("--from", "-f", help="Filter by sender name or phone number")
    ] = None,
    after: Annotated[
        str | None, typer.Option("--after", "-a", help=AFTER_HELP)
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Maximum number of results")] = 10,
    context: Annotated[
        int, typer.Option("--context", "-c", min=0, help="Messages to show before/after each result")
    ] = 2,
    exact: Annotated[
        bool, typer.Option("--exact", "-e", help="Exact word/phrase search instead of fuzzy")
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Search messages with fuzzy matching."""
    if not query.strip():
        fail("Query required")

    from txts.dates import parse_date
    from txts.formatter import format_no_results, format_search_result, results_to_json
    from txts.models import SearchOptions
    from txts.searcher import Searcher

    try:
        after_dt = parse_date(after)
    except ValueError as e:
        fail(str(e))

    run_index_build(quiet=json_output)

    try:
        with Searcher() as searcher:
            if exact:
                results = searcher.exact_search(
                    query, limit=limit, context=context, sender=sender, after=after_dt
                )
            else:
                options = SearchOptions(
                    query=query, sender=sender, after=after_dt, limit=limit, context=context
                )
                results = searcher.search(options)
    except TxtsError as e:
        fail(str(e))

    if json_output:
        console.print_json(data=results_to_json(results, query))
        return

    if not results:
        console.print(format_no_results(query))
        return

    console.print(f"[dim]Found {len(results)} result{'' if len(results) == 1 else 's'}:[/dim]\n")
    for i, item in enumerate(results):
        console.print(format_search_result(item, i))


@app.command("from")
def from_sender(
    sender: Annotated[str, typer.Argument(help="Sender name, phone number or email")],
    after: Annotated[
        str | None, typer.Option("--after", "-a", help=AFTER_HELP)
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Maximum number of results")] = 20,
    context: Annotated[
        int, typer.Option("--context", "-c", min=0, help="Messages to show before/after each result")
    ] = 2,
) -> None:
    """List recent messages from a specific sender."""
    from txts.dates import parse_date
    from txts.formatter import format_search_result
    from txts.searcher import Searcher

    try:
        after_dt = parse_date(after)
    except ValueError as e:
        fail(str(e))

    run_index_build()

    try:
        with Searcher() as searcher:
            results = searcher.messages_from(sender, after=after_dt, limit=limit, context=context)
    except TxtsError as e:
        fail(str(e))

    if not results:
        console.print(f'[yellow]No messages found from "{sender}"[/yellow]')
        return

    console.print(
        f"[dim]Found {len(results)} message{'' if len(results) == 1 else 's'} from {sender}:[/dim]\n"
    )
    for i, item in enumerate(results):
        console.print(format_search_result(item, i))


@app.command()
def recent(
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Maximum number of messages")] = 20,
) -> None:
    """Show most recent messages."""
    from txts.formatter import format_recent
    from txts.searcher import Searcher

    run_index_build()

    try:
        with Searcher() as searcher:
            messages = searcher.recent_messages(limit)
    except TxtsError as e:
        fail(str(e))

    if not messages:
        console.print("[yellow]No messages found.[/yellow]")
        return

    console.print(f"[dim]Most recent {len(messages)} messages:[/dim]\n")
    for result in messages:
        console.print(format_recent(result))


@app.command()
def contacts(
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Maximum number of contacts")] = 20,
) -> None:
    """List contacts by recent activity."""
    from txts.dates import unix_to_datetime
    from txts.searcher import Searcher

    run_index_build()

    try:
        with Searcher() as searcher:
            contact_list = searcher.contacts(limit)
    except TxtsError as e:
        fail(str(e))

    if not contact_list:
        console.print("[yellow]No contacts found.[/yellow]")
        return

    console.print(f"[dim]Top {len(contact_list)} contacts by recent activity:[/dim]\n")
    for contact in contact_list:
        last = unix_to_datetime(contact.last_message_date).astimezone()
        console.print(
            f"[green]{contact.name}[/green] [dim]({contact.message_count} messages)[/dim]"
            f" - last: [dim]{last:%b %-d}[/dim]"
        )


@app.command()
def conversations(
    limit: Annotated[
        int, typer.Option("--limit", "-l", min=1, help="Maximum number of conversations")
    ] = 20,
) -> None:
    """List conversations with message counts."""
    from txts.dates import unix_to_datetime
    from txts.searcher import Searcher

    run_index_build()

    try:
        with Searcher() as searcher:
            conversation_list = searcher.conversations(limit)
    except TxtsError as e:
        fail(str(e))

    if not conversation_list:
        console.print("[yellow]No conversations found.[/yellow]")
        return

    console.print(f"[dim]Top {len(conversation_list)} conversations:[/dim]\n")
    for conv in conversation_list:
        last = unix_to_datetime(conv.last_message_date).astimezone()
        console.print(
            f"[green]{conv.chat_name}[/green] [dim]({conv.message_count} msgs)[/dim]"
            f" - [dim]{last:%b %-d}[/dim]"
        )
        if conv.last_message:
            preview = conv.last_message
            if len(preview) > 40:
                preview = preview[:40] + "..."
            console.print(f"  [dim]└─[/dim] {preview}", markup=False, highlight=False)


@app.command()
def thread(
    contact: Annotated[str, typer.Argument(help="Contact or chat name")],
    after: Annotated[
        str | None, typer.Option("--after", "-a", help=AFTER_HELP)
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Maximum number of messages")] = 50,
) -> None:
    """Show full conversation thread with a contact."""
    from txts.dates import parse_date
    from txts.searcher import Searcher

    try:
        after_dt = parse_date(after)
    except ValueError as e:
        fail(str(e))

    run_index_build()

    try:
        with Searcher() as searcher:
            messages = searcher.thread(contact, after=after_dt, limit=limit)
    except TxtsError as e:
        fail(str(e))

    if not messages:
        console.print(f'[yellow]No messages found with "{contact}"[/yellow]')
        return

    console.print(f"[bold]Conversation with {messages[0].chat_name}[/bold]")

    last_day = ""
    for message in messages:
        sent = message.sent_at.astimezone()
        day = f"{sent:%a, %b %-d}"
        if day != last_day:
            console.print(f"\n[dim]--- {day} ---[/dim]\n")
            last_day = day
        who = "[blue]You[/blue]" if message.is_from_me else f"[green]{message.sender}[/green]"
        console.print(f"[dim]{sent:%-I:%M %p}[/dim] {who}: ", end="")
        console.print(message.text, markup=False, highlight=False)


@app.command()
def stats() -> None:
    """Show index statistics."""
    from txts import storage
    from txts.formatter import format_stats
    from txts.indexer import get_stats

    index_stats = get_stats()
    if index_stats is None:
        fail("Index not found. Run `txts index` first to build the search index.")

    console.print(format_stats(index_stats))
    console.print(f"\n[dim]Index path: {storage.INDEX_DIR}[/dim]")
    console.print(f"[dim]Index size: {storage.format_size(storage.get_index_size())}[/dim]")


@app.command()
def mcp() -> None:
    """Start as an MCP server over stdio."""
    from txts.mcp_server import run_server

    run_server()


if __name__ == "__main__":
    app()

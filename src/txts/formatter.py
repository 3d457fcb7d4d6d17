"""Rich rendering of search results, stats and progress."""

import re
from datetime import datetime
from typing import Any

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from txts.models import IndexedMessage, IndexStats, SearchResult, SearchResultWithContext

PHASE_LABELS = {
    "reading": "Reading messages",
    "indexing-fts": "Building search index",
    "indexing-fuzzy": "Building fuzzy index",
    "done": "Done",
}

MAX_SENDER_WIDTH = 20


def format_date(dt: datetime) -> str:
    return dt.astimezone().strftime("%a, %b %-d, %Y %-I:%M %p")


def format_sender(message: IndexedMessage) -> Text:
    if message.is_from_me:
        return Text("[You]", style="cyan")
    sender = message.sender
    if len(sender) > MAX_SENDER_WIDTH:
        sender = sender[: MAX_SENDER_WIDTH - 3] + "..."
    return Text(f"[{sender}]", style="yellow")


def highlight_matches(text: Text, terms: list[str]) -> Text:
    """Highlight matched terms in text, case-insensitively."""
    for term in terms:
        if not term:
            continue
        text.highlight_regex(re.compile(re.escape(term), re.IGNORECASE), style="black on yellow")
    return text


def format_message(
    message: IndexedMessage, is_match: bool = False, terms: list[str] | None = None
) -> Text:
    line = Text()
    line.append("▶ " if is_match else "  ", style="green")
    line.append_text(format_sender(message))
    line.append(" ")
    body = Text(message.text)
    if is_match and terms:
        highlight_matches(body, terms)
    line.append_text(body)
    return line


def format_search_result(item: SearchResultWithContext, index: int) -> Panel:
    """Render one result with its before/after context as a panel."""
    message = item.result.message

    lines = [format_message(m) for m in item.before]
    lines.append(format_message(message, is_match=True, terms=item.result.matched_terms))
    lines.extend(format_message(m) for m in item.after)

    header = Text()
    header.append(f"[{index + 1}] ", style="bold cyan")
    header.append(message.chat_name or "Unknown Chat", style="magenta")
    header.append(f" │ {format_date(message.sent_at)}", style="dim")

    return Panel(Group(*lines), title=header, title_align="left")


def format_stats(stats: IndexStats) -> Table:
    table = Table(title="Index Statistics", title_style="bold green", show_header=False, box=None)
    table.add_column(style="dim")
    table.add_column()
    table.add_row("Messages:", f"{stats.total_messages:,}")
    table.add_row("Chats:", f"{stats.total_chats:,}")
    table.add_row("Contacts:", f"{stats.total_contacts:,}")
    table.add_row("Indexed at:", format_date(stats.indexed_at))
    table.add_row("Date range:", format_date_range(stats.oldest_message, stats.newest_message))
    return table


def format_date_range(oldest: datetime, newest: datetime) -> str:
    return f"{oldest.astimezone():%b %-d, %Y} - {newest.astimezone():%b %-d, %Y}"


def format_no_results(query: str) -> Text:
    return Text(f'No messages found matching "{query}"', style="yellow")


def phase_label(phase: str) -> str:
    return PHASE_LABELS.get(phase, phase)


def message_to_dict(message: IndexedMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "text": message.text,
        "sender": message.sender,
        "chat_name": message.chat_name,
        "chat_id": message.chat_id,
        "date": message.sent_at.isoformat(),
        "is_from_me": message.is_from_me,
    }


def results_to_json(results: list[SearchResultWithContext], query: str) -> dict[str, Any]:
    """Results as a JSON-serializable dict for programmatic use."""
    return {
        "query": query,
        "total_results": len(results),
        "results": [
            {
                "rank": i + 1,
                "score": round(item.result.score, 4),
                "matched_terms": item.result.matched_terms,
                "message": message_to_dict(item.result.message),
                "before": [message_to_dict(m) for m in item.before],
                "after": [message_to_dict(m) for m in item.after],
            }
            for i, item in enumerate(results)
        ],
    }


def format_plain_result(item: SearchResultWithContext, index: int) -> str:
    """Uncolored rendering used by the tool-calling server."""
    message = item.result.message
    lines = [
        f"--- Result {index + 1} (score: {item.result.score:.2f}) ---",
        f"Chat: {message.chat_name}",
        "",
    ]

    def sender(m: IndexedMessage) -> str:
        return "Me" if m.is_from_me else m.sender

    for m in item.before:
        lines.append(f"  [{m.sent_at.astimezone():%-I:%M %p}] {sender(m)}: {m.text}")
    lines.append(f"> [{format_date(message.sent_at)}] {sender(message)}: {message.text}")
    for m in item.after:
        lines.append(f"  [{m.sent_at.astimezone():%-I:%M %p}] {sender(m)}: {m.text}")
    return "\n".join(lines)


def format_plain_stats(stats: IndexStats) -> str:
    return "\n".join([
        f"Messages: {stats.total_messages:,}",
        f"Chats: {stats.total_chats:,}",
        f"Contacts: {stats.total_contacts:,}",
        f"Indexed at: {format_date(stats.indexed_at)}",
        f"Date range: {format_date_range(stats.oldest_message, stats.newest_message)}",
    ])


def format_recent(result: SearchResult) -> Text:
    message = result.message
    line = Text()
    line.append(f"{message.sent_at.astimezone():%b %-d %-I:%M %p} ", style="dim")
    line.append(f"[{message.chat_name}] ", style="dim")
    if message.is_from_me:
        line.append("You", style="blue")
    else:
        line.append(message.sender, style="green")
    text = message.text if len(message.text) <= 60 else message.text[:60] + "..."
    line.append(f": {text}")
    return line

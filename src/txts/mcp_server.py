"""MCP server exposing message search as tools over stdio."""

import logging
import sys

from mcp.server.fastmcp import FastMCP

from txts import __version__, storage
from txts.dates import parse_date
from txts.errors import IndexMissingError
from txts.formatter import format_plain_result, format_plain_stats
from txts.indexer import build_index, ensure_index, get_stats, index_exists
from txts.models import SearchOptions
from txts.searcher import Searcher

logger = logging.getLogger("txts.mcp")

mcp = FastMCP("messages")


@mcp.tool()
def search_messages(
    query: str,
    sender: str | None = None,
    after: str | None = None,
    limit: int = 10,
    context: int = 2,
) -> str:
    """
    Search through Apple Messages (iMessage/SMS) with fuzzy matching.
    Returns matching messages with surrounding context.

    Args:
        query: Search query - supports fuzzy matching and typos
        sender: Filter by sender name or phone number (optional)
        after: Show only messages after this date in YYYY-MM-DD format (optional)
        limit: Maximum number of results (default: 10)
        context: Number of messages to show before/after each result (default: 2)
    """
    logger.info(f"Searching messages: query={query!r}, sender={sender}, after={after}")
    if not index_exists():
        raise IndexMissingError(storage.INDEX_PATH)
    ensure_index()

    options = SearchOptions(
        query=query,
        sender=sender,
        after=parse_date(after),
        limit=limit,
        context=context,
    )
    with Searcher() as searcher:
        results = searcher.search(options)

    if not results:
        return f'No messages found matching "{query}"'

    formatted = "\n\n".join(format_plain_result(item, i) for i, item in enumerate(results))
    return f"Found {len(results)} result{'' if len(results) == 1 else 's'}:\n\n{formatted}"


@mcp.tool()
def rebuild_message_index() -> str:
    """
    Rebuild the search index from the Apple Messages database. Required before
    the first search and to include new messages. Requires Full Disk Access for
    the terminal.
    """
    logger.info("Rebuilding message index")
    stats = build_index()
    return f"Index rebuilt successfully!\n\n{format_plain_stats(stats)}"


@mcp.tool()
def get_message_stats() -> str:
    """
    Get statistics about the indexed messages including count, date range,
    and contacts.
    """
    stats = get_stats()
    if stats is None:
        raise IndexMissingError(storage.STATS_PATH)
    return f"Message Index Statistics (txts {__version__})\n\n{format_plain_stats(stats)}"


def run_server() -> None:
    """Run the server on stdio. Logs go to stderr; stdout carries the protocol."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )
    logger.info("Starting txts MCP server")
    mcp.run()

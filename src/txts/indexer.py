"""Index builder for the Apple Messages database."""

import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from txts import storage
from txts.contacts import ContactLookup, build_contact_lookup
from txts.dates import apple_to_unix, unix_to_datetime
from txts.errors import SourceUnavailableError
from txts.extract import extract_text
from txts.fuzzy import FuzzyIndex
from txts.models import IndexedMessage, IndexProgress, IndexStats, ProgressCallback, ProgressPhase

logger = logging.getLogger(__name__)

# Apple Messages database location
MESSAGES_DB_PATH = Path(
    os.environ.get("TXTS_MESSAGES_DB", Path.home() / "Library" / "Messages" / "chat.db")
)

FTS_BATCH_SIZE = 1000
FUZZY_BATCH_SIZE = 5000

FUZZY_FIELDS = ["text", "sender", "chat_name"]
FUZZY_STORE_FIELDS = ["id", "text", "sender", "chat_name", "chat_id", "date", "is_from_me"]
FUZZY_BOOST = {"text": 2.0, "sender": 1.5, "chat_name": 1.0}

# GROUP BY keeps one row per message when it belongs to several chats
SOURCE_QUERY = """
    SELECT
        m.ROWID as rowid,
        m.text,
        m.attributedBody,
        m.date,
        m.is_from_me,
        h.id as sender_id,
        COALESCE(c.display_name, c.chat_identifier) as chat_name,
        c.ROWID as chat_id,
        m.service
    FROM message m
    LEFT JOIN handle h ON m.handle_id = h.ROWID
    LEFT JOIN chat_message_join cmj ON m.ROWID = cmj.message_id
    LEFT JOIN chat c ON cmj.chat_id = c.ROWID
    WHERE m.text IS NOT NULL OR m.attributedBody IS NOT NULL
    GROUP BY m.ROWID
    ORDER BY m.date ASC
"""


@dataclass
class SourceMessage:
    """A row read from chat.db."""

    rowid: int
    text: str | None
    attributed_body: bytes | None
    date: int  # Apple nanoseconds
    is_from_me: bool
    sender_id: str | None
    chat_name: str | None
    chat_id: int | None
    service: str | None


def _emit(
    on_progress: ProgressCallback | None, phase: ProgressPhase, current: int, total: int
) -> None:
    if on_progress is not None:
        on_progress(IndexProgress(phase=phase, current=current, total=total))


def read_source_messages(path: Path) -> list[SourceMessage]:
    """Read every message with text or an attributedBody from chat.db."""
    try:
        path.stat()
    except FileNotFoundError:
        raise SourceUnavailableError(path) from None
    except OSError as e:
        # Without Full Disk Access the stat itself fails with EPERM
        raise SourceUnavailableError(path, str(e)) from e

    try:
        conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
    except sqlite3.Error as e:
        raise SourceUnavailableError(path, str(e)) from e

    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute(SOURCE_QUERY).fetchall()
    except sqlite3.Error as e:
        raise SourceUnavailableError(path, str(e)) from e
    finally:
        conn.close()

    return [
        SourceMessage(
            rowid=row["rowid"],
            text=row["text"],
            attributed_body=row["attributedBody"],
            date=row["date"] or 0,
            is_from_me=row["is_from_me"] == 1,
            sender_id=row["sender_id"],
            chat_name=row["chat_name"],
            chat_id=row["chat_id"],
            service=row["service"],
        )
        for row in rows
    ]


def resolve_chat_name(
    chat_name: str | None,
    sender_id: str | None,
    sender_name: str | None,
    contacts: ContactLookup,
) -> str | None:
    """Pick a display name for a chat.

    Chats without a display name (or named after the sender's handle) take
    the resolved sender name. Chats named by a phone number or email are
    resolved through the contact lookup.
    """
    if not chat_name or chat_name == sender_id:
        return sender_name
    if chat_name.startswith("+") or "@" in chat_name:
        return contacts.resolve(chat_name) or chat_name
    return chat_name


def to_indexed_message(source: SourceMessage, contacts: ContactLookup) -> IndexedMessage | None:
    """Convert a source row to an IndexedMessage, or None if it has no text."""
    text = source.text
    if not text and source.attributed_body:
        text = extract_text(source.attributed_body)
    if not text or not text.strip():
        return None

    sender_name = contacts.resolve(source.sender_id)
    chat_name = resolve_chat_name(source.chat_name, source.sender_id, sender_name, contacts)

    return IndexedMessage(
        id=source.rowid,
        text=text,
        sender=sender_name or "Unknown",
        chat_name=chat_name or "Unknown",
        chat_id=source.chat_id or 0,
        date=apple_to_unix(source.date),
        is_from_me=source.is_from_me,
    )


def build_fuzzy_index(
    messages: list[IndexedMessage], on_progress: ProgressCallback | None = None
) -> FuzzyIndex:
    """Build the typo-tolerant index, reporting progress per batch."""
    index = FuzzyIndex(fields=FUZZY_FIELDS, store_fields=FUZZY_STORE_FIELDS)
    total = len(messages)
    _emit(on_progress, "indexing-fuzzy", 0, total)

    for start in range(0, total, FUZZY_BATCH_SIZE):
        batch = messages[start:start + FUZZY_BATCH_SIZE]
        index.add_all(
            {
                "id": m.id,
                "text": m.text,
                "sender": m.sender,
                "chat_name": m.chat_name,
                "chat_id": m.chat_id,
                "date": m.date,
                "is_from_me": m.is_from_me,
            }
            for m in batch
        )
        _emit(on_progress, "indexing-fuzzy", min(start + FUZZY_BATCH_SIZE, total), total)

    return index


def compute_stats(messages: list[IndexedMessage]) -> IndexStats:
    dates = [m.date for m in messages]
    return IndexStats(
        total_messages=len(messages),
        total_chats=len({m.chat_id for m in messages}),
        total_contacts=len({m.sender for m in messages}),
        indexed_at=datetime.now(tz=timezone.utc),
        oldest_message=unix_to_datetime(min(dates) if dates else 0),
        newest_message=unix_to_datetime(max(dates) if dates else 0),
    )


def build_index(on_progress: ProgressCallback | None = None) -> IndexStats:
    """Rebuild both indexes from chat.db.

    Args:
        on_progress: Optional callback receiving IndexProgress events.

    Raises:
        SourceUnavailableError: chat.db is missing or unreadable. Raised
            before any existing index is touched.
    """
    source_path = MESSAGES_DB_PATH
    source_messages = read_source_messages(source_path)
    contacts = build_contact_lookup()

    messages = [
        indexed
        for indexed in (to_indexed_message(source, contacts) for source in source_messages)
        if indexed is not None
    ]
    total = len(messages)
    logger.info("Read %d messages (%d with text) from %s", len(source_messages), total, source_path)
    _emit(on_progress, "reading", 0, total)

    conn = storage.create_index_db()
    try:
        processed = 0
        _emit(on_progress, "indexing-fts", 0, total)
        for start in range(0, total, FTS_BATCH_SIZE):
            batch = messages[start:start + FTS_BATCH_SIZE]
            storage.save_messages(conn, batch)
            processed += len(batch)
            _emit(on_progress, "indexing-fts", processed, total)
    finally:
        conn.close()

    fuzzy_index = build_fuzzy_index(messages, on_progress)
    fuzzy_index.save(storage.FUZZY_INDEX_PATH)

    stats = compute_stats(messages)
    storage.save_stats(stats)
    logger.info("Indexed %d messages across %d chats", stats.total_messages, stats.total_chats)

    _emit(on_progress, "done", total, total)
    return stats


def index_exists() -> bool:
    """Check that both the relational and fuzzy indexes exist."""
    return storage.INDEX_PATH.exists() and storage.FUZZY_INDEX_PATH.exists()


def index_needs_rebuild() -> bool:
    """Whether chat.db has changed since the index was built."""
    source_path = MESSAGES_DB_PATH
    try:
        if not index_exists():
            return True
        try:
            source_mtime = source_path.stat().st_mtime
        except FileNotFoundError:
            # Nothing to rebuild from
            return False
        return source_mtime > storage.INDEX_PATH.stat().st_mtime
    except OSError as e:
        logger.debug("Could not compare index timestamps, rebuilding: %s", e)
        return True


def ensure_index(on_progress: ProgressCallback | None = None) -> bool:
    """Rebuild the index if it is missing or stale. Returns True if rebuilt."""
    if not index_needs_rebuild():
        return False
    build_index(on_progress)
    return True


def get_stats() -> IndexStats | None:
    return storage.load_stats()

"""SQLite storage for the txts index."""

import json
import os
import sqlite3
from pathlib import Path
from typing import Any

from txts.models import IndexedMessage, IndexStats

# Index location
INDEX_DIR = Path(os.environ.get("TXTS_INDEX_DIR", Path.home() / ".messages"))
INDEX_PATH = INDEX_DIR / "index.db"
FUZZY_INDEX_PATH = INDEX_DIR / "fuzzy.json"
STATS_PATH = INDEX_DIR / "stats.json"

MESSAGE_COLUMNS = "id, text, sender, chat_name, chat_id, date, is_from_me"


def contains_casefold(haystack: str | None, needle: str) -> bool:
    """Case-insensitive substring test that also folds non-ASCII letters."""
    return haystack is not None and needle.casefold() in haystack.casefold()


def ensure_index_dir() -> None:
    INDEX_DIR.mkdir(parents=True, exist_ok=True)


def get_connection(readonly: bool = False) -> sqlite3.Connection:
    """Get a connection to the index database."""
    if readonly:
        conn = sqlite3.connect(f"file:{INDEX_PATH}?mode=ro", uri=True)
    else:
        ensure_index_dir()
        conn = sqlite3.connect(str(INDEX_PATH))
    conn.row_factory = sqlite3.Row
    # SQLite LIKE only folds ASCII and treats _ and % as wildcards
    conn.create_function("casefold_contains", 2, contains_casefold, deterministic=True)
    return conn


def create_index_db() -> sqlite3.Connection:
    """Delete any existing index database and create a fresh one."""
    ensure_index_dir()
    INDEX_PATH.unlink(missing_ok=True)
    conn = get_connection()
    init_schema(conn)
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Initialize the database schema."""
    conn.executescript("""
        -- FTS5 for exact and phrase search
        CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
            id UNINDEXED,
            text,
            sender,
            chat_name,
            chat_id UNINDEXED,
            date UNINDEXED,
            is_from_me UNINDEXED,
            tokenize = 'porter unicode61'
        );

        -- Plain table for context lookups (FTS5 can't do ordered range scans)
        CREATE TABLE IF NOT EXISTS messages (
            id INTEGER PRIMARY KEY,
            text TEXT NOT NULL,
            sender TEXT,
            chat_name TEXT,
            chat_id INTEGER,
            date INTEGER NOT NULL,
            is_from_me INTEGER NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_messages_chat_date ON messages(chat_id, date);
        CREATE INDEX IF NOT EXISTS idx_messages_date ON messages(date);
    """)
    conn.commit()


def _message_params(message: IndexedMessage) -> tuple:
    return (
        message.id,
        message.text,
        message.sender,
        message.chat_name,
        message.chat_id,
        message.date,
        1 if message.is_from_me else 0,
    )


def save_messages(conn: sqlite3.Connection, messages: list[IndexedMessage]) -> None:
    """Insert a batch of messages into both tables in one transaction."""
    params = [_message_params(m) for m in messages]
    with conn:
        conn.executemany(
            f"INSERT INTO messages_fts ({MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            params,
        )
        conn.executemany(
            f"INSERT INTO messages ({MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            params,
        )


def row_to_message(row: sqlite3.Row) -> IndexedMessage:
    return IndexedMessage(
        id=row["id"],
        text=row["text"],
        sender=row["sender"],
        chat_name=row["chat_name"],
        chat_id=row["chat_id"],
        date=row["date"],
        is_from_me=bool(row["is_from_me"]),
    )


def get_message(conn: sqlite3.Connection, message_id: int) -> IndexedMessage | None:
    """Get a message by ID."""
    row = conn.execute(
        f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
    ).fetchone()
    if row is None:
        return None
    return row_to_message(row)


def get_messages_before(
    conn: sqlite3.Connection, chat_id: int, date: int, limit: int
) -> list[IndexedMessage]:
    """Up to ``limit`` messages in a chat before ``date``, oldest first."""
    rows = conn.execute(
        f"""
        SELECT {MESSAGE_COLUMNS} FROM messages
        WHERE chat_id = ? AND date < ?
        ORDER BY date DESC
        LIMIT ?
        """,
        (chat_id, date, limit),
    ).fetchall()
    return [row_to_message(row) for row in reversed(rows)]


def get_messages_after(
    conn: sqlite3.Connection, chat_id: int, date: int, limit: int
) -> list[IndexedMessage]:
    """Up to ``limit`` messages in a chat after ``date``, oldest first."""
    rows = conn.execute(
        f"""
        SELECT {MESSAGE_COLUMNS} FROM messages
        WHERE chat_id = ? AND date > ?
        ORDER BY date ASC
        LIMIT ?
        """,
        (chat_id, date, limit),
    ).fetchall()
    return [row_to_message(row) for row in rows]


def search_fts(conn: sqlite3.Connection, query: str, limit: int = 50) -> list[tuple[int, float]]:
    """Search using FTS5 full-text search.

    Returns list of (message_id, score) tuples, best first.
    """
    sql = """
        SELECT id, bm25(messages_fts) as score
        FROM messages_fts
        WHERE messages_fts MATCH ?
        ORDER BY score
        LIMIT ?
    """
    rows = conn.execute(sql, (query, limit)).fetchall()
    # BM25 scores are negative (lower is better), so negate them
    return [(int(row[0]), -row[1]) for row in rows]


def get_recent_messages(conn: sqlite3.Connection, limit: int) -> list[IndexedMessage]:
    rows = conn.execute(
        f"SELECT {MESSAGE_COLUMNS} FROM messages ORDER BY date DESC, id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [row_to_message(row) for row in rows]


def get_messages_matching(
    conn: sqlite3.Connection, name: str, after: int | None, limit: int
) -> list[IndexedMessage]:
    """Newest messages whose sender or chat name contains ``name``."""
    sql = f"""
        SELECT {MESSAGE_COLUMNS} FROM messages
        WHERE (casefold_contains(sender, ?) OR casefold_contains(chat_name, ?))
    """
    params: list[Any] = [name, name]
    if after is not None:
        sql += " AND date >= ?"
        params.append(after)
    sql += " ORDER BY date DESC, id DESC LIMIT ?"
    params.append(limit)
    return [row_to_message(row) for row in conn.execute(sql, params).fetchall()]


def get_contacts(conn: sqlite3.Connection, limit: int) -> list[dict[str, Any]]:
    """Senders other than the user, most recently active first."""
    rows = conn.execute(
        """
        SELECT sender, COUNT(*) as message_count, MAX(date) as last_message_date
        FROM messages
        WHERE is_from_me = 0
        GROUP BY sender
        ORDER BY last_message_date DESC
        LIMIT ?
        """,
        (limit,),
    ).fetchall()
    return [dict(row) for row in rows]


def get_conversations(conn: sqlite3.Connection, limit: int) -> list[dict[str, Any]]:
    """Chats with message counts and their latest message, most recent first."""
    rows = conn.execute(
        """
        SELECT
            m.chat_id,
            m.chat_name,
            stats.message_count,
            stats.last_message_date,
            m.text as last_message
        FROM (
            SELECT chat_id, COUNT(*) as message_count, MAX(date) as last_message_date
            FROM messages
            GROUP BY chat_id
        ) stats
        JOIN messages m ON m.id = (
            SELECT id FROM messages
            WHERE chat_id = stats.chat_id
            ORDER BY date DESC, id DESC
            LIMIT 1
        )
        ORDER BY stats.last_message_date DESC
        LIMIT ?
        """,
        (limit,),
    ).fetchall()
    return [dict(row) for row in rows]


def find_chat_id(conn: sqlite3.Connection, name: str) -> int | None:
    """The most recently active chat whose name or sender contains ``name``."""
    row = conn.execute(
        """
        SELECT chat_id FROM messages
        WHERE casefold_contains(chat_name, ?) OR casefold_contains(sender, ?)
        ORDER BY date DESC
        LIMIT 1
        """,
        (name, name),
    ).fetchone()
    return row["chat_id"] if row else None


def get_chat_messages(
    conn: sqlite3.Connection, chat_id: int, after: int | None, limit: int
) -> list[IndexedMessage]:
    """The latest ``limit`` messages of a chat, oldest first."""
    sql = f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE chat_id = ?"
    params: list[Any] = [chat_id]
    if after is not None:
        sql += " AND date >= ?"
        params.append(after)
    sql += " ORDER BY date DESC, id DESC LIMIT ?"
    params.append(limit)
    rows = conn.execute(sql, params).fetchall()
    return [row_to_message(row) for row in reversed(rows)]


def save_stats(stats: IndexStats) -> None:
    ensure_index_dir()
    STATS_PATH.write_text(json.dumps(stats.to_dict(), indent=2), encoding="utf-8")


def load_stats() -> IndexStats | None:
    if not STATS_PATH.exists():
        return None
    return IndexStats.from_dict(json.loads(STATS_PATH.read_text(encoding="utf-8")))


def get_index_size() -> int:
    """Combined size in bytes of the index files."""
    return sum(path.stat().st_size for path in (INDEX_PATH, FUZZY_INDEX_PATH) if path.exists())


def format_size(size_bytes: int) -> str:
    """Format byte size as human-readable string."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"

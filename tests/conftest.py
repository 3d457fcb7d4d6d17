"""Pytest fixtures for txts tests."""

import sqlite3
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from txts.dates import APPLE_EPOCH_OFFSET, NANOSECONDS_PER_SECOND

# 2024-01-01T00:00:00Z
BASE_TIME = 1704067200


def apple_ns(unix_seconds: int) -> int:
    return (unix_seconds - APPLE_EPOCH_OFFSET) * NANOSECONDS_PER_SECOND


def make_chat_db(path: Path, handles, chats, messages) -> Path:
    """Create a minimal chat.db with the tables the indexer joins."""
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE handle (ROWID INTEGER PRIMARY KEY, id TEXT);
        CREATE TABLE chat (ROWID INTEGER PRIMARY KEY, display_name TEXT, chat_identifier TEXT);
        CREATE TABLE message (
            ROWID INTEGER PRIMARY KEY,
            text TEXT,
            attributedBody BLOB,
            date INTEGER,
            is_from_me INTEGER,
            handle_id INTEGER,
            service TEXT
        );
        CREATE TABLE chat_message_join (chat_id INTEGER, message_id INTEGER);
    """)
    conn.executemany("INSERT INTO handle (ROWID, id) VALUES (?, ?)", handles)
    conn.executemany(
        "INSERT INTO chat (ROWID, display_name, chat_identifier) VALUES (?, ?, ?)", chats
    )
    for msg in messages:
        conn.execute(
            """
            INSERT INTO message (ROWID, text, attributedBody, date, is_from_me, handle_id, service)
            VALUES (?, ?, ?, ?, ?, ?, 'iMessage')
            """,
            (
                msg["id"],
                msg.get("text"),
                msg.get("body"),
                apple_ns(msg["date"]),
                1 if msg.get("from_me") else 0,
                msg.get("handle", 0),
            ),
        )
        for chat_id in msg["chats"]:
            conn.execute(
                "INSERT INTO chat_message_join (chat_id, message_id) VALUES (?, ?)",
                (chat_id, msg["id"]),
            )
    conn.commit()
    conn.close()
    return path


def make_address_book(path: Path, records) -> Path:
    """Create an AddressBook database.

    records: list of (first, last, org, [phones], [emails]).
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE ZABCDRECORD (
            Z_PK INTEGER PRIMARY KEY, ZFIRSTNAME TEXT, ZLASTNAME TEXT, ZORGANIZATION TEXT
        );
        CREATE TABLE ZABCDPHONENUMBER (ZOWNER INTEGER, ZFULLNUMBER TEXT);
        CREATE TABLE ZABCDEMAILADDRESS (ZOWNER INTEGER, ZADDRESS TEXT);
    """)
    for pk, (first, last, org, phones, emails) in enumerate(records, 1):
        conn.execute(
            "INSERT INTO ZABCDRECORD (Z_PK, ZFIRSTNAME, ZLASTNAME, ZORGANIZATION) VALUES (?, ?, ?, ?)",
            (pk, first, last, org),
        )
        conn.executemany(
            "INSERT INTO ZABCDPHONENUMBER (ZOWNER, ZFULLNUMBER) VALUES (?, ?)",
            [(pk, phone) for phone in phones],
        )
        conn.executemany(
            "INSERT INTO ZABCDEMAILADDRESS (ZOWNER, ZADDRESS) VALUES (?, ?)",
            [(pk, email) for email in emails],
        )
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def address_book_dir(temp_dir):
    """A primary AddressBook plus one smaller per-account source."""
    root = temp_dir / "AddressBook"
    make_address_book(
        root / "AddressBook-v22.abcddb",
        [
            ("Alice", "Smith", None, ["+1 (555) 123-4567"], []),
            ("Bob", "Smith", None, [], ["Bob@Example.com"]),
            (None, None, "Acme Corp", ["+44 7911 123456"], []),
        ],
    )
    make_address_book(
        root / "Sources" / "ACCOUNT-1" / "AddressBook-v22.abcddb",
        [("Alice", "Other", None, ["555-123-4567"], [])],
    )
    return root


@pytest.fixture
def sample_chat_db(temp_dir):
    """A chat.db with a one-to-one chat and a group chat.

    Chat 1 (Alice): "Hi there" -> "How are you" (attributedBody only) -> "Good thanks"
    Chat 2 (Book Club): two messages, plus rows with no recoverable text.
    """
    return make_chat_db(
        temp_dir / "chat.db",
        handles=[(1, "+15551234567"), (2, "bob@example.com")],
        chats=[(1, None, "+15551234567"), (2, "Book Club", "chat123456789")],
        messages=[
            {"id": 1, "text": "Hi there", "date": BASE_TIME + 100, "handle": 1, "chats": [1]},
            {
                "id": 2,
                "body": b"\x00\x01+How are you\x86\x84\x02",
                "date": BASE_TIME + 200,
                "from_me": True,
                "chats": [1],
            },
            {"id": 3, "text": "Good thanks", "date": BASE_TIME + 300, "handle": 1, "chats": [1]},
            {
                "id": 4,
                "text": "Dinner tomorrow at seven?",
                "date": BASE_TIME + 400,
                "handle": 2,
                "chats": [2, 2],
            },
            {"id": 5, "text": "Sounds great", "date": BASE_TIME + 500, "from_me": True, "chats": [2]},
            {"id": 6, "body": b"\x00\x01\x02\x03", "date": BASE_TIME + 600, "handle": 2, "chats": [2]},
            {"id": 7, "text": "   ", "date": BASE_TIME + 700, "handle": 2, "chats": [2]},
        ],
    )


@pytest.fixture
def index_env(temp_dir, sample_chat_db, address_book_dir):
    """Point the index, source and AddressBook paths at temporary files."""
    index_dir = temp_dir / "index"
    with (
        patch("txts.storage.INDEX_DIR", index_dir),
        patch("txts.storage.INDEX_PATH", index_dir / "index.db"),
        patch("txts.storage.FUZZY_INDEX_PATH", index_dir / "fuzzy.json"),
        patch("txts.storage.STATS_PATH", index_dir / "stats.json"),
        patch("txts.indexer.MESSAGES_DB_PATH", sample_chat_db),
        patch("txts.contacts.ADDRESS_BOOK_DIR", address_book_dir),
    ):
        yield index_dir


@pytest.fixture
def built_index(index_env):
    """A fully built index over the sample chat.db."""
    from txts.indexer import build_index

    stats = build_index()
    return index_env, stats


@pytest.fixture
def searcher(built_index):
    from txts.searcher import Searcher

    with Searcher() as s:
        yield s


@pytest.fixture
def address_book_factory():
    """The AddressBook builder, for tests that need their own sources."""
    return make_address_book


@pytest.fixture
def chat_db_factory():
    """The chat.db builder, for tests that need their own messages."""
    return make_chat_db


@pytest.fixture
def base_time():
    """Unix time the sample messages are offset from."""
    return BASE_TIME

"""Tests for the storage module."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from txts import storage
from txts.models import IndexedMessage, IndexStats


def make_message(id, text, chat_id=1, date=1000, sender="Alice", chat_name="Alice", is_from_me=False):
    return IndexedMessage(
        id=id,
        text=text,
        sender=sender,
        chat_name=chat_name,
        chat_id=chat_id,
        date=date,
        is_from_me=is_from_me,
    )


@pytest.fixture
def temp_db(temp_dir):
    """Create a temporary index database for testing."""
    with patch("txts.storage.INDEX_DIR", temp_dir), patch(
        "txts.storage.INDEX_PATH", temp_dir / "index.db"
    ), patch("txts.storage.STATS_PATH", temp_dir / "stats.json"):
        conn = storage.create_index_db()
        yield conn
        conn.close()


@pytest.fixture
def populated_db(temp_db):
    storage.save_messages(temp_db, [
        make_message(1, "first", date=100),
        make_message(2, "second", date=200, is_from_me=True, sender="Unknown"),
        make_message(3, "third", date=300),
        make_message(4, "fourth", date=400),
        make_message(5, "fifth", date=500, is_from_me=True, sender="Unknown"),
        make_message(
            6, "other chat entirely", chat_id=2, date=250, sender="Bob", chat_name="Book Club"
        ),
    ])
    return temp_db


def test_init_schema(temp_db):
    """Test schema initialization creates all tables."""
    tables = temp_db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    table_names = {t[0] for t in tables}

    assert "messages" in table_names
    assert "messages_fts" in table_names


def test_create_index_db_replaces_existing(temp_db):
    """Test that rebuilding starts from an empty database."""
    storage.save_messages(temp_db, [make_message(1, "hello")])
    temp_db.close()

    conn = storage.create_index_db()
    try:
        assert conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 0
    finally:
        conn.close()


def test_save_and_get_message(temp_db):
    """Test saving and retrieving a message."""
    message = make_message(42, "Dinner tomorrow?", is_from_me=True)
    storage.save_messages(temp_db, [message])

    assert storage.get_message(temp_db, 42) == message
    assert storage.get_message(temp_db, 999) is None


def test_context_before_and_after(populated_db):
    """Test neighbours come from the same chat in chronological order."""
    before = storage.get_messages_before(populated_db, 1, 300, 2)
    after = storage.get_messages_after(populated_db, 1, 300, 2)

    assert [m.id for m in before] == [1, 2]
    assert [m.id for m in after] == [4, 5]


def test_context_at_chat_edges(populated_db):
    """Test that context is truncated at the start and end of a chat."""
    assert storage.get_messages_before(populated_db, 1, 100, 2) == []
    assert [m.id for m in storage.get_messages_after(populated_db, 1, 400, 2)] == [5]


def test_search_fts(populated_db):
    """Test FTS5 search returns positive scores, best first."""
    results = storage.search_fts(populated_db, '"chat"')
    assert [message_id for message_id, _ in results] == [6]
    assert results[0][1] > 0


def test_recent_messages(populated_db):
    """Test recent messages come newest first."""
    assert [m.id for m in storage.get_recent_messages(populated_db, 3)] == [5, 4, 3]


def test_messages_matching(populated_db):
    """Test sender/chat name matching with an optional date bound."""
    assert [m.id for m in storage.get_messages_matching(populated_db, "book", None, 10)] == [6]
    assert [m.id for m in storage.get_messages_matching(populated_db, "alice", 300, 10)] == [
        5,
        4,
        3,
    ]


def test_contacts_exclude_own_messages(populated_db):
    """Test contacts only count messages from other people."""
    rows = storage.get_contacts(populated_db, 10)
    assert [(r["sender"], r["message_count"]) for r in rows] == [("Alice", 3), ("Bob", 1)]


def test_conversations(populated_db):
    """Test conversations carry counts and their latest message."""
    rows = storage.get_conversations(populated_db, 10)
    assert rows[0]["chat_id"] == 1
    assert rows[0]["message_count"] == 5
    assert rows[0]["last_message"] == "fifth"
    assert rows[1]["chat_name"] == "Book Club"


def test_chat_messages(populated_db):
    """Test a thread returns its latest messages oldest first."""
    chat_id = storage.find_chat_id(populated_db, "alice")
    assert chat_id == 1
    assert [m.id for m in storage.get_chat_messages(populated_db, chat_id, None, 3)] == [3, 4, 5]
    assert [m.id for m in storage.get_chat_messages(populated_db, chat_id, 400, 10)] == [4, 5]
    assert storage.find_chat_id(populated_db, "nobody") is None


def test_save_and_load_stats(temp_db):
    """Test stats survive a round trip through disk."""
    assert storage.load_stats() is None

    stats = IndexStats(
        total_messages=10,
        total_chats=2,
        total_contacts=3,
        indexed_at=datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
        oldest_message=datetime(2023, 1, 1, tzinfo=timezone.utc),
        newest_message=datetime(2024, 5, 31, tzinfo=timezone.utc),
    )
    storage.save_stats(stats)

    assert storage.load_stats() == stats


def test_format_size():
    """Test human-readable sizes."""
    assert storage.format_size(512) == "512.0 B"
    assert storage.format_size(2048) == "2.0 KB"
    assert storage.format_size(5 * 1024 * 1024) == "5.0 MB"


def test_name_matching_folds_unicode_case(temp_db):
    """Test sender matching ignores case for non-ASCII names."""
    storage.save_messages(temp_db, [
        make_message(1, "Bonjour", chat_id=3, sender="Émile Zola", chat_name="Émile Zola"),
        make_message(2, "Hallo", chat_id=4, date=2000, sender="Jürgen", chat_name="Jürgen"),
    ])

    assert [m.id for m in storage.get_messages_matching(temp_db, "émile", None, 10)] == [1]
    assert [m.id for m in storage.get_messages_matching(temp_db, "JÜRGEN", None, 10)] == [2]
    assert storage.find_chat_id(temp_db, "émile") == 3


def test_name_matching_treats_wildcards_literally(temp_db):
    """Test that _ and % in a name only match themselves."""
    storage.save_messages(temp_db, [
        make_message(1, "one", chat_id=1, sender="john1doe", chat_name="john1doe"),
        make_message(2, "two", chat_id=2, date=2000, sender="john_doe", chat_name="john_doe"),
        make_message(3, "three", chat_id=3, date=3000, sender="100 Club", chat_name="100 Club"),
    ])

    assert [m.id for m in storage.get_messages_matching(temp_db, "john_doe", None, 10)] == [2]
    assert storage.get_messages_matching(temp_db, "100%", None, 10) == []
    assert storage.find_chat_id(temp_db, "n_d") == 2

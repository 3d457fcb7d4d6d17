"""Fuzzy search over the message index, with conversational context."""

import logging
import sqlite3
from datetime import datetime

from txts import storage
from txts.dates import datetime_to_unix
from txts.errors import IndexMissingError
from txts.fuzzy import FuzzyIndex, tokenize
from txts.indexer import FUZZY_BOOST
from txts.models import (
    Contact,
    Conversation,
    IndexedMessage,
    SearchOptions,
    SearchResult,
    SearchResultWithContext,
)

logger = logging.getLogger(__name__)

# Edit distance allowed per query term, as a fraction of its length
FUZZY_FRACTION = 0.2


def hit_to_result(hit: dict) -> SearchResult:
    """Build a SearchResult from a fuzzy index hit."""
    return SearchResult(
        message=IndexedMessage(
            id=hit["id"],
            text=hit["text"],
            sender=hit["sender"],
            chat_name=hit["chat_name"],
            chat_id=hit["chat_id"],
            date=hit["date"],
            is_from_me=bool(hit["is_from_me"]),
        ),
        score=hit["score"],
        matched_terms=list(hit["terms"]),
    )


def apply_filters(
    results: list[SearchResult], sender: str | None, after: datetime | None
) -> list[SearchResult]:
    """Keep results whose sender or chat contains ``sender`` and sent on or after ``after``."""
    if sender:
        results = [
            r
            for r in results
            if storage.contains_casefold(r.message.sender, sender)
            or storage.contains_casefold(r.message.chat_name, sender)
        ]

    if after is not None:
        after_timestamp = datetime_to_unix(after)
        results = [r for r in results if r.message.date >= after_timestamp]
    return results


def to_fts_query(query: str) -> str:
    """Quote user input for FTS5 MATCH.

    A query wrapped in double quotes is searched as a phrase; otherwise every
    word must appear.
    """
    query = query.strip()
    if len(query) > 1 and query.startswith('"') and query.endswith('"'):
        return '"' + query[1:-1].replace('"', '""') + '"'
    return " ".join('"' + word.replace('"', '""') + '"' for word in query.split())


class Searcher:
    """Search session over the on-disk indexes.

    The index database and fuzzy index are opened on first use and reused
    until close(). Use as a context manager, or call close() when done.
    """

    def __init__(self) -> None:
        self._conn: sqlite3.Connection | None = None
        self._fuzzy: FuzzyIndex | None = None

    def __enter__(self) -> "Searcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if not storage.INDEX_PATH.exists():
                raise IndexMissingError(storage.INDEX_PATH)
            self._conn = storage.get_connection(readonly=True)
        return self._conn

    @property
    def fuzzy(self) -> FuzzyIndex:
        if self._fuzzy is None:
            if not storage.FUZZY_INDEX_PATH.exists():
                raise IndexMissingError(storage.FUZZY_INDEX_PATH)
            self._fuzzy = FuzzyIndex.load(storage.FUZZY_INDEX_PATH)
            logger.debug("Loaded fuzzy index with %d documents", self._fuzzy.document_count)
        return self._fuzzy

    def close(self) -> None:
        """Release cached handles."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._fuzzy = None

    def _check_index(self) -> None:
        for path in (storage.INDEX_PATH, storage.FUZZY_INDEX_PATH):
            if not path.exists():
                raise IndexMissingError(path)

    def with_context(self, result: SearchResult, context: int) -> SearchResultWithContext:
        """Attach up to ``context`` neighbouring messages on each side."""
        message = result.message
        if context <= 0:
            return SearchResultWithContext(result=result)
        return SearchResultWithContext(
            result=result,
            before=storage.get_messages_before(self.conn, message.chat_id, message.date, context),
            after=storage.get_messages_after(self.conn, message.chat_id, message.date, context),
        )

    def search(self, options: SearchOptions) -> list[SearchResultWithContext]:
        """Fuzzy search with sender/date filters, in relevance order.

        Raises:
            IndexMissingError: Either index file is missing.
        """
        self._check_index()
        if not options.query or not options.query.strip():
            return []

        hits = self.fuzzy.search(
            options.query,
            fuzzy=FUZZY_FRACTION,
            prefix=True,
            boost=FUZZY_BOOST,
        )
        if not hits:
            return []

        results = apply_filters(
            [hit_to_result(hit) for hit in hits], options.sender, options.after
        )
        results = results[: options.limit]
        return [self.with_context(r, options.context) for r in results]

    def exact_search(
        self,
        query: str,
        limit: int = 10,
        context: int = 0,
        sender: str | None = None,
        after: datetime | None = None,
    ) -> list[SearchResultWithContext]:
        """Exact word or phrase search over the FTS5 table, ranked by bm25.

        Takes the same sender and date filters as search().
        """
        self._check_index()
        if not query.strip():
            return []

        # Filters run after ranking, so fetch every match when they are set
        fts_limit = -1 if sender or after is not None else limit
        terms = tokenize(query)
        results = []
        for message_id, score in storage.search_fts(self.conn, to_fts_query(query), fts_limit):
            message = storage.get_message(self.conn, message_id)
            if message is None:
                continue
            results.append(SearchResult(message=message, score=score, matched_terms=list(terms)))

        results = apply_filters(results, sender, after)[:limit]
        return [self.with_context(r, context) for r in results]

    def messages_from(
        self,
        sender: str,
        after: datetime | None = None,
        limit: int = 20,
        context: int = 2,
    ) -> list[SearchResultWithContext]:
        """Newest messages whose sender or chat name contains ``sender``."""
        self._check_index()
        after_timestamp = datetime_to_unix(after) if after is not None else None
        messages = storage.get_messages_matching(self.conn, sender, after_timestamp, limit)
        return [self.with_context(SearchResult(message=m, score=0.0), context) for m in messages]

    def recent_messages(self, limit: int = 20) -> list[SearchResult]:
        self._check_index()
        messages = storage.get_recent_messages(self.conn, limit)
        return [SearchResult(message=m, score=0.0) for m in messages]

    def contacts(self, limit: int = 20) -> list[Contact]:
        self._check_index()
        return [
            Contact(
                name=row["sender"],
                message_count=row["message_count"],
                last_message_date=row["last_message_date"],
            )
            for row in storage.get_contacts(self.conn, limit)
        ]

    def conversations(self, limit: int = 20) -> list[Conversation]:
        self._check_index()
        return [
            Conversation(
                chat_id=row["chat_id"],
                chat_name=row["chat_name"],
                message_count=row["message_count"],
                last_message_date=row["last_message_date"],
                last_message=row["last_message"],
            )
            for row in storage.get_conversations(self.conn, limit)
        ]

    def thread(
        self, contact: str, after: datetime | None = None, limit: int = 50
    ) -> list[IndexedMessage]:
        """Messages of the most recently active chat matching ``contact``, oldest first."""
        self._check_index()
        chat_id = storage.find_chat_id(self.conn, contact)
        if chat_id is None:
            return []
        after_timestamp = datetime_to_unix(after) if after is not None else None
        return storage.get_chat_messages(self.conn, chat_id, after_timestamp, limit)

"""Data models for txts."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Literal

from txts.dates import unix_to_datetime

ProgressPhase = Literal["reading", "indexing-fts", "indexing-fuzzy", "done"]


@dataclass(frozen=True)
class IndexedMessage:
    """A message as stored in both indexes."""

    id: int  # ROWID from chat.db
    text: str
    sender: str
    chat_name: str
    chat_id: int
    date: int  # Unix seconds
    is_from_me: bool

    @property
    def sent_at(self) -> datetime:
        return unix_to_datetime(self.date)


@dataclass
class SearchResult:
    """A matched message with its relevance score."""

    message: IndexedMessage
    score: float
    matched_terms: list[str] = field(default_factory=list)


@dataclass
class SearchResultWithContext:
    """A search result with surrounding messages from the same chat."""

    result: SearchResult
    before: list[IndexedMessage] = field(default_factory=list)
    after: list[IndexedMessage] = field(default_factory=list)


@dataclass
class SearchOptions:
    query: str
    sender: str | None = None
    after: datetime | None = None
    limit: int = 10
    context: int = 2


@dataclass
class IndexStats:
    """Summary of a completed index build."""

    total_messages: int
    total_chats: int
    total_contacts: int
    indexed_at: datetime
    oldest_message: datetime
    newest_message: datetime

    def to_dict(self) -> dict:
        return {
            "totalMessages": self.total_messages,
            "totalChats": self.total_chats,
            "totalContacts": self.total_contacts,
            "indexedAt": self.indexed_at.isoformat(),
            "oldestMessage": self.oldest_message.isoformat(),
            "newestMessage": self.newest_message.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IndexStats":
        return cls(
            total_messages=data["totalMessages"],
            total_chats=data["totalChats"],
            total_contacts=data["totalContacts"],
            indexed_at=datetime.fromisoformat(data["indexedAt"]),
            oldest_message=datetime.fromisoformat(data["oldestMessage"]),
            newest_message=datetime.fromisoformat(data["newestMessage"]),
        )


@dataclass(frozen=True)
class IndexProgress:
    phase: ProgressPhase
    current: int
    total: int


ProgressCallback = Callable[[IndexProgress], None]


@dataclass
class Contact:
    """A sender with activity totals."""

    name: str
    message_count: int
    last_message_date: int  # Unix seconds


@dataclass
class Conversation:
    """A chat with activity totals."""

    chat_id: int
    chat_name: str
    message_count: int
    last_message_date: int  # Unix seconds
    last_message: str | None = None

"""Exceptions that cross the indexing/search boundary."""

from pathlib import Path


class TxtsError(Exception):
    """Base class for errors surfaced to the user."""


class SourceUnavailableError(TxtsError):
    """The Apple Messages database is missing or cannot be opened."""

    def __init__(self, path: Path, reason: str | None = None) -> None:
        self.path = path
        if reason:
            detail = f"Cannot read messages database at {path}: {reason}."
        else:
            detail = f"Messages database not found at {path}."
        super().__init__(f"{detail} Make sure you have Full Disk Access enabled for your terminal.")


class IndexMissingError(TxtsError):
    """A required on-disk index has not been built."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Index not found at {path}. Run `txts index` first.")

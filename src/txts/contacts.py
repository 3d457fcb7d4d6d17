"""Phone/email to display-name resolution from the macOS AddressBook."""

import logging
import os
import re
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

ADDRESS_BOOK_DIR = Path(
    os.environ.get(
        "TXTS_ADDRESS_BOOK_DIR",
        Path.home() / "Library" / "Application Support" / "AddressBook",
    )
)
ADDRESS_BOOK_FILE = "AddressBook-v22.abcddb"

# Shorter numbers match too many unrelated contacts
MIN_PHONE_DIGITS = 7

PHONE_QUERY = """
    SELECT
        TRIM(COALESCE(r.ZFIRSTNAME, '') || ' ' || COALESCE(r.ZLASTNAME, '')) as name,
        COALESCE(r.ZORGANIZATION, '') as org,
        p.ZFULLNUMBER as phone
    FROM ZABCDRECORD r
    JOIN ZABCDPHONENUMBER p ON r.Z_PK = p.ZOWNER
    WHERE p.ZFULLNUMBER IS NOT NULL
"""

EMAIL_QUERY = """
    SELECT
        TRIM(COALESCE(r.ZFIRSTNAME, '') || ' ' || COALESCE(r.ZLASTNAME, '')) as name,
        COALESCE(r.ZORGANIZATION, '') as org,
        e.ZADDRESS as email
    FROM ZABCDRECORD r
    JOIN ZABCDEMAILADDRESS e ON r.Z_PK = e.ZOWNER
    WHERE e.ZADDRESS IS NOT NULL
"""


def normalize_phone(phone: str) -> str:
    """Normalize a phone number for matching.

    Keeps digits (and a leading +), then drops the US country code so that
    "+1 (555) 123-4567", "15551234567" and "555-123-4567" all become
    "5551234567".
    """
    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned.startswith("+1") and len(cleaned) == 12:
        return cleaned[2:]
    if cleaned.startswith("1") and len(cleaned) == 11:
        return cleaned[1:]
    return cleaned.lstrip("+")


def _display_name(name: str | None, org: str | None) -> str | None:
    return (name or "").strip() or (org or "").strip() or None


class ContactLookup:
    """Mapping of normalized phone numbers and lowercase emails to names.

    Entries are first-write-wins: once a key is set, later sources never
    overwrite it.
    """

    def __init__(self) -> None:
        self.names: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self.names)

    def add_phone(self, phone: str, name: str) -> None:
        normalized = normalize_phone(phone)
        if len(normalized) < MIN_PHONE_DIGITS:
            return
        self.names.setdefault(normalized, name)
        if len(normalized) > 10:
            self.names.setdefault(normalized[-10:], name)

    def add_email(self, email: str, name: str) -> None:
        self.names.setdefault(email.lower(), name)

    def resolve(self, identifier: str | None) -> str | None:
        """Resolve a handle (phone/email) to a contact name.

        Returns the identifier unchanged when no contact matches, and None
        only for a missing identifier.
        """
        if not identifier:
            return None

        if "@" in identifier:
            return self.names.get(identifier.lower(), identifier)

        normalized = normalize_phone(identifier)
        if len(normalized) >= MIN_PHONE_DIGITS:
            candidates = [normalized]
            if len(normalized) > 10:
                candidates.append(normalized[-10:])
            # Local number without area code
            candidates.append(normalized[-7:])
            for key in candidates:
                name = self.names.get(key)
                if name:
                    return name

        return identifier


def discover_address_books() -> list[Path]:
    """Find the primary and per-account AddressBook databases that exist.

    Returns an empty list when the AddressBook directory can't be read.
    """
    sources: list[Path] = []
    sources_dir = ADDRESS_BOOK_DIR / "Sources"
    main_db = ADDRESS_BOOK_DIR / ADDRESS_BOOK_FILE
    try:
        if sources_dir.is_dir():
            sources.extend(
                path / ADDRESS_BOOK_FILE
                for path in sorted(sources_dir.iterdir())
                if path.is_dir() and (path / ADDRESS_BOOK_FILE).exists()
            )
        if main_db.exists():
            sources.append(main_db)
    except OSError as e:
        logger.warning("Cannot read AddressBook directory %s: %s", ADDRESS_BOOK_DIR, e)
        return []
    return sources


def _open_readonly(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
    conn.row_factory = sqlite3.Row
    return conn


def count_records(path: Path) -> int | None:
    """Number of contact records in an AddressBook database, None if unreadable."""
    try:
        conn = _open_readonly(path)
        try:
            return conn.execute("SELECT COUNT(*) FROM ZABCDRECORD").fetchone()[0]
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.debug("Could not count records in %s: %s", path, e)
        return None


def order_sources(sources: list[Path]) -> list[Path]:
    """Order sources by record count, largest first.

    Sources that can't be counted keep their discovered position; only the
    countable ones are reordered among themselves.
    """
    counted = [(path, count_records(path)) for path in sources]
    largest_first = iter(
        sorted(
            ((path, count) for path, count in counted if count is not None),
            key=lambda item: item[1],
            reverse=True,
        )
    )
    return [path if count is None else next(largest_first)[0] for path, count in counted]


def load_source(lookup: ContactLookup, path: Path) -> None:
    """Merge one AddressBook database into the lookup."""
    conn = _open_readonly(path)
    try:
        for row in conn.execute(PHONE_QUERY):
            name = _display_name(row["name"], row["org"])
            if name and row["phone"]:
                lookup.add_phone(row["phone"], name)

        for row in conn.execute(EMAIL_QUERY):
            name = _display_name(row["name"], row["org"])
            if name and row["email"]:
                lookup.add_email(row["email"], name)
    finally:
        conn.close()


def build_contact_lookup(sources: list[Path] | None = None) -> ContactLookup:
    """Build the lookup from all AddressBook sources, largest first.

    The largest database is applied first so it wins conflicts. Sources that
    can't be read are skipped.
    """
    if sources is None:
        sources = discover_address_books()

    ordered = order_sources(sources)

    lookup = ContactLookup()
    for path in ordered:
        try:
            load_source(lookup, path)
        except sqlite3.Error as e:
            logger.debug("Skipping unreadable AddressBook %s: %s", path, e)
    logger.info("Loaded %d contact keys from %d sources", len(lookup), len(ordered))
    return lookup

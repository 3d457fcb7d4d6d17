"""Text extraction from Messages' attributedBody blobs.

Since macOS Ventura many rows in chat.db have a NULL ``text`` column and keep
the message content inside ``attributedBody``, an NSAttributedString archived
in Apple's legacy typedstream format. Extraction is tried in order:

1. Decode the typedstream and search the object graph for string content.
2. Look for the ``\\x01+ ... \\x86`` span that wraps the NSString bytes.
3. Take the longest printable run that isn't an Objective-C class name.

Each step returns the text or None, so they can be exercised independently.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Union

import typedstream

logger = logging.getLogger(__name__)

# Guards against self-referential or malformed object graphs
MAX_SEARCH_DEPTH = 10

# Record fields that hold the string payload, checked before generic recursion
STRING_FIELDS = ("NSString", "NS.string", "string", "value")

PLUS_PATTERN = re.compile(r"\x01\+(.{1,2000}?)\x86", re.DOTALL)
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x80-\x9f]")
READABLE_RUN = re.compile(r"[\x20-\x7e\u00a0-\uffff]{5,}")
NOISE_MARKERS = ("NSString", "NSDictionary", "NSMutable", "streamtyped", "NSObject")


@dataclass(frozen=True)
class Primitive:
    value: Any


@dataclass(frozen=True)
class Sequence:
    items: tuple[Any, ...]


@dataclass(frozen=True)
class Record:
    fields: tuple[tuple[str, Any], ...]


Node = Union[Primitive, Sequence, Record]


def _object_fields(obj: Any) -> list[tuple[str, Any]]:
    """Public attributes of a decoded object, from __dict__ or __slots__."""
    fields: dict[str, Any] = {}
    for klass in type(obj).__mro__:
        for name in getattr(klass, "__slots__", ()):
            if hasattr(obj, name):
                fields.setdefault(name, getattr(obj, name))
    if hasattr(obj, "__dict__"):
        fields.update(vars(obj))
    return [(name, value) for name, value in fields.items() if not name.startswith("_")]


def as_node(obj: Any) -> Node:
    """Classify a decoded value as a primitive, sequence or keyed record."""
    if obj is None or isinstance(obj, (str, bytes, int, float, bool)):
        return Primitive(obj)
    if isinstance(obj, (list, tuple)):
        return Sequence(tuple(obj))
    if isinstance(obj, dict):
        return Record(tuple((str(k), v) for k, v in obj.items()))
    return Record(tuple(_object_fields(obj)))


def find_string(obj: Any, depth: int = 0) -> str | None:
    """Depth-first search for the first non-empty string in a decoded graph."""
    if depth > MAX_SEARCH_DEPTH:
        return None

    node = as_node(obj)

    if isinstance(node, Primitive):
        if isinstance(node.value, str) and node.value.strip():
            return node.value.strip()
        return None

    if isinstance(node, Sequence):
        for item in node.items:
            found = find_string(item, depth + 1)
            if found:
                return found
        return None

    fields = dict(node.fields)
    for name in STRING_FIELDS:
        value = fields.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()

    for _, value in node.fields:
        found = find_string(value, depth + 1)
        if found:
            return found
    return None


def decode_typedstream(blob: bytes) -> str | None:
    """Decode the blob as a typedstream archive and pull out its text."""
    try:
        root = typedstream.unarchive_from_data(blob)
    except Exception as e:
        logger.debug("typedstream decode failed, using byte scan: %s", e)
        return None
    return find_string(root)


def extract_plus_pattern(blob_str: str) -> str | None:
    """Text between the ``\\x01+`` marker and the ``\\x86`` terminator."""
    match = PLUS_PATTERN.search(blob_str)
    if match is None:
        return None
    cleaned = CONTROL_CHARS.sub("", match.group(1)).strip()
    return cleaned or None


def extract_longest_run(blob_str: str) -> str | None:
    """Longest printable run that isn't archiver noise."""
    candidates = [
        run
        for run in READABLE_RUN.findall(blob_str)
        if len(run) > 3 and not any(marker in run for marker in NOISE_MARKERS)
    ]
    if not candidates:
        return None
    # max() keeps the first of equally long runs
    return max(candidates, key=len).strip() or None


def extract_text_fallback(blob: bytes) -> str | None:
    """Byte-pattern extraction used when structured decoding yields nothing."""
    if not blob:
        return None
    blob_str = blob.decode("latin-1")
    return extract_plus_pattern(blob_str) or extract_longest_run(blob_str)


def extract_text(blob: bytes | None) -> str | None:
    """Best-effort plain text from an attributedBody blob, or None."""
    if not blob:
        return None
    return decode_typedstream(blob) or extract_text_fallback(blob)

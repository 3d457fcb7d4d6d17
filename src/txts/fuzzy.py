"""Typo-tolerant full-text document index.

An in-memory inverted index modelled on MiniSearch: documents are tokenized
per field, terms map to per-field postings, and queries expand each term to
exact, prefix and fuzzy (bounded edit distance) matches scored with BM25+.
The whole index serializes to a JSON snapshot.
"""

import bisect
import json
import math
import re
from collections import defaultdict
from pathlib import Path
from typing import Any, Iterable

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

SNAPSHOT_VERSION = 1

TOKEN_SPLIT = re.compile(r"[\W_]+")

# BM25+ parameters
BM25_K = 1.2
BM25_B = 0.7
BM25_D = 0.5

# Relative weight of expanded matches against an exact term match
PREFIX_WEIGHT = 0.375
FUZZY_WEIGHT = 0.45
MAX_FUZZY_DISTANCE = 6


def tokenize(text: str) -> list[str]:
    return [token.lower() for token in TOKEN_SPLIT.split(text) if token]


def fuzzy_distance(term: str, fuzzy: float) -> int:
    """Edit-distance budget for a query term, as a fraction of its length."""
    if fuzzy <= 0:
        return 0
    if fuzzy >= 1:
        return int(fuzzy)
    return min(MAX_FUZZY_DISTANCE, int(len(term) * fuzzy + 0.5))


def bm25_score(
    term_freq: int,
    matching_count: int,
    total_count: int,
    field_length: int,
    avg_field_length: float,
) -> float:
    inv_doc_freq = math.log(1 + (total_count - matching_count + 0.5) / (matching_count + 0.5))
    length_ratio = field_length / avg_field_length if avg_field_length else 1.0
    return inv_doc_freq * (
        BM25_D + term_freq * (BM25_K + 1) / (term_freq + BM25_K * (1 - BM25_B + BM25_B * length_ratio))
    )


class FuzzyIndex:
    """Inverted index over a fixed set of text fields.

    Args:
        fields: Document fields to tokenize and search.
        store_fields: Document fields returned with each hit.
        id_field: Field holding the document's external id.
    """

    def __init__(
        self,
        fields: list[str],
        store_fields: list[str] | None = None,
        id_field: str = "id",
    ) -> None:
        self.fields = list(fields)
        self.store_fields = list(store_fields or [])
        self.id_field = id_field

        self._next_id = 0
        self._document_ids: dict[int, Any] = {}
        self._stored: dict[int, dict[str, Any]] = {}
        self._field_lengths: dict[int, list[int]] = {}
        self._total_field_lengths = [0] * len(self.fields)
        # term -> field id -> short doc id -> term frequency
        self._index: dict[str, dict[int, dict[int, int]]] = {}
        self._sorted_terms: list[str] | None = None

    @property
    def document_count(self) -> int:
        return len(self._document_ids)

    def add(self, document: dict[str, Any]) -> None:
        short_id = self._next_id
        self._next_id += 1
        self._document_ids[short_id] = document[self.id_field]
        self._stored[short_id] = {name: document.get(name) for name in self.store_fields}

        lengths = []
        for field_id, name in enumerate(self.fields):
            value = document.get(name)
            terms = tokenize(str(value)) if value is not None else []
            lengths.append(len(terms))
            self._total_field_lengths[field_id] += len(terms)
            for term in terms:
                postings = self._index.setdefault(term, {}).setdefault(field_id, {})
                postings[short_id] = postings.get(short_id, 0) + 1
        self._field_lengths[short_id] = lengths
        self._sorted_terms = None

    def add_all(self, documents: Iterable[dict[str, Any]]) -> None:
        for document in documents:
            self.add(document)

    def _terms(self) -> list[str]:
        if self._sorted_terms is None:
            self._sorted_terms = sorted(self._index)
        return self._sorted_terms

    def _prefix_matches(self, term: str) -> list[str]:
        terms = self._terms()
        start = bisect.bisect_left(terms, term)
        matches = []
        for candidate in terms[start:]:
            if not candidate.startswith(term):
                break
            matches.append(candidate)
        return matches

    def _expand(self, term: str, fuzzy: float, prefix: bool) -> dict[str, float]:
        """Indexed terms matching a query term, with their match weights."""
        expanded: dict[str, float] = {}
        if term in self._index:
            expanded[term] = 1.0

        if prefix:
            for candidate in self._prefix_matches(term):
                if candidate not in expanded:
                    distance = len(candidate) - len(term)
                    expanded[candidate] = PREFIX_WEIGHT * len(term) / (len(term) + 0.3 * distance)

        max_distance = fuzzy_distance(term, fuzzy)
        if max_distance > 0:
            for candidate, distance, _ in process.extract(
                term,
                self._terms(),
                scorer=Levenshtein.distance,
                score_cutoff=max_distance,
                limit=None,
            ):
                if candidate not in expanded:
                    expanded[candidate] = FUZZY_WEIGHT * len(candidate) / (len(candidate) + distance)
        return expanded

    def search(
        self,
        query: str,
        fuzzy: float = 0.0,
        prefix: bool = False,
        boost: dict[str, float] | None = None,
    ) -> list[dict[str, Any]]:
        """Search the index, combining query terms with OR.

        Returns hits sorted by descending score, each a dict of the stored
        fields plus ``id``, ``score``, ``terms`` (matched index terms) and
        ``match`` (term -> fields it matched in).
        """
        boost = boost or {}
        field_boosts = [boost.get(name, 1.0) for name in self.fields]
        avg_lengths = [
            total / self.document_count if self.document_count else 0.0
            for total in self._total_field_lengths
        ]

        scores: dict[int, float] = defaultdict(float)
        matches: dict[int, dict[str, list[str]]] = defaultdict(dict)

        query_terms = list(dict.fromkeys(tokenize(query)))
        for query_term in query_terms:
            for term, weight in self._expand(query_term, fuzzy, prefix).items():
                for field_id, postings in self._index[term].items():
                    field_boost = field_boosts[field_id]
                    for short_id, term_freq in postings.items():
                        scores[short_id] += weight * field_boost * bm25_score(
                            term_freq,
                            len(postings),
                            self.document_count,
                            self._field_lengths[short_id][field_id],
                            avg_lengths[field_id],
                        )
                        matched_fields = matches[short_id].setdefault(term, [])
                        if self.fields[field_id] not in matched_fields:
                            matched_fields.append(self.fields[field_id])

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        return [
            {
                **self._stored[short_id],
                "id": self._document_ids[short_id],
                "score": score,
                "terms": list(matches[short_id]),
                "match": matches[short_id],
            }
            for short_id, score in ranked
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "fields": self.fields,
            "storeFields": self.store_fields,
            "idField": self.id_field,
            "nextId": self._next_id,
            "documentIds": {str(k): v for k, v in self._document_ids.items()},
            "storedFields": {str(k): v for k, v in self._stored.items()},
            "fieldLengths": {str(k): v for k, v in self._field_lengths.items()},
            "totalFieldLengths": self._total_field_lengths,
            "index": {
                term: {
                    str(field_id): {str(k): tf for k, tf in postings.items()}
                    for field_id, postings in by_field.items()
                }
                for term, by_field in self._index.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FuzzyIndex":
        if data.get("version") != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported fuzzy index version: {data.get('version')}")

        index = cls(data["fields"], data["storeFields"], data["idField"])
        index._next_id = data["nextId"]
        index._document_ids = {int(k): v for k, v in data["documentIds"].items()}
        index._stored = {int(k): v for k, v in data["storedFields"].items()}
        index._field_lengths = {int(k): v for k, v in data["fieldLengths"].items()}
        index._total_field_lengths = data["totalFieldLengths"]
        index._index = {
            term: {
                int(field_id): {int(k): tf for k, tf in postings.items()}
                for field_id, postings in by_field.items()
            }
            for term, by_field in data["index"].items()
        }
        return index

    def save(self, path: Path) -> None:
        """Write a full snapshot, replacing any existing file."""
        path.write_text(json.dumps(self.to_dict()), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "FuzzyIndex":
        return cls.from_dict(json.loads(path.read_text(encoding="utf-8")))

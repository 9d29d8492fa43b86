"""Query normalization and fuzzy similarity for plant names.

Provides the canonical form used for cache keys, query hashing and every
similarity comparison, so that identical intents hash identically.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

from rapidfuzz.distance import Levenshtein

MAX_QUERY_LENGTH = 200

_DISALLOWED = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")


def normalize_query(text: str | None) -> str:
    """Canonicalize a free-text query.

    - Lowercases
    - Strips characters other than word characters, whitespace and hyphens
    - Collapses whitespace runs to a single space and trims
    - Truncates to 200 characters

    Pure and idempotent; empty input yields an empty string.

    Examples:
        "  Ficus   Lyrata! " -> "ficus lyrata"
        "Aloe-Vera (L.)" -> "aloe-vera l"
    """
    if not text:
        return ""
    result = text.lower()
    result = _DISALLOWED.sub("", result)
    result = _WHITESPACE.sub(" ", result).strip()
    # Truncation can expose a trailing space
    return result[:MAX_QUERY_LENGTH].rstrip()


def hash_query(text: str, filters: dict[str, Any] | None = None) -> str:
    """Stable hash of a normalized query plus its active filters."""
    filter_part = json.dumps(filters, sort_keys=True) if filters else ""
    combined = f"{normalize_query(text)}|{filter_part}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:16]


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    return Levenshtein.distance(a, b)


def levenshtein_similarity(a: str, b: str) -> float:
    """Edit distance scaled to [0, 1]; 1.0 for two empty strings."""
    if not a and not b:
        return 1.0
    return Levenshtein.normalized_similarity(a, b)


def similarity(query: str | None, candidate: str | None) -> float:
    """Confidence in [0, 1] that ``candidate`` answers ``query``.

    Rules, first applicable wins:
    1. Normalized strings equal -> 1.0
    2. Candidate contains the query -> 0.8 * len(query) / len(candidate)
    3. Candidate starts with the query -> 0.9 * len(query) / len(candidate)
    4. Otherwise normalized Levenshtein similarity

    Rule 3 never fires in practice: a prefix is also a substring.

    Never raises.
    """
    q = normalize_query(query)
    c = normalize_query(candidate)

    if q == c:
        return 1.0
    if not c:
        return 0.0
    if q in c:
        return 0.8 * (len(q) / len(c))
    if c.startswith(q):
        return 0.9 * (len(q) / len(c))
    return levenshtein_similarity(q, c)

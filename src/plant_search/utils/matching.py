"""Locate which name of a plant answered a query, and how well."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..models.entity import MatchType
from .normalize import normalize_query, similarity

# Best candidates scoring at or below this fall back to the primary name
MIN_MATCH_CONFIDENCE = 0.1


@dataclass(frozen=True)
class MatchContext:
    """Where and how strongly a query matched one entity."""

    matched_in: str
    matched_in_type: MatchType
    position: int
    confidence: float

    def as_fields(self, query_text: str) -> dict:
        """Keyword arguments for the match-context fields of PlantEntity."""
        return {
            "matched_in": self.matched_in,
            "matched_in_type": self.matched_in_type,
            "match_position": self.position,
            "match_length": len(query_text),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class Candidate:
    text: str
    kind: MatchType
    boost: float = 0.0


def best_match(query: str, candidates: Sequence[Candidate], fallback_name: str) -> MatchContext:
    """Pick the candidate name that best answers ``query``.

    Candidates whose name starts with the query win over the rest; ties are
    broken by similarity (plus any per-candidate boost). If nothing scores
    above ``MIN_MATCH_CONFIDENCE`` the fallback name is reported with that
    floor confidence.
    """
    normalized = normalize_query(query)
    scored: list[tuple[bool, float, Candidate, int]] = []
    for cand in candidates:
        if not cand.text:
            continue
        index = cand.text.lower().find(normalized) if normalized else -1
        score = min(1.0, similarity(normalized, cand.text) + cand.boost)
        scored.append((index == 0, score, cand, max(0, index)))

    if scored:
        # Stable sort keeps source order among equal keys
        scored.sort(key=lambda s: (not s[0], -s[1]))
        _, score, cand, position = scored[0]
        if score > MIN_MATCH_CONFIDENCE:
            return MatchContext(cand.text, cand.kind, position, score)

    return MatchContext(fallback_name, MatchType.ENTITY_NAME, 0, MIN_MATCH_CONFIDENCE)


def locate_match(
    query: str,
    entity_name: str,
    common_names: Iterable[str] = (),
    synonyms: Iterable[str] = (),
) -> MatchContext:
    """First substring hit in the entity name, then common names, then synonyms.

    Used for cached entities, where the stored row does not remember which
    name originally matched. Falls back to the entity name at position 0.
    """
    normalized = normalize_query(query)

    def _find(text: str) -> int:
        return text.lower().find(normalized) if normalized else -1

    matched_in, kind, position = entity_name, MatchType.ENTITY_NAME, _find(entity_name)
    if position == -1:
        for name, name_kind in _chain(common_names, synonyms):
            hit = _find(name)
            if hit != -1:
                matched_in, kind, position = name, name_kind, hit
                break

    return MatchContext(
        matched_in=matched_in,
        matched_in_type=kind,
        position=max(0, position),
        confidence=similarity(normalized, matched_in),
    )


def _chain(common_names: Iterable[str], synonyms: Iterable[str]):
    for name in common_names:
        yield name, MatchType.COMMON_NAME
    for name in synonyms:
        yield name, MatchType.SYNONYM

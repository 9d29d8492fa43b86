"""Tests for query normalization, similarity scoring and match location."""

import pytest

from plant_search.models.entity import MatchType
from plant_search.utils.matching import MIN_MATCH_CONFIDENCE, Candidate, best_match, locate_match
from plant_search.utils.normalize import (
    MAX_QUERY_LENGTH,
    hash_query,
    levenshtein_distance,
    levenshtein_similarity,
    normalize_query,
    similarity,
)

SAMPLES = [
    "",
    "   ",
    "Ficus lyrata",
    "  Ficus   Lyrata! ",
    "Aloe-Vera (L.)",
    "Mother-in-law's Tongue",
    "Ümlaut Pflanze",
    "a" * 500,
    "x " * 150,
    "\tsnake\nplant\t",
]


class TestNormalizeQuery:
    """Test canonical query form."""

    def test_lowercases_and_collapses_whitespace(self):
        assert normalize_query("  Ficus   Lyrata! ") == "ficus lyrata"

    def test_keeps_hyphens_strips_punctuation(self):
        assert normalize_query("Aloe-Vera (L.)") == "aloe-vera l"

    def test_empty_input(self):
        assert normalize_query("") == ""
        assert normalize_query(None) == ""
        assert normalize_query("!!!") == ""

    def test_truncates(self):
        assert len(normalize_query("a" * 500)) == MAX_QUERY_LENGTH

    def test_truncation_does_not_leave_trailing_space(self):
        result = normalize_query("x " * 150)
        assert not result.endswith(" ")
        assert len(result) <= MAX_QUERY_LENGTH

    @pytest.mark.parametrize("text", SAMPLES)
    def test_idempotent(self, text):
        once = normalize_query(text)
        assert normalize_query(once) == once


class TestSimilarity:
    """Test the fuzzy confidence score."""

    def test_identical_is_one(self):
        assert similarity("Ficus lyrata", "ficus LYRATA") == 1.0

    def test_both_empty_is_one(self):
        assert similarity("", "") == 1.0

    def test_empty_candidate_is_zero(self):
        assert similarity("ficus", "") == 0.0

    def test_substring_rule(self):
        # "ficus" inside "ficus lyrata": 0.8 * 5 / 12
        assert similarity("ficus", "Ficus lyrata") == pytest.approx(0.8 * 5 / 12)

    def test_levenshtein_fallback(self):
        # one substitution over six characters
        assert similarity("monsta", "monste") == pytest.approx(5 / 6)

    @pytest.mark.parametrize("a", SAMPLES)
    @pytest.mark.parametrize("b", SAMPLES[:6])
    def test_bounded(self, a, b):
        assert 0.0 <= similarity(a, b) <= 1.0

    @pytest.mark.parametrize("text", [s for s in SAMPLES if normalize_query(s)])
    def test_self_similarity(self, text):
        assert similarity(text, text) == 1.0

    def test_never_raises_on_none(self):
        assert similarity(None, None) == 1.0
        assert similarity("ficus", None) == 0.0

    def test_closer_strings_score_higher(self):
        target = "monstera"
        assert similarity(target, "monsteră") >= similarity(target, "monkey")
        assert similarity("ficus", "ficus lyrata") > similarity("ficus", "ficus lyrata var bambino")
        assert similarity("sansevieria", "sansevieria") > similarity("sansevieria", "sanseveria")
        assert similarity("sansevieria", "sanseveria") > similarity("sansevieria", "begonia")


class TestLevenshtein:
    """Test edit distance."""

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("", "", 0),
            ("abc", "", 3),
            ("", "abc", 3),
            ("kitten", "sitting", 3),
            ("flaw", "lawn", 2),
            ("ficus", "ficus", 0),
        ],
    )
    def test_distance(self, a, b, expected):
        assert levenshtein_distance(a, b) == expected

    def test_symmetric(self):
        assert levenshtein_distance("monstera", "monster") == levenshtein_distance("monster", "monstera")

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("", "", 1.0),
            ("abc", "", 0.0),
            ("kitten", "sitting", 4 / 7),
            ("fikus", "ficus", 0.8),
        ],
    )
    def test_similarity_scaled_by_longer_string(self, a, b, expected):
        assert levenshtein_similarity(a, b) == pytest.approx(expected)


class TestHashQuery:
    """Test stable query hashing."""

    def test_same_intent_same_hash(self):
        assert hash_query("Ficus  Lyrata") == hash_query("ficus lyrata!")

    def test_filters_change_hash(self):
        assert hash_query("ficus") != hash_query("ficus", {"indoor": True})

    def test_filter_order_irrelevant(self):
        assert hash_query("ficus", {"indoor": True, "edible": False}) == hash_query(
            "ficus", {"edible": False, "indoor": True}
        )


class TestBestMatch:
    """Test picking the name that answered a query."""

    def test_prefix_wins(self):
        ctx = best_match(
            "snake",
            [
                Candidate("Sansevieria trifasciata", MatchType.ENTITY_NAME),
                Candidate("Snake Plant", MatchType.COMMON_NAME),
            ],
            fallback_name="Sansevieria trifasciata",
        )
        assert ctx.matched_in == "Snake Plant"
        assert ctx.matched_in_type is MatchType.COMMON_NAME
        assert ctx.position == 0

    def test_fallback_when_nothing_matches(self):
        ctx = best_match("zzzzzz", [Candidate("Ficus lyrata", MatchType.ENTITY_NAME)], fallback_name="Ficus lyrata")
        assert ctx.matched_in == "Ficus lyrata"
        assert ctx.confidence == MIN_MATCH_CONFIDENCE

    def test_as_fields(self):
        ctx = best_match("ficus", [Candidate("Ficus lyrata", MatchType.ENTITY_NAME)], fallback_name="Ficus lyrata")
        fields = ctx.as_fields("Ficus")
        assert fields["match_length"] == 5
        assert 0.0 <= fields["confidence"] <= 1.0


class TestLocateMatch:
    """Test match context for cached entities."""

    def test_entity_name_first(self):
        ctx = locate_match("lyrata", "Ficus lyrata", ["Fiddle Leaf Fig"])
        assert ctx.matched_in == "Ficus lyrata"
        assert ctx.position == 6

    def test_common_name_then_synonym(self):
        ctx = locate_match("fiddle", "Ficus lyrata", ["Fiddle Leaf Fig"], ["Ficus pandurata"])
        assert ctx.matched_in_type is MatchType.COMMON_NAME

        ctx = locate_match("pandurata", "Ficus lyrata", ["Fiddle Leaf Fig"], ["Ficus pandurata"])
        assert ctx.matched_in_type is MatchType.SYNONYM
        assert ctx.matched_in == "Ficus pandurata"

    def test_no_hit_falls_back_to_name(self):
        ctx = locate_match("fig tree", "Ficus lyrata", ["Fiddle Leaf Fig"])
        assert ctx.matched_in == "Ficus lyrata"
        assert ctx.position == 0

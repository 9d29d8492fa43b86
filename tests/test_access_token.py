"""Tests for access token encoding and tolerant decoding."""

import base64

import pytest

from plant_search.utils.access_token import (
    LEGACY_PREFIXES,
    TokenInfo,
    decode_access_token,
    encode_access_token,
    resolve_legacy_tag,
)

TAGS = ["local", "gbif", "inaturalist", "perenual", "powo", "mock"]


def _raw_token(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class TestRoundTrip:
    """Test decode is a left inverse of encode."""

    @pytest.mark.parametrize("tag", TAGS)
    @pytest.mark.parametrize("entity_id", [0, 1, 42, 2984084, 10**12])
    def test_round_trip(self, entity_id, tag):
        info = decode_access_token(encode_access_token(entity_id, tag))
        assert info is not None
        assert info.entity_id == entity_id
        assert info.provider_tag == tag

    def test_issued_at_preserved(self):
        info = decode_access_token(encode_access_token(7, "gbif", issued_at=1700000000000))
        assert info == TokenInfo(7, "gbif", 1700000000000)

    def test_token_is_opaque_base64(self):
        token = encode_access_token(7, "gbif", issued_at=1)
        assert base64.b64decode(token).decode() == "plant_search_7_gbif_1"

    @pytest.mark.parametrize("bad_id", [-1, 1.5, "7", True, None])
    def test_rejects_bad_ids(self, bad_id):
        with pytest.raises(ValueError):
            encode_access_token(bad_id, "gbif")

    @pytest.mark.parametrize("bad_tag", ["", "with_underscore", "spa ce", "slash/tag"])
    def test_rejects_bad_tags(self, bad_tag):
        with pytest.raises(ValueError):
            encode_access_token(1, bad_tag)


class TestLegacyTokens:
    """Test truncated tokens from older clients."""

    @pytest.mark.parametrize(("prefix", "full"), list(LEGACY_PREFIXES))
    def test_prefix_resolves_to_full_tag(self, prefix, full):
        info = decode_access_token(_raw_token(f"plant_search_99_{prefix}"))
        assert info is not None
        assert info.entity_id == 99
        assert info.provider_tag == full
        assert info.issued_at is None

    def test_legacy_table_covers_known_prefixes(self):
        assert {p for p, _ in LEGACY_PREFIXES} == {"inatu", "gbif", "peren", "powo", "local", "mock"}

    def test_longer_truncation_still_resolves(self):
        info = decode_access_token(_raw_token("plant_search_5_inatural"))
        assert info is not None
        assert info.provider_tag == "inaturalist"

    def test_unknown_prefix_is_none(self):
        assert decode_access_token(_raw_token("plant_search_5_trefle")) is None

    def test_resolve_legacy_tag(self):
        assert resolve_legacy_tag("peren") == "perenual"
        assert resolve_legacy_tag("xyz") is None

    def test_truncated_base64_still_decodes(self):
        token = encode_access_token(12, "inaturalist", issued_at=1700000000000)
        # Cut into the timestamp; the tag survives
        cut = token[: len(_raw_token("plant_search_12_inaturalist_17"))]
        info = decode_access_token(cut)
        assert info is not None
        assert info.entity_id == 12
        assert info.provider_tag == "inaturalist"

    def test_urlsafe_alphabet_accepted(self):
        token = encode_access_token(3, "mock", issued_at=1)
        urlsafe = token.replace("+", "-").replace("/", "_").rstrip("=")
        info = decode_access_token(urlsafe)
        assert info is not None
        assert info.provider_tag == "mock"


class TestMalformed:
    """Test malformed input never raises."""

    @pytest.mark.parametrize(
        "token",
        [
            None,
            "",
            "   ",
            "not base64 at all!!!",
            "é",
            _raw_token("hello world"),
            _raw_token("plant_search_abc_gbif_1"),
            _raw_token("plant_search__gbif"),
            _raw_token("other_prefix_1_gbif_1"),
            "A",
            "====",
        ],
    )
    def test_malformed_is_none(self, token):
        assert decode_access_token(token) is None

    def test_non_string_is_none(self):
        assert decode_access_token(12345) is None  # type: ignore[arg-type]

"""Opaque access tokens that route a detail lookup back to its source.

Canonical token text, base64 encoded:

    plant_search_{entity_id}_{provider_tag}_{issued_at_ms}

Older clients persisted tokens cut short, so the provider tag may be a
prefix of the real tag and the timestamp may be missing entirely. Those are
resolved through ``LEGACY_PREFIXES``. Extend the table by adding a new
version; never edit an existing one or tokens already in the wild stop
resolving.
"""
from __future__ import annotations

import base64
import binascii
import re
import time
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

TOKEN_PREFIX = "plant_search"

# prefix of a truncated tag -> full tag, by table version
LEGACY_PREFIX_TABLES: dict[int, tuple[tuple[str, str], ...]] = {
    1: (
        ("inatu", "inaturalist"),
        ("gbif", "gbif"),
        ("peren", "perenual"),
        ("powo", "powo"),
        ("local", "local"),
        ("mock", "mock"),
    ),
}
LEGACY_PREFIXES_VERSION = max(LEGACY_PREFIX_TABLES)
LEGACY_PREFIXES = LEGACY_PREFIX_TABLES[LEGACY_PREFIXES_VERSION]

_TAG_RE = re.compile(r"^[A-Za-z0-9-]+$")
_FULL_RE = re.compile(rf"^{TOKEN_PREFIX}_(\d+)_([^_]+)_(\d+)")
_LEGACY_RE = re.compile(rf"^{TOKEN_PREFIX}_(\d+)_([^_]+)")


@dataclass(frozen=True)
class TokenInfo:
    entity_id: int
    provider_tag: str
    issued_at: int | None = None  # ms since epoch; None for legacy tokens


def encode_access_token(entity_id: int, provider_tag: str, issued_at: int | None = None) -> str:
    """Build a token for ``entity_id`` as known to ``provider_tag``.

    ``issued_at`` defaults to the current time in milliseconds. It is there
    for debugging only and does not make tokens unique.

    Raises:
        ValueError: negative/non-integer ids, or tags that would not survive
            the underscore-delimited format.
    """
    if isinstance(entity_id, bool) or not isinstance(entity_id, int) or entity_id < 0:
        raise ValueError(f"entity_id must be a non-negative integer, got {entity_id!r}")
    if not provider_tag or not _TAG_RE.match(provider_tag):
        raise ValueError(f"provider_tag must match [A-Za-z0-9-]+, got {provider_tag!r}")
    if issued_at is None:
        issued_at = int(time.time() * 1000)
    text = f"{TOKEN_PREFIX}_{entity_id}_{provider_tag}_{issued_at}"
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def resolve_legacy_tag(partial: str) -> str | None:
    """Full provider tag for a truncated one, or None if no prefix matches."""
    for prefix, full in LEGACY_PREFIXES:
        if partial.startswith(prefix):
            return full
    return None


def decode_access_token(token: str | None) -> TokenInfo | None:
    """Decode a token produced by ``encode_access_token`` or a legacy client.

    Returns None for anything malformed; never raises.
    """
    text = _b64_text(token)
    if text is None:
        return None

    match = _FULL_RE.match(text)
    if match:
        return TokenInfo(int(match.group(1)), match.group(2), int(match.group(3)))

    match = _LEGACY_RE.match(text)
    if match:
        partial = match.group(2)
        full = resolve_legacy_tag(partial)
        if full is None:
            logger.info("access_token.unknown_prefix", partial=partial)
            return None
        logger.info(
            "access_token.legacy_prefix",
            partial=partial,
            provider=full,
            table_version=LEGACY_PREFIXES_VERSION,
        )
        return TokenInfo(int(match.group(1)), full, None)

    logger.info("access_token.malformed")
    return None


def _b64_text(token: str | None) -> str | None:
    if not token or not isinstance(token, str):
        return None
    raw = token.strip()
    # A single dangling character can never be valid base64
    if len(raw) % 4 == 1:
        raw = raw[:-1]
    raw += "=" * (-len(raw) % 4)
    try:
        # altchars accepts urlsafe input; standard + and / still decode
        data = base64.b64decode(raw.encode("ascii"), altchars=b"-_")
    except (binascii.Error, UnicodeEncodeError, ValueError):
        return None
    return data.decode("utf-8", errors="ignore")

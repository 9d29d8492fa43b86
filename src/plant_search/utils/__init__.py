"""Pure helpers: query normalization, similarity, match location, tokens."""

from .access_token import TokenInfo, decode_access_token, encode_access_token
from .matching import Candidate, MatchContext, best_match, locate_match
from .normalize import hash_query, levenshtein_distance, normalize_query, similarity

__all__ = [
    "Candidate",
    "MatchContext",
    "TokenInfo",
    "best_match",
    "decode_access_token",
    "encode_access_token",
    "hash_query",
    "levenshtein_distance",
    "locate_match",
    "normalize_query",
    "similarity",
]

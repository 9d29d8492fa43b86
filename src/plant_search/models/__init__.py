"""Data models for plant entities, queries, results and provider stats."""

from plant_search.models.entity import (
    MatchType,
    PlantDetails,
    PlantEntity,
    PlantImage,
    Taxonomy,
    WikipediaRef,
)
from plant_search.models.search import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    SearchFilters,
    SearchQuery,
    SearchResult,
)
from plant_search.models.stats import (
    ProviderCapabilities,
    ProviderCost,
    ProviderInfo,
    ProviderStat,
    RateLimits,
)

__all__ = [
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "MatchType",
    "PlantDetails",
    "PlantEntity",
    "PlantImage",
    "ProviderCapabilities",
    "ProviderCost",
    "ProviderInfo",
    "ProviderStat",
    "RateLimits",
    "SearchFilters",
    "SearchQuery",
    "SearchResult",
    "Taxonomy",
    "WikipediaRef",
]

"""Search query, filter and result models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from .entity import PlantEntity

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class SearchFilters(BaseModel):
    """Optional plant-characteristic predicates.

    Unset fields do not constrain the result.
    """

    indoor: bool | None = None
    outdoor: bool | None = None
    edible: bool | None = None
    poisonous: bool | None = None
    difficulty: Literal["easy", "medium", "hard"] | None = None
    care_level: Literal["low", "medium", "high"] | None = None
    sunlight: Literal["low", "medium", "high", "full"] | None = None
    watering: Literal["low", "medium", "high"] | None = None
    cycle: Literal["annual", "biennial", "perennial"] | None = None

    def active(self) -> dict[str, Any]:
        """Only the predicates that were actually set."""
        return self.model_dump(exclude_none=True)


class SearchQuery(BaseModel):
    """Free-text plant name query."""

    text: str = Field(min_length=1, description="Plant name as typed by the caller")
    limit: int = Field(default=DEFAULT_LIMIT, description=f"Clamped to 1..{MAX_LIMIT}")
    language: str = Field(default="en", description="ISO 639-1 code for common names")
    filters: SearchFilters | None = None

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, v: Any) -> int:
        if v is None:
            return DEFAULT_LIMIT
        return min(MAX_LIMIT, max(1, int(v)))

    def clamped_limit(self, provider_max: int) -> int:
        """Limit further clamped to a provider's own maximum."""
        return min(self.limit, provider_max)


class SearchResult(BaseModel):
    """One answer to a search, from a single source or the cache."""

    entities: list[PlantEntity] = Field(default_factory=list)
    entities_trimmed: bool = False
    limit: int = DEFAULT_LIMIT
    provider: str
    cached: bool = False
    search_time_ms: int = 0
    query_normalized: str = ""
    total_found: int | None = None

    @classmethod
    def empty(
        cls,
        provider: str,
        limit: int,
        query_normalized: str,
        search_time_ms: int = 0,
        cached: bool = False,
    ) -> SearchResult:
        return cls(
            entities=[],
            entities_trimmed=False,
            limit=limit,
            provider=provider,
            cached=cached,
            search_time_ms=search_time_ms,
            query_normalized=query_normalized,
            total_found=0,
        )

    @property
    def is_empty(self) -> bool:
        return not self.entities

    def to_api(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"entities"}, exclude_none=True)
        data["entities"] = [e.to_api() for e in self.entities]
        return data

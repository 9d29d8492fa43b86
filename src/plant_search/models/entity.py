"""Canonical plant entity shared by every source and the cache."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr, field_validator


class MatchType(str, Enum):
    """Which name of an entity answered the query."""

    ENTITY_NAME = "entity_name"
    COMMON_NAME = "common_name"
    SYNONYM = "synonym"


class Taxonomy(BaseModel):
    """Taxonomic classification, kingdom down to species."""

    kingdom: str | None = None
    phylum: str | None = None
    class_: str | None = Field(default=None, alias="class")
    order: str | None = None
    family: str | None = None
    genus: str | None = None
    species: str | None = None

    model_config = {"populate_by_name": True}


class PlantImage(BaseModel):
    url: str
    thumbnail: str | None = None
    license: str | None = None
    attribution: str | None = None


class WikipediaRef(BaseModel):
    title: str
    url: str
    extract: str | None = None


class PlantDetails(BaseModel):
    """Rich payload attached to an entity. Every part is optional."""

    taxonomy: Taxonomy | None = None
    characteristics: dict[str, Any] | None = None
    observations_count: int | None = None
    external_ids: dict[str, Any] = Field(default_factory=dict)
    images: list[PlantImage] | None = None
    wikipedia: WikipediaRef | None = None

    def is_empty(self) -> bool:
        return (
            self.taxonomy is None
            and not self.characteristics
            and self.observations_count is None
            and not self.external_ids
            and not self.images
            and self.wikipedia is None
        )


class PlantEntity(BaseModel):
    """A normalized plant record produced by one source.

    Identity is ``(provider_source, provider_id)`` when the source supplies a
    native id, else ``(provider_source, entity_name)``. Match context fields
    are filled per search and are not persisted verbatim.
    """

    entity_name: str = Field(min_length=1, description="Scientific name")
    provider_source: str = Field(min_length=1, description="Source tag that produced this entity")
    provider_id: str | None = Field(default=None, description="Source's native identifier")

    common_names: list[str] = Field(default_factory=list)
    synonyms: list[str] = Field(default_factory=list)

    matched_in: str = ""
    matched_in_type: MatchType = MatchType.ENTITY_NAME
    match_position: int = 0
    match_length: int = 0
    confidence: float = Field(default=0.0, description="Match confidence in [0, 1]")

    access_token: str = ""
    thumbnail: str | None = None
    details: PlantDetails = Field(default_factory=PlantDetails)

    # Original upstream payload, persisted by the cache but never serialized
    _raw_payload: dict[str, Any] | None = PrivateAttr(default=None)

    @field_validator("entity_name")
    @classmethod
    def _entity_name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("entity_name must not be empty")
        return v

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: float) -> float:
        return min(1.0, max(0.0, float(v)))

    @field_validator("match_position", "match_length")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        return max(0, v)

    @property
    def identity(self) -> tuple[str, str]:
        """Unique address of this entity across all sources."""
        if self.provider_id:
            return (self.provider_source, self.provider_id)
        return (self.provider_source, self.entity_name)

    @property
    def raw_payload(self) -> dict[str, Any] | None:
        return self._raw_payload

    def with_raw_payload(self, payload: dict[str, Any] | None) -> PlantEntity:
        self._raw_payload = payload
        return self

    def to_api(self) -> dict[str, Any]:
        """Wire representation: snake_case keys, empty details omitted."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if self.details.is_empty():
            data.pop("details", None)
        return data

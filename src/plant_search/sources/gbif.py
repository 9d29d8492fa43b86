"""GBIF species API: taxonomy-first search over vascular plants."""
from __future__ import annotations

from typing import Any

import structlog

from plant_search.models.entity import MatchType, PlantDetails, PlantEntity, Taxonomy
from plant_search.models.search import SearchQuery
from plant_search.models.stats import ProviderCapabilities, ProviderCost, ProviderInfo, RateLimits
from plant_search.net import RateLimitConfig
from plant_search.utils.access_token import TokenInfo
from plant_search.utils.matching import Candidate

from .base import RECOVERABLE_ERRORS, BaseSource, SourcePage

logger = structlog.get_logger(__name__)

# GBIF backbone key for Tracheophyta
VASCULAR_PLANTS_KEY = 7707728

# GBIF vernacular names are tagged with ISO 639-2 codes
_ISO639_2 = {
    "en": "eng",
    "fr": "fra",
    "de": "deu",
    "es": "spa",
    "it": "ita",
    "pt": "por",
    "nl": "nld",
    "sv": "swe",
    "ja": "jpn",
    "zh": "zho",
}


def _taxonomy(sp: dict[str, Any]) -> Taxonomy:
    return Taxonomy(
        kingdom=sp.get("kingdom"),
        phylum=sp.get("phylum"),
        class_=sp.get("class"),
        order=sp.get("order"),
        family=sp.get("family"),
        genus=sp.get("genus"),
        species=sp.get("species"),
    )


def _dedupe(names: list[str]) -> list[str]:
    seen: list[str] = []
    for name in names:
        name = (name or "").strip()
        if name and name not in seen:
            seen.append(name)
    return seen


def _vernacular(items: list[dict[str, Any]] | None, language: str) -> list[str]:
    """Vernacular names in ``language`` (or untagged)."""
    wanted = _ISO639_2.get(language, language)
    names = []
    for item in items or []:
        lang = item.get("language")
        if not lang or lang in (wanted, language):
            names.append(item.get("vernacularName", ""))
    return _dedupe(names)


class GBIFSource(BaseSource):
    """Global Biodiversity Information Facility species search."""

    tag = "gbif"
    display_name = "GBIF Species API"
    base_url = "https://api.gbif.org/v1"
    max_limit = 100
    supports_details = True
    rate_limit = RateLimitConfig(max_calls=10, window_seconds=1.0)

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.display_name,
            description="Global Biodiversity Information Facility - taxonomic backbone with scientific accuracy",
            capabilities=ProviderCapabilities(
                fuzzy_search=True,
                taxonomy=True,
                common_names=True,
                synonyms=True,
                details=True,
            ),
            rate_limits=RateLimits(requests_per_minute=1000, requests_per_day=100000),
            cost=ProviderCost(free_tier=-1, cost_per_request=0),
        )

    async def _probe(self) -> None:
        await self._get_json(f"{self.base_url}/species/search", {"q": "Quercus", "limit": 1})

    async def _search(self, query: SearchQuery, limit: int) -> SourcePage:
        data = await self._get_json(
            f"{self.base_url}/species/search",
            {
                "q": query.text,
                "limit": limit,
                "offset": 0,
                "rank": "SPECIES",
                "status": "ACCEPTED",
                "highertaxon_key": VASCULAR_PLANTS_KEY,
            },
        )
        entities = []
        for sp in data.get("results") or []:
            entity = self._to_entity(sp, query)
            if entity is not None:
                entities.append(entity)
        return SourcePage(
            entities=entities,
            total_found=data.get("count"),
            more_available=not data.get("endOfRecords", True),
        )

    def _to_entity(self, sp: dict[str, Any], query: SearchQuery) -> PlantEntity | None:
        name = sp.get("scientificName") or sp.get("canonicalName")
        key = sp.get("key")
        if not name or key is None:
            return None

        common = _dedupe([sp.get("vernacularName", ""), *_vernacular(sp.get("vernacularNames"), query.language)])
        candidates = [Candidate(name, MatchType.ENTITY_NAME)]
        canonical = sp.get("canonicalName")
        if canonical and canonical != name:
            candidates.append(Candidate(canonical, MatchType.ENTITY_NAME))
        candidates.extend(Candidate(c, MatchType.COMMON_NAME) for c in common)

        return self._build_entity(
            query,
            name=name,
            native_id=key,
            candidates=candidates,
            payload=sp,
            common_names=common,
            details=PlantDetails(taxonomy=_taxonomy(sp), external_ids={"gbif_id": key}),
        )

    async def _fetch_details(self, info: TokenInfo) -> PlantEntity | None:
        key = info.entity_id
        sp = await self._get_json(f"{self.base_url}/species/{key}")
        name = sp.get("scientificName") or sp.get("canonicalName")
        if not name:
            return None
        common = _dedupe([sp.get("vernacularName", ""), *await self._names(f"species/{key}/vernacularNames", "en")])
        synonyms = await self._names(f"species/{key}/synonyms")
        return self._build_detail(
            name=name,
            native_id=key,
            payload=sp,
            common_names=common,
            synonyms=synonyms,
            details=PlantDetails(taxonomy=_taxonomy(sp), external_ids={"gbif_id": key}),
        )

    async def _names(self, path: str, language: str | None = None) -> list[str]:
        """Vernacular names or synonyms; the detail still stands without them."""
        try:
            data = await self._get_json(f"{self.base_url}/{path}")
        except RECOVERABLE_ERRORS as e:
            logger.warning("source.names_failed", source=self.tag, path=path, error=self._redact(str(e)))
            return []
        results = data.get("results") or []
        if language is not None:
            return _vernacular(results, language)
        return _dedupe([r.get("scientificName", "") for r in results])

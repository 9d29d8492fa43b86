"""Plants of the World Online (Kew) search and taxon lookup."""
from __future__ import annotations

import re
from typing import Any

from plant_search.models.entity import MatchType, PlantDetails, PlantEntity, PlantImage, Taxonomy
from plant_search.models.search import SearchQuery
from plant_search.models.stats import ProviderCapabilities, ProviderCost, ProviderInfo, RateLimits
from plant_search.net import RateLimitConfig
from plant_search.utils.access_token import TokenInfo
from plant_search.utils.matching import Candidate

from .base import BaseSource, SourcePage

IPNI_URN = "urn:lsid:ipni.org:names:"

_ID_RE = re.compile(r"(\d+)(?:-\d+)?$")


def extract_powo_id(fq_id: str | None) -> int | None:
    """Numeric IPNI id from ``urn:lsid:ipni.org:names:30000055-2``."""
    if not fq_id:
        return None
    m = _ID_RE.search(fq_id)
    return int(m.group(1)) if m else None


def _images(result: dict[str, Any]) -> list[PlantImage] | None:
    images = []
    for img in result.get("images") or []:
        url = img.get("fullsize") or img.get("url") or img.get("thumbnail")
        if not url:
            continue
        url = url if not url.startswith("//") else f"https:{url}"
        thumb = img.get("thumbnail")
        if thumb and thumb.startswith("//"):
            thumb = f"https:{thumb}"
        images.append(PlantImage(url=url, thumbnail=thumb, license=img.get("license"), attribution=img.get("publisher")))
    return images or None


def _taxonomy(result: dict[str, Any]) -> Taxonomy:
    name = result.get("name") or ""
    genus = result.get("genus") or (name.split()[0] if name else None)
    return Taxonomy(
        kingdom=result.get("kingdom") or "Plantae",
        family=result.get("family"),
        genus=genus,
        species=result.get("species") or (name if result.get("rank", "Species").lower() == "species" else None),
    )


def _characteristics(result: dict[str, Any]) -> dict[str, Any]:
    chars = {
        "rank": result.get("rank"),
        "taxonomic_status": "accepted" if result.get("accepted") else "synonym",
        "authorship": result.get("author") or result.get("authors"),
    }
    return {k: v for k, v in chars.items() if v is not None}


class POWOSource(BaseSource):
    """POWO species search; ids are IPNI name ids."""

    tag = "powo"
    display_name = "Plants of the World Online (POWO)"
    base_url = "https://powo.science.kew.org/api/2"
    max_limit = 50
    supports_details = True
    rate_limit = RateLimitConfig(max_calls=5, window_seconds=1.0)

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.display_name,
            description="Authoritative taxonomic database from Royal Botanic Gardens, Kew with 1.4M+ plant names",
            capabilities=ProviderCapabilities(
                fuzzy_search=True,
                images=True,
                taxonomy=True,
                common_names=True,
                synonyms=True,
                location_based=True,
                details=True,
            ),
            rate_limits=RateLimits(requests_per_minute=100, requests_per_day=2000),
            cost=ProviderCost(free_tier=-1, cost_per_request=0),
        )

    async def _probe(self) -> None:
        await self._get_json(f"{self.base_url}/search", {"q": "Quercus", "perPage": 1})

    async def _search(self, query: SearchQuery, limit: int) -> SourcePage:
        data = await self._get_json(
            f"{self.base_url}/search",
            {"q": query.text, "perPage": limit, "f": "species_f"},
        )
        entities = []
        for result in data.get("results") or []:
            entity = self._to_entity(result, query)
            if entity is not None:
                entities.append(entity)
        total = data.get("totalResults", data.get("size"))
        return SourcePage(
            entities=entities,
            total_found=total,
            more_available=bool(data.get("cursor")) and total is not None and total > len(entities),
        )

    def _fields(self, result: dict[str, Any], powo_id: int) -> dict[str, Any]:
        images = _images(result)
        synonym_of = result.get("synonymOf") or {}
        return {
            "synonyms": [synonym_of["name"]] if synonym_of.get("name") else [],
            "thumbnail": images[0].thumbnail or images[0].url if images else None,
            "details": PlantDetails(
                taxonomy=_taxonomy(result),
                characteristics=_characteristics(result),
                images=images,
                external_ids={"powo_id": powo_id, "ipni_id": f"{powo_id}-1"},
            ),
        }

    def _to_entity(self, result: dict[str, Any], query: SearchQuery) -> PlantEntity | None:
        name = result.get("name")
        powo_id = extract_powo_id(result.get("fqId") or result.get("url"))
        if not name or powo_id is None:
            return None
        fields = self._fields(result, powo_id)
        candidates = [Candidate(name, MatchType.ENTITY_NAME)]
        candidates.extend(Candidate(s, MatchType.SYNONYM) for s in fields["synonyms"])
        return self._build_entity(
            query,
            name=name,
            native_id=powo_id,
            candidates=candidates,
            payload=result,
            **fields,
        )

    async def _fetch_details(self, info: TokenInfo) -> PlantEntity | None:
        taxon = await self._get_json(
            f"{self.base_url}/taxon/{IPNI_URN}{info.entity_id}-1",
            {"fields": "distribution,descriptions,images"},
        )
        name = taxon.get("name") if taxon else None
        if not name:
            return None
        fields = self._fields(taxon, info.entity_id)
        common = [v.get("name") for v in taxon.get("vernacularNames") or [] if v.get("name")]
        synonyms = [s.get("name") for s in taxon.get("synonyms") or [] if s.get("name")]
        return self._build_detail(
            name=name,
            native_id=info.entity_id,
            payload=taxon,
            common_names=common,
            **{**fields, "synonyms": synonyms or fields["synonyms"]},
        )

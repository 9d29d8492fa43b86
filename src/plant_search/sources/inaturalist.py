"""iNaturalist taxa API: community names, photos and observation counts."""
from __future__ import annotations

from typing import Any

from plant_search.models.entity import MatchType, PlantDetails, PlantEntity, PlantImage, Taxonomy, WikipediaRef
from plant_search.models.search import SearchQuery
from plant_search.models.stats import ProviderCapabilities, ProviderCost, ProviderInfo, RateLimits
from plant_search.net import RateLimitConfig
from plant_search.utils.access_token import TokenInfo
from plant_search.utils.matching import Candidate

from .base import BaseSource, SourcePage

# iNaturalist taxon id for Plantae
PLANTAE_TAXON_ID = 47126
MAX_IMAGES = 5

_RANKS = ("kingdom", "phylum", "class", "order", "family", "genus")


def _is_plant(taxon: dict[str, Any]) -> bool:
    return taxon.get("id") == PLANTAE_TAXON_ID or PLANTAE_TAXON_ID in (taxon.get("ancestor_ids") or [])


def _taxonomy(taxon: dict[str, Any]) -> Taxonomy:
    ranks: dict[str, str] = {}
    for ancestor in taxon.get("ancestors") or []:
        rank = ancestor.get("rank")
        if rank in _RANKS:
            ranks["class_" if rank == "class" else rank] = ancestor.get("name")
    if taxon.get("rank") == "genus":
        ranks["genus"] = taxon.get("name")
    elif taxon.get("rank") == "species":
        ranks["species"] = taxon.get("name")
    return Taxonomy(**ranks)


def _images(taxon: dict[str, Any]) -> list[PlantImage]:
    images: list[PlantImage] = []
    default = taxon.get("default_photo")
    if default:
        images.append(_image(default))
    for item in taxon.get("taxon_photos") or []:
        photo = item.get("photo")
        if photo and (not default or photo.get("id") != default.get("id")):
            images.append(_image(photo))
        if len(images) >= MAX_IMAGES:
            break
    return [img for img in images if img.url]


def _image(photo: dict[str, Any]) -> PlantImage:
    return PlantImage(
        url=photo.get("large_url") or photo.get("medium_url") or photo.get("url") or "",
        thumbnail=photo.get("square_url") or photo.get("url"),
        license=photo.get("license_code"),
        attribution=photo.get("attribution"),
    )


def _common_names(taxon: dict[str, Any]) -> list[str]:
    names = []
    for key in ("preferred_common_name", "english_common_name"):
        name = taxon.get(key)
        if name and name not in names:
            names.append(name)
    return names


class INaturalistSource(BaseSource):
    """iNaturalist taxa search restricted to Plantae, most-observed first."""

    tag = "inaturalist"
    display_name = "iNaturalist API"
    base_url = "https://api.inaturalist.org/v1"
    max_limit = 100
    supports_details = True
    # iNaturalist asks clients to stay around one request per second
    rate_limit = RateLimitConfig(max_calls=1, window_seconds=1.0)

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.display_name,
            description="Community-driven biodiversity database with millions of plant observations and photos",
            capabilities=ProviderCapabilities(
                fuzzy_search=True,
                images=True,
                taxonomy=True,
                common_names=True,
                location_based=True,
                details=True,
            ),
            rate_limits=RateLimits(requests_per_minute=60, requests_per_day=10000),
            cost=ProviderCost(free_tier=-1, cost_per_request=0),
        )

    async def _probe(self) -> None:
        await self._get_json(f"{self.base_url}/taxa", {"q": "Quercus", "per_page": 1})

    async def _search(self, query: SearchQuery, limit: int) -> SourcePage:
        params: dict[str, Any] = {
            "q": query.text,
            "per_page": limit,
            "page": 1,
            "taxon_id": PLANTAE_TAXON_ID,
            "rank": "species,genus",
            "is_active": "true",
            "order": "desc",
            "order_by": "observations_count",
        }
        if query.language and query.language != "en":
            params["locale"] = query.language
        data = await self._get_json(f"{self.base_url}/taxa", params)

        entities = []
        for taxon in data.get("results") or []:
            if not _is_plant(taxon) or not taxon.get("name") or taxon.get("id") is None:
                continue
            entities.append(self._to_entity(taxon, query))
        total = data.get("total_results")
        return SourcePage(
            entities=entities,
            total_found=total,
            more_available=total is not None and total > len(entities),
        )

    def _to_entity(self, taxon: dict[str, Any], query: SearchQuery) -> PlantEntity:
        name = taxon["name"]
        common = _common_names(taxon)
        candidates = [Candidate(name, MatchType.ENTITY_NAME)]
        matched_term = taxon.get("matched_term")
        if matched_term and matched_term != name and matched_term not in common:
            candidates.append(Candidate(matched_term, MatchType.SYNONYM))
        candidates.extend(Candidate(c, MatchType.COMMON_NAME) for c in common)

        return self._build_entity(
            query,
            name=name,
            native_id=taxon["id"],
            candidates=candidates,
            payload=taxon,
            common_names=common,
            thumbnail=(taxon.get("default_photo") or {}).get("medium_url"),
            details=self._details(taxon),
        )

    def _details(self, taxon: dict[str, Any]) -> PlantDetails:
        wiki_url = taxon.get("wikipedia_url")
        return PlantDetails(
            taxonomy=_taxonomy(taxon),
            observations_count=taxon.get("observations_count"),
            external_ids={"inaturalist_id": taxon["id"]},
            images=_images(taxon) or None,
            wikipedia=WikipediaRef(
                title=taxon["name"],
                url=wiki_url,
                extract=taxon.get("wikipedia_summary"),
            )
            if wiki_url
            else None,
        )

    async def _fetch_details(self, info: TokenInfo) -> PlantEntity | None:
        data = await self._get_json(f"{self.base_url}/taxa/{info.entity_id}")
        results = data.get("results") or []
        if not results:
            return None
        taxon = results[0]
        if not taxon.get("name"):
            return None
        return self._build_detail(
            name=taxon["name"],
            native_id=taxon.get("id", info.entity_id),
            payload=taxon,
            common_names=_common_names(taxon),
            thumbnail=(taxon.get("default_photo") or {}).get("medium_url"),
            details=self._details({**taxon, "id": taxon.get("id", info.entity_id)}),
        )

"""Built-in species list: offline fallback and test fixture."""
from __future__ import annotations

from typing import Any

from plant_search.models.entity import MatchType, PlantDetails, PlantEntity, PlantImage, Taxonomy, WikipediaRef
from plant_search.models.search import SearchQuery
from plant_search.models.stats import ProviderCapabilities, ProviderCost, ProviderInfo, RateLimits
from plant_search.utils.access_token import TokenInfo, encode_access_token
from plant_search.utils.matching import MIN_MATCH_CONFIDENCE, MatchContext
from plant_search.utils.normalize import normalize_query, similarity

from .base import BaseSource, SourcePage

GENUS_WEIGHT = 0.8

_WIKI = "https://en.wikipedia.org/wiki/"


def _species(
    id: int,
    name: str,
    common_names: list[str],
    family: str,
    order: str,
    class_: str,
    **external_ids: int,
) -> dict[str, Any]:
    genus = name.split()[0]
    return {
        "id": id,
        "name": name,
        "common_names": common_names,
        "genus": genus,
        "external_ids": external_ids,
        "wikipedia": {"title": name, "url": _WIKI + name.replace(" ", "_")},
        "taxonomy": {
            "kingdom": "Plantae",
            "phylum": "Tracheophyta",
            "class": class_,
            "order": order,
            "family": family,
            "genus": genus,
            "species": name,
        },
    }


MOCK_SPECIES: list[dict[str, Any]] = [
    _species(
        1,
        "Ficus lyrata",
        ["Fiddle Leaf Fig", "Fiddle-leaf Fig Tree"],
        "Moraceae",
        "Rosales",
        "Magnoliopsida",
        gbif_id=2984084,
        inaturalist_id=135264,
    ),
    _species(
        2,
        "Monstera deliciosa",
        ["Swiss Cheese Plant", "Split-leaf Philodendron", "Mexican Breadfruit"],
        "Araceae",
        "Alismatales",
        "Liliopsida",
        gbif_id=2768353,
        inaturalist_id=129623,
    ),
    _species(
        3,
        "Sansevieria trifasciata",
        ["Snake Plant", "Mother-in-law's Tongue", "Saint George's Sword"],
        "Asparagaceae",
        "Asparagales",
        "Liliopsida",
        gbif_id=2757059,
        inaturalist_id=78301,
    ),
    _species(4, "Epipremnum aureum", ["Golden Pothos", "Devil's Ivy"], "Araceae", "Alismatales", "Liliopsida"),
    _species(5, "Ficus elastica", ["Rubber Plant", "Rubber Fig"], "Moraceae", "Rosales", "Magnoliopsida"),
    _species(6, "Chlorophytum comosum", ["Spider Plant", "Airplane Plant"], "Asparagaceae", "Asparagales", "Liliopsida"),
    _species(7, "Spathiphyllum wallisii", ["Peace Lily"], "Araceae", "Alismatales", "Liliopsida"),
    _species(8, "Aloe vera", ["Aloe", "Medicinal Aloe"], "Asphodelaceae", "Asparagales", "Liliopsida"),
    _species(9, "Zamioculcas zamiifolia", ["ZZ Plant", "Zanzibar Gem"], "Araceae", "Alismatales", "Liliopsida"),
    _species(10, "Calathea orbifolia", ["Prayer Plant"], "Marantaceae", "Zingiberales", "Liliopsida"),
    _species(11, "Dracaena marginata", ["Dragon Tree", "Madagascar Dragon Tree"], "Asparagaceae", "Asparagales", "Liliopsida"),
    _species(12, "Philodendron hederaceum", ["Heartleaf Philodendron", "Sweetheart Plant"], "Araceae", "Alismatales", "Liliopsida"),
]


def _match(plant: dict[str, Any], normalized: str) -> MatchContext | None:
    """Best substring hit in the scientific name, genus or common names."""
    hits: list[MatchContext] = []

    def _try(text: str, kind: MatchType, weight: float = 1.0) -> None:
        index = text.lower().find(normalized)
        if index != -1:
            hits.append(MatchContext(text, kind, index, similarity(normalized, text) * weight))

    _try(plant["name"], MatchType.ENTITY_NAME)
    _try(plant["genus"], MatchType.ENTITY_NAME, GENUS_WEIGHT)
    for name in plant["common_names"]:
        _try(name, MatchType.COMMON_NAME)

    hits = [h for h in hits if h.confidence > MIN_MATCH_CONFIDENCE]
    if not hits:
        return None
    return max(hits, key=lambda h: h.confidence)


class MockSource(BaseSource):
    """Always-available source answering from ``MOCK_SPECIES``."""

    tag = "mock"
    display_name = "Mock Plant Database"
    max_limit = 100
    supports_details = True

    def __init__(self, species: list[dict[str, Any]] | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.species = species if species is not None else MOCK_SPECIES

    def should_cache(self) -> bool:
        return False

    async def is_available(self) -> bool:
        return True

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.display_name,
            description=f"Local mock database with {len(self.species)} plant species for testing and fallback purposes",
            capabilities=ProviderCapabilities(
                fuzzy_search=True,
                images=True,
                taxonomy=True,
                common_names=True,
                details=True,
            ),
            rate_limits=RateLimits(requests_per_minute=10000, requests_per_day=1000000),
            cost=ProviderCost(free_tier=-1, cost_per_request=0),
        )

    async def _search(self, query: SearchQuery, limit: int) -> SourcePage:
        normalized = normalize_query(query.text)
        if not normalized:
            return SourcePage()
        entities = []
        for plant in self.species:
            ctx = _match(plant, normalized)
            if ctx is not None:
                entities.append(self._to_entity(plant, ctx.as_fields(query.text)))
        return SourcePage(entities=entities, total_found=len(entities))

    async def _fetch_details(self, info: TokenInfo) -> PlantEntity | None:
        for plant in self.species:
            if plant["id"] == info.entity_id:
                name = plant["name"]
                return self._to_entity(
                    plant,
                    {"matched_in": name, "match_position": 0, "match_length": len(name), "confidence": 1.0},
                )
        return None

    def _to_entity(self, plant: dict[str, Any], match_fields: dict[str, Any]) -> PlantEntity:
        wiki = plant.get("wikipedia")
        image = plant.get("image")
        return PlantEntity(
            entity_name=plant["name"],
            provider_source=self.tag,
            provider_id=str(plant["id"]),
            access_token=encode_access_token(plant["id"], self.tag),
            common_names=list(plant["common_names"]),
            thumbnail=image,
            details=PlantDetails(
                taxonomy=Taxonomy(**plant["taxonomy"]),
                external_ids=dict(plant.get("external_ids") or {}),
                images=[PlantImage(url=image, thumbnail=image)] if image else None,
                wikipedia=WikipediaRef(**wiki) if wiki else None,
            ),
            **match_fields,
        )

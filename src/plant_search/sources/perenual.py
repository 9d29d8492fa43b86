"""Perenual plant API: care characteristics and images, keyed access."""
from __future__ import annotations

from typing import Any

from plant_search.exceptions import ConfigurationError
from plant_search.models.entity import MatchType, PlantDetails, PlantEntity, PlantImage
from plant_search.models.search import SearchFilters, SearchQuery
from plant_search.models.stats import ProviderCapabilities, ProviderCost, ProviderInfo, RateLimits
from plant_search.net import RateLimitConfig
from plant_search.utils.access_token import TokenInfo
from plant_search.utils.matching import Candidate

from .base import BaseSource, SourcePage


# Perenual's care vocabulary, folded onto the filter vocabulary
_WATERING = {"frequent": "high", "average": "medium", "minimum": "low", "minimal": "low", "none": "low"}
_MAINTENANCE = {"low": "easy", "moderate": "medium", "medium": "medium", "high": "hard"}
_CARE_LEVEL = {"low": "low", "moderate": "medium", "medium": "medium", "high": "high"}
_SUNLIGHT = {
    "full sun": "full",
    "full_sun": "full",
    "part sun/part shade": "high",
    "sun-part_shade": "high",
    "part shade": "medium",
    "part_shade": "medium",
    "filtered shade": "medium",
    "full shade": "low",
    "full_shade": "low",
    "deep shade": "low",
}
_CYCLE = {
    "annual": "annual",
    "biennial": "biennial",
    "biannual": "biennial",
    "perennial": "perennial",
    "herbaceous perennial": "perennial",
}

# Filter vocabulary back to the values the species-list endpoint accepts
_WATERING_PARAM = {"high": "frequent", "medium": "average", "low": "minimum"}
_SUNLIGHT_PARAM = {"full": "full_sun", "high": "sun-part_shade", "medium": "part_shade", "low": "full_shade"}


def _vocab(value: Any, table: dict[str, str]) -> str | None:
    """Known Perenual value in filter terms; None for anything else."""
    if not isinstance(value, str):
        return None
    return table.get(value.strip().lower())


def _filter_params(filters: SearchFilters | None) -> dict[str, str]:
    params: dict[str, str] = {}
    if filters is None:
        return params
    for key in ("indoor", "edible", "poisonous"):
        value = getattr(filters, key)
        if value is not None:
            params[key] = "1" if value else "0"
    if filters.cycle:
        params["cycle"] = filters.cycle
    if filters.watering:
        params["watering"] = _WATERING_PARAM[filters.watering]
    if filters.sunlight:
        params["sunlight"] = _SUNLIGHT_PARAM[filters.sunlight]
    return params


def _characteristics(plant: dict[str, Any]) -> dict[str, Any]:
    sunlight = [s for s in (_vocab(v, _SUNLIGHT) for v in plant.get("sunlight") or []) if s]
    chars = {
        "indoor": plant.get("indoor"),
        "cycle": _vocab(plant.get("cycle"), _CYCLE),
        "care_level": _vocab(plant.get("care_level"), _CARE_LEVEL),
        "watering": _vocab(plant.get("watering"), _WATERING),
        "sunlight": sunlight[0] if sunlight else None,
        "edible": bool(plant.get("edible_fruit") or plant.get("edible_leaf")),
        "poisonous": plant.get("poisonous_to_humans") == 1 or plant.get("poisonous_to_pets") == 1,
        "difficulty": _vocab(plant.get("maintenance"), _MAINTENANCE),
        "mature_height": plant.get("dimension"),
    }
    return {k: v for k, v in chars.items() if v is not None}


def _images(plant: dict[str, Any]) -> list[PlantImage] | None:
    image = plant.get("default_image") or {}
    url = image.get("regular_url") or image.get("original_url")
    if not url:
        return None
    return [
        PlantImage(
            url=url,
            thumbnail=image.get("thumbnail"),
            license=image.get("license_name"),
            attribution=image.get("license_url"),
        )
    ]


class PerenualSource(BaseSource):
    """Perenual species list. Requires ``PERENUAL_API_KEY``."""

    tag = "perenual"
    display_name = "Perenual Plant API"
    base_url = "https://perenual.com/api/v2"
    max_limit = 30
    supports_details = True
    rate_limit = RateLimitConfig(max_calls=2, window_seconds=1.0)

    def __init__(self, api_key: str | None = None, **kwargs: Any) -> None:
        if not api_key:
            raise ConfigurationError("Perenual API key is required", provider=self.tag)
        super().__init__(api_key=api_key, **kwargs)

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.display_name,
            description="Comprehensive plant database with 10,000+ species including care guides, characteristics, and images",
            capabilities=ProviderCapabilities(
                fuzzy_search=True,
                filters=True,
                images=True,
                common_names=True,
                synonyms=True,
                details=True,
            ),
            rate_limits=RateLimits(requests_per_minute=100, requests_per_day=1000),
            cost=ProviderCost(free_tier=100, cost_per_request=0.01),
        )

    async def _probe(self) -> None:
        await self._get_json(f"{self.base_url}/species-list", {"key": self.api_key, "q": "rose", "page": 1})

    async def _search(self, query: SearchQuery, limit: int) -> SourcePage:
        params: dict[str, Any] = {"key": self.api_key, "q": query.text, "page": 1}
        params.update(_filter_params(query.filters))
        data = await self._get_json(f"{self.base_url}/species-list", params)

        entities = []
        for plant in data.get("data") or []:
            entity = self._to_entity(plant, query)
            if entity is not None:
                entities.append(entity)
        current = data.get("current_page") or 1
        last = data.get("last_page") or 1
        return SourcePage(
            entities=entities,
            total_found=data.get("total"),
            more_available=current < last,
        )

    def _fields(self, plant: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
        scientific = plant.get("scientific_name") or []
        name = scientific[0] if scientific else plant.get("common_name")
        other = [n for n in plant.get("other_name") or [] if n]
        common = [n for n in [plant.get("common_name"), *other] if n]
        return name, {
            "common_names": common,
            "synonyms": other,
            "thumbnail": (plant.get("default_image") or {}).get("thumbnail"),
            "details": PlantDetails(
                characteristics=_characteristics(plant),
                images=_images(plant),
                external_ids={"perenual_id": plant["id"]},
            ),
        }

    def _to_entity(self, plant: dict[str, Any], query: SearchQuery) -> PlantEntity | None:
        if plant.get("id") is None:
            return None
        name, fields = self._fields(plant)
        if not name:
            return None
        candidates = [Candidate(n, MatchType.ENTITY_NAME) for n in plant.get("scientific_name") or [] if n]
        if plant.get("common_name"):
            candidates.append(Candidate(plant["common_name"], MatchType.COMMON_NAME))
        candidates.extend(Candidate(n, MatchType.SYNONYM) for n in fields["synonyms"])
        return self._build_entity(
            query,
            name=name,
            native_id=plant["id"],
            candidates=candidates,
            payload=plant,
            **fields,
        )

    async def _fetch_details(self, info: TokenInfo) -> PlantEntity | None:
        plant = await self._get_json(
            f"{self.base_url}/species/details/{info.entity_id}",
            {"key": self.api_key},
        )
        if not plant:
            return None
        plant.setdefault("id", info.entity_id)
        name, fields = self._fields(plant)
        if not name:
            return None
        return self._build_detail(name=name, native_id=plant["id"], payload=plant, **fields)

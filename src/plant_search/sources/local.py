"""The persistent cache presented as a source."""
from __future__ import annotations

from typing import Any

import structlog

from plant_search.exceptions import StoreError
from plant_search.models.entity import PlantEntity
from plant_search.models.search import SearchQuery
from plant_search.models.stats import ProviderCapabilities, ProviderCost, ProviderInfo, RateLimits
from plant_search.store.entity_store import LOCAL_TAG, EntityStore
from plant_search.utils.access_token import decode_access_token

from .base import BaseSource, SourcePage

logger = structlog.get_logger(__name__)


class LocalSource(BaseSource):
    """Answers from entities other sources already returned.

    Detail lookups accept ``local`` tokens (row ids) and also tokens issued by
    other sources, resolved through the stored ``(provider_source,
    provider_id)`` pair.
    """

    tag = LOCAL_TAG
    display_name = "Local Plant Database"
    max_limit = 100
    supports_details = True

    def __init__(self, store: EntityStore, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.store = store

    def should_cache(self) -> bool:
        return False

    async def is_available(self) -> bool:
        return self.store.ping()

    def get_provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.display_name,
            description="Cached plant entities from previous searches, with full-text search",
            capabilities=ProviderCapabilities(
                fuzzy_search=True,
                filters=True,
                images=True,
                taxonomy=True,
                common_names=True,
                synonyms=True,
                details=True,
            ),
            rate_limits=RateLimits(),
            cost=ProviderCost(free_tier=-1, cost_per_request=0),
        )

    async def _search(self, query: SearchQuery, limit: int) -> SourcePage:
        entities = self.store.search_local(query.text, limit, query.filters)
        return SourcePage(entities=entities, total_found=len(entities))

    async def get_details(self, access_token: str) -> PlantEntity | None:
        info = decode_access_token(access_token)
        if info is None:
            return None
        try:
            if info.provider_tag == self.tag:
                return self.store.get_entity(info.entity_id)
            return self.store.find_by_provider(info.provider_tag, str(info.entity_id))
        except StoreError as e:
            logger.warning("source.details_failed", source=self.tag, entity_id=info.entity_id, error=str(e))
            return None

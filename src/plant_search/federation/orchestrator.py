"""Cache-first search federation with ordered degradation across sources.

A search reads the local cache; on a miss it walks the configured provider
chain (default provider, then the degradation list) and stops at the first
non-empty answer, which is written back to the cache. Detail lookups decode
the access token, ask the originating provider, then the fallback list.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from plant_search.config import ProviderTag, Settings
from plant_search.exceptions import ConfigurationError, StoreError
from plant_search.models.entity import PlantEntity
from plant_search.models.search import SearchQuery, SearchResult
from plant_search.models.stats import ProviderStat
from plant_search.sources.base import BaseSource
from plant_search.sources.registry import SourceRegistry
from plant_search.store.entity_store import LOCAL_TAG, EntityStore
from plant_search.store.stats import StatsRecorder
from plant_search.utils.access_token import decode_access_token
from plant_search.utils.normalize import normalize_query

logger = structlog.get_logger(__name__)

EXHAUSTED_PROVIDER = "none"


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


@dataclass
class ProviderAttempt:
    """Outcome of asking one provider during a cache miss."""

    provider: str
    result: SearchResult | None
    should_cache: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None and not self.result.is_empty


class FederationOrchestrator:
    """Routes searches and detail lookups across the cache and sources.

    Args:
        store: Entity cache; ``search_local`` errors propagate.
        registry: Builds one adapter per attempt.
        settings: Provider chain and concurrency options.
        stats: Stats recorder; defaults to one over ``store``.
    """

    def __init__(
        self,
        store: EntityStore,
        registry: SourceRegistry,
        settings: Settings | None = None,
        stats: StatsRecorder | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.settings = settings or registry.settings
        self.stats = stats or StatsRecorder(store)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ) -> FederationOrchestrator:
        """Wire store, stats and registry from settings."""
        store = EntityStore(settings.db_path)
        registry = SourceRegistry(settings, store, client=client)
        return cls(store, registry, settings)

    # ------------------------------ search ------------------------------

    async def search(self, query: SearchQuery) -> SearchResult:
        """Answer ``query`` from the cache, else from the first productive provider.

        Raises:
            StoreError: the cache read failed.
        """
        start = time.perf_counter()
        normalized = normalize_query(query.text)
        filters = query.filters.active() if query.filters else None
        query_id = self._record_query(query.text, filters)

        local_start = time.perf_counter()
        cached = self.store.search_local(query.text, query.limit, query.filters)
        self._record_stat(LOCAL_TAG, bool(cached), _elapsed_ms(local_start), len(cached))
        if cached:
            logger.info("federation.cache_hit", query=normalized, count=len(cached))
            return SearchResult(
                entities=cached,
                entities_trimmed=len(cached) >= query.limit,
                limit=query.limit,
                provider=LOCAL_TAG,
                cached=True,
                search_time_ms=_elapsed_ms(start),
                query_normalized=normalized,
                total_found=len(cached),
            )

        chain = self.settings.search_chain
        logger.info("federation.cache_miss", query=normalized, chain=[t.value for t in chain])
        if self.settings.parallel:
            winner = await self._race(chain, query)
        else:
            winner = await self._walk(chain, query)

        if winner is None or winner.result is None:
            logger.warning("federation.exhausted", query=normalized)
            return SearchResult.empty(
                EXHAUSTED_PROVIDER,
                query.limit,
                normalized,
                search_time_ms=_elapsed_ms(start),
            )

        result = winner.result
        if winner.should_cache:
            self._write_back(query_id, result.entities, winner.provider)
        return result.model_copy(update={"search_time_ms": _elapsed_ms(start), "cached": False})

    async def _walk(self, chain: list[ProviderTag], query: SearchQuery) -> ProviderAttempt | None:
        """Try providers strictly in order; first non-empty result wins."""
        for tag in chain:
            attempt = await self._attempt(tag, query)
            if attempt.succeeded:
                return attempt
        return None

    async def _race(self, chain: list[ProviderTag], query: SearchQuery) -> ProviderAttempt | None:
        """Run the chain concurrently; first non-empty result in completion order wins.

        Attempts still in flight when a winner arrives are cancelled and
        recorded as failed.
        """
        sem = asyncio.Semaphore(self.settings.max_concurrency)

        async def run(tag: ProviderTag) -> ProviderAttempt:
            async with sem:
                return await self._attempt(tag, query)

        tasks = {asyncio.create_task(run(tag)): tag for tag in chain}
        winner: ProviderAttempt | None = None
        try:
            for next_done in asyncio.as_completed(list(tasks)):
                attempt = await next_done
                if attempt.succeeded:
                    winner = attempt
                    break
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        return winner

    async def _attempt(self, tag: ProviderTag, query: SearchQuery) -> ProviderAttempt:
        """Ask one provider, recording exactly one stat for the attempt."""
        name = tag.value
        start = time.perf_counter()
        try:
            source = self.registry.create(tag)
        except ConfigurationError as e:
            logger.warning("federation.provider_misconfigured", provider=name, error=str(e))
            self._record_stat(name, False, 0, 0)
            return ProviderAttempt(name, None, error=str(e))

        try:
            if not await source.is_available():
                logger.info("federation.provider_unavailable", provider=name)
                self._record_stat(name, False, 0, 0)
                return ProviderAttempt(name, None, error="unavailable")

            if self.settings.source_timeout:
                result = await asyncio.wait_for(source.search(query), timeout=self.settings.source_timeout)
            else:
                result = await source.search(query)
        except (asyncio.TimeoutError, TimeoutError):
            logger.warning("federation.provider_timeout", provider=name, timeout_s=self.settings.source_timeout)
            self._record_stat(name, False, _elapsed_ms(start), 0)
            return ProviderAttempt(name, None, error="timeout")
        except asyncio.CancelledError:
            logger.info("federation.provider_cancelled", provider=name)
            self._record_stat(name, False, _elapsed_ms(start), 0)
            raise
        finally:
            await source.close()

        count = len(result.entities)
        self._record_stat(name, count > 0, result.search_time_ms, count)
        if count:
            logger.info("federation.provider_success", provider=name, count=count, elapsed_ms=result.search_time_ms)
        else:
            logger.info("federation.provider_empty", provider=name, elapsed_ms=result.search_time_ms)
        return ProviderAttempt(name, result, should_cache=source.should_cache())

    # ------------------------------ details -----------------------------

    async def get_details(self, access_token: str) -> PlantEntity | None:
        """Hydrate the entity behind ``access_token``; None when nobody can."""
        info = decode_access_token(access_token)
        if info is None:
            logger.info("federation.details_bad_token")
            return None

        tried: set[ProviderTag] = set()
        candidates: list[ProviderTag] = []
        try:
            candidates.append(ProviderTag.parse(info.provider_tag))
        except ConfigurationError:
            logger.warning("federation.details_unknown_provider", provider=info.provider_tag)
        candidates.extend(self.settings.detail_fallback)

        for tag in candidates:
            if tag in tried:
                continue
            tried.add(tag)
            entity, should_cache = await self._details_from(tag, access_token)
            if entity is None:
                continue
            logger.info("federation.details_found", provider=tag.value, entity_name=entity.entity_name)
            if should_cache:
                self._write_back_detail(entity)
            return entity

        logger.info("federation.details_not_found", provider=info.provider_tag, entity_id=info.entity_id)
        return None

    async def _details_from(self, tag: ProviderTag, access_token: str) -> tuple[PlantEntity | None, bool]:
        try:
            source = self.registry.create(tag)
        except ConfigurationError as e:
            logger.warning("federation.provider_misconfigured", provider=tag.value, error=str(e))
            return None, False
        try:
            if not source.supports_details:
                return None, False
            return await source.get_details(access_token), source.should_cache()
        finally:
            await source.close()

    # ----------------------------- write-back ---------------------------

    def _record_query(self, raw_text: str, filters: dict[str, Any] | None) -> int | None:
        try:
            return self.store.record_query(raw_text, filters)
        except StoreError as e:
            logger.warning("store.record_query_failed", error=str(e))
            return None

    def _record_stat(self, provider: str, success: bool, latency_ms: float, result_count: int) -> None:
        try:
            self.stats.record(provider, success, latency_ms, result_count)
        except StoreError as e:
            logger.warning("stats.record_failed", provider=provider, error=str(e))

    def _write_back(self, query_id: int | None, entities: list[PlantEntity], provider: str) -> None:
        """Persist a provider's answer; never fails the search."""
        try:
            for entity in entities:
                self.store.upsert_entity(entity)
            linked = self.store.link_results(query_id, entities, provider) if query_id is not None else 0
        except StoreError as e:
            logger.warning("store.write_back_failed", provider=provider, error=str(e))
            return
        logger.info("store.write_back", provider=provider, stored=len(entities), linked=linked)

    def _write_back_detail(self, entity: PlantEntity) -> None:
        """Cache a hydrated entity as a one-result search for its own name."""
        try:
            self.store.upsert_entity(entity)
            query_id = self.store.record_query(entity.entity_name)
            self.store.link_results(query_id, [entity], entity.provider_source)
        except StoreError as e:
            logger.warning("store.write_back_failed", provider=entity.provider_source, error=str(e))

    # ---------------------------- introspection -------------------------

    def _configured_tags(self) -> list[ProviderTag]:
        tags = [ProviderTag.LOCAL]
        for tag in self.settings.search_chain:
            if tag not in tags:
                tags.append(tag)
        return tags

    async def provider_info(self) -> list[dict[str, Any]]:
        """Descriptor and availability for the cache and each configured provider."""
        infos: list[dict[str, Any]] = []
        for tag in self._configured_tags():
            try:
                source = self.registry.create(tag)
            except ConfigurationError as e:
                infos.append({"type": tag.value, "name": f"{tag.value} (Error)", "available": False, "error": str(e)})
                continue
            try:
                available = await source.is_available()
                info = source.get_provider_info()
            finally:
                await source.close()
            infos.append(
                {
                    "type": tag.value,
                    "name": info.name,
                    "available": available,
                    "info": info.model_dump(),
                }
            )
        return infos

    async def test_providers(self) -> dict[str, dict[str, Any]]:
        """Probe every configured provider, timing the availability check."""
        report: dict[str, dict[str, Any]] = {}
        for tag in self._configured_tags():
            start = time.perf_counter()
            try:
                source: BaseSource = self.registry.create(tag)
            except ConfigurationError as e:
                report[tag.value] = {"available": False, "response_time_ms": 0, "error": str(e)}
                continue
            try:
                available = await source.is_available()
            finally:
                await source.close()
            report[tag.value] = {"available": available, "response_time_ms": _elapsed_ms(start)}
        return report

    def provider_stats(self, provider: str | None = None, days: int = 7) -> list[ProviderStat]:
        return self.stats.provider_stats(provider, days)

    def popular_queries(self, limit: int = 10) -> list[dict[str, Any]]:
        return self.store.popular_queries(limit)

    def search_summary(self, days: int = 7) -> dict[str, Any]:
        return self.store.search_summary(days)

    def cleanup(self, days_to_keep: int = 90) -> dict[str, int]:
        return self.store.cleanup(days_to_keep)

    async def aclose(self) -> None:
        await self.registry.aclose()

    async def __aenter__(self) -> FederationOrchestrator:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

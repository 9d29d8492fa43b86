"""Base interface for plant data sources."""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from plant_search.exceptions import SourceError, StoreError
from plant_search.models.entity import PlantEntity
from plant_search.models.search import SearchResult
from plant_search.net import GUARDS, RateLimitConfig
from plant_search.utils.access_token import TokenInfo, decode_access_token, encode_access_token
from plant_search.utils.matching import Candidate, best_match
from plant_search.utils.normalize import normalize_query

if TYPE_CHECKING:
    from plant_search.models.search import SearchQuery
    from plant_search.models.stats import ProviderInfo

logger = structlog.get_logger(__name__)

USER_AGENT = "plant-search-federation/0.3 (+https://github.com/plant-search-federation)"

# Failures an adapter absorbs into an empty result or a None detail
RECOVERABLE_ERRORS: tuple[type[BaseException], ...] = (
    httpx.HTTPError,
    SourceError,
    StoreError,
    ValueError,
    KeyError,
    TypeError,
)


@runtime_checkable
class PlantSource(Protocol):
    """Capability contract every plant data source implements."""

    tag: str
    supports_details: bool

    async def search(self, query: SearchQuery) -> SearchResult:
        """Search by free text. Never raises for upstream failures.

        Args:
            query: Search parameters

        Returns:
            Result with ``total_found == 0`` when the source failed
        """
        ...

    async def get_details(self, access_token: str) -> PlantEntity | None:
        """Hydrate one entity from an access token, or None."""
        ...

    async def is_available(self) -> bool:
        """Cheap liveness probe."""
        ...

    def should_cache(self) -> bool:
        """Whether results from this source belong in the local cache."""
        ...

    def get_provider_info(self) -> ProviderInfo:
        """Operator-facing descriptor."""
        ...


@dataclass
class SourcePage:
    """What one upstream call produced, before clamping and sorting."""

    entities: list[PlantEntity] = field(default_factory=list)
    total_found: int | None = None
    more_available: bool = False


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class BaseSource(ABC):
    """Abstract base class for plant data sources.

    Subclasses implement ``_search`` (and ``_fetch_details`` when they set
    ``supports_details``); this class owns limit clamping, relevance
    ordering, timing, and the rule that upstream failures become empty
    results instead of exceptions.
    """

    tag: ClassVar[str] = "base"
    display_name: ClassVar[str] = "Base source"
    base_url: ClassVar[str] = ""
    max_limit: ClassVar[int] = 100
    supports_details: ClassVar[bool] = False
    rate_limit: ClassVar[RateLimitConfig] = RateLimitConfig()

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
        max_attempts: int = 3,
    ) -> None:
        """Initialize the source.

        Args:
            api_key: Credential for sources that need one
            client: Shared HTTP client; one is created lazily when omitted
            timeout: HTTP timeout in seconds for a lazily created client
            max_attempts: Tries per HTTP call for transient failures
        """
        self.api_key = api_key
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._client = client
        self._owns_client = client is None

    # ----------------------------- contract -----------------------------

    async def search(self, query: SearchQuery) -> SearchResult:
        start = time.perf_counter()
        limit = query.clamped_limit(self.max_limit)
        normalized = normalize_query(query.text)
        try:
            page = await self._search(query, limit)
        except RECOVERABLE_ERRORS as e:
            elapsed = int((time.perf_counter() - start) * 1000)
            logger.warning(
                "source.search_failed",
                source=self.tag,
                error_type=type(e).__name__,
                error=self._redact(str(e)),
                elapsed_ms=elapsed,
            )
            return SearchResult.empty(self.tag, limit, normalized, search_time_ms=elapsed)

        # Stable sort keeps upstream order among equal confidences
        ranked = sorted(page.entities, key=lambda e: e.confidence, reverse=True)
        # Upstream pages can list one taxon twice; keep its best-ranked copy
        seen: set[tuple[str, str]] = set()
        unique = []
        for entity in ranked:
            if entity.identity not in seen:
                seen.add(entity.identity)
                unique.append(entity)
        ranked = unique
        elapsed = int((time.perf_counter() - start) * 1000)
        logger.info("source.search_complete", source=self.tag, count=len(ranked), elapsed_ms=elapsed)
        return SearchResult(
            entities=ranked[:limit],
            entities_trimmed=page.more_available or len(ranked) > limit,
            limit=limit,
            provider=self.tag,
            cached=False,
            search_time_ms=elapsed,
            query_normalized=normalized,
            total_found=page.total_found if page.total_found is not None else len(ranked),
        )

    async def get_details(self, access_token: str) -> PlantEntity | None:
        """Hydrate an entity this source issued the token for.

        Tokens from other sources carry ids that mean nothing here, so they
        are refused.
        """
        if not self.supports_details:
            return None
        info = decode_access_token(access_token)
        if info is None or info.provider_tag != self.tag:
            return None
        try:
            return await self._fetch_details(info)
        except RECOVERABLE_ERRORS as e:
            logger.warning(
                "source.details_failed",
                source=self.tag,
                entity_id=info.entity_id,
                error_type=type(e).__name__,
                error=self._redact(str(e)),
            )
            return None

    async def is_available(self) -> bool:
        if GUARDS.get_breaker(self.tag).is_open:
            return False
        try:
            await self._probe()
            return True
        except RECOVERABLE_ERRORS as e:
            logger.info("source.unavailable", source=self.tag, error=self._redact(str(e)))
            return False

    def should_cache(self) -> bool:
        return True

    @abstractmethod
    def get_provider_info(self) -> ProviderInfo:
        """Operator-facing descriptor."""

    # --------------------------- subclass hooks --------------------------

    @abstractmethod
    async def _search(self, query: SearchQuery, limit: int) -> SourcePage:
        """Fetch and map one page of results."""

    async def _fetch_details(self, info: TokenInfo) -> PlantEntity | None:
        return None

    async def _probe(self) -> None:
        await self._get_json(self.base_url)

    # ------------------------------ mapping ------------------------------

    def _build_entity(
        self,
        query: SearchQuery,
        *,
        name: str,
        native_id: int | str,
        candidates: list[Candidate],
        payload: dict[str, Any] | None = None,
        **fields: Any,
    ) -> PlantEntity:
        """Entity for a search hit, with match context from the best candidate name."""
        ctx = best_match(query.text, candidates, fallback_name=name)
        entity = PlantEntity(
            entity_name=name,
            provider_source=self.tag,
            provider_id=str(native_id),
            access_token=encode_access_token(int(native_id), self.tag),
            **ctx.as_fields(query.text),
            **fields,
        )
        return entity.with_raw_payload(payload)

    def _build_detail(
        self,
        *,
        name: str,
        native_id: int | str,
        payload: dict[str, Any] | None = None,
        **fields: Any,
    ) -> PlantEntity:
        """Entity for a detail lookup: the name itself is the match."""
        entity = PlantEntity(
            entity_name=name,
            provider_source=self.tag,
            provider_id=str(native_id),
            access_token=encode_access_token(int(native_id), self.tag),
            matched_in=name,
            match_position=0,
            match_length=len(name),
            confidence=1.0,
            **fields,
        )
        return entity.with_raw_payload(payload)

    # ------------------------------- HTTP --------------------------------

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``url`` as JSON behind the rate limiter, circuit breaker and retries."""
        limiter = GUARDS.get_limiter(self.tag, self.rate_limit)
        breaker = GUARDS.get_breaker(self.tag)

        if not breaker.allow_call():
            raise SourceError("circuit open", source=self.tag)

        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}

        @retry(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(initial=0.5, max=4.0),
            retry=retry_if_exception(_is_transient),
        )
        async def _do() -> Any:
            await limiter.acquire()
            resp = await self.client.get(url, params=params, headers=headers)
            resp.raise_for_status()
            return resp.json()

        try:
            result = await _do()
        except httpx.HTTPStatusError as e:
            # 4xx is an answer, not an outage
            if _is_transient(e):
                breaker.record_failure()
            raise
        except httpx.HTTPError:
            breaker.record_failure()
            raise
        breaker.record_success()
        return result

    def _redact(self, text: str) -> str:
        """Mask the API key in text bound for logs (httpx errors embed the URL)."""
        if self.api_key:
            return text.replace(self.api_key, "[API_KEY]")
        return text

    async def close(self) -> None:
        """Close the HTTP client if this source created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> BaseSource:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        """Async context manager exit - ensures connection cleanup."""
        await self.close()
        return False

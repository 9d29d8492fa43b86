"""Dispatch table from provider tag to adapter constructor."""
from __future__ import annotations

from collections.abc import Callable

import httpx
import structlog

from plant_search.config import ProviderTag, Settings
from plant_search.store.entity_store import EntityStore

from .base import USER_AGENT, BaseSource
from .gbif import GBIFSource
from .inaturalist import INaturalistSource
from .local import LocalSource
from .mock import MockSource
from .perenual import PerenualSource
from .powo import POWOSource

logger = structlog.get_logger(__name__)

SourceFactory = Callable[[], BaseSource]


class SourceRegistry:
    """Builds adapters by tag.

    Adapters are created per request and share one HTTP client owned by the
    registry. Construction errors (a missing credential) surface as
    ``ConfigurationError`` from ``create``.
    """

    def __init__(
        self,
        settings: Settings,
        store: EntityStore,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self._client = client
        self._owns_client = client is None
        self._factories: dict[ProviderTag, SourceFactory] = {
            ProviderTag.LOCAL: lambda: LocalSource(self.store),
            ProviderTag.GBIF: lambda: GBIFSource(**self._http_kwargs()),
            ProviderTag.INATURALIST: lambda: INaturalistSource(**self._http_kwargs()),
            ProviderTag.PERENUAL: lambda: PerenualSource(
                api_key=self.settings.perenual_api_key, **self._http_kwargs()
            ),
            ProviderTag.POWO: lambda: POWOSource(**self._http_kwargs()),
            ProviderTag.MOCK: lambda: MockSource(),
        }

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.http_timeout,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    def _http_kwargs(self) -> dict:
        return {"client": self.client, "timeout": self.settings.http_timeout}

    def register(self, tag: ProviderTag | str, factory: SourceFactory) -> None:
        """Replace or add the constructor for ``tag``."""
        self._factories[ProviderTag.parse(tag)] = factory

    @property
    def tags(self) -> list[ProviderTag]:
        return list(self._factories)

    def create(self, tag: ProviderTag | str) -> BaseSource:
        """Build the adapter for ``tag``.

        Raises:
            ConfigurationError: unknown tag or missing credential.
        """
        key = ProviderTag.parse(tag)
        source = self._factories[key]()
        logger.debug("registry.created", provider=key.value)
        return source

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

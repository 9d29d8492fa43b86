"""Runtime configuration for the plant search federation.

Settings come from environment variables (optionally a ``.env`` file).
Provider tags are checked against ``ProviderTag`` while loading, so a typo
in the degradation chain fails at startup instead of on the first miss.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from plant_search.exceptions import ConfigurationError


class ProviderTag(str, Enum):
    """Closed set of sources the federation knows how to build."""

    LOCAL = "local"
    GBIF = "gbif"
    INATURALIST = "inaturalist"
    PERENUAL = "perenual"
    POWO = "powo"
    MOCK = "mock"

    @classmethod
    def parse(cls, value: str | ProviderTag) -> ProviderTag:
        """Resolve a tag, raising ConfigurationError for unknown names."""
        if isinstance(value, ProviderTag):
            return value
        key = str(value).strip().lower()
        try:
            return cls(key)
        except ValueError:
            known = ", ".join(t.value for t in cls)
            raise ConfigurationError(
                f"Unknown provider '{value}'. Known providers: {known}", provider=key
            ) from None


def parse_provider_list(raw: str | list[Any] | tuple[Any, ...] | None) -> list[ProviderTag]:
    """Turn ``"gbif, mock"`` or ``["gbif", "mock"]`` into tags, dropping blanks and repeats."""
    if raw is None:
        return []
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    tags: list[ProviderTag] = []
    for item in items:
        if isinstance(item, str) and not item.strip():
            continue
        tag = ProviderTag.parse(item)
        if tag not in tags:
            tags.append(tag)
    return tags


# Providers that cannot be constructed without a credential
REQUIRED_CREDENTIALS: dict[ProviderTag, str] = {
    ProviderTag.PERENUAL: "perenual_api_key",
}


class Settings(BaseModel):
    """Validated federation settings."""

    db_path: Path = Field(default=Path("./data/plant_search.db"), description="SQLite cache file")
    perenual_api_key: str | None = Field(default=None, repr=False)

    default_provider: ProviderTag = Field(default=ProviderTag.PERENUAL, description="First external source tried")
    degradation_providers: list[ProviderTag] = Field(
        default_factory=lambda: [ProviderTag.GBIF, ProviderTag.MOCK],
        description="Sources tried, in order, after the default",
    )
    detail_fallback: list[ProviderTag] = Field(
        default_factory=lambda: [
            ProviderTag.LOCAL,
            ProviderTag.INATURALIST,
            ProviderTag.GBIF,
            ProviderTag.PERENUAL,
        ],
        description="Sources asked for details after the originating one",
    )

    parallel: bool = Field(default=False, description="Race the chain instead of walking it")
    max_concurrency: int = Field(default=3, ge=1, description="Race-mode concurrency bound")
    source_timeout: float | None = Field(default=None, gt=0, description="Core-level bound per attempt, seconds")
    http_timeout: float = Field(default=15.0, gt=0, description="Adapter HTTP timeout, seconds")
    log_level: str = "INFO"

    @field_validator("default_provider", mode="before")
    @classmethod
    def _coerce_default(cls, v: Any) -> ProviderTag:
        try:
            return ProviderTag.parse(v)
        except ConfigurationError as e:
            raise ValueError(str(e)) from None

    @field_validator("degradation_providers", "detail_fallback", mode="before")
    @classmethod
    def _coerce_chain(cls, v: Any) -> list[ProviderTag]:
        try:
            return parse_provider_list(v)
        except ConfigurationError as e:
            raise ValueError(str(e)) from None

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def search_chain(self) -> list[ProviderTag]:
        """External providers in the order a cache miss tries them."""
        chain: list[ProviderTag] = []
        for tag in [self.default_provider, *self.degradation_providers]:
            if tag is ProviderTag.LOCAL or tag in chain:
                continue
            chain.append(tag)
        return chain

    def validate_credentials(self) -> list[str]:
        """Human-readable problems for configured providers lacking credentials."""
        errors: list[str] = []
        configured = {*self.search_chain, *self.detail_fallback}
        for tag, attr in REQUIRED_CREDENTIALS.items():
            if tag in configured and not getattr(self, attr):
                errors.append(f"{tag.value}: {attr.upper()} is not set")
        return errors


def load_settings(env: Mapping[str, str] | None = None, dotenv_path: str | Path | None = None) -> Settings:
    """Build settings from the environment.

    Args:
        env: Mapping to read instead of ``os.environ`` (tests). When given,
            no ``.env`` file is loaded.
        dotenv_path: Explicit ``.env`` location; defaults to discovery.

    Raises:
        ConfigurationError: unknown provider tag or invalid value.
    """
    if env is None:
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=dotenv_path)
        env = os.environ

    raw: dict[str, Any] = {}
    mapping = {
        "PLANT_SEARCH_DB_PATH": "db_path",
        "PERENUAL_API_KEY": "perenual_api_key",
        "DEFAULT_PLANT_SEARCH_PROVIDER": "default_provider",
        "PLANT_SEARCH_DEGRADATION_PROVIDERS": "degradation_providers",
        "PLANT_SEARCH_DETAIL_FALLBACK": "detail_fallback",
        "PLANT_SEARCH_PARALLEL": "parallel",
        "PLANT_SEARCH_MAX_CONCURRENCY": "max_concurrency",
        "PLANT_SEARCH_SOURCE_TIMEOUT": "source_timeout",
        "PLANT_SEARCH_HTTP_TIMEOUT": "http_timeout",
        "LOG_LEVEL": "log_level",
    }
    for var, field_name in mapping.items():
        value = env.get(var)
        if value is not None and value.strip() != "":
            raw[field_name] = value.strip()

    try:
        return Settings(**raw)
    except ValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise ConfigurationError(f"Invalid setting {loc}: {first.get('msg')}") from e

"""Shared fixtures for the plant search tests."""
from __future__ import annotations

import datetime as dt
from typing import Any

import pytest
import structlog

from plant_search.config import Settings
from plant_search.models.entity import PlantEntity, Taxonomy, PlantDetails
from plant_search.net import GUARDS
from plant_search.store.entity_store import EntityStore
from plant_search.store.stats import StatsRecorder
from plant_search.utils.access_token import encode_access_token

FIXED_NOW = dt.datetime(2025, 6, 15, 12, 0, 0)


class FakeClock:
    """Settable UTC clock for stores under test."""

    def __init__(self, now: dt.datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + dt.timedelta(**kwargs)


@pytest.fixture(autouse=True)
def reset_guards(monkeypatch):
    """Rate limiters and breakers are process-wide; isolate each test."""
    monkeypatch.setenv("RATE_DEFAULT_MAX", "1000")
    GUARDS.reset()
    yield
    GUARDS.reset()


@pytest.fixture(autouse=True)
def reset_logging():
    """CLI tests point structlog at the runner's stderr; undo that."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock) -> EntityStore:
    return EntityStore(tmp_path / "cache.db", clock=clock)


@pytest.fixture
def stats(store) -> StatsRecorder:
    return StatsRecorder(store)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        db_path=tmp_path / "cache.db",
        default_provider="mock",
        degradation_providers=[],
        detail_fallback=["local"],
    )


def make_entity(
    name: str = "Ficus lyrata",
    source: str = "gbif",
    provider_id: str | None = "2984084",
    common_names: list[str] | None = None,
    confidence: float = 0.9,
    **fields: Any,
) -> PlantEntity:
    """Entity as an adapter would produce it."""
    token_id = int(provider_id) if provider_id and provider_id.isdigit() else 0
    return PlantEntity(
        entity_name=name,
        provider_source=source,
        provider_id=provider_id,
        common_names=common_names if common_names is not None else ["Fiddle Leaf Fig"],
        matched_in=name,
        match_length=len(name),
        confidence=confidence,
        access_token=encode_access_token(token_id, source),
        details=fields.pop("details", PlantDetails(taxonomy=Taxonomy(genus=name.split()[0]))),
        **fields,
    )

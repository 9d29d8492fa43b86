"""Persistent cache: entities, query log, result links and provider stats."""

from plant_search.store.entity_store import EntityStore
from plant_search.store.stats import StatsRecorder

__all__ = ["EntityStore", "StatsRecorder"]

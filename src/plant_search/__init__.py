"""Plant Search Federation - resolve plant names across heterogeneous sources.

Queries hit the local SQLite cache first, then an ordered chain of external
sources (GBIF, iNaturalist, Perenual, POWO). Successful external answers are
written back so repeat queries are answered locally.
"""

__version__ = "0.3.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    if name == "FederationOrchestrator":
        from plant_search.federation import FederationOrchestrator
        return FederationOrchestrator
    if name == "EntityStore":
        from plant_search.store import EntityStore
        return EntityStore
    if name == "models":
        from plant_search import models
        return models
    if name == "sources":
        from plant_search import sources
        return sources
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

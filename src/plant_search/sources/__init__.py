"""Plant data source adapters."""

from plant_search.sources.base import BaseSource, PlantSource, SourcePage
from plant_search.sources.gbif import GBIFSource
from plant_search.sources.inaturalist import INaturalistSource
from plant_search.sources.local import LocalSource
from plant_search.sources.mock import MockSource
from plant_search.sources.perenual import PerenualSource
from plant_search.sources.powo import POWOSource
from plant_search.sources.registry import SourceRegistry

__all__ = [
    "BaseSource",
    "GBIFSource",
    "INaturalistSource",
    "LocalSource",
    "MockSource",
    "POWOSource",
    "PerenualSource",
    "PlantSource",
    "SourcePage",
    "SourceRegistry",
]

"""Exception hierarchy for the plant search federation."""
from __future__ import annotations


class PlantSearchError(Exception):
    """Base class for all plant search errors."""


class ConfigurationError(PlantSearchError):
    """A provider is unknown or missing a required credential.

    Raised at settings load (unknown tags) or adapter construction
    (missing credentials). The orchestrator treats the provider as
    unavailable for that call.
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class StoreError(PlantSearchError):
    """The persistent cache store could not complete an operation."""


class SourceError(PlantSearchError):
    """An upstream source returned an unusable response.

    Only raised inside adapters; the adapter boundary converts it into an
    empty result.
    """

    def __init__(self, message: str, source: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.source = source
        self.status_code = status_code

    def __str__(self) -> str:  # pragma: no cover - human readable
        base = f"{self.source}: {self.args[0]}"
        if self.status_code is not None:
            base += f" (status={self.status_code})"
        return base

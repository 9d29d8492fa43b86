"""Cache-first federation across plant data sources."""

from plant_search.federation.orchestrator import FederationOrchestrator, ProviderAttempt

__all__ = ["FederationOrchestrator", "ProviderAttempt"]

"""Per-source reliability statistics and capability descriptors."""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field, computed_field


class ProviderStat(BaseModel):
    """One row per (provider, day), updated with running averages."""

    provider_name: str
    date: dt.date
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    avg_response_time_ms: float = 0.0
    avg_results_returned: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


class ProviderCapabilities(BaseModel):
    fuzzy_search: bool = False
    filters: bool = False
    images: bool = False
    taxonomy: bool = False
    common_names: bool = False
    synonyms: bool = False
    location_based: bool = False
    details: bool = False


class RateLimits(BaseModel):
    requests_per_minute: int | None = None
    requests_per_day: int | None = None


class ProviderCost(BaseModel):
    free_tier: int | None = Field(default=None, description="-1 means unlimited")
    cost_per_request: float | None = None


class ProviderInfo(BaseModel):
    """Operator-facing descriptor; never used for routing decisions."""

    name: str
    description: str
    capabilities: ProviderCapabilities = Field(default_factory=ProviderCapabilities)
    rate_limits: RateLimits | None = None
    cost: ProviderCost | None = None

"""Per-provider daily reliability counters."""
from __future__ import annotations

import datetime as dt

import structlog

from plant_search.models.stats import ProviderStat
from plant_search.store.entity_store import EntityStore

logger = structlog.get_logger(__name__)


class StatsRecorder:
    """Upserts one ``(provider, day)`` row per attempt.

    Averages are running averages weighted by the request count before this
    attempt, so recording is O(1) and needs no history. A successful attempt
    is one that returned at least one entity.
    """

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def record(self, provider: str, success: bool, latency_ms: float, result_count: int = 0) -> None:
        day = self.store.today().isoformat()
        now = self.store.now()
        ok = 1 if success else 0
        with self.store.connect() as conn:
            # SET expressions see the row as it was before this update
            conn.execute(
                """
                INSERT INTO provider_stats (
                    provider_name, search_date, total_requests, successful_requests,
                    failed_requests, avg_response_time_ms, avg_results_returned,
                    created_at, updated_at
                ) VALUES (?, ?, 1, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(provider_name, search_date) DO UPDATE SET
                    total_requests = total_requests + 1,
                    successful_requests = successful_requests + excluded.successful_requests,
                    failed_requests = failed_requests + excluded.failed_requests,
                    avg_response_time_ms =
                        (avg_response_time_ms * total_requests + excluded.avg_response_time_ms)
                        / (total_requests + 1),
                    avg_results_returned =
                        (avg_results_returned * total_requests + excluded.avg_results_returned)
                        / (total_requests + 1),
                    updated_at = excluded.updated_at
                """,
                (provider, day, ok, 1 - ok, float(latency_ms), float(result_count), now, now),
            )
        logger.debug(
            "stats.recorded",
            provider=provider,
            success=success,
            latency_ms=round(latency_ms, 1),
            result_count=result_count,
        )

    def provider_stats(self, provider: str | None = None, days: int = 7) -> list[ProviderStat]:
        """Rows from the last ``days`` days, newest first (grouped by provider when unfiltered)."""
        since = (self.store.today() - dt.timedelta(days=days)).isoformat()
        with self.store.connect() as conn:
            if provider:
                rows = conn.execute(
                    """
                    SELECT * FROM provider_stats
                    WHERE provider_name = ? AND search_date >= ?
                    ORDER BY search_date DESC
                    """,
                    (provider, since),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM provider_stats
                    WHERE search_date >= ?
                    ORDER BY provider_name, search_date DESC
                    """,
                    (since,),
                ).fetchall()
        return [
            ProviderStat(
                provider_name=r["provider_name"],
                date=dt.date.fromisoformat(r["search_date"]),
                total_requests=r["total_requests"],
                successful_requests=r["successful_requests"],
                failed_requests=r["failed_requests"],
                avg_response_time_ms=r["avg_response_time_ms"],
                avg_results_returned=r["avg_results_returned"],
            )
            for r in rows
        ]

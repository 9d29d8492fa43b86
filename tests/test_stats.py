"""Tests for per-provider daily statistics."""

import datetime as dt

import pytest


class TestStatsRecorder:
    """Test running-average stat upserts."""

    def test_first_record(self, stats):
        stats.record("gbif", True, 120.0, 5)
        [row] = stats.provider_stats("gbif")

        assert row.date == dt.date(2025, 6, 15)
        assert row.total_requests == 1
        assert row.successful_requests == 1
        assert row.failed_requests == 0
        assert row.avg_response_time_ms == pytest.approx(120.0)
        assert row.avg_results_returned == pytest.approx(5.0)
        assert row.success_rate == 1.0

    def test_running_average_weighted_by_previous_total(self, stats):
        stats.record("gbif", True, 100, 10)
        stats.record("gbif", False, 200, 0)
        stats.record("gbif", True, 300, 5)
        [row] = stats.provider_stats("gbif")

        assert row.total_requests == 3
        assert row.successful_requests == 2
        assert row.failed_requests == 1
        assert row.avg_response_time_ms == pytest.approx(200.0)
        assert row.avg_results_returned == pytest.approx(5.0)
        assert row.success_rate == pytest.approx(2 / 3)

    def test_one_row_per_day(self, stats, clock):
        stats.record("mock", True, 1, 1)
        clock.advance(days=1)
        stats.record("mock", True, 1, 1)

        rows = stats.provider_stats("mock")
        assert [r.date for r in rows] == [dt.date(2025, 6, 16), dt.date(2025, 6, 15)]

    def test_window(self, stats, clock):
        stats.record("mock", True, 1, 1)
        clock.advance(days=30)
        stats.record("mock", True, 1, 1)

        assert len(stats.provider_stats("mock", days=7)) == 1
        assert len(stats.provider_stats("mock", days=60)) == 2

    def test_all_providers(self, stats):
        stats.record("perenual", False, 0, 0)
        stats.record("gbif", True, 50, 3)

        rows = stats.provider_stats()
        assert [r.provider_name for r in rows] == ["gbif", "perenual"]
        assert rows[1].success_rate == 0.0

    def test_success_rate_serialized(self, stats):
        stats.record("gbif", True, 10, 1)
        [row] = stats.provider_stats("gbif")
        assert row.model_dump()["success_rate"] == 1.0

"""
Tests for result aggregation and the statistics helpers beneath it.
"""

import copy

import pytest

from routebench.benchmarks.aggregator import aggregate
from routebench.models import AggregateStats
from routebench.utils import (
    calculate_statistics,
    estimate_tokens,
    format_cost,
    format_duration,
    mask_api_key,
    truncate_text,
    z_scores,
)

from conftest import failed, make_result, ok


class TestUtils:
    """Tests for utility functions."""

    def test_calculate_statistics_empty(self):
        """Test statistics with empty list."""
        result = calculate_statistics([])
        assert result.mean == 0.0
        assert result.std_dev == 0.0

    def test_calculate_statistics_single(self):
        """A single sample has zero deviation."""
        result = calculate_statistics([5.0])
        assert result.mean == 5.0
        assert result.std_dev == 0.0

    def test_calculate_statistics_sample_std(self):
        """The deviation is the sample (N-1) deviation."""
        result = calculate_statistics([10.0, 20.0, 30.0])
        assert result.mean == 20.0
        assert result.std_dev == pytest.approx(10.0)

    def test_z_scores(self):
        """z-scores use the population deviation."""
        assert z_scores([1.0, 3.0]) == pytest.approx([-1.0, 1.0])

    def test_z_scores_constant(self):
        """A constant set maps to zeros."""
        assert z_scores([4.0, 4.0, 4.0]) == [0.0, 0.0, 0.0]
        assert z_scores([]) == []

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_mask_api_key(self):
        assert mask_api_key("sk-or-v1-secret") == "sk-or-v1-" + "*" * 20
        assert mask_api_key(None) == ""

    def test_format_duration(self):
        assert format_duration(0.25) == "250ms"
        assert format_duration(5) == "5.00s"
        assert "1m" in format_duration(90)

    def test_format_cost(self):
        assert format_cost(0.001) == "$0.001000"
        assert format_cost(1.5) == "$1.50"

    def test_truncate_text(self):
        assert truncate_text("Hello", 100) == "Hello"
        assert truncate_text("x" * 600) == "x" * 500


class TestAggregate:
    """Tests for aggregate()."""

    def test_empty(self):
        """No results gives all-zero statistics."""
        assert aggregate([]) == AggregateStats()

    def test_means_and_deviations(self):
        """Means and sample deviations over successful runs."""
        results = [
            ok("a", make_result(tps=10.0, ttft=0.2, cost=0.001)),
            ok("b", make_result(tps=20.0, ttft=0.4, cost=0.002)),
            ok("c", make_result(tps=30.0, ttft=0.6, cost=0.003)),
        ]
        stats = aggregate(results)
        assert stats.mean_tokens_per_second == pytest.approx(20.0)
        assert stats.std_tokens_per_second == pytest.approx(10.0)
        assert stats.mean_ttfb == pytest.approx(0.4)
        assert stats.mean_cost == pytest.approx(0.002)
        assert stats.success_rate == 1.0

    def test_single_success_has_zero_std(self):
        stats = aggregate([ok("a", make_result(tps=12.0))])
        assert stats.std_tokens_per_second == 0.0
        assert stats.std_ttfb == 0.0

    def test_failures_excluded_from_means(self):
        """Failed runs only lower the success rate."""
        results = [
            ok("a", make_result(tps=10.0, completion_tokens=40, prompt_tokens=10)),
            ok("b", make_result(tps=30.0, completion_tokens=60, prompt_tokens=None)),
            failed("c"),
            failed("d"),
        ]
        stats = aggregate(results)
        assert stats.mean_tokens_per_second == pytest.approx(20.0)
        assert stats.success_rate == pytest.approx(0.5)
        assert stats.total_prompt_tokens == 10
        assert stats.total_completion_tokens == 100

    def test_all_failed(self):
        stats = aggregate([failed("a"), failed("b")])
        assert stats.success_rate == 0.0
        assert stats.mean_tokens_per_second == 0.0

    def test_pure(self):
        """Aggregation leaves its input untouched and is repeatable."""
        results = [ok("a", make_result(tps=10.0)), failed("b")]
        snapshot = copy.deepcopy(results)
        first = aggregate(results)
        second = aggregate(results)
        assert results == snapshot
        assert first == second


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

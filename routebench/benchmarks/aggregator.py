"""
Aggregation of case results into summary statistics.
"""

from routebench.models import AggregateStats, CaseResult
from routebench.utils import calculate_statistics


def aggregate(results: list[CaseResult]) -> AggregateStats:
    """
    Summarize a collection of case results.

    Only successful results with a throughput figure contribute to means,
    deviations and token totals. The success rate counts every attempt.

    Args:
        results: Outcomes of attempted runs

    Returns:
        AggregateStats derived from the results; the input is not modified
    """
    ok_results = [
        r.result for r in results
        if r.ok and r.result is not None and r.result.tokens_per_second is not None
    ]

    tps = calculate_statistics([r.tokens_per_second for r in ok_results])
    ttfb = calculate_statistics([r.time_to_first_token for r in ok_results])
    total = calculate_statistics([r.total_time for r in ok_results])
    cost = calculate_statistics([r.cost for r in ok_results])

    return AggregateStats(
        mean_tokens_per_second=tps.mean,
        mean_ttfb=ttfb.mean,
        mean_total_time=total.mean,
        mean_cost=cost.mean,
        std_tokens_per_second=tps.std_dev,
        std_ttfb=ttfb.std_dev,
        std_total_time=total.std_dev,
        std_cost=cost.std_dev,
        success_rate=len(ok_results) / len(results) if results else 0.0,
        total_prompt_tokens=sum(r.prompt_tokens or 0 for r in ok_results),
        total_completion_tokens=sum(r.completion_tokens for r in ok_results),
    )

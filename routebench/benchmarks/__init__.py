"""
Batch engines: suite runs, aggregation and model recommendation.
"""

from routebench.benchmarks.aggregator import aggregate
from routebench.benchmarks.case_runner import CaseRunner
from routebench.benchmarks.recommender import Recommender

__all__ = [
    "aggregate",
    "CaseRunner",
    "Recommender",
]

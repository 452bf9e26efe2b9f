"""
routebench - Streaming benchmark engine for multi-provider routing APIs

Measures time to first token, throughput and cost of streamed chat
completions, aggregates runs across test suites, and recommends models
by a weighted score of speed, latency and cost.
"""

from routebench.model_client import StreamingRunClient
from routebench.metadata_client import MetadataClient
from routebench.benchmarks import CaseRunner, Recommender, aggregate
from routebench.report_generator import ReportGenerator
from routebench.service import BenchmarkService

__all__ = [
    "StreamingRunClient",
    "MetadataClient",
    "CaseRunner",
    "Recommender",
    "aggregate",
    "ReportGenerator",
    "BenchmarkService",
]

__version__ = "1.0.0"

"""
Example: Running routebench

Shows a single streamed run, a full suite run with a Markdown report, and
a model recommendation over a mini-suite.
"""

import os
import sys
import logging
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from routebench.benchmarks import CaseRunner, Recommender
from routebench.config import REPORTS_DIR, get_config
from routebench.errors import BenchmarkError
from routebench.metadata_client import MetadataClient
from routebench.model_client import StreamingRunClient
from routebench.models import Constraints, RunConfig
from routebench.report_generator import ReportGenerator
from routebench.storage import MemoryStore
from routebench.suites import SuiteLibrary
from routebench.utils import format_cost, format_duration


def _require_key() -> str:
    api_key = get_config().api.api_key or os.getenv("OPENROUTER_API_KEY")
    if not api_key:
        print("Error: OPENROUTER_API_KEY environment variable not set")
        print("Please set your API key: export OPENROUTER_API_KEY=your_key_here")
        sys.exit(1)
    return api_key


def single_model_test(model: str):
    """Run one prompt and print its metrics."""
    api_key = _require_key()

    with MetadataClient(api_key=api_key) as metadata:
        try:
            metadata.list_models()
        except BenchmarkError as e:
            print(f"Pricing unavailable, using fallback rate: {e}")

        with StreamingRunClient(api_key=api_key, metadata=metadata) as client:
            result = client.run(
                RunConfig(
                    model=model,
                    prompt="Explain quantum computing in simple terms.",
                    max_tokens=256,
                ),
                on_progress=lambda p: print(f"  [{p.percent:5.1f}%] {p.message}"),
            )

    print(f"\nModel: {result.model}")
    print(f"TTFB: {format_duration(result.time_to_first_token)}")
    print(f"Total time: {format_duration(result.total_time)}")
    print(f"Tokens/sec: {result.tokens_per_second:.2f}")
    print(f"Tokens: {result.completion_tokens}")
    print(f"Cost: {format_cost(result.cost)}")
    print(f"\nResponse:\n{result.output}")


def suite_benchmark(model: str, suite_id: str):
    """Run a suite and write a Markdown report."""
    api_key = _require_key()
    library = SuiteLibrary(MemoryStore())
    suite = library.get(suite_id)

    print("=" * 60)
    print(f"Suite {suite.name} on {model}")
    print("=" * 60)

    with MetadataClient(api_key=api_key) as metadata:
        metadata.models_or_default()
        with StreamingRunClient(api_key=api_key, metadata=metadata) as client:
            runner = CaseRunner(client)
            result = runner.run_suite(
                suite,
                model,
                on_progress=lambda p: print(f"  ({p.step}/{p.total}) {p.message}"),
            )

    agg = result.aggregates
    print(f"\nMean Tokens/sec: {agg.mean_tokens_per_second:.2f}")
    print(f"Mean TTFB (s):   {agg.mean_ttfb:.2f}")
    print(f"Mean Cost (USD): ${agg.mean_cost:.4f}")
    print(f"Success Rate:    {agg.success_rate * 100:.1f}%")

    report_path = ReportGenerator().generate(
        result,
        format="markdown",
        output_path=str(REPORTS_DIR / f"{suite.id}.md"),
    )
    print(f"\nReport saved to: {report_path}")


def recommend(models: list[str], suite_id: str):
    """Rank candidate models on the first cases of a suite."""
    api_key = _require_key()
    library = SuiteLibrary(MemoryStore())
    suite = library.get(suite_id)

    with MetadataClient(api_key=api_key) as metadata:
        metadata.models_or_default()
        with StreamingRunClient(api_key=api_key, metadata=metadata) as client:
            recommender = Recommender(client)
            recommendation = recommender.recommend(
                models,
                suite,
                constraints=Constraints(max_ttfb=5.0),
                on_progress=lambda p: print(f"  ({p.step}/{p.total}) {p.message}"),
            )

    if recommendation.constraints_relaxed:
        print("\nNo model met the constraints; ranking all candidates.")

    df = ReportGenerator().create_candidates_dataframe(recommendation.candidates)
    print("\nRecommendation:")
    print(df.to_string(index=False))


if __name__ == "__main__":
    import argparse

    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="routebench examples")
    parser.add_argument(
        "--mode",
        choices=["single", "suite", "recommend"],
        default="suite",
        help="Example to run"
    )
    parser.add_argument(
        "--model",
        action="append",
        help="Model id (repeat for recommend)"
    )
    parser.add_argument(
        "--suite",
        default=get_config().benchmark.default_suite_id,
        help="Suite id"
    )

    args = parser.parse_args()
    models = args.model or ["openai/gpt-4o-mini"]

    if args.mode == "single":
        single_model_test(models[0])
    elif args.mode == "suite":
        suite_benchmark(models[0], args.suite)
    else:
        recommend(models, args.suite)

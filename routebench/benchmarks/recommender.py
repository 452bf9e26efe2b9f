"""
Model Recommender Module.

Benchmarks several candidate models on a small slice of a suite,
filters them by hard constraints and ranks them by a weighted sum of
z-scored throughput, latency and cost. The pass is a LangGraph
workflow: benchmark -> filter -> score -> rank.
"""

import logging
import threading
from dataclasses import replace
from typing import Callable, Optional

from langgraph.graph import StateGraph, END
from pydantic import BaseModel, ConfigDict, Field

from routebench.benchmarks.aggregator import aggregate
from routebench.benchmarks.case_runner import execute_case, resolve_run_config
from routebench.config import get_config
from routebench.model_client import StreamingRunClient
from routebench.models import (
    Candidate,
    CaseResult,
    Constraints,
    Recommendation,
    ScoringWeights,
    StepProgress,
    TestCase,
    TestSuite,
)
from routebench.utils import z_scores

logger = logging.getLogger(__name__)

StepCallback = Callable[[StepProgress], None]


def build_candidate(
    model_id: str,
    provider: str,
    results: list[CaseResult],
    num_cases: int,
) -> Candidate:
    """
    Aggregate one model's mini-suite outcomes into a candidate.

    Cost per 1k tokens is mean run cost over the average prompt+completion
    tokens per case, undefined when no tokens were counted.
    """
    aggregates = aggregate(results)
    total_tokens = aggregates.total_prompt_tokens + aggregates.total_completion_tokens
    avg_tokens = total_tokens / num_cases if num_cases else 0
    cost_per_1k = aggregates.mean_cost / (avg_tokens / 1000) if avg_tokens > 0 else None
    return Candidate(
        model_id=model_id,
        provider=provider,
        aggregates=aggregates,
        results=results,
        cost_per_1k=cost_per_1k,
    )


def passes_constraints(candidate: Candidate, constraints: Constraints) -> bool:
    """Check a candidate against every constraint that is set."""
    stats = candidate.aggregates
    if constraints.max_ttfb is not None and not stats.mean_ttfb <= constraints.max_ttfb:
        return False
    if constraints.min_tps is not None and not stats.mean_tokens_per_second >= constraints.min_tps:
        return False
    if constraints.budget_per_1k is not None:
        cost = candidate.cost_per_1k if candidate.cost_per_1k is not None else float("inf")
        if not cost <= constraints.budget_per_1k:
            return False
    return True


def apply_constraints(
    candidates: list[Candidate],
    constraints: Constraints,
) -> tuple[list[Candidate], bool]:
    """
    Filter candidates by constraints.

    Returns:
        (survivors, relaxed). When nothing survives, every candidate is
        returned and relaxed is True.
    """
    survivors = [c for c in candidates if passes_constraints(c, constraints)]
    if not survivors and candidates:
        return list(candidates), True
    return survivors, False


def score_candidates(
    candidates: list[Candidate],
    weights: ScoringWeights,
) -> list[Candidate]:
    """
    Composite score per candidate against its own set.

    score = speed * z(tps) - latency * z(ttfb) - cost * z(cost)
    """
    z_tps = z_scores([c.aggregates.mean_tokens_per_second for c in candidates])
    z_ttfb = z_scores([c.aggregates.mean_ttfb for c in candidates])
    z_cost = z_scores([c.cost_metric for c in candidates])

    return [
        replace(
            c,
            score=weights.speed * zs - weights.latency * zl - weights.cost * zc,
        )
        for c, zs, zl, zc in zip(candidates, z_tps, z_ttfb, z_cost)
    ]


def rank_candidates(candidates: list[Candidate]) -> list[Candidate]:
    """Sort by score, highest first; ties keep encounter order."""
    return sorted(
        candidates,
        key=lambda c: c.score if c.score is not None else 0.0,
        reverse=True,
    )


class RecommendationState(BaseModel):
    """State for the recommendation workflow."""

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    # Configuration
    suite_id: str
    provider: str = "auto"
    model_ids: list[str] = Field(default_factory=list)
    cases: list[TestCase] = Field(default_factory=list)
    constraints: Constraints = Field(default_factory=Constraints)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)

    # Results
    candidates: list[Candidate] = Field(default_factory=list)
    shortlist: list[Candidate] = Field(default_factory=list)
    ranked: list[Candidate] = Field(default_factory=list)
    constraints_relaxed: bool = False
    cancelled: bool = False


class Recommender:
    """
    Ranks candidate models on a mini-suite.

    Runs are strictly sequential (model-major, then case). cancel() is
    checked before every run; once set, the pass ends with a cancelled
    Recommendation instead of a ranking.
    """

    def __init__(
        self,
        client: StreamingRunClient,
        mini_suite_size: Optional[int] = None,
        max_tokens: Optional[int] = None,
    ):
        """
        Initialize the recommender.

        Args:
            client: Run client used for every sub-run
            mini_suite_size: Number of leading suite cases to run
            max_tokens: Max tokens for cases that do not set their own
        """
        config = get_config()

        self.client = client
        self.mini_suite_size = mini_suite_size or config.benchmark.mini_suite_size
        self.max_tokens = max_tokens or config.benchmark.recommend_max_tokens
        self.default_weights = ScoringWeights(
            speed=config.benchmark.scoring.speed_weight,
            latency=config.benchmark.scoring.latency_weight,
            cost=config.benchmark.scoring.cost_weight,
        )

        self._cancelled = threading.Event()
        self._on_progress: Optional[StepCallback] = None
        self._workflow = self._build_workflow()

    def cancel(self) -> None:
        """Abandon the pass in progress."""
        self._cancelled.set()
        self.client.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _emit(self, progress: StepProgress) -> None:
        if self._on_progress is not None:
            self._on_progress(progress)

    def _build_workflow(self) -> StateGraph:
        """Build the LangGraph recommendation workflow."""

        def benchmark(state: RecommendationState) -> dict:
            """Run the mini-suite for every candidate model."""
            total = len(state.model_ids) * len(state.cases)
            step = 0
            candidates = []

            for model_id in state.model_ids:
                results = []
                for case in state.cases:
                    if self._cancelled.is_set():
                        self._emit(StepProgress(
                            step=step,
                            total=total,
                            message="Recommendation cancelled",
                            cancelled=True,
                        ))
                        return {"candidates": candidates, "cancelled": True}

                    step += 1
                    self._emit(StepProgress(
                        step=step,
                        total=total,
                        message=f"Testing {model_id} • {case.name}",
                    ))
                    run_config = resolve_run_config(
                        case, model_id, state.provider, None, self.max_tokens
                    )
                    results.append(execute_case(self.client, case, 1, run_config))

                candidates.append(
                    build_candidate(model_id, state.provider, results, len(state.cases))
                )

            return {"candidates": candidates}

        def route_after_benchmark(state: RecommendationState) -> str:
            return "cancelled" if state.cancelled else "filter"

        def filter_candidates(state: RecommendationState) -> dict:
            """Apply hard constraints, relaxing them if nothing survives."""
            shortlist, relaxed = apply_constraints(state.candidates, state.constraints)
            if relaxed:
                logger.info("No candidate meets the constraints; ranking all candidates")
            return {"shortlist": shortlist, "constraints_relaxed": relaxed}

        def score(state: RecommendationState) -> dict:
            """Compute composite z-score per shortlisted candidate."""
            return {"shortlist": score_candidates(state.shortlist, state.weights)}

        def rank(state: RecommendationState) -> dict:
            """Order candidates by score."""
            return {"ranked": rank_candidates(state.shortlist)}

        # Build the graph
        workflow = StateGraph(RecommendationState)

        workflow.add_node("benchmark", benchmark)
        workflow.add_node("filter", filter_candidates)
        workflow.add_node("score", score)
        workflow.add_node("rank", rank)

        workflow.set_entry_point("benchmark")
        workflow.add_conditional_edges(
            "benchmark",
            route_after_benchmark,
            {"cancelled": END, "filter": "filter"},
        )
        workflow.add_edge("filter", "score")
        workflow.add_edge("score", "rank")
        workflow.add_edge("rank", END)

        return workflow.compile()

    def recommend(
        self,
        model_ids: list[str],
        suite: TestSuite,
        provider: str = "auto",
        constraints: Optional[Constraints] = None,
        on_progress: Optional[StepCallback] = None,
    ) -> Recommendation:
        """
        Benchmark, filter and rank candidate models.

        Args:
            model_ids: Candidate model ids, benchmarked in this order
            suite: Suite whose leading cases form the mini-suite
            provider: Provider name or "auto"
            constraints: Optional limits and scoring weights
            on_progress: Called with StepProgress before each sub-run

        Returns:
            Recommendation with ranked candidates, or cancelled=True
        """
        self._cancelled.clear()
        self._on_progress = on_progress

        constraints = constraints or Constraints()
        cases = suite.cases[: self.mini_suite_size]

        logger.info(
            "Recommending among %d models on %d cases of %s",
            len(model_ids),
            len(cases),
            suite.id,
        )

        initial_state = RecommendationState(
            suite_id=suite.id,
            provider=provider,
            model_ids=list(model_ids),
            cases=cases,
            constraints=constraints,
            weights=constraints.weights or self.default_weights,
        )

        try:
            final = self._workflow.invoke(initial_state)
        finally:
            self._on_progress = None

        if final.get("cancelled"):
            return Recommendation(suite_id=suite.id, provider=provider, cancelled=True)

        if self._cancelled.is_set():
            total = len(model_ids) * len(cases)
            if on_progress is not None:
                on_progress(StepProgress(
                    step=total,
                    total=total,
                    message="Recommendation cancelled",
                    cancelled=True,
                ))
            return Recommendation(suite_id=suite.id, provider=provider, cancelled=True)

        return Recommendation(
            suite_id=suite.id,
            provider=provider,
            candidates=list(final.get("ranked", [])),
            constraints_relaxed=bool(final.get("constraints_relaxed", False)),
        )

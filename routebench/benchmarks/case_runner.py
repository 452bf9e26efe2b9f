"""
Case Runner Module.

Runs every case of a suite for a number of iterations against one
model and provider, strictly sequentially, and collects one outcome
per (case, iteration) whether the run succeeds or fails.
"""

import logging
import threading
from typing import Callable, Optional

from routebench.benchmarks.aggregator import aggregate
from routebench.config import get_config
from routebench.model_client import StreamingRunClient
from routebench.models import (
    CaseResult,
    RunConfig,
    StepProgress,
    SuiteRunResult,
    TestCase,
    TestParams,
    TestSuite,
)
from routebench.utils import utc_now_iso

logger = logging.getLogger(__name__)

StepCallback = Callable[[StepProgress], None]


def resolve_run_config(
    case: TestCase,
    model: str,
    provider: str,
    overrides: Optional[TestParams] = None,
    default_max_tokens: int = 512,
) -> RunConfig:
    """
    Effective parameters for one case run.

    Priority: per-invocation override, then per-case default, then the
    fixed max-token fallback. Temperature and top-p have no fallback.
    """
    def pick(name: str):
        for params in (overrides, case.params):
            if params is not None and getattr(params, name) is not None:
                return getattr(params, name)
        return None

    return RunConfig(
        model=model,
        provider=provider,
        prompt=case.prompt,
        max_tokens=pick("max_tokens") or default_max_tokens,
        temperature=pick("temperature"),
        top_p=pick("top_p"),
    )


def execute_case(
    client: StreamingRunClient,
    case: TestCase,
    iteration: int,
    run_config: RunConfig,
) -> CaseResult:
    """Run one case, capturing any failure into the returned outcome."""
    try:
        result = client.run(run_config)
        return CaseResult(case_id=case.id, iteration=iteration, ok=True, result=result)
    except Exception as e:
        logger.warning(
            "Run failed for %s case %s (iteration %d): %s",
            run_config.model,
            case.id,
            iteration,
            e,
        )
        return CaseResult(case_id=case.id, iteration=iteration, ok=False, error=str(e) or type(e).__name__)


class CaseRunner:
    """
    Runs a suite against one model/provider.

    A failed run is recorded and the suite carries on. cancel() stops the
    batch before its next unit of work and aborts the run in flight.
    """

    def __init__(
        self,
        client: StreamingRunClient,
        default_max_tokens: Optional[int] = None,
    ):
        """
        Initialize the case runner.

        Args:
            client: Run client used for every case
            default_max_tokens: Fallback when neither override nor case sets it
        """
        self.client = client
        self.default_max_tokens = default_max_tokens or get_config().benchmark.default_max_tokens
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop the running suite."""
        self._cancelled.set()
        self.client.cancel()

    def run_suite(
        self,
        suite: TestSuite,
        model: str,
        provider: str = "auto",
        iterations: Optional[int] = None,
        params: Optional[TestParams] = None,
        on_progress: Optional[StepCallback] = None,
    ) -> SuiteRunResult:
        """
        Run all cases of a suite, case-major then iteration.

        Args:
            suite: Suite to run
            model: Model id
            provider: Provider name or "auto"
            iterations: Repeat count; defaults to the suite's, then 1
            params: Per-invocation overrides applied to every case
            on_progress: Called with (step, total, message) before each run

        Returns:
            SuiteRunResult with one CaseResult per attempted run
        """
        self._cancelled.clear()

        iterations = max(1, iterations or suite.iterations or 1)
        total_steps = len(suite.cases) * iterations
        started_at = utc_now_iso()
        results: list[CaseResult] = []
        cancelled = False
        step = 0

        logger.info(
            "Running suite %s on %s via %s (%d runs)",
            suite.id,
            model,
            provider,
            total_steps,
        )

        for case in suite.cases:
            for iteration in range(1, iterations + 1):
                if self._cancelled.is_set():
                    cancelled = True
                    break

                step += 1
                if on_progress is not None:
                    on_progress(StepProgress(
                        step=step,
                        total=total_steps,
                        message=f"Running {case.name} (iteration {iteration}/{iterations})",
                    ))

                run_config = resolve_run_config(
                    case, model, provider, params, self.default_max_tokens
                )
                results.append(execute_case(self.client, case, iteration, run_config))
            if cancelled:
                break

        aggregates = aggregate(results)
        logger.info(
            "Suite %s finished: %d/%d runs succeeded",
            suite.id,
            sum(1 for r in results if r.ok),
            len(results),
        )

        return SuiteRunResult(
            suite_id=suite.id,
            model=model,
            provider=provider,
            started_at=started_at,
            finished_at=utc_now_iso(),
            results=results,
            aggregates=aggregates,
            cancelled=cancelled,
        )

"""
Data records shared by the run client, batch engines and exporters.

Dictionary forms use camelCase keys; they are what the history store,
the event protocol and the exporters read and write.
"""

from typing import Any, Optional
from dataclasses import dataclass, field


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class RunConfig:
    """Immutable input to one streaming run."""

    model: str
    prompt: str
    max_tokens: int
    provider: str = "auto"
    temperature: Optional[float] = None
    top_p: Optional[float] = None

    def __post_init__(self):
        if self.max_tokens < 1:
            raise ValueError("max_tokens must be a positive integer")


@dataclass(frozen=True)
class RunResult:
    """Performance record of one completed run."""

    model: str
    provider: str
    prompt: str
    output: str
    completion_tokens: int
    total_time: float
    time_to_first_token: float
    tokens_per_second: float
    cost: float
    timestamp: str
    prompt_tokens: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return _drop_none({
            "model": self.model,
            "provider": self.provider,
            "prompt": self.prompt,
            "output": self.output,
            "outputTokens": self.completion_tokens,
            "completionTokens": self.completion_tokens,
            "promptTokens": self.prompt_tokens,
            "totalTime": self.total_time,
            "timeToFirstToken": self.time_to_first_token,
            "tokensPerSecond": self.tokens_per_second,
            "cost": self.cost,
            "timestamp": self.timestamp,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "RunResult":
        completion = data.get("completionTokens", data.get("outputTokens", 0))
        return cls(
            model=data["model"],
            provider=data.get("provider", "auto"),
            prompt=data.get("prompt", ""),
            output=data.get("output", ""),
            completion_tokens=completion,
            prompt_tokens=data.get("promptTokens"),
            total_time=data["totalTime"],
            time_to_first_token=data.get("timeToFirstToken", 0.0),
            tokens_per_second=data["tokensPerSecond"],
            cost=data.get("cost", 0.0),
            timestamp=data.get("timestamp", ""),
        )


@dataclass
class RunProgress:
    """Progress of a single run, percent in [0, 100]."""

    percent: float
    message: str


@dataclass
class StepProgress:
    """Progress of a batch: step out of total."""

    step: int
    total: int
    message: str
    cancelled: bool = False


@dataclass
class ModelPricing:
    """Pricing in USD per 1000 tokens."""

    input: Optional[float] = None
    output: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.input is None and self.output is None


@dataclass
class ModelInfo:
    """Catalog entry for a routable model."""

    id: str
    name: str
    provider: str
    context_length: Optional[int] = None
    pricing: Optional[ModelPricing] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "contextLength": self.context_length,
        }
        if self.pricing is not None:
            data["pricing"] = _drop_none({
                "input": self.pricing.input,
                "output": self.pricing.output,
            })
        return _drop_none(data)


@dataclass
class TestParams:
    """Optional sampling overrides for a case or a suite run."""

    __test__ = False

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
        })

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["TestParams"]:
        if not data:
            return None
        return cls(
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
            max_tokens=data.get("max_tokens"),
        )


@dataclass
class TestCase:
    """A named prompt within a suite."""

    __test__ = False

    id: str
    name: str
    prompt: str
    reference: Optional[str] = None
    tags: Optional[list[str]] = None
    params: Optional[TestParams] = None
    weight: Optional[float] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "name": self.name,
            "prompt": self.prompt,
            "reference": self.reference,
            "tags": self.tags,
            "params": self.params.to_dict() if self.params else None,
            "weight": self.weight,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "TestCase":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            prompt=data.get("prompt", ""),
            reference=data.get("reference"),
            tags=data.get("tags"),
            params=TestParams.from_dict(data.get("params")),
            weight=data.get("weight"),
        )


@dataclass
class TestSuite:
    """Ordered collection of cases with a default repeat count."""

    __test__ = False

    id: str
    name: str
    cases: list[TestCase] = field(default_factory=list)
    description: Optional[str] = None
    iterations: Optional[int] = None
    version: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "iterations": self.iterations,
            "version": self.version,
            "cases": [c.to_dict() for c in self.cases],
        })

    @classmethod
    def from_dict(cls, data: dict) -> "TestSuite":
        return cls(
            id=data["id"],
            name=data["name"],
            cases=[TestCase.from_dict(c) for c in data.get("cases", [])],
            description=data.get("description"),
            iterations=data.get("iterations"),
            version=data.get("version"),
        )


@dataclass
class CaseResult:
    """Outcome of one (case, iteration) run: a result or an error."""

    case_id: str
    iteration: int
    ok: bool
    result: Optional[RunResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "caseId": self.case_id,
            "iteration": self.iteration,
            "ok": self.ok,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "CaseResult":
        result = data.get("result")
        return cls(
            case_id=data["caseId"],
            iteration=data["iteration"],
            ok=data["ok"],
            result=RunResult.from_dict(result) if result else None,
            error=data.get("error"),
        )


@dataclass
class AggregateStats:
    """Summary statistics over a collection of case results."""

    mean_tokens_per_second: float = 0.0
    mean_ttfb: float = 0.0
    mean_total_time: float = 0.0
    mean_cost: float = 0.0
    std_tokens_per_second: float = 0.0
    std_ttfb: float = 0.0
    std_total_time: float = 0.0
    std_cost: float = 0.0
    success_rate: float = 0.0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "meanTokensPerSecond": self.mean_tokens_per_second,
            "meanTTFB": self.mean_ttfb,
            "meanTotalTime": self.mean_total_time,
            "meanCost": self.mean_cost,
            "stdTokensPerSecond": self.std_tokens_per_second,
            "stdTTFB": self.std_ttfb,
            "stdTotalTime": self.std_total_time,
            "stdCost": self.std_cost,
            "successRate": self.success_rate,
            "totalPromptTokens": self.total_prompt_tokens,
            "totalCompletionTokens": self.total_completion_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AggregateStats":
        return cls(
            mean_tokens_per_second=data.get("meanTokensPerSecond", 0.0),
            mean_ttfb=data.get("meanTTFB", 0.0),
            mean_total_time=data.get("meanTotalTime", 0.0),
            mean_cost=data.get("meanCost", 0.0),
            std_tokens_per_second=data.get("stdTokensPerSecond", 0.0),
            std_ttfb=data.get("stdTTFB", 0.0),
            std_total_time=data.get("stdTotalTime", 0.0),
            std_cost=data.get("stdCost", 0.0),
            success_rate=data.get("successRate", 0.0),
            total_prompt_tokens=data.get("totalPromptTokens", 0),
            total_completion_tokens=data.get("totalCompletionTokens", 0),
        )


@dataclass
class SuiteRunResult:
    """All outcomes of one suite run plus their aggregates."""

    suite_id: str
    model: str
    provider: str
    started_at: str
    finished_at: str
    results: list[CaseResult] = field(default_factory=list)
    aggregates: AggregateStats = field(default_factory=AggregateStats)
    cancelled: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "suiteId": self.suite_id,
            "model": self.model,
            "provider": self.provider,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "results": [r.to_dict() for r in self.results],
            "aggregates": self.aggregates.to_dict(),
            "cancelled": self.cancelled,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SuiteRunResult":
        return cls(
            suite_id=data["suiteId"],
            model=data["model"],
            provider=data.get("provider", "auto"),
            started_at=data["startedAt"],
            finished_at=data["finishedAt"],
            results=[CaseResult.from_dict(r) for r in data.get("results", [])],
            aggregates=AggregateStats.from_dict(data.get("aggregates", {})),
            cancelled=data.get("cancelled", False),
        )


@dataclass
class ScoringWeights:
    """Weights of the composite score. Need not sum to 1."""

    speed: float = 0.4
    latency: float = 0.3
    cost: float = 0.3


@dataclass
class Constraints:
    """Optional hard limits applied before scoring."""

    max_ttfb: Optional[float] = None
    min_tps: Optional[float] = None
    budget_per_1k: Optional[float] = None
    weights: Optional[ScoringWeights] = None


@dataclass
class Candidate:
    """One model benchmarked during a recommendation pass."""

    model_id: str
    provider: str
    aggregates: AggregateStats
    results: list[CaseResult] = field(default_factory=list)
    cost_per_1k: Optional[float] = None
    score: Optional[float] = None

    @property
    def cost_metric(self) -> float:
        """Cost used for scoring: per-1k estimate, else mean run cost."""
        if self.cost_per_1k is not None:
            return self.cost_per_1k
        return self.aggregates.mean_cost

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "modelId": self.model_id,
            "provider": self.provider,
            "aggregates": self.aggregates.to_dict(),
            "costPer1k": self.cost_per_1k,
            "score": self.score,
        })


@dataclass
class Recommendation:
    """Ranked candidates of a recommendation pass."""

    suite_id: str
    provider: str
    candidates: list[Candidate] = field(default_factory=list)
    cancelled: bool = False
    constraints_relaxed: bool = False

    def to_dict(self) -> dict:
        return {
            "suiteId": self.suite_id,
            "provider": self.provider,
            "candidates": [c.to_dict() for c in self.candidates],
            "cancelled": self.cancelled,
            "constraintsRelaxed": self.constraints_relaxed,
        }

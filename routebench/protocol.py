"""
Command and event protocol between a host UI and the benchmark service.

Each command and each event is its own pydantic model, tagged by a
literal ``command`` or ``event`` field. Inbound dictionaries accept both
snake_case and camelCase keys; outbound messages use camelCase.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from routebench.models import (
    Constraints,
    ModelInfo,
    Recommendation,
    RunResult,
    ScoringWeights,
    SuiteRunResult,
    TestParams,
    TestSuite,
)


class ProtocolModel(BaseModel):
    """Base for every protocol message and payload."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


# Command payloads

class RunTestConfig(ProtocolModel):
    """Parameters of a single run."""

    model: str
    prompt: str
    max_tokens: int = Field(default=512, ge=1)
    provider: str = "auto"
    temperature: Optional[float] = None
    top_p: Optional[float] = None


class ParamsPayload(ProtocolModel):
    """Sampling overrides for a suite run."""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = Field(default=None, ge=1)

    def to_params(self) -> TestParams:
        return TestParams(
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
        )


class WeightsPayload(ProtocolModel):
    speed: float = 0.4
    latency: float = 0.3
    cost: float = 0.3


class ConstraintsPayload(ProtocolModel):
    """Hard limits and scoring weights for a recommendation."""

    max_ttfb: Optional[float] = Field(default=None, alias="maxTTFB")
    min_tps: Optional[float] = Field(default=None, alias="minTPS")
    budget_per_1k: Optional[float] = None
    weights: Optional[WeightsPayload] = None

    def to_constraints(self) -> Constraints:
        weights = None
        if self.weights is not None:
            weights = ScoringWeights(
                speed=self.weights.speed,
                latency=self.weights.latency,
                cost=self.weights.cost,
            )
        return Constraints(
            max_ttfb=self.max_ttfb,
            min_tps=self.min_tps,
            budget_per_1k=self.budget_per_1k,
            weights=weights,
        )


# Commands

class SaveApiKey(ProtocolModel):
    command: Literal["save_api_key"] = "save_api_key"
    api_key: str = Field(min_length=1)


class GetApiKey(ProtocolModel):
    command: Literal["get_api_key"] = "get_api_key"


class ClearApiKey(ProtocolModel):
    command: Literal["clear_api_key"] = "clear_api_key"


class RunTest(ProtocolModel):
    command: Literal["run_test"] = "run_test"
    config: RunTestConfig


class CancelTest(ProtocolModel):
    command: Literal["cancel_test"] = "cancel_test"


class GetHistory(ProtocolModel):
    command: Literal["get_history"] = "get_history"


class ClearHistory(ProtocolModel):
    command: Literal["clear_history"] = "clear_history"


class ExportResults(ProtocolModel):
    """Write run results as JSON; without results, the whole history."""

    command: Literal["export_results"] = "export_results"
    output_path: str
    results: Optional[list[dict[str, Any]]] = None


class GetModels(ProtocolModel):
    command: Literal["get_models"] = "get_models"


class GetSuites(ProtocolModel):
    command: Literal["get_suites"] = "get_suites"


class RunSuite(ProtocolModel):
    command: Literal["run_suite"] = "run_suite"
    suite_id: str
    model: str
    provider: str = "auto"
    iterations: Optional[int] = Field(default=None, ge=1)
    params: Optional[ParamsPayload] = None


class ExportDocument(ProtocolModel):
    """Write a suite run report; without a result, the last suite run."""

    command: Literal["export_document"] = "export_document"
    output_path: str
    result: Optional[dict[str, Any]] = None
    format: Literal["markdown", "json", "html"] = "markdown"


class ExportSuiteCsv(ProtocolModel):
    command: Literal["export_suite_csv"] = "export_suite_csv"
    output_path: str
    result: Optional[dict[str, Any]] = None


class RecommendModels(ProtocolModel):
    command: Literal["recommend_models"] = "recommend_models"
    model_ids: list[str] = Field(default_factory=list)
    suite_id: Optional[str] = None
    provider: str = "auto"
    constraints: Optional[ConstraintsPayload] = None


class CancelRecommendation(ProtocolModel):
    command: Literal["cancel_recommendation"] = "cancel_recommendation"


class GetProvidersForModel(ProtocolModel):
    command: Literal["get_providers_for_model"] = "get_providers_for_model"
    model_id: str = ""


class GetAllProviders(ProtocolModel):
    command: Literal["get_all_providers"] = "get_all_providers"


class SaveCustomSuite(ProtocolModel):
    command: Literal["save_custom_suite"] = "save_custom_suite"
    suite: dict[str, Any]


class DeleteCustomSuite(ProtocolModel):
    command: Literal["delete_custom_suite"] = "delete_custom_suite"
    suite_id: str = ""


class ImportSuitesJson(ProtocolModel):
    """Import suites from a JSON document given inline or as a file path."""

    command: Literal["import_suites_json"] = "import_suites_json"
    path: Optional[str] = None
    text: Optional[str] = None


class ExportSuitesJson(ProtocolModel):
    command: Literal["export_suites_json"] = "export_suites_json"
    output_path: str


Command = Annotated[
    Union[
        SaveApiKey,
        GetApiKey,
        ClearApiKey,
        RunTest,
        CancelTest,
        GetHistory,
        ClearHistory,
        ExportResults,
        GetModels,
        GetSuites,
        RunSuite,
        ExportDocument,
        ExportSuiteCsv,
        RecommendModels,
        CancelRecommendation,
        GetProvidersForModel,
        GetAllProviders,
        SaveCustomSuite,
        DeleteCustomSuite,
        ImportSuitesJson,
        ExportSuitesJson,
    ],
    Field(discriminator="command"),
]

_command_adapter = TypeAdapter(Command)


def parse_command(message: dict) -> Command:
    """
    Validate an inbound message into its command model.

    Raises:
        pydantic.ValidationError: Unknown command or invalid payload
    """
    return _command_adapter.validate_python(message)


# Event payloads

class TestProgressPayload(ProtocolModel):
    __test__ = False

    percent: float
    message: str


class SuiteProgressPayload(ProtocolModel):
    suite_id: str
    step: int
    total: int
    message: str


class WizardProgressPayload(ProtocolModel):
    step: int
    total: int
    message: str
    cancelled: bool = False


# Events

def _wire(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_wire(v) for v in value]
    return value


class EventModel(ProtocolModel):
    """Base for outbound events."""

    def to_message(self) -> dict:
        """Plain camelCase dictionary ready for JSON encoding."""
        message = {}
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if value is None:
                continue
            message[field.alias or name] = _wire(value)
        return message


class ApiKeyStatus(EventModel):
    event: Literal["api_key"] = "api_key"
    has_key: bool
    masked: str = ""


class ApiKeySaved(EventModel):
    event: Literal["api_key_saved"] = "api_key_saved"
    success: bool = True


class TestStarted(EventModel):
    __test__ = False

    event: Literal["test_started"] = "test_started"


class TestProgress(EventModel):
    __test__ = False

    event: Literal["test_progress"] = "test_progress"
    progress: TestProgressPayload


class TestCompleted(EventModel):
    __test__ = False

    event: Literal["test_completed"] = "test_completed"
    result: RunResult


class TestError(EventModel):
    __test__ = False

    event: Literal["test_error"] = "test_error"
    error: str
    cancelled: bool = False


class History(EventModel):
    event: Literal["history"] = "history"
    history: list[RunResult] = Field(default_factory=list)


class HistoryCleared(EventModel):
    event: Literal["history_cleared"] = "history_cleared"


class Models(EventModel):
    event: Literal["models"] = "models"
    models: list[ModelInfo] = Field(default_factory=list)


class Providers(EventModel):
    event: Literal["providers"] = "providers"
    scope: Literal["global", "model"] = "global"
    model_id: Optional[str] = None
    providers: list[str] = Field(default_factory=list)


class Suites(EventModel):
    event: Literal["suites"] = "suites"
    suites: list[TestSuite] = Field(default_factory=list)


class SuiteProgress(EventModel):
    event: Literal["suite_progress"] = "suite_progress"
    progress: SuiteProgressPayload


class SuiteCompleted(EventModel):
    event: Literal["suite_completed"] = "suite_completed"
    result: SuiteRunResult


class SuiteError(EventModel):
    event: Literal["suite_error"] = "suite_error"
    error: str


class WizardProgress(EventModel):
    event: Literal["wizard_progress"] = "wizard_progress"
    progress: WizardProgressPayload


class WizardRecommendation(EventModel):
    event: Literal["wizard_recommendation"] = "wizard_recommendation"
    payload: Recommendation


class Notice(EventModel):
    """User-facing status message."""

    event: Literal["notice"] = "notice"
    level: Literal["info", "warning", "error"] = "info"
    message: str


Event = Union[
    ApiKeyStatus,
    ApiKeySaved,
    TestStarted,
    TestProgress,
    TestCompleted,
    TestError,
    History,
    HistoryCleared,
    Models,
    Providers,
    Suites,
    SuiteProgress,
    SuiteCompleted,
    SuiteError,
    WizardProgress,
    WizardRecommendation,
    Notice,
]

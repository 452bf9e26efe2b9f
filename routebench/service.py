"""
Benchmark service.

Owns the routing clients, the batch engines, run history and the suite
library, and turns protocol commands into protocol events delivered to a
host-supplied sink.
"""

import json
import logging
from pathlib import Path
from typing import Callable, Optional, Union

import httpx

from routebench.benchmarks.case_runner import CaseRunner
from routebench.benchmarks.recommender import Recommender
from routebench.config import AppConfig, get_config
from routebench.errors import BenchmarkError, StreamError, SuiteNotFoundError
from routebench.metadata_client import DEFAULT_MODELS, MetadataClient
from routebench.model_client import StreamingRunClient
from routebench.models import (
    RunConfig,
    RunProgress,
    RunResult,
    StepProgress,
    SuiteRunResult,
)
from routebench.protocol import (
    ApiKeySaved,
    ApiKeyStatus,
    CancelRecommendation,
    CancelTest,
    ClearApiKey,
    ClearHistory,
    Command,
    DeleteCustomSuite,
    Event,
    ExportDocument,
    ExportResults,
    ExportSuiteCsv,
    ExportSuitesJson,
    GetAllProviders,
    GetApiKey,
    GetHistory,
    GetModels,
    GetProvidersForModel,
    GetSuites,
    History,
    HistoryCleared,
    ImportSuitesJson,
    Models,
    Notice,
    Providers,
    RecommendModels,
    RunSuite,
    RunTest,
    SaveApiKey,
    SaveCustomSuite,
    SuiteCompleted,
    SuiteError,
    SuiteProgress,
    SuiteProgressPayload,
    Suites,
    TestCompleted,
    TestError,
    TestProgress,
    TestProgressPayload,
    TestStarted,
    WizardProgress,
    WizardProgressPayload,
    WizardRecommendation,
    parse_command,
)
from routebench.report_generator import ReportGenerator
from routebench.storage import KeyValueStore, MemoryStore, RunHistory
from routebench.suites import SuiteLibrary
from routebench.utils import mask_api_key, save_results

logger = logging.getLogger(__name__)

API_KEY_KEY = "routebench.apiKey"
MISSING_KEY_MESSAGE = "Please set your API key first"

EventSink = Callable[[Event], None]


class BenchmarkService:
    """
    Command dispatcher for a benchmarking session.

    handle() runs synchronously on the caller's thread. Cancellation
    commands may be handled from a second thread while a run, a suite or
    a recommendation is in progress.
    """

    def __init__(
        self,
        sink: EventSink,
        secrets: Optional[KeyValueStore] = None,
        state: Optional[KeyValueStore] = None,
        config: Optional[AppConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the service.

        Args:
            sink: Receives every outbound event
            secrets: Store for the API credential
            state: Store for history and custom suites
            config: Application configuration; the global one by default
            transport: Optional httpx transport shared by all clients (used by tests)
        """
        self.sink = sink
        self.secrets = secrets if secrets is not None else MemoryStore()
        self.state = state if state is not None else MemoryStore()
        self.config = config or get_config()
        self.transport = transport

        self.history = RunHistory(
            self.state,
            save_enabled=self.config.history.save_history,
            max_items=self.config.history.max_items,
        )
        self.suites = SuiteLibrary(self.state)
        self.reports = ReportGenerator()

        self.metadata: Optional[MetadataClient] = None
        self.client: Optional[StreamingRunClient] = None
        self.case_runner: Optional[CaseRunner] = None
        self.recommender: Optional[Recommender] = None
        self.last_suite_result: Optional[SuiteRunResult] = None

        api_key = self.secrets.get(API_KEY_KEY)
        if api_key:
            self._connect(api_key)

        self._handlers = {
            SaveApiKey: self._save_api_key,
            GetApiKey: self._send_api_key,
            ClearApiKey: self._clear_api_key,
            RunTest: self._run_test,
            CancelTest: self._cancel_test,
            GetHistory: self._send_history,
            ClearHistory: self._clear_history,
            ExportResults: self._export_results,
            GetModels: self._send_models,
            GetSuites: self._send_suites,
            RunSuite: self._run_suite,
            ExportDocument: self._export_document,
            ExportSuiteCsv: self._export_suite_csv,
            RecommendModels: self._recommend_models,
            CancelRecommendation: self._cancel_recommendation,
            GetProvidersForModel: self._send_providers_for_model,
            GetAllProviders: self._send_all_providers,
            SaveCustomSuite: self._save_custom_suite,
            DeleteCustomSuite: self._delete_custom_suite,
            ImportSuitesJson: self._import_suites_json,
            ExportSuitesJson: self._export_suites_json,
        }

    # Session lifecycle

    def _connect(self, api_key: str) -> None:
        self._disconnect()
        self.metadata = MetadataClient(
            api_key=api_key,
            base_url=self.config.api.base_url,
            timeout=self.config.timeouts.metadata,
            validation_timeout=self.config.timeouts.validation,
            transport=self.transport,
        )
        self.client = StreamingRunClient(
            api_key=api_key,
            base_url=self.config.api.base_url,
            timeout=self.config.timeouts.request,
            metadata=self.metadata,
            transport=self.transport,
        )
        self.case_runner = CaseRunner(
            self.client, default_max_tokens=self.config.benchmark.default_max_tokens
        )
        self.recommender = Recommender(
            self.client,
            mini_suite_size=self.config.benchmark.mini_suite_size,
            max_tokens=self.config.benchmark.recommend_max_tokens,
        )

    def _disconnect(self) -> None:
        if self.client is not None:
            self.client.close()
        if self.metadata is not None:
            self.metadata.close()
        self.metadata = None
        self.client = None
        self.case_runner = None
        self.recommender = None

    def close(self) -> None:
        self._disconnect()

    def emit(self, event: Event) -> None:
        self.sink(event)

    def handle(self, command: Union[Command, dict]) -> None:
        """
        Dispatch one command.

        Args:
            command: A command model, or a raw message to validate first

        Raises:
            pydantic.ValidationError: The raw message is not a valid command
        """
        if isinstance(command, dict):
            command = parse_command(command)
        logger.debug("Handling %s", command.command)
        self._handlers[type(command)](command)

    # Credential

    def _save_api_key(self, command: SaveApiKey) -> None:
        self.secrets.update(API_KEY_KEY, command.api_key)
        self._connect(command.api_key)
        self.emit(ApiKeySaved(success=True))
        self._send_models()
        self._send_all_providers()

    def _send_api_key(self, command: Optional[GetApiKey] = None) -> None:
        api_key = self.secrets.get(API_KEY_KEY)
        self.emit(ApiKeyStatus(has_key=bool(api_key), masked=mask_api_key(api_key)))
        if api_key:
            if self.client is None:
                self._connect(api_key)
            self._send_models()
            self._send_all_providers()

    def _clear_api_key(self, command: ClearApiKey) -> None:
        self.secrets.delete(API_KEY_KEY)
        self._disconnect()
        self.emit(ApiKeyStatus(has_key=False, masked=""))

    # Single runs and history

    def _run_test(self, command: RunTest) -> None:
        if self.client is None:
            self.emit(TestError(error=MISSING_KEY_MESSAGE))
            return

        cfg = command.config
        run_config = RunConfig(
            model=cfg.model,
            prompt=cfg.prompt,
            max_tokens=cfg.max_tokens,
            provider=cfg.provider,
            temperature=cfg.temperature,
            top_p=cfg.top_p,
        )

        def on_progress(progress: RunProgress) -> None:
            self.emit(TestProgress(progress=TestProgressPayload(
                percent=progress.percent,
                message=progress.message,
            )))

        self.emit(TestStarted())
        self.client.set_timeout(self.config.timeouts.request)
        try:
            result = self.client.run(run_config, on_progress=on_progress)
        except StreamError as e:
            if e.cancelled:
                self.emit(TestError(error="Test cancelled", cancelled=True))
            else:
                self.emit(TestError(error=str(e)))
            return
        except BenchmarkError as e:
            logger.warning("Run against %s failed: %s", cfg.model, e)
            self.emit(TestError(error=str(e)))
            return

        self.history.record(result)
        self.emit(TestCompleted(result=result))

    def _cancel_test(self, command: CancelTest) -> None:
        if self.case_runner is not None:
            self.case_runner.cancel()

    def _send_history(self, command: Optional[GetHistory] = None) -> None:
        self.emit(History(history=self.history.entries()))

    def _clear_history(self, command: ClearHistory) -> None:
        self.history.clear()
        self.emit(HistoryCleared())

    def _export_results(self, command: ExportResults) -> None:
        if command.results is not None:
            results = [RunResult.from_dict(r).to_dict() for r in command.results]
        else:
            results = [r.to_dict() for r in self.history.entries()]
        try:
            save_results(results, Path(command.output_path))
        except OSError as e:
            self.emit(Notice(level="error", message=f"Export failed: {e}"))
            return
        self.emit(Notice(message="Results exported successfully!"))

    # Catalog

    def _send_models(self, command: Optional[GetModels] = None) -> None:
        if self.metadata is None:
            models = list(DEFAULT_MODELS)
        else:
            models = self.metadata.models_or_default()
        self.emit(Models(models=models))

    def _send_all_providers(self, command: Optional[GetAllProviders] = None) -> None:
        if self.metadata is None:
            providers = ["auto"]
        else:
            providers = self.metadata.providers_or_default()
        self.emit(Providers(scope="global", providers=providers))

    def _send_providers_for_model(self, command: GetProvidersForModel) -> None:
        if self.metadata is None or not command.model_id:
            self._send_all_providers()
            return
        self.emit(Providers(
            scope="model",
            model_id=command.model_id,
            providers=self.metadata.provider_choices(command.model_id),
        ))

    # Suites

    def _send_suites(self, command: Optional[GetSuites] = None) -> None:
        self.emit(Suites(suites=self.suites.all_suites()))

    def _run_suite(self, command: RunSuite) -> None:
        if self.case_runner is None:
            self.emit(SuiteError(error=MISSING_KEY_MESSAGE))
            return
        try:
            suite = self.suites.get(command.suite_id)
        except SuiteNotFoundError as e:
            self.emit(SuiteError(error=str(e)))
            return

        def on_progress(progress: StepProgress) -> None:
            self.emit(SuiteProgress(progress=SuiteProgressPayload(
                suite_id=suite.id,
                step=progress.step,
                total=progress.total,
                message=progress.message,
            )))

        self.client.set_timeout(self.config.timeouts.request)
        result = self.case_runner.run_suite(
            suite,
            command.model,
            provider=command.provider,
            iterations=command.iterations,
            params=command.params.to_params() if command.params else None,
            on_progress=on_progress,
        )
        self.last_suite_result = result
        self.emit(SuiteCompleted(result=result))

    def _resolve_suite_result(self, raw: Optional[dict]) -> Optional[SuiteRunResult]:
        if raw is not None:
            return SuiteRunResult.from_dict(raw)
        return self.last_suite_result

    def _export_document(self, command: ExportDocument) -> None:
        result = self._resolve_suite_result(command.result)
        if result is None:
            self.emit(Notice(level="error", message="No suite results to export"))
            return
        try:
            self.reports.generate(result, format=command.format, output_path=command.output_path)
        except OSError as e:
            self.emit(Notice(level="error", message=f"Report export failed: {e}"))
            return
        self.emit(Notice(message=f"Executive report exported ({command.format})"))

    def _export_suite_csv(self, command: ExportSuiteCsv) -> None:
        result = self._resolve_suite_result(command.result)
        if result is None:
            self.emit(Notice(level="error", message="No suite results to export"))
            return
        try:
            self.reports.generate(result, format="csv", output_path=command.output_path)
        except OSError as e:
            self.emit(Notice(level="error", message=f"CSV export failed: {e}"))
            return
        self.emit(Notice(message="Suite results exported (CSV)"))

    # Recommendation

    def _recommend_models(self, command: RecommendModels) -> None:
        if self.recommender is None:
            self.emit(SuiteError(error=MISSING_KEY_MESSAGE))
            return

        suite = self.suites.get_or_first(
            command.suite_id or self.config.benchmark.default_suite_id
        )
        if suite is None:
            self.emit(SuiteError(error="No suites available for recommendation"))
            return

        def on_progress(progress: StepProgress) -> None:
            self.emit(WizardProgress(progress=WizardProgressPayload(
                step=progress.step,
                total=progress.total,
                message=progress.message,
                cancelled=progress.cancelled,
            )))

        self.client.set_timeout(self.config.timeouts.request)
        recommendation = self.recommender.recommend(
            command.model_ids,
            suite,
            provider=command.provider,
            constraints=command.constraints.to_constraints() if command.constraints else None,
            on_progress=on_progress,
        )
        if recommendation.cancelled:
            return
        self.emit(WizardRecommendation(payload=recommendation))

    def _cancel_recommendation(self, command: CancelRecommendation) -> None:
        if self.recommender is not None:
            self.recommender.cancel()

    # Custom suites

    def _save_custom_suite(self, command: SaveCustomSuite) -> None:
        try:
            suite = self.suites.save_custom(command.suite)
        except ValueError as e:
            self.emit(Notice(level="error", message=str(e)))
            return
        self._send_suites()
        self.emit(Notice(message=f'Saved custom suite "{suite.name}"'))

    def _delete_custom_suite(self, command: DeleteCustomSuite) -> None:
        if not command.suite_id:
            self.emit(Notice(level="error", message="No suiteId provided"))
            return
        try:
            self.suites.delete_custom(command.suite_id)
        except SuiteNotFoundError:
            self.emit(Notice(
                level="warning",
                message="Selected suite is not a custom suite or does not exist",
            ))
            return
        self._send_suites()
        self.emit(Notice(message=f'Deleted custom suite "{command.suite_id}"'))

    def _import_suites_json(self, command: ImportSuitesJson) -> None:
        try:
            if command.text is not None:
                text = command.text
            elif command.path is not None:
                text = Path(command.path).read_text(encoding="utf-8")
            else:
                raise ValueError("No suites document provided")
            imported = self.suites.import_json(text)
        except (OSError, ValueError) as e:
            self.emit(Notice(level="error", message=f"Import failed: {e}"))
            return
        self._send_suites()
        self.emit(Notice(message=f"Imported {len(imported)} suite(s)"))

    def _export_suites_json(self, command: ExportSuitesJson) -> None:
        document = self.suites.export_json()
        path = Path(command.output_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(document, encoding="utf-8")
        except OSError as e:
            self.emit(Notice(level="error", message=f"Export failed: {e}"))
            return
        count = len(json.loads(document)["suites"])
        self.emit(Notice(message=f"Exported {count} custom suite(s)"))

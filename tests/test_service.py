"""
Tests for the benchmark service command dispatcher.
"""

import json

import httpx
import pytest

from routebench.config import AppConfig
from routebench.protocol import (
    ApiKeySaved,
    ApiKeyStatus,
    History,
    HistoryCleared,
    Models,
    Notice,
    Providers,
    SuiteCompleted,
    SuiteError,
    SuiteProgress,
    Suites,
    TestCompleted,
    TestError,
    TestProgress,
    TestStarted,
    WizardProgress,
    WizardRecommendation,
)
from routebench.service import API_KEY_KEY, BenchmarkService
from routebench.storage import MemoryStore

from conftest import DONE, RecordingTransport, content_event, sse, usage_event


CATALOG = {"data": [{
    "id": "openai/gpt-4o",
    "name": "GPT-4o",
    "pricing": {"prompt": "0.000001", "completion": "0.000002"},
}]}


class FakeRouter:
    """Routing API double; chat requests stream from a per-test body."""

    def __init__(self):
        self.chat_status = 200
        self.body = lambda: iter([
            sse(content_event("Hello ")),
            sse(content_event("there")),
            sse(usage_event(20, prompt_tokens=5)),
            DONE,
        ])
        self.transport = RecordingTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path.endswith("/chat/completions"):
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, text="provider exploded")
            return httpx.Response(200, content=self.body())
        if path.endswith("/endpoints"):
            return httpx.Response(200, json={"data": {"endpoints": [{"provider_name": "Groq"}]}})
        if path.endswith("/models"):
            return httpx.Response(200, json=CATALOG)
        if path.endswith("/providers"):
            return httpx.Response(200, json={"data": [{"name": "OpenAI"}, {"name": "Groq"}]})
        return httpx.Response(404)


@pytest.fixture
def router():
    return FakeRouter()


@pytest.fixture
def events():
    return []


@pytest.fixture
def service(router, events):
    service = BenchmarkService(
        events.append,
        secrets=MemoryStore(),
        state=MemoryStore(),
        config=AppConfig(),
        transport=router.transport,
    )
    yield service
    service.close()


@pytest.fixture
def connected(service, events):
    service.handle({"command": "save_api_key", "apiKey": "sk-or-v1-test"})
    events.clear()
    return service


def of_type(events, event_type):
    return [e for e in events if isinstance(e, event_type)]


class TestCredential:
    """Tests for credential commands."""

    def test_run_without_key(self, service, events):
        service.handle({"command": "run_test", "config": {"model": "m", "prompt": "p"}})
        assert events == [TestError(error="Please set your API key first")]

    def test_suite_without_key(self, service, events):
        service.handle({"command": "run_suite", "suiteId": "general-purpose-v1", "model": "m"})
        assert events == [SuiteError(error="Please set your API key first")]

    def test_save_key(self, service, events):
        service.handle({"command": "save_api_key", "apiKey": "sk-or-v1-test"})

        assert isinstance(events[0], ApiKeySaved)
        models = of_type(events, Models)[0]
        assert [m.id for m in models.models] == ["openai/gpt-4o"]
        providers = of_type(events, Providers)[0]
        assert providers.providers == ["auto", "OpenAI", "Groq"]
        assert service.secrets.get(API_KEY_KEY) == "sk-or-v1-test"

    def test_get_key_masked(self, connected, events):
        connected.handle({"command": "get_api_key"})
        status = of_type(events, ApiKeyStatus)[0]
        assert status.has_key
        assert status.masked == "sk-or-v1-" + "*" * 20

    def test_clear_key(self, connected, events):
        connected.handle({"command": "clear_api_key"})
        assert events == [ApiKeyStatus(has_key=False, masked="")]
        assert connected.client is None

    def test_models_without_key(self, service, events):
        service.handle({"command": "get_models"})
        assert len(of_type(events, Models)[0].models) == 5

    def test_stored_key_reconnects(self, router, events):
        secrets = MemoryStore({API_KEY_KEY: "sk-or-v1-stored"})
        service = BenchmarkService(events.append, secrets=secrets, transport=router.transport)
        assert service.client is not None
        service.close()


class TestSingleRun:
    """Tests for run_test and history."""

    def test_run_success(self, connected, events):
        connected.handle({"command": "run_test", "config": {"model": "openai/gpt-4o", "prompt": "Hi"}})

        assert isinstance(events[0], TestStarted)
        assert of_type(events, TestProgress)[0].progress.percent == 10
        completed = of_type(events, TestCompleted)[0]
        assert completed.result.output == "Hello there"
        assert completed.result.completion_tokens == 20
        # Cached catalog pricing: 5 * 0.001 / 1000 + 20 * 0.002 / 1000
        assert completed.result.cost == pytest.approx(0.000045)
        assert len(connected.history.entries()) == 1

    def test_run_api_error(self, connected, router, events):
        router.chat_status = 500
        connected.handle({"command": "run_test", "config": {"model": "m", "prompt": "Hi"}})

        error = of_type(events, TestError)[0]
        assert error.error.startswith("API Error: 500")
        assert not error.cancelled
        assert connected.history.entries() == []

    def test_run_cancelled(self, connected, router, events):
        def body():
            yield sse(content_event("partial"))
            connected.handle({"command": "cancel_test"})
            yield sse(content_event("ignored"))

        router.body = body
        connected.handle({"command": "run_test", "config": {"model": "m", "prompt": "Hi"}})

        assert of_type(events, TestError) == [TestError(error="Test cancelled", cancelled=True)]

    def test_history_commands(self, connected, events):
        connected.handle({"command": "run_test", "config": {"model": "m", "prompt": "Hi"}})
        events.clear()

        connected.handle({"command": "get_history"})
        assert len(of_type(events, History)[0].history) == 1

        connected.handle({"command": "clear_history"})
        assert isinstance(events[-1], HistoryCleared)
        assert connected.history.entries() == []

    def test_export_results(self, connected, events, tmp_path):
        connected.handle({"command": "run_test", "config": {"model": "m", "prompt": "Hi"}})
        path = tmp_path / "results.json"
        connected.handle({"command": "export_results", "outputPath": str(path)})

        exported = json.loads(path.read_text())
        assert exported[0]["output"] == "Hello there"
        assert events[-1] == Notice(message="Results exported successfully!")

    def test_export_results_unwritable(self, connected, events, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        connected.handle({"command": "export_results", "outputPath": str(blocker / "results.json")})

        assert events[-1].level == "error"
        assert events[-1].message.startswith("Export failed:")


class TestSuiteCommands:
    """Tests for suite runs and exports."""

    def test_get_suites(self, service, events):
        service.handle({"command": "get_suites"})
        ids = [s.id for s in of_type(events, Suites)[0].suites]
        assert "general-purpose-v1" in ids

    def test_unknown_suite(self, connected, events):
        connected.handle({"command": "run_suite", "suiteId": "nope", "model": "m"})
        assert events == [SuiteError(error="Suite not found: nope")]

    def test_run_suite(self, connected, events):
        connected.handle({
            "command": "run_suite",
            "suiteId": "long-form-v1",
            "model": "openai/gpt-4o",
            "iterations": 2,
        })

        progress = of_type(events, SuiteProgress)
        assert [p.progress.step for p in progress] == [1, 2, 3, 4]
        assert progress[0].progress.suite_id == "long-form-v1"
        result = of_type(events, SuiteCompleted)[0].result
        assert len(result.results) == 4
        assert result.aggregates.success_rate == 1.0
        assert connected.last_suite_result == result

    def test_export_last_suite(self, connected, events, tmp_path):
        connected.handle({"command": "run_suite", "suiteId": "long-form-v1", "model": "m"})
        md_path = tmp_path / "report.md"
        csv_path = tmp_path / "results.csv"
        connected.handle({"command": "export_document", "outputPath": str(md_path)})
        connected.handle({"command": "export_suite_csv", "outputPath": str(csv_path)})

        assert "- Suite: long-form-v1" in md_path.read_text()
        assert csv_path.read_text().startswith("caseId,iteration,ok,")

    def test_export_document_unwritable(self, connected, events, tmp_path):
        """A write failure becomes an error notice instead of escaping."""
        connected.handle({"command": "run_suite", "suiteId": "long-form-v1", "model": "m"})
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        connected.handle({"command": "export_document", "outputPath": str(blocker / "report.md")})

        assert events[-1].level == "error"
        assert events[-1].message.startswith("Report export failed:")

    def test_export_without_result(self, service, events, tmp_path):
        service.handle({"command": "export_document", "outputPath": str(tmp_path / "r.md")})
        assert events == [Notice(level="error", message="No suite results to export")]


class TestRecommendation:
    """Tests for recommend_models."""

    def test_recommend(self, connected, events):
        connected.handle({
            "command": "recommend_models",
            "modelIds": ["openai/gpt-4o", "meta-llama/llama-3-70b"],
        })

        progress = of_type(events, WizardProgress)
        assert len(progress) == 6
        recommendation = of_type(events, WizardRecommendation)[0].payload
        assert recommendation.suite_id == "general-purpose-v1"
        assert len(recommendation.candidates) == 2

    def test_recommend_without_key(self, service, events):
        service.handle({"command": "recommend_models", "modelIds": ["m"]})
        assert events == [SuiteError(error="Please set your API key first")]

    def test_recommend_cancelled(self, connected, router, events):
        def body():
            connected.handle({"command": "cancel_recommendation"})
            yield sse(content_event("x"))
            yield DONE

        router.body = body
        connected.handle({"command": "recommend_models", "modelIds": ["a/one", "b/two"]})

        assert of_type(events, WizardRecommendation) == []
        assert of_type(events, WizardProgress)[-1].progress.cancelled


class TestProviderCommands:
    """Tests for provider listing."""

    def test_providers_for_model(self, connected, events):
        connected.handle({"command": "get_providers_for_model", "modelId": "openai/gpt-4o"})
        assert events == [Providers(scope="model", model_id="openai/gpt-4o", providers=["auto", "Groq"])]

    def test_providers_without_key(self, service, events):
        service.handle({"command": "get_all_providers"})
        assert events == [Providers(scope="global", providers=["auto"])]


class TestCustomSuites:
    """Tests for custom suite management."""

    def test_save_and_delete(self, service, events):
        service.handle({
            "command": "save_custom_suite",
            "suite": {"id": "mine", "name": "Mine", "cases": [{"id": "c", "prompt": "p"}]},
        })
        assert "mine" in [s.id for s in of_type(events, Suites)[-1].suites]
        assert events[-1] == Notice(message='Saved custom suite "Mine"')

        service.handle({"command": "delete_custom_suite", "suiteId": "mine"})
        assert "mine" not in [s.id for s in of_type(events, Suites)[-1].suites]

    def test_save_invalid(self, service, events):
        service.handle({"command": "save_custom_suite", "suite": {"id": "x"}})
        assert events == [Notice(level="error", message="Invalid suite JSON: require id, name, cases[]")]

    def test_delete_builtin(self, service, events):
        service.handle({"command": "delete_custom_suite", "suiteId": "general-purpose-v1"})
        assert events[-1].level == "warning"

    def test_import_and_export(self, service, events, tmp_path):
        source = tmp_path / "in.json"
        source.write_text(json.dumps([{"id": "imp", "name": "Imported", "cases": []}]))
        service.handle({"command": "import_suites_json", "path": str(source)})
        assert events[-1] == Notice(message="Imported 1 suite(s)")

        target = tmp_path / "out.json"
        service.handle({"command": "export_suites_json", "outputPath": str(target)})
        assert json.loads(target.read_text())["suites"][0]["id"] == "imp"
        assert events[-1] == Notice(message="Exported 1 custom suite(s)")

    def test_import_invalid(self, service, events):
        service.handle({"command": "import_suites_json", "text": "{oops"})
        assert events[-1].level == "error"
        assert events[-1].message.startswith("Import failed: Invalid JSON")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

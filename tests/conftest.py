"""
Shared fixtures and stream builders for routebench tests.
"""

import json
from typing import Optional

import httpx
import pytest

from routebench.models import CaseResult, RunResult, TestCase, TestParams, TestSuite


def sse(payload) -> bytes:
    """One event-stream frame carrying a JSON payload."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def content_event(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


def usage_event(completion_tokens: int, prompt_tokens: Optional[int] = None) -> dict:
    usage = {"completion_tokens": completion_tokens}
    if prompt_tokens is not None:
        usage["prompt_tokens"] = prompt_tokens
    return {"choices": [], "usage": usage}


DONE = b"data: [DONE]\n\n"


class FakeClock:
    """Returns the given readings in order, then repeats the last one."""

    def __init__(self, *ticks: float):
        self.ticks = list(ticks)
        self.calls = 0

    def __call__(self) -> float:
        index = min(self.calls, len(self.ticks) - 1)
        self.calls += 1
        return self.ticks[index]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler):
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


def stream_transport(chunks, status_code: int = 200) -> RecordingTransport:
    """Serve the given byte chunks for every chat-completion request."""

    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, content=b"".join(chunks))
        return httpx.Response(200, content=iter(list(chunks)))

    return RecordingTransport(handler)


def make_result(
    tps: float = 20.0,
    ttft: float = 0.5,
    total_time: float = 2.0,
    cost: float = 0.001,
    completion_tokens: int = 40,
    prompt_tokens: Optional[int] = 10,
    model: str = "test/model",
) -> RunResult:
    return RunResult(
        model=model,
        provider="auto",
        prompt="prompt",
        output="output",
        completion_tokens=completion_tokens,
        prompt_tokens=prompt_tokens,
        total_time=total_time,
        time_to_first_token=ttft,
        tokens_per_second=tps,
        cost=cost,
        timestamp="2026-01-01T00:00:00.000Z",
    )


def ok(case_id: str, result: RunResult, iteration: int = 1) -> CaseResult:
    return CaseResult(case_id=case_id, iteration=iteration, ok=True, result=result)


def failed(case_id: str, error: str = "boom", iteration: int = 1) -> CaseResult:
    return CaseResult(case_id=case_id, iteration=iteration, ok=False, error=error)


@pytest.fixture
def three_case_suite() -> TestSuite:
    return TestSuite(
        id="suite-1",
        name="Suite One",
        iterations=2,
        cases=[
            TestCase(id="a", name="Alpha", prompt="alpha prompt"),
            TestCase(
                id="b",
                name="Beta",
                prompt="beta prompt",
                params=TestParams(temperature=0.2, max_tokens=100),
            ),
            TestCase(id="c", name="Gamma", prompt="gamma prompt"),
        ],
    )

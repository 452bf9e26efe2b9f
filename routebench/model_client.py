"""
Streaming run client for the routing API.

Issues one streaming chat-completion request, measures time to first
token and total time, reconciles token counts and prices the run.
"""

import logging
import socket
import threading
import time
from typing import Callable, Optional

import httpx

from routebench.config import get_config
from routebench.errors import ApiError, BenchmarkError, NetworkError, StreamError
from routebench.metadata_client import MetadataClient
from routebench.models import RunConfig, RunProgress, RunResult
from routebench.streaming import ProgressCallback, SSEParser, StreamAccumulator
from routebench.utils import truncate_text, utc_now_iso

logger = logging.getLogger(__name__)

MIN_TOTAL_TIME = 0.001


def build_payload(config: RunConfig) -> dict:
    """
    Request body for a streaming chat completion.

    Sampling parameters are sent only when set, and provider routing only
    for a specific (non-"auto") provider.
    """
    payload = {
        "model": config.model,
        "messages": [{"role": "user", "content": config.prompt}],
        "max_tokens": config.max_tokens,
        "stream": True,
    }
    if config.temperature is not None:
        payload["temperature"] = config.temperature
    if config.top_p is not None:
        payload["top_p"] = config.top_p
    if config.provider and config.provider != "auto":
        payload["provider"] = {"order": [config.provider]}
    return payload


class StreamingRunClient:
    """
    Runs timed, streamed inference requests one at a time.

    cancel() may be called from another thread; the run in flight then
    fails with a cancellation StreamError instead of a transport error.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        metadata: Optional[MetadataClient] = None,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Initialize the run client.

        Args:
            api_key: Routing API credential
            base_url: API root, e.g. https://openrouter.ai/api/v1
            timeout: Wall-clock limit per run in seconds
            metadata: Catalog client whose pricing cache prices runs
            transport: Optional httpx transport (used by tests)
            clock: Monotonic clock in seconds
        """
        config = get_config()

        self.api_key = api_key or config.api.api_key
        self.base_url = base_url or config.api.base_url
        self.timeout = timeout or config.timeouts.request
        self.metadata = metadata
        self.clock = clock
        self.chars_per_token = config.benchmark.chars_per_token
        self.fallback_cost_per_1k = config.benchmark.fallback_cost_per_1k

        self._http = httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
                "HTTP-Referer": config.api.referer,
                "X-Title": config.api.title,
                "User-Agent": config.api.user_agent,
            },
            # A fresh connection per run, so cancel() can always reach its socket
            limits=httpx.Limits(max_keepalive_connections=0),
            transport=transport,
        )

        self._lock = threading.Lock()
        self._network_stream = None
        self._cancelled = threading.Event()
        self._timed_out = threading.Event()

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "StreamingRunClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def set_timeout(self, timeout: float) -> None:
        """Change the wall-clock limit for subsequent runs."""
        if timeout > 0:
            self.timeout = timeout

    def cancel(self) -> None:
        """Abort the run in flight, if any."""
        self._cancelled.set()
        self._shutdown_stream()

    def _on_timeout(self) -> None:
        self._timed_out.set()
        self._shutdown_stream()

    def _trace(self, event_name: str, info: dict) -> None:
        # httpcore reports each new connection; the TLS stream replaces the TCP one
        if event_name in ("connection.connect_tcp.complete", "connection.start_tls.complete"):
            self._track_stream(info.get("return_value"))

    def _track_stream(self, stream) -> None:
        if stream is None:
            return
        with self._lock:
            self._network_stream = stream
        if self._abort_error() is not None:
            self._shutdown_stream()

    def _shutdown_stream(self) -> None:
        """
        Shut down the socket of the run in flight.

        A blocked read on another thread returns immediately once the socket
        is shut down, whereas closing it leaves the read waiting for the
        read timeout.
        """
        with self._lock:
            stream = self._network_stream
        if stream is None:
            return
        sock = stream.get_extra_info("socket")
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Socket already closed: %s", e)

    def _abort_error(self) -> Optional[BenchmarkError]:
        if self._cancelled.is_set():
            return StreamError.cancellation()
        if self._timed_out.is_set():
            return NetworkError("timed out")
        return None

    def _check_aborted(self) -> None:
        error = self._abort_error()
        if error is not None:
            raise error

    def run(
        self,
        config: RunConfig,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RunResult:
        """
        Execute one streamed run.

        Args:
            config: Model, provider, prompt and sampling parameters
            on_progress: Optional callback receiving RunProgress updates

        Returns:
            RunResult with timing, token and cost metrics

        Raises:
            NetworkError: Connection failure or timeout
            ApiError: Non-200 response
            StreamError: Transport failure mid-stream, or cancellation
        """
        def emit(percent: float, message: str) -> None:
            if on_progress is not None:
                on_progress(RunProgress(percent=percent, message=message))

        self._cancelled.clear()
        self._timed_out.clear()
        with self._lock:
            self._network_stream = None

        start_time = self.clock()
        emit(10, "Connecting to routing API...")

        watchdog = threading.Timer(self.timeout, self._on_timeout)
        watchdog.daemon = True
        watchdog.start()
        try:
            accumulator = self._stream(config, start_time, on_progress, emit)
        finally:
            watchdog.cancel()
            with self._lock:
                self._network_stream = None

        end_time = self.clock()
        total_time = max(MIN_TOTAL_TIME, end_time - start_time)
        completion_tokens = accumulator.completion_tokens
        prompt_tokens = accumulator.prompt_tokens

        emit(100, "Test completed!")

        return RunResult(
            model=config.model,
            provider=config.provider,
            prompt=config.prompt,
            output=accumulator.output,
            completion_tokens=completion_tokens,
            prompt_tokens=prompt_tokens,
            total_time=total_time,
            time_to_first_token=accumulator.time_to_first_token,
            tokens_per_second=completion_tokens / total_time,
            cost=self.calculate_cost(config.model, prompt_tokens, completion_tokens),
            timestamp=utc_now_iso(),
        )

    def _stream(
        self,
        config: RunConfig,
        start_time: float,
        on_progress: Optional[ProgressCallback],
        emit: Callable[[float, str], None],
    ) -> StreamAccumulator:
        streaming = False
        try:
            with self._http.stream(
                "POST",
                "/chat/completions",
                json=build_payload(config),
                timeout=self.timeout,
                extensions={"trace": self._trace},
            ) as response:
                self._track_stream(response.extensions.get("network_stream"))
                self._check_aborted()

                if response.status_code != 200:
                    body = truncate_text(response.read().decode("utf-8", errors="replace"))
                    raise ApiError(
                        f"API Error: {response.status_code} "
                        f"{response.reason_phrase}{' - ' + body if body else ''}",
                        status_code=response.status_code,
                        body=body,
                    )

                streaming = True
                emit(30, "Receiving response...")

                parser = SSEParser()
                accumulator = StreamAccumulator(
                    max_tokens=config.max_tokens,
                    start_time=start_time,
                    on_progress=on_progress,
                    chars_per_token=self.chars_per_token,
                    clock=self.clock,
                )
                for chunk in response.iter_bytes():
                    self._check_aborted()
                    for event in parser.feed(chunk):
                        accumulator.add(event)

                self._check_aborted()
                for event in parser.flush():
                    accumulator.add(event)

                if parser.skipped_lines:
                    logger.debug(
                        "Skipped %d malformed event lines for %s",
                        parser.skipped_lines,
                        config.model,
                    )
                return accumulator

        except httpx.TimeoutException as e:
            if self._cancelled.is_set():
                raise StreamError.cancellation() from e
            raise NetworkError("timed out") from e
        except (httpx.TransportError, httpx.StreamError) as e:
            aborted = self._abort_error()
            if aborted is not None:
                raise aborted from e
            if streaming:
                raise StreamError(f"Stream error: {e}") from e
            raise NetworkError(f"Request failed: {e}") from e

    def calculate_cost(
        self,
        model_id: str,
        prompt_tokens: Optional[int],
        completion_tokens: int,
    ) -> float:
        """
        Price a run from cached catalog pricing.

        Falls back to a flat per-1000 completion-token rate when the model
        has no known pricing.
        """
        pricing = self.metadata.get_pricing(model_id) if self.metadata else None

        if pricing is None or pricing.is_empty:
            return (completion_tokens / 1000) * self.fallback_cost_per_1k

        input_cost = 0.0
        if pricing.input is not None:
            input_cost = ((prompt_tokens or 0) / 1000) * pricing.input
        output_cost = 0.0
        if pricing.output is not None:
            output_cost = (completion_tokens / 1000) * pricing.output
        return input_cost + output_cost

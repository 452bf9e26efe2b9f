"""
Incremental parsing of chat-completion event streams.

SSEParser turns arbitrarily split chunks into decoded JSON events.
StreamAccumulator folds those events into output text, first-token time,
token counts and progress.
"""

import codecs
import json
import logging
import time
from typing import Callable, Optional, Union

from routebench.errors import ParseError
from routebench.models import RunProgress
from routebench.utils import estimate_tokens

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

ProgressCallback = Callable[[RunProgress], None]


class SSEParser:
    """
    Carry-buffer line splitter for server-sent events.

    Each fed chunk is appended to the buffer, the buffer is split on
    newlines, every complete line is processed and the trailing fragment
    is kept for the next chunk. Bytes are decoded incrementally so a
    multi-byte character split across chunks is preserved.
    """

    def __init__(self):
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.done = False
        self.skipped_lines = 0

    def feed(self, chunk: Union[bytes, str]) -> list[dict]:
        """
        Consume one chunk and return the events it completed.

        Args:
            chunk: Raw bytes or already decoded text

        Returns:
            Decoded JSON payloads, in stream order
        """
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        events = []
        for line in lines:
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[dict]:
        """Process whatever remains buffered once the stream has ended."""
        tail = self._decoder.decode(b"", final=True)
        remainder = self._buffer + tail
        self._buffer = ""
        if not remainder:
            return []
        event = self._parse_line(remainder)
        return [event] if event is not None else []

    def _parse_line(self, line: str) -> Optional[dict]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None

        data = line[len(DATA_PREFIX):]
        if data == DONE_SENTINEL:
            self.done = True
            return None

        try:
            return self.decode_payload(data)
        except ParseError as e:
            self.skipped_lines += 1
            logger.debug("Skipping event line: %s", e)
            return None

    @staticmethod
    def decode_payload(data: str) -> dict:
        """Decode one event payload, raising ParseError on bad JSON."""
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise ParseError(f"malformed event payload: {e}", line=data) from e
        if not isinstance(payload, dict):
            raise ParseError("event payload is not an object", line=data)
        return payload


def _usage_count(usage: dict, key: str) -> Optional[int]:
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _delta_content(event: dict) -> Optional[str]:
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        return None
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) and content else None


class StreamAccumulator:
    """
    Folds parsed events into the measurements of one run.

    Authoritative usage counts overwrite the character heuristic as soon
    as they arrive; the heuristic keeps counting only while no usage
    completion count has been seen.
    """

    def __init__(
        self,
        max_tokens: int,
        start_time: float,
        on_progress: Optional[ProgressCallback] = None,
        chars_per_token: int = 4,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.max_tokens = max(1, max_tokens)
        self.start_time = start_time
        self.on_progress = on_progress
        self.chars_per_token = chars_per_token
        self.clock = clock

        self.output_parts: list[str] = []
        self.first_token_time: Optional[float] = None
        self.estimated_tokens = 0
        self.usage_completion_tokens: Optional[int] = None
        self.usage_prompt_tokens: Optional[int] = None

    @property
    def output(self) -> str:
        return "".join(self.output_parts)

    @property
    def completion_tokens(self) -> int:
        if self.usage_completion_tokens is not None:
            return self.usage_completion_tokens
        return self.estimated_tokens

    @property
    def prompt_tokens(self) -> Optional[int]:
        return self.usage_prompt_tokens

    @property
    def time_to_first_token(self) -> float:
        if self.first_token_time is None:
            return 0.0
        return self.first_token_time - self.start_time

    def progress_percent(self) -> float:
        """Interpolate 30..90 over estimated/requested tokens, capped at 99."""
        return min(30 + (self.estimated_tokens / self.max_tokens) * 60, 99)

    def add(self, event: dict) -> None:
        """Apply one parsed event."""
        usage = event.get("usage")
        if isinstance(usage, dict):
            completion = _usage_count(usage, "completion_tokens")
            if completion is not None:
                self.usage_completion_tokens = completion
            prompt = _usage_count(usage, "prompt_tokens")
            if prompt is not None:
                self.usage_prompt_tokens = prompt

        content = _delta_content(event)
        if content is None:
            return

        if self.first_token_time is None:
            self.first_token_time = self.clock()
        self.output_parts.append(content)

        if self.usage_completion_tokens is None:
            self.estimated_tokens += estimate_tokens(content, self.chars_per_token)

        if self.on_progress is not None:
            self.on_progress(RunProgress(
                percent=self.progress_percent(),
                message=f"Generating... ~{self.completion_tokens} tokens",
            ))

"""
Tests for the incremental event-stream parser and accumulator.
"""

import pytest

from routebench.errors import ParseError
from routebench.streaming import SSEParser, StreamAccumulator

from conftest import FakeClock, content_event, sse, usage_event


class TestSSEParser:
    """Tests for SSEParser."""

    def test_single_line(self):
        """A complete frame yields one event."""
        parser = SSEParser()
        events = parser.feed(sse(content_event("hi")))
        assert events == [content_event("hi")]

    def test_line_split_across_chunks(self):
        """A frame split at an arbitrary byte boundary parses exactly once."""
        frame = sse(content_event("hello world"))
        for cut in range(1, len(frame)):
            parser = SSEParser()
            events = parser.feed(frame[:cut]) + parser.feed(frame[cut:])
            assert events == [content_event("hello world")], f"cut at {cut}"

    def test_multibyte_character_split(self):
        """A UTF-8 character split between chunks survives decoding."""
        frame = sse(content_event("café"))
        cut = frame.index("é".encode("utf-8")) + 1
        parser = SSEParser()
        events = parser.feed(frame[:cut]) + parser.feed(frame[cut:])
        assert events[0]["choices"][0]["delta"]["content"] == "café"

    def test_done_sentinel_ignored(self):
        """[DONE] ends the stream without producing an event."""
        parser = SSEParser()
        assert parser.feed(b"data: [DONE]\n\n") == []
        assert parser.done

    def test_malformed_json_skipped(self):
        """A bad payload is skipped and the following line still parses."""
        parser = SSEParser()
        events = parser.feed(b"data: {not json}\n" + sse(content_event("ok")))
        assert events == [content_event("ok")]
        assert parser.skipped_lines == 1

    def test_non_data_lines_ignored(self):
        """Comments and keep-alives are not counted as malformed."""
        parser = SSEParser()
        events = parser.feed(b": keep-alive\n\nevent: ping\n" + sse(content_event("x")))
        assert events == [content_event("x")]
        assert parser.skipped_lines == 0

    def test_crlf_line_endings(self):
        """Carriage returns before the newline are stripped."""
        parser = SSEParser()
        events = parser.feed(b'data: {"a": 1}\r\n\r\n')
        assert events == [{"a": 1}]

    def test_flush_trailing_fragment(self):
        """A final line without a newline is parsed on flush."""
        parser = SSEParser()
        assert parser.feed(b'data: {"a": 1}') == []
        assert parser.flush() == [{"a": 1}]
        assert parser.flush() == []

    def test_decode_payload_rejects_non_object(self):
        """Only JSON objects are events."""
        with pytest.raises(ParseError):
            SSEParser.decode_payload("[1, 2]")


class TestStreamAccumulator:
    """Tests for StreamAccumulator."""

    def test_usage_overrides_heuristic(self):
        """Authoritative usage replaces the character estimate."""
        acc = StreamAccumulator(max_tokens=512, start_time=0.0, clock=FakeClock(0.1))
        for _ in range(10):
            acc.add(content_event("x" * 16))
        assert acc.completion_tokens == 40

        acc.add(usage_event(50, prompt_tokens=12))
        assert acc.completion_tokens == 50
        assert acc.prompt_tokens == 12

    def test_heuristic_stops_after_usage(self):
        """Content after a usage event does not add estimated tokens."""
        acc = StreamAccumulator(max_tokens=512, start_time=0.0, clock=FakeClock(0.1))
        acc.add(usage_event(7))
        acc.add(content_event("x" * 40))
        assert acc.estimated_tokens == 0
        assert acc.completion_tokens == 7

    def test_heuristic_uses_ceiling(self):
        """Five characters count as two tokens."""
        acc = StreamAccumulator(max_tokens=512, start_time=0.0, clock=FakeClock(0.1))
        acc.add(content_event("abcde"))
        assert acc.completion_tokens == 2

    def test_first_token_time(self):
        """Time to first token is measured at the first content fragment."""
        acc = StreamAccumulator(max_tokens=512, start_time=1.0, clock=FakeClock(2.5, 9.0))
        acc.add({"choices": [{"delta": {"role": "assistant"}}]})
        assert acc.time_to_first_token == 0.0

        acc.add(content_event("a"))
        acc.add(content_event("b"))
        assert acc.time_to_first_token == pytest.approx(1.5)
        assert acc.output == "ab"

    def test_progress_interpolation(self):
        """Progress moves from 30% towards 90% with estimated tokens."""
        updates = []
        acc = StreamAccumulator(
            max_tokens=100,
            start_time=0.0,
            on_progress=updates.append,
            clock=FakeClock(0.1),
        )
        acc.add(content_event("abcd" * 5))
        assert updates[-1].percent == pytest.approx(33.0)
        assert updates[-1].message == "Generating... ~5 tokens"

    def test_progress_clamped(self):
        """Progress never reaches 100 before completion."""
        updates = []
        acc = StreamAccumulator(
            max_tokens=1,
            start_time=0.0,
            on_progress=updates.append,
            clock=FakeClock(0.1),
        )
        acc.add(content_event("x" * 400))
        assert updates[-1].percent == 99

    def test_boolean_usage_ignored(self):
        """Non-numeric usage counts are not authoritative."""
        acc = StreamAccumulator(max_tokens=512, start_time=0.0, clock=FakeClock(0.1))
        acc.add({"usage": {"completion_tokens": True}})
        acc.add(content_event("abcd"))
        assert acc.completion_tokens == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

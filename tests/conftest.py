import json

import pytest

from tributary.context import StreamingContext
from tributary.provider import ModelProvider
from tributary.tools import tool


# ---------------------------------------------------------------------------
# Chunk builders (mirror the Chat Completions streaming shape)
# ---------------------------------------------------------------------------

def content_chunk(text: str, finish_reason: str | None = None) -> dict:
    return {"choices": [{"delta": {"content": text}, "finish_reason": finish_reason}]}


def finish_chunk(finish_reason: str = "stop") -> dict:
    return {"choices": [{"delta": {}, "finish_reason": finish_reason}]}


def usage_chunk(prompt: int, completion: int) -> dict:
    return {
        "choices": [],
        "usage": {"prompt_tokens": prompt, "completion_tokens": completion},
    }


def tool_start_chunk(index: int, call_id: str, name: str, arguments: str = "") -> dict:
    return {"choices": [{"delta": {"tool_calls": [{
        "index": index,
        "id": call_id,
        "function": {"name": name, "arguments": arguments},
    }]}, "finish_reason": None}]}


def tool_delta_chunk(index: int, arguments: str) -> dict:
    return {"choices": [{"delta": {"tool_calls": [{
        "index": index,
        "function": {"arguments": arguments},
    }]}, "finish_reason": None}]}


def make_text_stream(*texts: str) -> list[dict]:
    """A provider response with text only."""
    return [content_chunk(t) for t in texts] + [finish_chunk("stop")]


def make_tool_call_stream(calls: list[tuple[str, str, dict | list | str]]) -> list[dict]:
    """A provider response requesting tool calls.

    Each item in *calls* is ``(call_id, name, args)``.  Arguments are
    JSON-encoded (strings are sent verbatim) and split over two delta
    chunks.
    """
    chunks = []
    for index, (call_id, name, args) in enumerate(calls):
        raw = args if isinstance(args, str) else json.dumps(args)
        half = len(raw) // 2
        chunks.append(tool_start_chunk(index, call_id, name))
        chunks.append(tool_delta_chunk(index, raw[:half]))
        chunks.append(tool_delta_chunk(index, raw[half:]))
    chunks.append(finish_chunk("tool_calls"))
    return chunks


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockStream:
    """Async iterator over queued chunks that records whether it was closed."""

    def __init__(self, chunks: list):
        self._chunks = list(chunks)
        self.closed = False
        self.consumed = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed or not self._chunks:
            raise StopAsyncIteration
        self.consumed += 1
        return self._chunks.pop(0)

    async def aclose(self):
        self.closed = True


class MockProvider(ModelProvider):
    """Provider that replays pre-queued streams. No network calls."""

    name = "mock"

    def __init__(self):
        self.streams: list[list] = []
        self.call_log: list[dict] = []
        self.opened: list[MockStream] = []

    async def create_stream(self, context: StreamingContext):
        self.call_log.append({
            "thread": list(context.thread),
            "tools": context.tools,
            "tool_choice": context.opts.tool_choice,
        })
        stream = MockStream(self.streams.pop(0))
        self.opened.append(stream)
        return stream


# ---------------------------------------------------------------------------
# Sample tools
# ---------------------------------------------------------------------------

@tool(parameters={
    "type": "object",
    "properties": {"city": {"type": "string"}},
    "required": ["city"],
})
def lookup(city: str):
    """Look up the population of a city."""
    return {"city": city, "population": 42}


@tool
def sum_numbers(values: list):
    """Sum a list of numbers."""
    return sum(values)


@tool
def echo(text: str):
    """Echo back the input."""
    return text


@pytest.fixture
def mock_provider():
    return MockProvider()

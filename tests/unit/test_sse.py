import json

import pytest

from tributary.engine import Engine
from tributary.events import ContentEvent, ToolCallInfo, ToolEvent, ToolState, UsageEvent
from tributary.message import Message, MessageRole
from tributary.sse import encode_event, sse_generator
from tributary.usage import Usage

from tests.conftest import MockProvider, echo, make_text_stream, make_tool_call_stream


def _data(frame: str) -> dict:
    lines = frame.strip().split("\n")
    return json.loads(lines[1][len("data: "):])


def test_content_event_frame():
    frame = encode_event(ContentEvent(text="hi"))
    assert frame.startswith("event: ContentEvent\n")
    assert frame.endswith("\n\n")
    assert _data(frame) == {"text": "hi"}


def test_tool_event_frame_serializes_enum_and_bytes():
    event = ToolEvent(
        id="c1", name="lookup", state=ToolState.COMPLETED,
        call=ToolCallInfo(params={"city": "Oslo"}, result={"population": 42}),
        metadata={"thought_signature": b"\x00\x01"}, done=True,
    )
    data = _data(encode_event(event))
    assert data["state"] == "completed"
    assert data["call"] == {"params": {"city": "Oslo"}, "result": {"population": 42}}
    assert data["metadata"] == {"thought_signature": "AAE="}


def test_usage_event_frame():
    data = _data(encode_event(UsageEvent(usage=Usage(prompt_tokens=3))))
    assert data["usage"]["prompt_tokens"] == 3
    assert data["usage"]["prompt_tokens_details"]["cached_tokens"] == 0


@pytest.mark.asyncio
async def test_sse_generator_over_exchange():
    provider = MockProvider()
    provider.streams = [
        make_tool_call_stream([("c1", "echo", {"text": "hi"})]),
        make_text_stream("Done"),
    ]
    engine = Engine(provider, "m", tools=[echo])

    frames = [f async for f in sse_generator(
        engine.generate([Message(role=MessageRole.USER, content="go")])
    )]

    names = [f.split("\n")[0] for f in frames]
    assert names == [
        "event: ToolEvent",
        "event: ToolEvent",
        "event: ToolEvent",
        "event: ContentEvent",
        "event: DoneEvent",
        "event: done",
    ]
    done = _data(frames[-2])
    assert done["result"]["content"] == "Done"
    assert done["result"]["status"] == "completed"
    assert done["result"]["tool_history"][0]["result"] == "hi"

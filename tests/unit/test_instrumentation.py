"""Unit tests for the instrumentation module.

OTel interactions are mocked; ``opentelemetry-api`` is a test
dependency so ``SpanKind`` / ``StatusCode`` can be asserted directly.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.trace import SpanKind, StatusCode

import tributary.instrumentation as inst
from tributary.engine import Engine
from tributary.instrumentation import (
    completion_span,
    exchange_span,
    record_error,
    record_usage,
    tool_span,
    uninstrument,
)
from tributary.message import Message, MessageRole
from tributary.usage import CompletionTokensDetails, PromptTokensDetails, Usage

from tests.conftest import MockProvider, echo, make_text_stream, make_tool_call_stream


@pytest.fixture(autouse=True)
def _reset_tracer():
    inst._tracer = None
    yield
    inst._tracer = None


def _mock_tracer():
    span = MagicMock()
    tracer = MagicMock()
    tracer.start_as_current_span.return_value.__enter__ = MagicMock(return_value=span)
    tracer.start_as_current_span.return_value.__exit__ = MagicMock(return_value=False)
    return tracer, span


# -------------------------------------------------------------------
# instrument() / uninstrument()
# -------------------------------------------------------------------


class TestInstrument:
    def test_raises_without_otel_installed(self):
        with patch("importlib.util.find_spec", return_value=None):
            with pytest.raises(ImportError, match=r"tributary\[otel\]"):
                inst.instrument()

    def _patches(self, mock_trace):
        return (
            patch("importlib.util.find_spec", return_value=MagicMock()),
            patch.dict("sys.modules", {
                "opentelemetry": MagicMock(trace=mock_trace),
                "opentelemetry.trace": mock_trace,
            }),
        )

    def test_sets_global_tracer(self):
        tracer = MagicMock()
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = tracer
        mock_trace.NoOpTracer = type("NoOpTracer", (), {})

        p1, p2 = self._patches(mock_trace)
        with p1, p2:
            inst.instrument()

        assert inst._tracer is tracer
        mock_trace.get_tracer.assert_called_once_with("tributary")

    def test_logs_message_for_noop_tracer(self, caplog):
        NoOpTracer = type("NoOpTracer", (), {})
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = NoOpTracer()
        mock_trace.NoOpTracer = NoOpTracer

        p1, p2 = self._patches(mock_trace)
        with p1, p2:
            with caplog.at_level(logging.INFO, logger="tributary.instrumentation"):
                inst.instrument()

        assert any("No TracerProvider configured" in r.message for r in caplog.records)

    def test_uninstrument_clears_tracer(self):
        inst._tracer = MagicMock()
        uninstrument()
        assert inst._tracer is None


# -------------------------------------------------------------------
# Span helpers
# -------------------------------------------------------------------


class TestSpans:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "span_fn,args",
        [
            (exchange_span, ("openai", "m")),
            (completion_span, ("openai", "m")),
            (tool_span, ("t", "call_1")),
        ],
        ids=["exchange_span", "completion_span", "tool_span"],
    )
    async def test_span_yields_none_without_tracer(self, span_fn, args):
        async with span_fn(*args) as s:
            assert s is None

    @pytest.mark.asyncio
    async def test_completion_span_attributes(self):
        tracer, span = _mock_tracer()
        inst._tracer = tracer

        async with completion_span("anthropic", "claude", 2) as s:
            assert s is span

        tracer.start_as_current_span.assert_called_once_with(
            "chat claude",
            kind=SpanKind.CLIENT,
            attributes={
                "gen_ai.operation.name": "chat",
                "gen_ai.provider.name": "anthropic",
                "gen_ai.request.model": "claude",
                "tributary.round": 2,
            },
        )

    @pytest.mark.asyncio
    async def test_spans_cover_an_exchange(self):
        tracer, span = _mock_tracer()
        inst._tracer = tracer
        provider = MockProvider()
        provider.streams = [
            make_tool_call_stream([("c1", "echo", {"text": "hi"})]),
            make_text_stream("done"),
        ]

        await Engine(provider, "m", tools=[echo]).complete(
            [Message(role=MessageRole.USER, content="go")]
        )

        names = [c.args[0] for c in tracer.start_as_current_span.call_args_list]
        assert names == ["invoke_exchange m", "chat m", "execute_tool echo", "chat m"]
        span.set_attribute.assert_any_call("gen_ai.response.model", "m")
        span.set_attribute.assert_any_call("tributary.rounds", 2)


# -------------------------------------------------------------------
# record_usage / record_error
# -------------------------------------------------------------------


class TestRecordUsage:
    def test_noop_on_none_span(self):
        record_usage(None, Usage(prompt_tokens=1))

    def test_sets_token_counts(self):
        span = MagicMock()
        record_usage(span, Usage(prompt_tokens=100, completion_tokens=50), response_model="gpt-4o")

        span.set_attribute.assert_any_call("gen_ai.usage.input_tokens", 100)
        span.set_attribute.assert_any_call("gen_ai.usage.output_tokens", 50)
        span.set_attribute.assert_any_call("gen_ai.response.model", "gpt-4o")

    def test_sets_cached_reasoning_and_rounds(self):
        span = MagicMock()
        usage = Usage(
            prompt_tokens=10,
            completion_tokens=5,
            prompt_tokens_details=PromptTokensDetails(cached_tokens=4),
            completion_tokens_details=CompletionTokensDetails(reasoning_tokens=3),
        )
        record_usage(span, usage, rounds=2)

        span.set_attribute.assert_any_call("gen_ai.usage.cache_read_input_tokens", 4)
        span.set_attribute.assert_any_call("gen_ai.usage.reasoning_tokens", 3)
        span.set_attribute.assert_any_call("tributary.rounds", 2)

    def test_handles_missing_token_fields(self):
        span = MagicMock()
        record_usage(span, MagicMock(spec=[]))
        span.set_attribute.assert_not_called()


class TestRecordError:
    def test_sets_status_and_records_exception(self):
        span = MagicMock()
        exc = RuntimeError("boom")
        record_error(span, exc)

        span.set_status.assert_called_once_with(StatusCode.ERROR, "boom")
        span.record_exception.assert_called_once_with(exc)
        span.set_attribute.assert_called_once_with("error.type", "RuntimeError")

    def test_noop_on_none_span(self):
        record_error(None, RuntimeError("boom"))

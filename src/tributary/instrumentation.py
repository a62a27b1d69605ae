"""Optional OpenTelemetry instrumentation for tributary.

Call ``tributary.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; the engine
works identically without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "tributary") -> None:
    """Enable OpenTelemetry tracing for all tributary operations.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install tributary[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())

        import tributary
        tributary.instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install tributary[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured, spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("Tributary instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def exchange_span(system: str, model: str):
    """Wrap one Engine.generate() exchange in an ``invoke_exchange`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"invoke_exchange {model}",
        attributes={
            "gen_ai.operation.name": "invoke_exchange",
            "gen_ai.provider.name": system,
            "gen_ai.request.model": model,
        },
    ) as span:
        yield span


@asynccontextmanager
async def completion_span(system: str, model: str, round: int = 1):
    """Wrap opening one provider stream in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.provider.name": system,
            "gen_ai.request.model": model,
            "tributary.round": round,
        },
    ) as span:
        yield span


@asynccontextmanager
async def tool_span(tool_name: str, call_id: str):
    """Wrap a tool execution in an ``execute_tool`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"execute_tool {tool_name}",
        attributes={
            "gen_ai.operation.name": "execute_tool",
            "gen_ai.tool.name": tool_name,
            "gen_ai.tool.call.id": call_id,
        },
    ) as span:
        yield span


def record_usage(
    span,
    usage,
    response_model: str | None = None,
    rounds: int | None = None,
):
    """Set exchange totals on a span: tokens summed over rounds, model, round count."""
    if span is None or usage is None:
        return
    if getattr(usage, "prompt_tokens", None) is not None:
        span.set_attribute("gen_ai.usage.input_tokens", usage.prompt_tokens)
    if getattr(usage, "completion_tokens", None) is not None:
        span.set_attribute("gen_ai.usage.output_tokens", usage.completion_tokens)
    details = getattr(usage, "prompt_tokens_details", None)
    if details is not None and details.cached_tokens:
        span.set_attribute("gen_ai.usage.cache_read_input_tokens", details.cached_tokens)
    details = getattr(usage, "completion_tokens_details", None)
    if details is not None and details.reasoning_tokens:
        span.set_attribute("gen_ai.usage.reasoning_tokens", details.reasoning_tokens)
    if response_model:
        span.set_attribute("gen_ai.response.model", response_model)
    if rounds is not None:
        span.set_attribute("tributary.rounds", rounds)


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)

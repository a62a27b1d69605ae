import logging
import time
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from tributary.cancellation import CancellationToken
from tributary.context import StreamingContext, ToolHistoryEntry
from tributary.errors import ToolAbortError
from tributary.events import (
    ContentEvent,
    ContinueEvent,
    DoneEvent,
    ReasoningEvent,
    StreamEvent,
    ToolAbortEvent,
    ToolEvent,
    ToolState,
    UsageEvent,
)
from tributary.executor import ToolExecutor
from tributary.hooks import (
    AfterResponsePayload,
    BeforeRequestPayload,
    ContentChunkPayload,
    HookName,
    HookRegistry,
)
from tributary.instrumentation import (
    completion_span,
    exchange_span,
    record_error,
    record_usage,
)
from tributary.message import Message, MessageRole
from tributary.normalizers import normalizer_for
from tributary.options import CompletionOptions
from tributary.provider import ModelProvider
from tributary.rounds import RoundCallbacks, RoundController
from tributary.streaming import (
    ContentDelta,
    ReasoningDelta,
    RoundEnd,
    ToolCallDelta,
    ToolCallStart,
    UsageSnapshot,
)
from tributary.tools import Tool, ToolRegistry
from tributary.usage import Usage

logger = logging.getLogger(__name__)


@dataclass
class Response:
    """The result of a single exchange.

    ``status`` is ``"completed"``, ``"canceled"`` or ``"aborted"``.
    """

    content: str = ""
    reasoning: str = ""
    tool_history: list[ToolHistoryEntry] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    status: str = "completed"

    @property
    def message(self) -> Message:
        return Message(role=MessageRole.ASSISTANT, content=self.content)


class Engine:
    """Streams a model response and runs the tool calls it requests.

    One exchange may span several provider requests: each response that
    ends with tool calls is followed by a round of tool execution and a
    new request carrying the results.  Tools run sequentially, in the
    order the model requested them.

    ``complete()`` drains ``generate()``.  ``generate()`` is the
    streaming entry point.

    Args:
        provider: Transport and thread format for the model.
        model: Default model name.
        tools: Tools the model may call.
    """

    def __init__(
        self,
        provider: ModelProvider,
        model: str,
        tools: ToolRegistry | Iterable[Tool] | None = None,
    ):
        self.provider = provider
        self.model = model
        self.tools = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        self.hooks = HookRegistry()
        self.normalizer_cls = normalizer_for(provider.kind)
        self.rounds = RoundController(ToolExecutor(self.tools), self.hooks)

    def add_hook(self, name: HookName | str, hook: Callable[[Any], Any]) -> Callable[[], None]:
        """Register a lifecycle hook.  Returns a function that removes it."""
        return self.hooks.add(name, hook)

    async def complete(
        self,
        messages: list[Message],
        model: str | None = None,
        opts: CompletionOptions | None = None,
    ) -> Response:
        """Run an exchange to the end and return the aggregated response.

        Raises:
            ToolAbortError: A validator aborted the exchange.
        """
        result: Response | None = None
        abort: ToolAbortEvent | None = None
        async for event in self.generate(messages, model=model, opts=opts):
            if isinstance(event, ToolAbortEvent):
                abort = event
            elif isinstance(event, DoneEvent):
                result = event.result
        if abort is not None:
            raise ToolAbortError(abort)
        if result is None:
            raise RuntimeError("generate() ended without emitting DoneEvent")
        return result

    async def generate(
        self,
        messages: list[Message],
        model: str | None = None,
        opts: CompletionOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Run an exchange, yielding events as it proceeds.

        The last event is always a :class:`DoneEvent`.  Transport errors
        and :class:`~tributary.errors.ToolArgumentsError` propagate.
        """
        model = model or self.model
        opts = (opts or CompletionOptions()).model_copy()
        if opts.tool_choice is not None:
            opts.tool_choice = opts.tool_choice.model_copy()
        cancel_token = CancellationToken.linked(opts.cancel_token)
        try:
            async for event in self._exchange(messages, model, opts, cancel_token):
                yield event
        finally:
            cancel_token.detach()

    async def _exchange(
        self,
        messages: list[Message],
        model: str,
        opts: CompletionOptions,
        cancel_token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        response = Response()

        await self.hooks.run(HookName.BEFORE_REQUEST, BeforeRequestPayload(
            model=model, messages=list(messages), opts=opts,
            cancel_token=cancel_token,
        ))
        if cancel_token.canceled:
            logger.info("Exchange canceled before the first request")
            response.status = "canceled"
            yield DoneEvent(result=response)
            return

        context = StreamingContext(model=model, opts=opts, cancel_token=cancel_token)
        self.provider.prepare(context, messages)
        if opts.tools and len(self.tools):
            context.tools = self.provider.tool_schemas(self.tools)
        normalizer = self.normalizer_cls()
        callbacks = RoundCallbacks(
            format_tool_call=self.provider.format_tool_call,
            format_tool_result=self.provider.format_tool_result,
            create_stream=self._open_stream,
        )
        tokens = 0
        aborted = False

        async with exchange_span(self.provider.name, model) as span:
            stream = None
            try:
                stream = await self._open_stream(context)
                while stream is not None:
                    context.current_round += 1
                    normalizer.reset()
                    next_stream = None
                    async for chunk in stream:
                        for event in normalizer.normalize(chunk, context):
                            if cancel_token.canceled:
                                break
                            if isinstance(event, ToolCallStart):
                                tc = context.accumulator.apply_start(event)
                                if tc is not None:
                                    yield ToolEvent(
                                        id=tc.id, name=tc.name,
                                        state=ToolState.PREPARING,
                                        status=self.tools.describe_preparation(tc.name),
                                        metadata=tc.metadata,
                                    )
                            elif isinstance(event, ToolCallDelta):
                                context.accumulator.apply_delta(event)
                            elif isinstance(event, ContentDelta):
                                if not event.text:
                                    continue
                                response.content += event.text
                                tokens += 1
                                yield ContentEvent(text=event.text)
                                await self.hooks.run(HookName.ON_CONTENT_CHUNK, ContentChunkPayload(
                                    model=model, text=event.text,
                                    accumulated_content=response.content,
                                    accumulated_tokens=tokens,
                                    cancel_token=cancel_token,
                                ))
                            elif isinstance(event, ReasoningDelta):
                                if not event.text:
                                    continue
                                response.reasoning += event.text
                                yield ReasoningEvent(text=event.text)
                            elif isinstance(event, UsageSnapshot):
                                context.usage = context.usage + event.usage
                                yield UsageEvent(usage=context.usage)
                            elif isinstance(event, RoundEnd):
                                calls = context.accumulator.drain()
                                if not calls:
                                    continue
                                async for item in self.rounds.run(calls, context, callbacks):
                                    if isinstance(item, ContinueEvent):
                                        next_stream = item.stream
                                        continue
                                    if isinstance(item, ToolAbortEvent):
                                        aborted = True
                                    yield item
                            if aborted:
                                break
                        if cancel_token.canceled or aborted:
                            break
                    if cancel_token.canceled or aborted:
                        for tc in context.accumulator.drain():
                            yield ToolEvent(
                                id=tc.id, name=tc.name, state=ToolState.CANCELED,
                                metadata=tc.metadata, done=True,
                            )
                        await self.provider.stop(stream)
                        await self.provider.stop(next_stream)
                        break
                    stream = next_stream
            except Exception as e:
                record_error(span, e)
                if stream is not None:
                    await self.provider.stop(stream)
                raise
            record_usage(span, context.usage, response_model=model, rounds=context.current_round)

        response.tool_history = context.tool_history
        response.usage = context.usage
        if aborted:
            logger.info("Exchange aborted by tool validation")
            response.status = "aborted"
        elif cancel_token.canceled:
            logger.info("Exchange canceled")
            response.status = "canceled"
        else:
            await self.hooks.run(HookName.AFTER_RESPONSE, AfterResponsePayload(
                model=model, messages=list(messages),
                response=response.message,
                tool_history=context.tool_history,
                usage=context.usage,
                cancel_token=cancel_token,
            ))
        yield DoneEvent(result=response)

    async def _open_stream(self, context: StreamingContext):
        context.start_time = time.monotonic()
        logger.info(
            f"[{self.provider.name}] prompting model {context.model} "
            f"(round {context.current_round + 1})"
        )
        async with completion_span(
            self.provider.name, context.model, context.current_round + 1,
        ) as span:
            try:
                return await self.provider.create_stream(context)
            except Exception as e:
                record_error(span, e)
                raise

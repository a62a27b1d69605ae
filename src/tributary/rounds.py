"""Sequential execution of one round of tool calls.

The :class:`RoundController` takes the tool calls accumulated from one
provider response, gates each through the validator, runs it, records
it in the tool history, rewrites the thread, and opens the next
provider stream.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tributary.context import StreamingContext, ToolHistoryEntry
from tributary.errors import ToolArgumentsError
from tributary.events import (
    ContinueEvent,
    StreamEvent,
    ToolAbortEvent,
    ToolCallInfo,
    ToolEvent,
    ToolState,
)
from tributary.executor import ToolExecutor
from tributary.hooks import HookName, HookRegistry, ToolCallsResponsePayload
from tributary.streaming import ToolCall
from tributary.validation import ValidationDecision, ValidationResponse

logger = logging.getLogger(__name__)


@dataclass
class RoundCallbacks:
    """Provider-specific pieces of a tool round.

    Args:
        format_tool_call: ``(tool_call, args)`` to the native message
            that records the model's request.
        format_tool_result: ``(result, tool_call, args)`` to the native
            message that carries the result back.
        create_stream: Opens the next provider stream for the context.
    """

    format_tool_call: Callable[[ToolCall, Any], Any]
    format_tool_result: Callable[[Any, ToolCall, Any], Any]
    create_stream: Callable[[StreamingContext], Awaitable[Any]]


def parse_tool_arguments(tool_call: ToolCall) -> Any:
    """Parse a call's accumulated argument string.  Empty means ``{}``."""
    if not tool_call.arguments.strip():
        return {}
    try:
        return json.loads(tool_call.arguments)
    except json.JSONDecodeError as e:
        raise ToolArgumentsError(tool_call) from e


class RoundController:
    def __init__(self, executor: ToolExecutor, hooks: HookRegistry | None = None):
        self.executor = executor
        self.hooks = hooks or HookRegistry()

    async def run(
        self,
        calls: list[ToolCall],
        context: StreamingContext,
        callbacks: RoundCallbacks,
    ) -> AsyncIterator[StreamEvent]:
        """Execute *calls* in order, yielding lifecycle events.

        Ends with a :class:`ContinueEvent` holding the next provider
        stream, unless the exchange was canceled or aborted.  Raises
        :class:`ToolArgumentsError` on malformed arguments.
        """
        exec_context = context.execution_context()
        executed: list[tuple[ToolCall, ToolHistoryEntry]] = []

        for tc in calls:
            if context.cancel_token.canceled:
                yield ToolEvent(
                    id=tc.id, name=tc.name, state=ToolState.CANCELED,
                    metadata=tc.metadata, done=True,
                )
                continue

            args = parse_tool_arguments(tc)

            validator = context.opts.tool_validator
            if validator is not None:
                verdict = ValidationResponse.coerce(
                    await validator(exec_context, tc.name, args)
                )
                if verdict.decision == ValidationDecision.ABORT:
                    logger.warning(f"Validator aborted the exchange at tool {tc.name}")
                    yield ToolAbortEvent(name=tc.name, params=args, reason=verdict)
                    return
                if verdict.decision == ValidationDecision.DENY:
                    logger.warning(f"Validator denied tool {tc.name}")
                    result = {"error": verdict.denial_message}
                    tc.result = result
                    yield ToolEvent(
                        id=tc.id, name=tc.name, state=ToolState.CANCELED,
                        call=ToolCallInfo(params=args, result=result),
                        metadata=tc.metadata, done=True,
                    )
                    executed.append((tc, self._record(tc, args, result, context)))
                    continue

            terminal: ToolEvent | None = None
            async for event in self.executor.execute(tc, args, exec_context):
                if event.done:
                    terminal = event
                yield event
            if terminal is None or terminal.state == ToolState.CANCELED:
                continue
            executed.append((tc, self._record(tc, args, terminal.call.result, context)))

        if executed and not context.cancel_token.canceled:
            await self.hooks.run(
                HookName.BEFORE_TOOL_CALLS_RESPONSE,
                ToolCallsResponsePayload(
                    model=context.model,
                    round=context.current_round,
                    entries=[entry for _, entry in executed],
                    cancel_token=context.cancel_token,
                ),
            )

        for tc, entry in executed:
            context.thread.append(callbacks.format_tool_call(tc, entry.args))
            context.thread.append(callbacks.format_tool_result(entry.result, tc, entry.args))

        if context.cancel_token.canceled:
            logger.info("Exchange canceled during tool round")
            return

        if context.opts.tool_choice is not None and context.opts.tool_choice.forced:
            context.opts.tool_choice = None

        stream = await callbacks.create_stream(context)
        yield ContinueEvent(stream=stream)

    @staticmethod
    def _record(
        tc: ToolCall, args: Any, result: Any, context: StreamingContext,
    ) -> ToolHistoryEntry:
        entry = ToolHistoryEntry(
            id=tc.id, name=tc.name, args=args, result=result,
            round=context.current_round,
        )
        context.tool_history.append(entry)
        return entry

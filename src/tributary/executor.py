import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from tributary.context import ToolExecutionContext
from tributary.events import ToolCallInfo, ToolEvent, ToolState
from tributary.instrumentation import record_error, tool_span
from tributary.streaming import ToolCall
from tributary.tools import ToolRegistry, ToolResult

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Runs one tool call and reports its lifecycle as :class:`ToolEvent`s.

    The last event yielded is terminal (``done=True``) and its
    ``call.result`` is the value to send back to the model:

    * unknown tool: ``completed`` with an ``{"error": ...}`` result
    * canceled before start: ``canceled``, the tool is not invoked
    * handler raised: ``error`` with an ``{"error": ...}`` result
    * otherwise: ``running`` (plus one per status update), then ``completed``
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(
        self, tool_call: ToolCall, args: Any, context: ToolExecutionContext,
    ) -> AsyncIterator[ToolEvent]:
        tool_obj = self.registry.resolve(tool_call.name)
        if tool_obj is None:
            logger.warning(f"Tool not found: {tool_call.name}")
            result = {
                "error": f"Tool {tool_call.name} does not exist. "
                "Check the tool list and try again."
            }
            tool_call.result = result
            yield self._event(tool_call, ToolState.COMPLETED, args, result, done=True)
            return

        if context.cancel_token.canceled:
            yield self._event(tool_call, ToolState.CANCELED, args, done=True)
            return

        yield self._event(
            tool_call, ToolState.RUNNING, args,
            status=tool_obj.describe_running(args),
        )

        logger.info(f"Calling {tool_call.name} with {args}")
        result = None
        async with tool_span(tool_call.name, tool_call.id) as span:
            try:
                async for item in tool_obj.invoke(context, args):
                    if isinstance(item, ToolResult):
                        result = item.value
                    else:
                        yield self._event(tool_call, ToolState.RUNNING, args, status=item)
            except Exception as e:
                logger.error(f"Tool {tool_call.name} raised: {e}")
                record_error(span, e)
                result = {"error": f"Error calling {tool_call.name}: {e}"}
                tool_call.result = result
                yield self._event(tool_call, ToolState.ERROR, args, result, done=True)
                return

        logger.info(f"Tool {tool_call.name} => {_preview(result)}")
        tool_call.result = result
        yield self._event(tool_call, ToolState.COMPLETED, args, result, done=True)

    @staticmethod
    def _event(
        tool_call: ToolCall, state: ToolState, args: Any, result: Any = None,
        status: str | None = None, done: bool = False,
    ) -> ToolEvent:
        return ToolEvent(
            id=tool_call.id,
            name=tool_call.name,
            state=state,
            status=status,
            call=ToolCallInfo(params=args, result=result),
            metadata=tool_call.metadata,
            done=done,
        )


def _preview(result: Any) -> str:
    try:
        text = json.dumps(result, default=str)
    except (TypeError, ValueError):
        text = repr(result)
    return text[:128]

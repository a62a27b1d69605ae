"""Errors raised by the engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tributary.events import ToolAbortEvent
    from tributary.streaming import ToolCall


class TributaryError(Exception):
    """Base class for engine errors."""


class ToolArgumentsError(TributaryError):
    """A tool call's accumulated arguments are not valid JSON.

    The round is abandoned and the tool is never executed.
    """

    def __init__(self, tool_call: ToolCall):
        self.tool_call = tool_call
        super().__init__(
            f"Tool call {tool_call.name} ({tool_call.id}) has invalid JSON "
            f"args: {tool_call.arguments!r}"
        )


class ToolAbortError(TributaryError):
    """A validator aborted the exchange.

    Raised by :meth:`Engine.complete`; the streaming entry point yields
    the :class:`~tributary.events.ToolAbortEvent` instead.
    """

    def __init__(self, event: ToolAbortEvent):
        self.event = event
        super().__init__(f"Tool {event.name} aborted the exchange")

    @property
    def name(self) -> str:
        return self.event.name

    @property
    def params(self):
        return self.event.params

    @property
    def reason(self):
        return self.event.reason

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from tributary.cancellation import CancellationToken
from tributary.options import CompletionOptions
from tributary.streaming import ToolCall, ToolCallAccumulator
from tributary.usage import Usage


@dataclass
class ToolHistoryEntry:
    """One executed tool call.

    ``result`` may be overwritten by a ``before_tool_calls_response``
    hook; the thread is written from this value.
    """

    id: str
    name: str
    args: Any
    result: Any
    round: int


@dataclass
class ToolExecutionContext:
    """Runtime context injected into tools that declare a ``context`` parameter.

    Args:
        model: The model that requested the call.
        cancel_token: The exchange's cancellation token.  Long-running
            tools should check it and stop early.
        round: The round in which the call runs.
    """

    model: str
    cancel_token: CancellationToken
    round: int = 0


@dataclass
class StreamingContext:
    """Mutable state of one exchange.

    ``thread`` is the provider-native message list sent on the next
    request.  ``system`` holds the system prompt for providers that
    take it outside the thread.  ``current_round`` is 1 for the first
    provider request.
    """

    model: str
    opts: CompletionOptions = field(default_factory=CompletionOptions)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    thread: list[Any] = field(default_factory=list)
    system: str | None = None
    tools: list[dict] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    accumulator: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    tool_history: list[ToolHistoryEntry] = field(default_factory=list)
    current_round: int = 0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def tool_calls(self) -> list[ToolCall]:
        return self.accumulator.calls

    def execution_context(self) -> ToolExecutionContext:
        return ToolExecutionContext(
            model=self.model,
            cancel_token=self.cancel_token,
            round=self.current_round,
        )

"""Lifecycle hooks.

Hooks are plain or async callables registered per :class:`HookName`.
They run sequentially in registration order; async hooks are awaited
before the next one starts.  Payloads carry the exchange's
cancellation token so any hook can stop the exchange.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tributary.cancellation import CancellationToken
from tributary.context import ToolHistoryEntry
from tributary.message import Message
from tributary.options import CompletionOptions
from tributary.usage import Usage

logger = logging.getLogger(__name__)


class HookName(str, Enum):
    BEFORE_REQUEST = "before_request"
    ON_CONTENT_CHUNK = "on_content_chunk"
    BEFORE_TOOL_CALLS_RESPONSE = "before_tool_calls_response"
    AFTER_RESPONSE = "after_response"


@dataclass(frozen=True)
class BeforeRequestPayload:
    model: str
    messages: list[Message]
    opts: CompletionOptions
    cancel_token: CancellationToken


@dataclass(frozen=True)
class ContentChunkPayload:
    model: str
    text: str
    accumulated_content: str
    accumulated_tokens: int
    cancel_token: CancellationToken


@dataclass(frozen=True)
class ToolCallsResponsePayload:
    """Sent once per tool round, before results are written to the thread.

    ``entries`` are this round's history entries; setting an entry's
    ``result`` changes what the model sees.
    """

    model: str
    round: int
    entries: list[ToolHistoryEntry]
    cancel_token: CancellationToken


@dataclass(frozen=True)
class AfterResponsePayload:
    model: str
    messages: list[Message]
    response: Message
    tool_history: list[ToolHistoryEntry]
    usage: Usage
    cancel_token: CancellationToken


Hook = Callable[[Any], Any]


@dataclass
class HookRegistry:
    _hooks: dict[HookName, list[Hook]] = field(default_factory=dict)

    def add(self, name: HookName | str, hook: Hook) -> Callable[[], None]:
        """Register *hook* and return a function that removes it."""
        name = HookName(name)
        hooks = self._hooks.setdefault(name, [])
        hooks.append(hook)

        def unsubscribe() -> None:
            if hook in hooks:
                hooks.remove(hook)

        return unsubscribe

    def count(self, name: HookName | str) -> int:
        return len(self._hooks.get(HookName(name), []))

    async def run(self, name: HookName, payload: Any) -> None:
        hooks = list(self._hooks.get(name, []))
        if hooks:
            logger.debug(f"Running {len(hooks)} {name.value} hook(s)")
        for hook in hooks:
            result = hook(payload)
            if inspect.isawaitable(result):
                await result

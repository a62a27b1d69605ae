"""Tool-call validation decisions.

A validator is an async callable ``(context, tool_name, args)`` set on
:class:`~tributary.options.CompletionOptions`.  It is consulted once
per tool call, after the arguments are parsed and before the tool runs.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tributary.context import ToolExecutionContext


class ValidationDecision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    ABORT = "abort"


@dataclass
class ValidationResponse:
    """A validator's verdict plus any caller-defined detail."""

    decision: ValidationDecision
    extra: Any = None

    @classmethod
    def coerce(cls, value: Any) -> ValidationResponse:
        """Accept a response, a bare decision, or its string value."""
        if isinstance(value, ValidationResponse):
            return value
        return cls(decision=ValidationDecision(value))

    @property
    def denial_message(self) -> str:
        if isinstance(self.extra, dict) and self.extra.get("reason"):
            return str(self.extra["reason"])
        if isinstance(self.extra, str) and self.extra:
            return self.extra
        return "Tool execution was denied by the user"


ToolValidator = Callable[
    ["ToolExecutionContext", str, Any], Awaitable["ValidationResponse | str"]
]

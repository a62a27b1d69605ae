"""Canonical events emitted by :meth:`Engine.generate`."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tributary.usage import Usage
from tributary.validation import ValidationResponse


@dataclass
class StreamEvent:
    """Base for all streaming events."""


@dataclass
class ContentEvent(StreamEvent):
    """Token-level text delta from the provider stream."""

    text: str = ""


@dataclass
class ReasoningEvent(StreamEvent):
    """Token-level reasoning delta from the provider stream."""

    text: str = ""


class ToolState(str, Enum):
    PREPARING = "preparing"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELED = "canceled"
    ERROR = "error"


@dataclass
class ToolCallInfo:
    params: Any = None
    result: Any = None


@dataclass
class ToolEvent(StreamEvent):
    """A step in a tool call's lifecycle.

    ``done`` is set on the terminal states (``completed``, ``canceled``,
    ``error``), whose ``call.result`` holds the outcome.
    """

    id: str = ""
    name: str = ""
    state: ToolState = ToolState.PREPARING
    status: str | None = None
    call: ToolCallInfo | None = None
    metadata: dict = field(default_factory=dict)
    done: bool = False


@dataclass
class ToolAbortEvent(StreamEvent):
    """A validator aborted the exchange.  No events follow but ``DoneEvent``."""

    name: str = ""
    params: Any = None
    reason: ValidationResponse | None = None


@dataclass
class UsageEvent(StreamEvent):
    """Running usage total for the exchange."""

    usage: Usage = field(default_factory=Usage)


@dataclass
class DoneEvent(StreamEvent):
    """Always the last event of an exchange; carries the Response."""

    result: Any = None


@dataclass
class ContinueEvent(StreamEvent):
    """Internal: the next provider stream to consume after a tool round."""

    stream: Any = None

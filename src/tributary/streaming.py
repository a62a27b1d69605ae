"""Provider-neutral streaming primitives.

Chunk normalizers translate native provider chunks into the
:data:`NormalizedEvent` variants below.  The
:class:`ToolCallAccumulator` reassembles tool calls whose arguments
arrive in fragments across multiple chunks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from tributary.usage import Usage


@dataclass
class ContentDelta:
    """A fragment of assistant text."""

    text: str = ""


@dataclass
class ReasoningDelta:
    """A fragment of model reasoning ("thinking")."""

    text: str = ""


@dataclass
class UsageSnapshot:
    """Usage for the provider request that produced this stream."""

    usage: Usage = field(default_factory=Usage)


@dataclass
class ToolCallStart:
    """The first sighting of a tool call.

    ``arguments`` may already hold the complete argument string for
    providers that deliver calls atomically.
    """

    id: str
    name: str
    arguments: str = ""
    message: Any = None
    metadata: dict = field(default_factory=dict)


@dataclass
class ToolCallDelta:
    """A fragment of a tool call's JSON argument string.

    ``id`` names the call the fragment belongs to.  When it is ``None``
    the fragment extends the most recently started call.
    """

    arguments_delta: str = ""
    id: str | None = None


@dataclass
class RoundEnd:
    """Terminal marker for the current provider response."""

    reason: str | None = None


NormalizedEvent = Union[
    ContentDelta, ReasoningDelta, UsageSnapshot,
    ToolCallStart, ToolCallDelta, RoundEnd,
]


@dataclass
class ToolCall:
    """A tool call requested by the model.

    ``message`` is the provider-native snapshot of the call (if the
    provider needs it to replay the call in the thread) and ``metadata``
    carries provider extras such as thought signatures or reasoning
    details.
    """

    id: str = ""
    name: str = ""
    arguments: str = ""
    message: Any = None
    result: Any = None
    metadata: dict = field(default_factory=dict)


class ToolCallAccumulator:
    """Assembles complete tool calls from start and delta events.

    Calls are keyed by id and kept in arrival order.  ``drain()`` hands
    the finished round to the caller and starts a fresh one.
    """

    def __init__(self) -> None:
        self._pending: dict[str, ToolCall] = {}
        self._last_id: str | None = None

    @property
    def calls(self) -> list[ToolCall]:
        return list(self._pending.values())

    def __len__(self) -> int:
        return len(self._pending)

    def apply_start(self, event: ToolCallStart) -> ToolCall | None:
        """Open a new call.

        Returns the new :class:`ToolCall`, or ``None`` when a call with
        the same id is already open (its arguments are extended instead).
        """
        existing = self._pending.get(event.id)
        if existing is not None:
            existing.arguments += event.arguments
            self._last_id = event.id
            return None
        tc = ToolCall(
            id=event.id,
            name=event.name,
            arguments=event.arguments,
            message=event.message,
            metadata=dict(event.metadata),
        )
        self._pending[event.id] = tc
        self._last_id = event.id
        return tc

    def apply_delta(self, event: ToolCallDelta) -> ToolCall | None:
        """Append an argument fragment.

        A fragment with no open call to attach to is dropped.
        """
        call_id = event.id if event.id is not None else self._last_id
        tc = self._pending.get(call_id) if call_id is not None else None
        if tc is None:
            return None
        tc.arguments += event.arguments_delta
        return tc

    def drain(self) -> list[ToolCall]:
        """Return the round's calls in arrival order and reset."""
        calls = list(self._pending.values())
        self._pending = {}
        self._last_id = None
        return calls

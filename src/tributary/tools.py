"""Tools the model can call, and the registry that resolves them.

A tool wraps a plain function, a coroutine function, or an async
generator.  Async generators report progress: every ``str`` they yield
is a status update and a yielded :class:`ToolResult` is the final value.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

EMPTY_PARAMETERS = {"type": "object", "properties": {}, "required": []}


@dataclass
class ToolResult:
    """Final value of a streaming tool."""

    value: Any = None


class Tool(BaseModel):
    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters_schema: dict = Field(default_factory=lambda: dict(EMPTY_PARAMETERS))
    preparing_status: str | None = None
    running_status: str | Callable[[Any], str] | None = Field(default=None, exclude=True)
    model_config = {"arbitrary_types_allowed": True}

    def model_dump(self, **kwargs):
        """Override to return the function schema instead of internal attributes"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    def model_dump_json(self, **kwargs):
        return json.dumps(self.model_dump())

    def describe_running(self, args: Any) -> str | None:
        if callable(self.running_status):
            return self.running_status(args)
        return self.running_status

    def _bind(self, context: Any, args: Any) -> tuple[tuple, dict]:
        wants_context = "context" in inspect.signature(self.func).parameters
        if isinstance(args, dict):
            kwargs = dict(args)
            if wants_context:
                kwargs["context"] = context
            return (), kwargs
        kwargs = {"context": context} if wants_context else {}
        return (args,), kwargs

    async def invoke(self, context: Any, args: Any) -> AsyncIterator[Any]:
        """Run the tool, yielding status strings and then a :class:`ToolResult`.

        Object arguments are passed as keyword arguments; any other JSON
        value is passed as the single positional argument.  Functions that
        declare a ``context`` parameter receive the execution context.
        """
        call_args, call_kwargs = self._bind(context, args)
        result = self.func(*call_args, **call_kwargs)
        if inspect.isasyncgen(result):
            final = None
            async for item in result:
                if isinstance(item, ToolResult):
                    final = item
                else:
                    yield str(item)
            yield final if final is not None else ToolResult()
            return
        if inspect.isawaitable(result):
            result = await result
        yield result if isinstance(result, ToolResult) else ToolResult(value=result)


def tool(
    func: Callable | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    parameters: dict | None = None,
    preparing_status: str | None = None,
    running_status: str | Callable[[Any], str] | None = None,
):
    """Decorator that turns a function into a :class:`Tool`.

    Usable bare (``@tool``) or with arguments
    (``@tool(parameters={...})``).  The name defaults to the function
    name and the description to its docstring.
    """

    def wrap(f: Callable) -> Tool:
        return Tool(
            func=f,
            name=name or f.__name__,
            description=description if description is not None else inspect.getdoc(f) or "",
            parameters_schema=parameters or dict(EMPTY_PARAMETERS),
            preparing_status=preparing_status,
            running_status=running_status,
        )

    if func is not None:
        return wrap(func)
    return wrap


class ToolRegistry:
    """Name-indexed set of tools."""

    def __init__(self, tools: Iterable[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, t: Tool) -> Tool:
        if t.name in self._tools:
            logger.warning(f"Replacing already registered tool: {t.name}")
        self._tools[t.name] = t
        return t

    def resolve(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def describe_preparation(self, name: str) -> str | None:
        t = self._tools.get(name)
        return t.preparing_status if t is not None else None

    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self):
        return iter(self._tools.values())

"""Per-request options."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, Field

from tributary.cancellation import CancellationToken


class ToolChoice(BaseModel):
    """How the model may use tools.

    ``type="tool"`` forces a call to ``name``.  A forced choice only
    applies to the first round of an exchange.
    """

    type: Literal["auto", "none", "required", "tool"] = "auto"
    name: str | None = None

    @property
    def forced(self) -> bool:
        return self.type == "tool"


class CompletionOptions(BaseModel):
    model_config = {"arbitrary_types_allowed": True}

    tools: bool = True
    tool_choice: ToolChoice | None = None
    tool_validator: Callable[..., Any] | None = Field(default=None, exclude=True)
    cancel_token: CancellationToken | None = Field(default=None, exclude=True)
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    reasoning_effort: Literal["low", "medium", "high"] | None = None
    reasoning_budget: int | None = None
    extra_body: dict[str, Any] = Field(default_factory=dict)

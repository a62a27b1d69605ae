"""Server-Sent Events adapter for the canonical event stream."""

from __future__ import annotations

import base64
import json
from collections.abc import AsyncIterator
from dataclasses import asdict
from enum import Enum
from typing import Any

from pydantic import BaseModel

from tributary.events import StreamEvent


def _default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, Enum):
        return value.value
    return str(value)


def encode_event(event: StreamEvent) -> str:
    """Render one event as an SSE frame."""
    data = json.dumps(asdict(event), default=_default)
    return f"event: {type(event).__name__}\ndata: {data}\n\n"


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert a StreamEvent async iterator into SSE-formatted strings."""
    async for event in event_stream:
        yield encode_event(event)
    yield "event: done\ndata: {}\n\n"

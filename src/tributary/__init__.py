from tributary.cancellation import CancellationToken
from tributary.context import StreamingContext, ToolExecutionContext, ToolHistoryEntry
from tributary.engine import Engine, Response
from tributary.errors import ToolAbortError, ToolArgumentsError, TributaryError
from tributary.events import (
    ContentEvent,
    DoneEvent,
    ReasoningEvent,
    StreamEvent,
    ToolAbortEvent,
    ToolCallInfo,
    ToolEvent,
    ToolState,
    UsageEvent,
)
from tributary.hooks import HookName
from tributary.instrumentation import instrument, uninstrument
from tributary.message import Message, MessageRole
from tributary.normalizers import ProviderKind
from tributary.options import CompletionOptions, ToolChoice
from tributary.provider import (
    AnthropicProvider,
    GoogleProvider,
    ModelProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    OpenRouter,
    VLLMProvider,
)
from tributary.sse import sse_generator
from tributary.streaming import ToolCall
from tributary.tools import Tool, ToolRegistry, ToolResult, tool
from tributary.usage import Usage
from tributary.validation import ValidationDecision, ValidationResponse

__all__ = [
    "AnthropicProvider",
    "CancellationToken",
    "CompletionOptions",
    "ContentEvent",
    "DoneEvent",
    "Engine",
    "GoogleProvider",
    "HookName",
    "Message",
    "MessageRole",
    "ModelProvider",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "OpenAIProvider",
    "OpenRouter",
    "ProviderKind",
    "ReasoningEvent",
    "Response",
    "StreamEvent",
    "StreamingContext",
    "ToolAbortError",
    "ToolAbortEvent",
    "ToolArgumentsError",
    "Tool",
    "ToolCall",
    "ToolCallInfo",
    "ToolChoice",
    "ToolEvent",
    "ToolExecutionContext",
    "ToolHistoryEntry",
    "ToolRegistry",
    "ToolResult",
    "ToolState",
    "TributaryError",
    "UsageEvent",
    "Usage",
    "VLLMProvider",
    "ValidationDecision",
    "ValidationResponse",
    "instrument",
    "sse_generator",
    "tool",
    "uninstrument",
]

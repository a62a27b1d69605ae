import inspect
import json
import logging
import os
from collections.abc import AsyncIterator
from typing import Any

import httpx
from openai import AsyncOpenAI

from tributary.context import StreamingContext
from tributary.message import (
    Message,
    MessageRole,
    ToolCallRequestMessage,
    ToolCallResultMessage,
)
from tributary.normalizers import ProviderKind, attr_or_key
from tributary.options import ToolChoice
from tributary.streaming import ToolCall
from tributary.tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com",
    "ollama": "http://127.0.0.1:11434",
    "openrouter": "https://openrouter.ai/api/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "groq": "https://api.groq.com/openai/v1",
    "xai": "https://api.x.ai/v1",
    "cerebras": "https://api.cerebras.ai/v1",
    "together": "https://api.together.xyz/v1",
    "lmstudio": "http://localhost:1234/v1",
    "meta": "https://api.llama.com/compat/v1/",
    "mistral": "https://api.mistral.ai/v1",
}


def _as_message(message: Message | dict) -> Message:
    if isinstance(message, Message):
        return message
    return Message.model_validate(message)


def _dump(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class ModelProvider:
    """Transport and thread format for one provider family.

    The defaults speak the Chat Completions message format.  Subclasses
    implement ``create_stream`` and override the formatters where the
    provider's native format differs.
    """

    kind: ProviderKind = ProviderKind.OPENAI
    name: str = "openai"

    def prepare(self, context: StreamingContext, messages: list[Message]) -> None:
        """Fill ``context.thread`` (and ``context.system``) from the conversation."""
        context.thread = [_as_message(m).model_dump() for m in messages]

    def tool_schemas(self, registry: ToolRegistry) -> list[dict]:
        return registry.schemas()

    def format_tool_call(self, tool_call: ToolCall, args: Any) -> dict:
        return ToolCallRequestMessage(
            role=MessageRole.ASSISTANT,
            tool_calls=[tool_call],
            reasoning_details=tool_call.metadata.get("reasoning_details"),
        ).model_dump(exclude_none=True)

    def format_tool_result(self, result: Any, tool_call: ToolCall, args: Any) -> dict:
        return ToolCallResultMessage(
            role=MessageRole.TOOL,
            content=_dump(result),
            tool_call_id=tool_call.id,
            name=tool_call.name,
        ).model_dump(exclude_none=True)

    async def create_stream(self, context: StreamingContext) -> AsyncIterator[Any]:
        raise NotImplementedError

    async def stop(self, stream: Any) -> None:
        """Close a provider stream that will not be read to the end."""
        if stream is not None:
            logger.debug(f"Closing {self.name} stream")
        close = getattr(stream, "aclose", None) or getattr(stream, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


# ---------------------------------------------------------------------------
# OpenAI and compatible endpoints
# ---------------------------------------------------------------------------

def _openai_tool_choice(choice: ToolChoice | None) -> str | dict:
    if choice is None:
        return "auto"
    if choice.forced:
        return {"type": "function", "function": {"name": choice.name}}
    return choice.type


class OpenAIProvider(ModelProvider):

    def __init__(
            self,
            api_key: str | None = None,
            base_url: str | None = None,
            timeout: float = 600.0,
    ):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=5,
            timeout=timeout,
        )

    def request_kwargs(self, context: StreamingContext) -> dict:
        opts = context.opts
        kwargs = {
            "model": context.model,
            "messages": context.thread,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if context.tools:
            kwargs["tools"] = context.tools
            kwargs["tool_choice"] = _openai_tool_choice(opts.tool_choice)
        if opts.max_tokens is not None:
            kwargs["max_tokens"] = opts.max_tokens
        if opts.temperature is not None:
            kwargs["temperature"] = opts.temperature
        if opts.top_p is not None:
            kwargs["top_p"] = opts.top_p
        if opts.reasoning_effort is not None:
            kwargs["reasoning_effort"] = opts.reasoning_effort
        if opts.extra_body:
            kwargs["extra_body"] = opts.extra_body
        return kwargs

    async def create_stream(self, context: StreamingContext):
        return await self.client.chat.completions.create(
            **self.request_kwargs(context)
        )


class OpenRouter(OpenAIProvider):
    name = "openrouter"

    def __init__(self, api_key: str | None = None):
        if not api_key:
            api_key = os.getenv("OPENROUTER_API_KEY")
        super().__init__(
            api_key=api_key,
            base_url=DEFAULT_BASE_URLS["openrouter"],
            timeout=180.0,
        )


class OpenAICompatibleProvider(OpenAIProvider):
    """Any endpoint that speaks Chat Completions."""

    def __init__(
            self,
            base_url: str,
            api_key: str = "DUMMY",
            name: str = "openai_compatible",
            timeout: float = 600.0,
    ):
        self.name = name
        self.base_url = base_url
        super().__init__(api_key=api_key, base_url=base_url, timeout=timeout)

    @classmethod
    def preset(cls, provider: str, api_key: str | None = None):
        """Build a provider from ``DEFAULT_BASE_URLS``.

        The key falls back to ``<PROVIDER>_API_KEY``.
        """
        if provider not in DEFAULT_BASE_URLS:
            raise ValueError(f"Unknown provider preset: {provider}")
        if not api_key:
            api_key = os.getenv(f"{provider.upper()}_API_KEY", "DUMMY")
        return cls(base_url=DEFAULT_BASE_URLS[provider], api_key=api_key, name=provider)


class VLLMProvider(OpenAICompatibleProvider):

    def __init__(self, url: str, port: int):
        super().__init__(base_url=f"http://{url}:{port}/v1", name="vllm")


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

def _split_system(messages: list[Message]) -> tuple[str | None, list[Message]]:
    messages = [_as_message(m) for m in messages]
    system = [m.content for m in messages if m.role == MessageRole.SYSTEM]
    rest = [m for m in messages if m.role != MessageRole.SYSTEM]
    return ("\n\n".join(system) or None), rest


_ANTHROPIC_TOOL_CHOICE = {"auto": "auto", "none": "none", "required": "any", "tool": "tool"}


class AnthropicProvider(ModelProvider):
    kind = ProviderKind.ANTHROPIC
    name = "anthropic"

    def __init__(
            self,
            api_key: str | None = None,
            base_url: str | None = None,
            timeout: float = 600.0,
            max_tokens: int = 4096,
    ):
        try:
            import anthropic
        except ImportError as e:
            raise ImportError(
                "AnthropicProvider requires the anthropic package. "
                "Install it with: pip install tributary[anthropic]"
            ) from e
        if not api_key:
            api_key = os.getenv("ANTHROPIC_API_KEY")
        self.max_tokens = max_tokens
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            max_retries=5,
            timeout=timeout,
        )

    def prepare(self, context, messages):
        context.system, rest = _split_system(messages)
        context.thread = [
            {"role": m.role.value, "content": m.content}
            for m in rest
        ]

    def tool_schemas(self, registry):
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.parameters_schema,
            }
            for t in registry
        ]

    def format_tool_call(self, tool_call, args):
        content = []
        if tool_call.metadata.get("thinking"):
            content.append({
                "type": "thinking",
                "thinking": tool_call.metadata["thinking"],
                "signature": tool_call.metadata.get("signature", ""),
            })
        content.append({
            "type": "tool_use",
            "id": tool_call.id,
            "name": tool_call.name,
            "input": args,
        })
        return {"role": "assistant", "content": content}

    def format_tool_result(self, result, tool_call, args):
        return {
            "role": "user",
            "content": [{
                "type": "tool_result",
                "tool_use_id": tool_call.id,
                "content": _dump(result),
            }],
        }

    def request_kwargs(self, context: StreamingContext) -> dict:
        opts = context.opts
        kwargs = {
            "model": context.model,
            "messages": context.thread,
            "max_tokens": opts.max_tokens or self.max_tokens,
            "stream": True,
        }
        if context.system:
            kwargs["system"] = context.system
        if context.tools:
            kwargs["tools"] = context.tools
            choice = opts.tool_choice or ToolChoice()
            kwargs["tool_choice"] = {"type": _ANTHROPIC_TOOL_CHOICE[choice.type]}
            if choice.forced:
                kwargs["tool_choice"]["name"] = choice.name
        if opts.temperature is not None:
            kwargs["temperature"] = opts.temperature
        if opts.top_p is not None:
            kwargs["top_p"] = opts.top_p
        if opts.reasoning_budget:
            kwargs["thinking"] = {
                "type": "enabled",
                "budget_tokens": opts.reasoning_budget,
            }
        if opts.extra_body:
            kwargs["extra_body"] = opts.extra_body
        return kwargs

    async def create_stream(self, context):
        return await self.client.messages.create(**self.request_kwargs(context))


# ---------------------------------------------------------------------------
# Google Gemini
# ---------------------------------------------------------------------------

_GOOGLE_TOOL_MODE = {"auto": "AUTO", "none": "NONE", "required": "ANY", "tool": "ANY"}


class GoogleProvider(ModelProvider):
    kind = ProviderKind.GOOGLE
    name = "google"

    def __init__(self, api_key: str | None = None):
        try:
            from google import genai
        except ImportError as e:
            raise ImportError(
                "GoogleProvider requires the google-genai package. "
                "Install it with: pip install tributary[google]"
            ) from e
        if not api_key:
            api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        self.client = genai.Client(api_key=api_key)

    def prepare(self, context, messages):
        context.system, rest = _split_system(messages)
        context.thread = [
            {
                "role": "model" if m.role == MessageRole.ASSISTANT else "user",
                "parts": [{"text": m.content}],
            }
            for m in rest
        ]

    def tool_schemas(self, registry):
        declarations = [
            {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters_schema,
            }
            for t in registry
        ]
        return [{"function_declarations": declarations}] if declarations else []

    def format_tool_call(self, tool_call, args):
        part = tool_call.message
        if part is None:
            part = {"function_call": {"name": tool_call.name, "args": args}}
        return {"role": "model", "parts": [part]}

    def format_tool_result(self, result, tool_call, args):
        response = result if isinstance(result, dict) else {"result": result}
        function_response = {"name": tool_call.name, "response": response}
        native_id = attr_or_key(attr_or_key(tool_call.message, "function_call"), "id")
        if native_id:
            function_response["id"] = native_id
        return {"role": "user", "parts": [{"function_response": function_response}]}

    def request_config(self, context: StreamingContext) -> dict:
        opts = context.opts
        config = {}
        if context.system:
            config["system_instruction"] = context.system
        if context.tools:
            config["tools"] = context.tools
            choice = opts.tool_choice or ToolChoice()
            calling = {"mode": _GOOGLE_TOOL_MODE[choice.type]}
            if choice.forced:
                calling["allowed_function_names"] = [choice.name]
            config["tool_config"] = {"function_calling_config": calling}
        if opts.max_tokens is not None:
            config["max_output_tokens"] = opts.max_tokens
        if opts.temperature is not None:
            config["temperature"] = opts.temperature
        if opts.top_p is not None:
            config["top_p"] = opts.top_p
        if opts.reasoning_budget:
            config["thinking_config"] = {
                "thinking_budget": opts.reasoning_budget,
                "include_thoughts": True,
            }
        return config

    async def create_stream(self, context):
        return await self.client.aio.models.generate_content_stream(
            model=context.model,
            contents=context.thread,
            config=self.request_config(context),
        )


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------

class OllamaProvider(ModelProvider):
    kind = ProviderKind.OLLAMA
    name = "ollama"

    def __init__(self, base_url: str | None = None, timeout: float = 600.0):
        if not base_url:
            base_url = os.getenv("OLLAMA_HOST", DEFAULT_BASE_URLS["ollama"])
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    def format_tool_call(self, tool_call, args):
        native = tool_call.message
        if native is None:
            native = {"function": {"name": tool_call.name, "arguments": args}}
        return {"role": "assistant", "content": "", "tool_calls": [native]}

    def format_tool_result(self, result, tool_call, args):
        return {"role": "tool", "content": _dump(result), "tool_name": tool_call.name}

    def request_body(self, context: StreamingContext) -> dict:
        opts = context.opts
        body = {
            "model": context.model,
            "messages": context.thread,
            "stream": True,
        }
        if context.tools:
            body["tools"] = context.tools
        options = {}
        if opts.max_tokens is not None:
            options["num_predict"] = opts.max_tokens
        if opts.temperature is not None:
            options["temperature"] = opts.temperature
        if opts.top_p is not None:
            options["top_p"] = opts.top_p
        if options:
            body["options"] = options
        if opts.reasoning_effort is not None or opts.reasoning_budget:
            body["think"] = True
        body.update(opts.extra_body)
        return body

    async def create_stream(self, context):
        return self._read_lines(self.request_body(context))

    async def _read_lines(self, body: dict) -> AsyncIterator[dict]:
        async with self.client.stream("POST", "/api/chat", json=body) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if line.strip():
                    yield json.loads(line)

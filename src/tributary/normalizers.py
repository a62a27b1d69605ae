"""Translate native provider chunks into :data:`NormalizedEvent`s.

Each provider family has one :class:`ChunkNormalizer`.  The engine
picks the class once from the provider's :class:`ProviderKind` and
creates a fresh instance per exchange; ``reset()`` runs before every
provider response.  Chunks may be SDK objects or plain dicts.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from enum import Enum
from typing import TYPE_CHECKING, Any

from tributary.streaming import (
    ContentDelta,
    NormalizedEvent,
    ReasoningDelta,
    RoundEnd,
    ToolCallDelta,
    ToolCallStart,
    UsageSnapshot,
)
from tributary.usage import CompletionTokensDetails, PromptTokensDetails, Usage

if TYPE_CHECKING:
    from tributary.context import StreamingContext

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OLLAMA = "ollama"


def attr_or_key(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class ChunkNormalizer(ABC):
    def reset(self) -> None:
        """Forget per-response state before the next provider response."""

    @abstractmethod
    def normalize(
        self, chunk: Any, context: StreamingContext,
    ) -> Iterator[NormalizedEvent]:
        ...


# ---------------------------------------------------------------------------
# OpenAI Chat Completions and compatible endpoints
# ---------------------------------------------------------------------------

def usage_from_openai(raw: Any) -> Usage:
    prompt_details = attr_or_key(raw, "prompt_tokens_details")
    completion_details = attr_or_key(raw, "completion_tokens_details")
    return Usage(
        prompt_tokens=attr_or_key(raw, "prompt_tokens") or 0,
        completion_tokens=attr_or_key(raw, "completion_tokens") or 0,
        prompt_tokens_details=PromptTokensDetails(
            cached_tokens=attr_or_key(prompt_details, "cached_tokens") or 0,
            audio_tokens=attr_or_key(prompt_details, "audio_tokens") or 0,
        ),
        completion_tokens_details=CompletionTokensDetails(
            reasoning_tokens=attr_or_key(completion_details, "reasoning_tokens") or 0,
            audio_tokens=attr_or_key(completion_details, "audio_tokens") or 0,
        ),
    )


class OpenAINormalizer(ChunkNormalizer):
    """Tool-call deltas are addressed by position; ids only come first."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._ids: dict[int, str] = {}
        self._reasoning_details: list = []

    def normalize(self, chunk, context):
        choices = attr_or_key(chunk, "choices") or []
        if choices:
            choice = choices[0]
            delta = attr_or_key(choice, "delta")
            if delta is not None:
                yield from self._delta(delta)
            finish_reason = attr_or_key(choice, "finish_reason")
            if finish_reason:
                yield RoundEnd(reason=finish_reason)
        usage = attr_or_key(chunk, "usage")
        if usage is not None:
            yield UsageSnapshot(usage=usage_from_openai(usage))

    def _delta(self, delta) -> Iterator[NormalizedEvent]:
        self._reasoning_details.extend(attr_or_key(delta, "reasoning_details") or [])
        reasoning = attr_or_key(delta, "reasoning_content") or attr_or_key(delta, "reasoning")
        if reasoning:
            yield ReasoningDelta(text=reasoning)

        for fragment in attr_or_key(delta, "tool_calls") or []:
            index = attr_or_key(fragment, "index") or 0
            call_id = attr_or_key(fragment, "id")
            function = attr_or_key(fragment, "function")
            arguments = attr_or_key(function, "arguments") or ""
            if call_id and self._ids.get(index) != call_id:
                self._ids[index] = call_id
                metadata = {}
                if self._reasoning_details:
                    metadata["reasoning_details"] = list(self._reasoning_details)
                yield ToolCallStart(
                    id=call_id,
                    name=attr_or_key(function, "name") or "",
                    arguments=arguments,
                    metadata=metadata,
                )
            elif arguments:
                if index not in self._ids:
                    logger.debug(f"Argument fragment for unknown tool call index {index}")
                yield ToolCallDelta(arguments_delta=arguments, id=self._ids.get(index))

        content = attr_or_key(delta, "content")
        if content:
            yield ContentDelta(text=content)


# ---------------------------------------------------------------------------
# Anthropic Messages
# ---------------------------------------------------------------------------

class AnthropicNormalizer(ChunkNormalizer):
    """Content arrives in indexed blocks framed by start/stop events."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._blocks: dict[int, str] = {}
        self._text_blocks = 0
        self._thinking = ""
        self._signature = ""
        self._thinking_attached = False
        self._usage = Usage()

    def normalize(self, chunk, context):
        kind = attr_or_key(chunk, "type")
        if kind == "message_start":
            usage = attr_or_key(attr_or_key(chunk, "message"), "usage")
            self._usage = Usage(
                prompt_tokens=attr_or_key(usage, "input_tokens") or 0,
                prompt_tokens_details=PromptTokensDetails(
                    cached_tokens=attr_or_key(usage, "cache_read_input_tokens") or 0,
                ),
            )
        elif kind == "content_block_start":
            yield from self._block_start(attr_or_key(chunk, "index"), attr_or_key(chunk, "content_block"))
        elif kind == "content_block_delta":
            yield from self._block_delta(attr_or_key(chunk, "index"), attr_or_key(chunk, "delta"))
        elif kind == "message_delta":
            output_tokens = attr_or_key(attr_or_key(chunk, "usage"), "output_tokens")
            if output_tokens is not None:
                self._usage.completion_tokens = output_tokens
            stop_reason = attr_or_key(attr_or_key(chunk, "delta"), "stop_reason")
            if stop_reason:
                yield RoundEnd(reason=stop_reason)
        elif kind == "message_stop":
            yield UsageSnapshot(usage=self._usage)
        elif kind not in ("content_block_stop", "ping"):
            logger.debug(f"Ignoring Anthropic event {kind}")

    def _block_start(self, index, block) -> Iterator[NormalizedEvent]:
        block_type = attr_or_key(block, "type")
        if block_type == "text":
            if self._text_blocks:
                yield ContentDelta(text="\n\n")
            self._text_blocks += 1
            text = attr_or_key(block, "text")
            if text:
                yield ContentDelta(text=text)
        elif block_type == "thinking":
            self._thinking = attr_or_key(block, "thinking") or ""
            self._signature = attr_or_key(block, "signature") or ""
            self._thinking_attached = False
        elif block_type == "tool_use":
            metadata = {}
            if self._thinking and not self._thinking_attached:
                metadata = {"thinking": self._thinking, "signature": self._signature}
                self._thinking_attached = True
            call_id = attr_or_key(block, "id")
            self._blocks[index] = call_id
            yield ToolCallStart(
                id=call_id,
                name=attr_or_key(block, "name") or "",
                metadata=metadata,
            )

    def _block_delta(self, index, delta) -> Iterator[NormalizedEvent]:
        delta_type = attr_or_key(delta, "type")
        if delta_type == "text_delta":
            yield ContentDelta(text=attr_or_key(delta, "text") or "")
        elif delta_type == "input_json_delta":
            yield ToolCallDelta(
                arguments_delta=attr_or_key(delta, "partial_json") or "",
                id=self._blocks.get(index),
            )
        elif delta_type == "thinking_delta":
            thinking = attr_or_key(delta, "thinking") or ""
            self._thinking += thinking
            yield ReasoningDelta(text=thinking)
        elif delta_type == "signature_delta":
            self._signature = attr_or_key(delta, "signature") or ""
        elif delta_type == "citations_delta":
            cited = attr_or_key(attr_or_key(delta, "citation"), "cited_text")
            if cited:
                yield ContentDelta(text=cited)


# ---------------------------------------------------------------------------
# Google Gemini
# ---------------------------------------------------------------------------

class GoogleNormalizer(ChunkNormalizer):
    """Function calls arrive whole; ids are synthesized when missing."""

    def __init__(self) -> None:
        self._count = 0

    def normalize(self, chunk, context):
        candidates = attr_or_key(chunk, "candidates") or []
        candidate = candidates[0] if candidates else None
        for part in attr_or_key(attr_or_key(candidate, "content"), "parts") or []:
            function_call = attr_or_key(part, "function_call")
            if function_call is not None:
                self._count += 1
                name = attr_or_key(function_call, "name") or ""
                metadata = {}
                signature = attr_or_key(part, "thought_signature")
                if signature:
                    metadata["thought_signature"] = signature
                yield ToolCallStart(
                    id=attr_or_key(function_call, "id") or f"{name}_{self._count}",
                    name=name,
                    arguments=json.dumps(attr_or_key(function_call, "args") or {}),
                    message=part,
                    metadata=metadata,
                )
                continue
            text = attr_or_key(part, "text")
            if text:
                if attr_or_key(part, "thought"):
                    yield ReasoningDelta(text=text)
                else:
                    yield ContentDelta(text=text)

        finish_reason = attr_or_key(candidate, "finish_reason")
        if finish_reason is not None:
            metadata = attr_or_key(chunk, "usage_metadata")
            if metadata is not None:
                yield UsageSnapshot(usage=Usage(
                    prompt_tokens=attr_or_key(metadata, "prompt_token_count") or 0,
                    completion_tokens=attr_or_key(metadata, "candidates_token_count") or 0,
                    prompt_tokens_details=PromptTokensDetails(
                        cached_tokens=attr_or_key(metadata, "cached_content_token_count") or 0,
                    ),
                    completion_tokens_details=CompletionTokensDetails(
                        reasoning_tokens=attr_or_key(metadata, "thoughts_token_count") or 0,
                    ),
                ))
            yield RoundEnd(reason=str(getattr(finish_reason, "value", finish_reason)))


# ---------------------------------------------------------------------------
# Ollama /api/chat
# ---------------------------------------------------------------------------

class OllamaNormalizer(ChunkNormalizer):
    """NDJSON chunks; ``<think>`` tags in content switch to reasoning."""

    def __init__(self) -> None:
        self._count = 0
        self.reset()

    def reset(self) -> None:
        self._thinking = False

    def normalize(self, chunk, context):
        message = attr_or_key(chunk, "message")
        thinking = attr_or_key(message, "thinking")
        if thinking:
            yield ReasoningDelta(text=thinking)

        for tool_call in attr_or_key(message, "tool_calls") or []:
            function = attr_or_key(tool_call, "function")
            self._count += 1
            arguments = attr_or_key(function, "arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments or {})
            yield ToolCallStart(
                id=attr_or_key(tool_call, "id") or f"call_{self._count}",
                name=attr_or_key(function, "name") or "",
                arguments=arguments,
                message=tool_call,
            )

        content = attr_or_key(message, "content")
        if content:
            yield from self._content(content)

        if attr_or_key(chunk, "done"):
            yield UsageSnapshot(usage=Usage(
                prompt_tokens=attr_or_key(chunk, "prompt_eval_count") or 0,
                completion_tokens=attr_or_key(chunk, "eval_count") or 0,
            ))
            yield RoundEnd(reason=attr_or_key(chunk, "done_reason") or "stop")

    def _content(self, text: str) -> Iterator[NormalizedEvent]:
        while text:
            tag = "</think>" if self._thinking else "<think>"
            before, found, text = text.partition(tag)
            if before:
                if self._thinking:
                    yield ReasoningDelta(text=before)
                else:
                    yield ContentDelta(text=before)
            if found:
                self._thinking = not self._thinking


NORMALIZERS: dict[ProviderKind, type[ChunkNormalizer]] = {
    ProviderKind.OPENAI: OpenAINormalizer,
    ProviderKind.ANTHROPIC: AnthropicNormalizer,
    ProviderKind.GOOGLE: GoogleNormalizer,
    ProviderKind.OLLAMA: OllamaNormalizer,
}


def normalizer_for(kind: ProviderKind | str) -> type[ChunkNormalizer]:
    return NORMALIZERS[ProviderKind(kind)]

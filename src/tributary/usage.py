"""Token usage reported by providers, summed across rounds."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PromptTokensDetails(BaseModel):
    cached_tokens: int = 0
    audio_tokens: int = 0


class CompletionTokensDetails(BaseModel):
    reasoning_tokens: int = 0
    audio_tokens: int = 0


class Usage(BaseModel):
    """Token counts for one provider request, or a running total.

    ``Usage() + Usage()`` sums every counter, including the details.
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    prompt_tokens_details: PromptTokensDetails = Field(
        default_factory=PromptTokensDetails
    )
    completion_tokens_details: CompletionTokensDetails = Field(
        default_factory=CompletionTokensDetails
    )

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: Usage) -> Usage:
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            prompt_tokens_details=PromptTokensDetails(
                cached_tokens=self.prompt_tokens_details.cached_tokens
                + other.prompt_tokens_details.cached_tokens,
                audio_tokens=self.prompt_tokens_details.audio_tokens
                + other.prompt_tokens_details.audio_tokens,
            ),
            completion_tokens_details=CompletionTokensDetails(
                reasoning_tokens=self.completion_tokens_details.reasoning_tokens
                + other.completion_tokens_details.reasoning_tokens,
                audio_tokens=self.completion_tokens_details.audio_tokens
                + other.completion_tokens_details.audio_tokens,
            ),
        )

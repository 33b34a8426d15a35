"""Text-completion oracle interface.

Agents and the sentiment scorer depend on ``LLMClient`` only; the OpenRouter
implementation lives in ``api_client.llm.openrouter``.
"""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, Field


class CompletionRequest(BaseModel):
    model: str
    prompt: str
    system: str | None = None
    max_tokens: int = Field(default=200, gt=0)
    temperature: float = 0.7


class Completion(BaseModel):
    """One completion with its usage accounting.

    ``content`` may be empty when a reasoning model spent its whole budget
    thinking; the reasoning text, if any, is kept apart in ``reasoning``.
    """

    model: str
    content: str = ""
    reasoning: str | None = None
    finish_reason: str | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0


class CompletionError(Exception):
    """The oracle call failed (transport error, timeout or API error payload).

    ``status_code`` is the HTTP status when the provider answered, else None.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMClient(Protocol):
    async def complete(self, request: CompletionRequest) -> Completion:
        ...

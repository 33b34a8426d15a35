"""OpenRouter completions through LangChain's OpenAI-compatible chat model."""

from __future__ import annotations

import logging
from typing import Any

import openai
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from api_client.llm.client import Completion, CompletionError, CompletionRequest
from models.config import LLMConfig

logger = logging.getLogger(__name__)


class OpenRouterClient:
    """``LLMClient`` backed by the OpenRouter chat-completions API.

    A chat model is built per request because model id, max tokens and
    temperature vary between agents. Retries are disabled: each agent has
    its own failure path.
    """

    def __init__(self, config: LLMConfig) -> None:
        self._config = config

    def _create_llm(self, request: CompletionRequest) -> ChatOpenAI:
        return ChatOpenAI(
            model=request.model,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            api_key=self._config.openrouter_api_key or "missing-key",
            base_url=self._config.base_url,
            timeout=self._config.timeout_seconds,
            max_retries=0,
            extra_body={"usage": {"include": True}},
        )

    async def complete(self, request: CompletionRequest) -> Completion:
        messages: list[BaseMessage] = []
        if request.system:
            messages.append(SystemMessage(content=request.system))
        messages.append(HumanMessage(content=request.prompt))

        llm = self._create_llm(request)
        try:
            response = await llm.ainvoke(messages)
        except openai.APIStatusError as exc:
            raise CompletionError(
                f"HTTP {exc.status_code}: {exc.message}", status_code=exc.status_code
            ) from exc
        except openai.APITimeoutError as exc:
            raise CompletionError(f"Timeout after {self._config.timeout_seconds}s") from exc
        except openai.APIError as exc:
            raise CompletionError(f"OpenRouter request failed: {exc}") from exc

        metadata: dict[str, Any] = response.response_metadata or {}
        usage: dict[str, Any] = metadata.get("token_usage") or {}
        usage_metadata = response.usage_metadata or {}
        extra = response.additional_kwargs or {}

        content = response.content if isinstance(response.content, str) else _join_parts(response.content)
        reasoning = extra.get("reasoning") or extra.get("reasoning_content")

        return Completion(
            model=metadata.get("model_name") or request.model,
            content=content or "",
            reasoning=reasoning if isinstance(reasoning, str) else None,
            finish_reason=metadata.get("finish_reason"),
            prompt_tokens=usage_metadata.get("input_tokens", usage.get("prompt_tokens", 0)) or 0,
            completion_tokens=usage_metadata.get("output_tokens", usage.get("completion_tokens", 0)) or 0,
            total_tokens=usage_metadata.get("total_tokens", usage.get("total_tokens", 0)) or 0,
            cost=float(usage.get("cost") or 0.0),
        )


def _join_parts(parts: list[Any]) -> str:
    """Flatten LangChain content blocks into plain text."""
    texts = []
    for part in parts:
        if isinstance(part, str):
            texts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            texts.append(part.get("text", ""))
    return "".join(texts)

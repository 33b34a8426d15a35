"""Debug payload attached to every LLM-driven decision."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from api_client.llm.client import Completion

RAW_RESPONSE_LIMIT = 500


def build_trace_entry(
    model_name: str,
    completion: Completion | None = None,
    error: str | None = None,
    warning: str | None = None,
) -> dict[str, Any]:
    """Token/cost accounting plus a truncated raw response for the audit row."""
    entry: dict[str, Any] = {
        "model": model_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if completion is not None:
        entry.update(
            {
                "model": completion.model or model_name,
                "promptTokens": completion.prompt_tokens,
                "completionTokens": completion.completion_tokens,
                "totalTokens": completion.total_tokens,
                "cost": completion.cost,
                "finishReason": completion.finish_reason,
                "rawResponse": completion.content[:RAW_RESPONSE_LIMIT],
            }
        )
    if warning:
        entry["parseWarning"] = warning
    if error:
        entry["error"] = error
    return entry

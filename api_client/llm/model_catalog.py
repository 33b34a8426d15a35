"""OpenRouter model listing.

Used two ways: the CHEAP agent's fallback when a configured free model
disappears, and the model picker offered when starting a simulation.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx
from pydantic import BaseModel

from api_client.cache import TTLCache
from models.config import LLMConfig

logger = logging.getLogger(__name__)

# Largest and reasoning-capable models first.
FALLBACK_FREE_MODELS: tuple[str, ...] = (
    "qwen/qwen3-235b-a22b:free",
    "tngtech/deepseek-r1t-chimera:free",
    "allenai/olmo-3-32b-think:free",
    "nvidia/nemotron-nano-9b-v2:free",
    "google/gemma-3n-e4b-it:free",
    "qwen/qwen3-4b:free",
    "amazon/nova-2-lite-v1:free",
)

_CACHE_KEY = "models"


class ModelInfo(BaseModel):
    """One entry of the OpenRouter listing; prices are USD per token."""

    id: str
    name: str
    prompt_price: float | None = None
    completion_price: float | None = None
    context_length: int | None = None

    @property
    def is_free(self) -> bool:
        return self.prompt_price == 0 and self.completion_price == 0


FALLBACK_PAID_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(
        id="meta-llama/llama-3.2-3b-instruct",
        name="Llama 3.2 3B",
        prompt_price=0.00006,
        completion_price=0.00006,
        context_length=131072,
    ),
    ModelInfo(
        id="meta-llama/llama-3.1-70b-instruct",
        name="Llama 3.1 70B",
        prompt_price=0.00052,
        completion_price=0.00052,
        context_length=131072,
    ),
    ModelInfo(
        id="x-ai/grok-beta",
        name="Grok Beta",
        prompt_price=0.0005,
        completion_price=0.00015,
        context_length=131072,
    ),
)


def is_free_model(model_id: str) -> bool:
    return ":free" in model_id


class ModelCatalog:
    """Lists OpenRouter models, cached for ``model_catalog_ttl_seconds``.

    Falls back to ``FALLBACK_FREE_MODELS`` / ``FALLBACK_PAID_MODELS`` when
    the listing fails or has nothing of the requested kind. Failed listings
    are not cached.
    """

    def __init__(
        self,
        config: LLMConfig,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._http = http_client
        self._cache: TTLCache[str, tuple[ModelInfo, ...]] = TTLCache(config.model_catalog_ttl_seconds, clock=clock)

    async def free_models(self) -> tuple[str, ...]:
        listing = await self._listing()
        free = tuple(m.id for m in listing or () if m.is_free)
        return free or FALLBACK_FREE_MODELS

    async def paid_models(self) -> list[ModelInfo]:
        """Priced, non-free models, cheapest prompt first."""
        listing = await self._listing()
        paid = [
            m for m in listing or ()
            if not is_free_model(m.id) and (m.prompt_price or 0) > 0
        ]
        paid.sort(key=lambda m: m.prompt_price)
        return paid or list(FALLBACK_PAID_MODELS)

    async def fallback_candidates(self, failed_model: str) -> list[str]:
        """Free models to try, in order, after *failed_model* returned 404."""
        return [m for m in await self.free_models() if m != failed_model]

    async def _listing(self) -> tuple[ModelInfo, ...] | None:
        cached = self._cache.get(_CACHE_KEY)
        if cached is not None:
            return cached

        try:
            listing = await self._fetch_listing()
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Failed to list OpenRouter models, using fallback list: %s", exc)
            return None

        self._cache.set(_CACHE_KEY, listing)
        return listing

    async def _fetch_listing(self) -> tuple[ModelInfo, ...]:
        headers = {}
        if self._config.openrouter_api_key:
            headers["Authorization"] = f"Bearer {self._config.openrouter_api_key}"
        url = f"{self._config.base_url.rstrip('/')}/models"

        if self._http is not None:
            response = await self._http.get(url, headers=headers, timeout=self._config.timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                response = await client.get(url, headers=headers)
        response.raise_for_status()

        return tuple(_model_info(raw) for raw in response.json()["data"])


def _model_info(raw: dict[str, Any]) -> ModelInfo:
    pricing = raw.get("pricing") or {}
    return ModelInfo(
        id=raw["id"],
        name=raw.get("name") or raw["id"],
        prompt_price=_price(pricing.get("prompt")),
        completion_price=_price(pricing.get("completion")),
        context_length=raw.get("context_length"),
    )


def _price(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)

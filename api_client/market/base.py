"""Shared plumbing for the market-data provider clients."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, TypeVar

import httpx

from models.config import ProviderConfig

logger = logging.getLogger(__name__)

USER_AGENT = "TradingArena/1.0 (market simulation)"

T = TypeVar("T")


class MarketDataError(Exception):
    """A provider call failed or returned an unusable payload."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class Provider:
    """Common base: a name for error messages and the provider settings."""

    name = "provider"

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    def _parse(self, parser: Callable[[Any], T], payload: Any) -> T:
        """Run *parser* over a decoded payload; any shape error becomes ``MarketDataError``."""
        try:
            return parser(payload)
        except MarketDataError:
            raise
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as exc:
            raise MarketDataError(self.name, f"malformed payload: {exc!r}") from exc


class SDKProvider(Provider):
    """Base for providers wrapping a blocking SDK.

    Calls run in a worker thread and are bounded by
    ``ProviderConfig.timeout_seconds``. Whatever the SDK raises is reported
    as ``MarketDataError``, keeping its ``status_code`` when it has one.
    """

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        timeout = self._config.timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise MarketDataError(self.name, f"timed out after {timeout:g}s") from exc
        except Exception as exc:
            raise MarketDataError(
                self.name,
                f"request failed: {exc!r}",
                status_code=getattr(exc, "status_code", None),
            ) from exc


class HTTPProvider(Provider):
    """Base for JSON-over-HTTP providers.

    Pass a shared ``httpx.AsyncClient`` to reuse connections; without one a
    short-lived client is opened per request. Every request is bounded by
    ``ProviderConfig.timeout_seconds``.
    """

    def __init__(self, config: ProviderConfig, http_client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config)
        self._http = http_client

    async def _get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        request_headers = {"User-Agent": USER_AGENT, **(headers or {})}
        timeout = self._config.timeout_seconds
        try:
            if self._http is not None:
                response = await self._http.get(url, params=params, headers=request_headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.get(url, params=params, headers=request_headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise MarketDataError(self.name, f"HTTP {status}", status_code=status) from exc
        except httpx.HTTPError as exc:
            raise MarketDataError(self.name, f"request failed: {exc!r}") from exc
        except ValueError as exc:
            raise MarketDataError(self.name, f"invalid JSON: {exc}") from exc

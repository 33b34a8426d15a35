"""Application settings, loaded from YAML with secrets from the environment.

These live in ``models/`` because they are shared by the tick engine, the
provider clients and the HTTP server.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from models.simulation import DEFAULT_DURATION_DAYS, DEFAULT_WEIGHT_TECHNICAL


class ProviderConfig(BaseModel):
    """External market-data providers."""

    finnhub_api_key: str | None = Field(
        default=None,
        description="Finnhub token; falls back to $FINNHUB_API_KEY.",
    )
    stocktwits_base_url: str = "https://api.stocktwits.com/api/2"
    reddit_base_url: str = "https://www.reddit.com"
    fear_greed_url: str = "https://production.dataviz.cnn.io/index/fearandgreed/graphdata"
    fear_greed_fallback_url: str = "https://api.alternative.me/fng/"
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Per-request timeout; a timeout follows the call's failure path.",
    )
    news_lookback_hours: int = Field(default=24, ge=1)
    max_news_items: int = Field(default=10, ge=1)
    candle_lookback_days: int = Field(default=60, ge=30)


class LLMConfig(BaseModel):
    """Text-completion oracle (OpenRouter, OpenAI-compatible)."""

    openrouter_api_key: str | None = Field(
        default=None,
        description="OpenRouter key; falls back to $OPENROUTER_API_KEY.",
    )
    base_url: str = "https://openrouter.ai/api/v1"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=60.0, gt=0)
    sentiment_model: str = Field(
        default="google/gemini-2.0-flash-001",
        description="Model used to score news headlines.",
    )
    model_catalog_ttl_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="How long the free-model listing is cached.",
    )


class FeatureFlags(BaseModel):
    stocktwits: bool = True
    fear_greed: bool = True


class AppSettings(BaseModel):
    """Top-level configuration for the tick engine and API server."""

    cron_secret: str | None = Field(
        default=None,
        description="Shared secret required by the tick endpoint; falls back to $CRON_SECRET.",
    )
    database_path: str = Field(
        default="trading_arena.duckdb",
        description="DuckDB file path (':memory:' for an ephemeral store).",
    )
    providers: ProviderConfig = Field(default_factory=ProviderConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    default_duration_days: int = Field(default=DEFAULT_DURATION_DAYS, ge=1)
    default_weight_technical: int = Field(default=DEFAULT_WEIGHT_TECHNICAL, ge=0, le=100)
    snapshot_write_attempts: int = Field(default=3, ge=1)

    @classmethod
    def from_yaml(cls, path: str | Path) -> AppSettings:
        """Load and validate ``AppSettings`` from a YAML file, then apply env secrets.

        Raises ``FileNotFoundError`` if the file does not exist and
        ``ValueError`` if the content is not a valid YAML mapping.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open(encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}

        if not isinstance(raw, dict):
            raise ValueError(
                f"Expected a YAML mapping in {path}, got {type(raw).__name__}."
            )

        return cls(**raw).with_env_secrets()

    @classmethod
    def from_env(cls) -> AppSettings:
        """Defaults plus secrets from the environment (and a ``.env`` file if present)."""
        return cls().with_env_secrets()

    def with_env_secrets(self) -> AppSettings:
        """Fill unset secrets from environment variables."""
        load_dotenv()
        providers = self.providers.model_copy(
            update={"finnhub_api_key": self.providers.finnhub_api_key or os.environ.get("FINNHUB_API_KEY")}
        )
        llm = self.llm.model_copy(
            update={"openrouter_api_key": self.llm.openrouter_api_key or os.environ.get("OPENROUTER_API_KEY")}
        )
        return self.model_copy(
            update={
                "cron_secret": self.cron_secret or os.environ.get("CRON_SECRET"),
                "providers": providers,
                "llm": llm,
            }
        )

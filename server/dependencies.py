"""Service wiring and FastAPI dependencies.

``ServiceContainer.from_settings`` builds the production graph (DuckDB store,
shared ``httpx.AsyncClient``, provider clients, OpenRouter, agents). Tests
build a container by hand with fakes and hand it to ``create_app``.
"""

from __future__ import annotations

import logging

import httpx
from fastapi import HTTPException, Request

from agents.registry import create_agents
from api_client.llm.model_catalog import ModelCatalog
from api_client.llm.openrouter import OpenRouterClient
from api_client.llm.sentiment import SentimentScorer
from api_client.market.fear_greed import FearGreedClient
from api_client.market.finnhub import FinnhubClient
from api_client.market.reddit import RedditClient
from api_client.market.stocktwits import StocktwitsClient
from api_client.market.yahoo import YahooFinanceClient
from models.config import AppSettings
from simulation.backtest import BacktestService
from simulation.history import HistoryReader
from simulation.lifecycle import SimulationService
from simulation.snapshot_builder import SnapshotBuilder
from simulation.store import TradingStore
from simulation.tick import TickOrchestrator

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Holds the long-lived services shared by every request."""

    def __init__(
        self,
        store: TradingStore,
        orchestrator: TickOrchestrator,
        simulations: SimulationService,
        history: HistoryReader,
        backtest: BacktestService | None = None,
        catalog: ModelCatalog | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.simulations = simulations
        self.history = history
        self.backtest = backtest
        self.catalog = catalog
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: AppSettings) -> ServiceContainer:
        store = TradingStore(settings.database_path)
        http_client = httpx.AsyncClient(timeout=settings.providers.timeout_seconds)

        providers = settings.providers
        finnhub = FinnhubClient(providers)

        llm = OpenRouterClient(settings.llm) if settings.llm.openrouter_api_key else None
        if llm is None:
            logger.warning("OPENROUTER_API_KEY not set: LLM agents will HOLD and sentiment will be neutral")

        yahoo = YahooFinanceClient(providers)
        catalog = ModelCatalog(settings.llm, http_client)

        builder = SnapshotBuilder(
            store,
            finnhub,
            SentimentScorer(llm, settings.llm.sentiment_model),
            yahoo=yahoo,
            stocktwits=StocktwitsClient(providers, http_client),
            fear_greed=FearGreedClient(providers, http_client),
            reddit=RedditClient(providers, http_client),
            features=settings.features,
            write_attempts=settings.snapshot_write_attempts,
        )
        agents = create_agents(
            llm=llm,
            catalog=catalog,
            temperature=settings.llm.temperature,
        )
        orchestrator = TickOrchestrator(
            store,
            builder,
            finnhub,
            agents,
            cron_secret=settings.cron_secret,
        )
        simulations = SimulationService(
            store,
            finnhub,
            default_weight_technical=settings.default_weight_technical,
        )
        return cls(
            store,
            orchestrator,
            simulations,
            HistoryReader(store),
            backtest=BacktestService(yahoo),
            catalog=catalog,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
        self.store.close()


# ----------------------------------------------------------------------------
# FastAPI dependencies
# ----------------------------------------------------------------------------


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_orchestrator(request: Request) -> TickOrchestrator:
    return get_container(request).orchestrator


def get_simulation_service(request: Request) -> SimulationService:
    return get_container(request).simulations


def get_history_reader(request: Request) -> HistoryReader:
    return get_container(request).history


def get_backtest_service(request: Request) -> BacktestService:
    backtest = get_container(request).backtest
    if backtest is None:
        raise HTTPException(status_code=503, detail="Backtesting is not configured")
    return backtest


def get_model_catalog(request: Request) -> ModelCatalog:
    catalog = get_container(request).catalog
    if catalog is None:
        raise HTTPException(status_code=503, detail="Model catalog is not configured")
    return catalog

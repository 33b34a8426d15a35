"""Simulation lifecycle: start, stop and ALGO weight tuning.

The "at most one RUNNING simulation" invariant is enforced here: the
check-then-create runs under a process lock and inside one transaction, so
two concurrent starts cannot both succeed.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, Field

from api_client.market.base import MarketDataError
from api_client.market.finnhub import FinnhubClient
from models.portfolio import Portfolio
from models.simulation import (
    DEFAULT_DURATION_DAYS,
    DEFAULT_WEIGHT_TECHNICAL,
    MIN_START_CAPITAL,
    BotType,
    SimulationConfig,
    SimulationStatus,
    utcnow,
)
from simulation.errors import (
    ForbiddenError,
    InvalidParameterError,
    InvalidSymbolError,
    SimulationConflictError,
    SimulationNotFoundError,
)
from simulation.store import TradingStore

logger = logging.getLogger(__name__)


class StartRequest(BaseModel):
    symbol: str = Field(min_length=1)
    start_capital: float = Field(ge=MIN_START_CAPITAL)
    duration_days: int = Field(default=DEFAULT_DURATION_DAYS, ge=1)
    cheap_model_id: str = Field(min_length=1)
    premium_model_id: str = Field(min_length=1)
    use_reddit: bool = False


class SimulationService:
    """Start/stop simulations and tune the ALGO agent's weighting."""

    def __init__(
        self,
        store: TradingStore,
        quotes: FinnhubClient,
        default_weight_technical: int = DEFAULT_WEIGHT_TECHNICAL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._quotes = quotes
        self._default_weight = default_weight_technical
        self._clock = clock
        self._start_lock = threading.Lock()

    async def start(
        self,
        request: StartRequest,
        created_by: str | None = None,
    ) -> tuple[SimulationConfig, dict[BotType, Portfolio]]:
        """Create a RUNNING simulation and its three seeded portfolios.

        Raises ``SimulationConflictError`` if one is already running and
        ``InvalidSymbolError`` if the symbol has no quote.
        """
        symbol = request.symbol.strip().upper()

        if self._store.count_running_simulations() > 0:
            raise SimulationConflictError("Une simulation est déjà en cours")

        try:
            await self._quotes.get_quote(symbol)
        except MarketDataError as exc:
            raise InvalidSymbolError(symbol, str(exc)) from exc

        now = self._clock()
        config = SimulationConfig(
            id=uuid.uuid4().hex,
            symbol=symbol,
            start_capital=request.start_capital,
            duration_days=request.duration_days,
            current_day=0,
            status=SimulationStatus.RUNNING,
            cheap_model_id=request.cheap_model_id,
            premium_model_id=request.premium_model_id,
            algo_weight_technical=self._default_weight,
            use_reddit=request.use_reddit,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        portfolios = {
            bot_type: Portfolio.seed(uuid.uuid4().hex, config.id, bot_type, config.start_capital)
            for bot_type in BotType
        }

        # The quote check above is a network call; the invariant is re-checked
        # under the lock so no lock is held across it.
        with self._start_lock, self._store.transaction() as cur:
            if self._store.count_running_simulations(cur=cur) > 0:
                raise SimulationConflictError("Une simulation est déjà en cours")
            self._store.insert_simulation(config, cur=cur)
            for portfolio in portfolios.values():
                self._store.insert_portfolio(portfolio, cur=cur)

        logger.info(
            "Simulation %s started: %s, capital %.2f, %d days",
            config.id, symbol, config.start_capital, config.duration_days,
        )
        return config, portfolios

    def stop(self, simulation_id: str, caller: str | None = None) -> SimulationConfig:
        """Mark a simulation COMPLETED.

        Simulations created without an identity can be stopped by anyone.
        """
        simulation = self._store.get_simulation(simulation_id)
        if simulation is None:
            raise SimulationNotFoundError(f"Simulation {simulation_id} not found")
        if simulation.created_by is not None and simulation.created_by != caller:
            raise ForbiddenError("Seul le créateur peut arrêter cette simulation")

        with self._store.transaction() as cur:
            self._store.set_status(simulation_id, SimulationStatus.COMPLETED, self._clock(), cur=cur)
            stopped = self._store.get_simulation(simulation_id, cur=cur)
        logger.info("Simulation %s stopped on day %d", simulation_id, stopped.current_day)
        return stopped

    def get_algo_weight(self) -> int:
        simulation = self._store.get_running_simulation()
        if simulation is None:
            return self._default_weight
        return simulation.algo_weight_technical

    def set_algo_weight(self, weight_technical: float) -> int:
        if not 0 <= weight_technical <= 100:
            raise InvalidParameterError("weightTechnical must be between 0 and 100")
        simulation = self._store.get_running_simulation()
        if simulation is None:
            raise SimulationNotFoundError("No active simulation")

        weight = round(weight_technical)
        self._store.set_algo_weight(simulation.id, weight, self._clock())
        logger.info("ALGO weightTechnical set to %d for %s", weight, simulation.id)
        return weight

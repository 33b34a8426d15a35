"""Tick orchestrator: advances the running simulation by one step.

Guards are evaluated strictly in order: authentication, trading calendar,
hour-bucket idempotence, active simulation, symbol re-validation. Then the
snapshot is built, the three agents run concurrently, and settlement plus
day advancement commit in one transaction.

Idempotence is a claim on the hour bucket taken before any network call, so
overlapping calls cannot both pass it. The settlement transaction re-reads
the simulation and portfolios and settles nothing if the simulation was
stopped or advanced meanwhile.

Every call resolves to exactly one ``TickOutcome``. Any exception past the
guards becomes ``INTERNAL_ERROR``; the transaction boundary guarantees no
partial settlement is left behind.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from datetime import datetime
from typing import Callable

from agents.base import TradingAgent
from agents.context import load_history
from api_client.market.base import MarketDataError
from api_client.market.finnhub import FinnhubClient
from models.agents import AgentInvocation
from models.decision import TradeDecision
from models.portfolio import Portfolio
from models.simulation import BotType, SimulationConfig, SimulationStatus, utcnow
from models.snapshot import MarketSnapshot
from models.tick import DecisionSummary, TickOutcome, TickRequest, TickStatus
from simulation.broker import Broker
from simulation.calendar import closed_reason, hour_bucket
from simulation.snapshot_builder import SnapshotBuilder
from simulation.store import Cursor, TradingStore

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "already_processed"
_BEARER_PREFIX = "Bearer "


class TickOrchestrator:
    def __init__(
        self,
        store: TradingStore,
        snapshot_builder: SnapshotBuilder,
        quotes: FinnhubClient,
        agents: dict[BotType, TradingAgent],
        cron_secret: str | None,
        clock: Callable[[], datetime] = utcnow,
        broker: Broker | None = None,
    ) -> None:
        missing = set(BotType) - set(agents)
        if missing:
            raise ValueError(f"Missing agents for: {', '.join(sorted(b.value for b in missing))}")
        self._store = store
        self._builder = snapshot_builder
        self._quotes = quotes
        self._agents = agents
        self._cron_secret = cron_secret
        self._clock = clock
        self._broker = broker or Broker(store)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def authenticate(self, request: TickRequest) -> bool:
        """True if any of the three channels carries the shared secret.

        With no secret configured every caller is rejected.
        """
        if not self._cron_secret:
            return False
        candidates = [request.header_key, request.query_key]
        if request.bearer and request.bearer.startswith(_BEARER_PREFIX):
            candidates.append(request.bearer[len(_BEARER_PREFIX):])
        return any(
            c is not None and hmac.compare_digest(c.encode(), self._cron_secret.encode())
            for c in candidates
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, request: TickRequest) -> TickOutcome:
        if not self.authenticate(request):
            logger.warning("Unauthorized tick attempt")
            return TickOutcome.unauthorized()

        now = self._clock()
        bucket = None

        if not request.force:
            reason = closed_reason(now)
            if reason is not None:
                logger.info("Tick skipped: %s", reason)
                return TickOutcome.skipped(reason)

            bucket = hour_bucket(now)
            try:
                claimed = self._store.claim_hour(bucket, now)
            except Exception as exc:
                logger.exception("Idempotence check failed")
                return TickOutcome.internal_error(str(exc) or type(exc).__name__)
            if not claimed:
                logger.info("Tick skipped: hour %s already processed", bucket.isoformat())
                return TickOutcome.skipped(ALREADY_PROCESSED)

        try:
            outcome = await self._process(now)
        except Exception as exc:
            logger.exception("Tick failed")
            outcome = TickOutcome.internal_error(str(exc) or type(exc).__name__)

        if bucket is not None and outcome.kind is not TickStatus.SUCCESS:
            self._release(bucket)
        return outcome

    def _release(self, bucket: datetime) -> None:
        # A snapshot written for this hour still blocks later calls.
        try:
            self._store.release_hour(bucket)
        except Exception:
            logger.exception("Could not release hour %s", bucket.isoformat())

    async def _process(self, now: datetime) -> TickOutcome:
        simulation = self._store.get_running_simulation()
        if simulation is None:
            logger.info("No active simulation")
            return TickOutcome.no_active_simulation()

        try:
            await self._quotes.get_quote(simulation.symbol)
        except MarketDataError as exc:
            logger.warning("Symbol %s failed validation: %s", simulation.symbol, exc)
            return TickOutcome.invalid_symbol(str(exc))

        snapshot = await self._builder.build(simulation, now)
        portfolios = self._load_portfolios(simulation.id)
        decisions = await self._collect_decisions(simulation, snapshot, portfolios)

        with self._store.transaction() as cur:
            # Re-read under the transaction: the simulation may have been
            # stopped or advanced by another call while the agents ran.
            current = self._store.get_simulation(simulation.id, cur=cur)
            if current is None or current.status is not SimulationStatus.RUNNING:
                logger.warning("Simulation %s stopped during the tick; nothing settled", simulation.id)
                return TickOutcome.no_active_simulation()
            if current.current_day != simulation.current_day:
                logger.warning(
                    "Simulation %s moved to day %d during the tick; nothing settled",
                    simulation.id, current.current_day,
                )
                return TickOutcome.skipped(ALREADY_PROCESSED)

            portfolios = self._load_portfolios(simulation.id, cur=cur)
            records = self._broker.settle_tick(cur, current, snapshot.id, decisions, portfolios)
            advanced = current.advanced()
            self._store.update_simulation(advanced, cur=cur)

        logger.info(
            "Tick complete for %s: day %d/%d (%s)",
            simulation.symbol, advanced.current_day, advanced.duration_days, advanced.status.value,
        )
        return TickOutcome(
            kind=TickStatus.SUCCESS,
            day=advanced.current_day,
            status=advanced.status,
            decisions=[
                DecisionSummary(bot_type=r.bot_type, action=r.action, quantity=r.quantity, reason=r.reason)
                for r in records
            ],
        )

    def _load_portfolios(self, simulation_id: str, cur: Cursor | None = None) -> dict[BotType, Portfolio]:
        portfolios = self._store.get_portfolios(simulation_id, cur=cur)
        missing = set(BotType) - set(portfolios)
        if missing:
            raise RuntimeError(
                f"Simulation {simulation_id} has no portfolio for {', '.join(sorted(b.value for b in missing))}"
            )
        return portfolios

    async def _collect_decisions(
        self,
        simulation: SimulationConfig,
        snapshot: MarketSnapshot,
        portfolios: dict[BotType, Portfolio],
    ) -> dict[BotType, TradeDecision]:
        """Run every agent concurrently on the same snapshot."""
        bot_types = list(BotType)
        invocations = [
            AgentInvocation(
                bot_type=bot_type,
                simulation=simulation,
                snapshot=snapshot,
                portfolio=portfolios[bot_type],
                history=load_history(self._store, simulation.id, bot_type),
            )
            for bot_type in bot_types
        ]
        results = await asyncio.gather(
            *(self._agents[inv.bot_type].invoke(inv) for inv in invocations)
        )
        return dict(zip(bot_types, results))

"""Tests for the tick orchestrator state machine.

Providers and agents are replaced by in-process fakes; the store is a real
in-memory DuckDB database so transaction behaviour is exercised for real.
"""

import asyncio
from datetime import datetime, timezone

import duckdb
import pytest

from agents.base import TradingAgent
from api_client.llm.sentiment import SentimentScorer
from api_client.market.base import MarketDataError
from models.agents import AgentInvocation
from models.decision import TradeAction, TradeDecision
from models.market import Candles
from models.portfolio import Portfolio
from models.simulation import BotType, SimulationConfig, SimulationStatus
from models.snapshot import MarketSnapshot
from models.tick import TickRequest, TickStatus
from simulation.broker import Broker
from simulation.snapshot_builder import SnapshotBuilder
from simulation.store import TradingStore
from simulation.tick import ALREADY_PROCESSED, TickOrchestrator

SECRET = "s3cret"
MONDAY = datetime(2025, 12, 1, 15, 20, tzinfo=timezone.utc)
SATURDAY = datetime(2025, 11, 29, 15, 20, tzinfo=timezone.utc)
CHRISTMAS = datetime(2025, 12, 25, 15, 20, tzinfo=timezone.utc)


def _run(coro):
    return asyncio.run(coro)


# =============================================================================
# FAKES
# =============================================================================


class FakeFinnhub:
    def __init__(self, price: float = 50.0, fail: bool = False):
        self.price = price
        self.fail = fail

    async def get_quote(self, symbol: str) -> float:
        if self.fail:
            raise MarketDataError("finnhub", f"no price available for {symbol}")
        return self.price

    async def get_news(self, symbol, now):
        return []

    async def get_candles(self, symbol, now):
        return Candles()


class FixedAgent(TradingAgent):
    def __init__(self, decision: TradeDecision):
        self.decision = decision
        self.invocations: list[AgentInvocation] = []

    async def decide(self, invocation: AgentInvocation) -> TradeDecision:
        self.invocations.append(invocation)
        return self.decision


class ExplodingAgent(TradingAgent):
    async def decide(self, invocation: AgentInvocation) -> TradeDecision:
        raise RuntimeError("model exploded")


class UnsavedSnapshotBuilder:
    """Returns a snapshot that was never written to the store."""

    async def build(self, simulation, now):
        return MarketSnapshot(
            id="never-saved",
            simulation_id=simulation.id,
            symbol=simulation.symbol,
            timestamp=now,
            price=50.0,
        )


class CrashAfterSettleBroker(Broker):
    def settle_tick(self, cur, simulation, snapshot_id, decisions, portfolios):
        super().settle_tick(cur, simulation, snapshot_id, decisions, portfolios)
        raise RuntimeError("disk gone")


class YieldingFinnhub(FakeFinnhub):
    """Hands control back to the event loop on every quote."""

    async def get_quote(self, symbol: str) -> float:
        await asyncio.sleep(0)
        return await super().get_quote(symbol)


class MeddlingAgent(TradingAgent):
    """Changes the simulation row while the tick is in flight, then buys."""

    def __init__(self, store: TradingStore, meddle):
        self.store = store
        self.meddle = meddle

    async def decide(self, invocation: AgentInvocation) -> TradeDecision:
        self.meddle(self.store, invocation.simulation)
        return TradeDecision(action=TradeAction.BUY, quantity=2, reason="buy")


class BrokenClaimStore(TradingStore):
    def claim_hour(self, bucket, claimed_at):
        raise duckdb.IOException("database file unavailable")


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def store():
    s = TradingStore(":memory:")
    yield s
    s.close()


def start_simulation(store: TradingStore, current_day: int = 0, duration_days: int = 21) -> SimulationConfig:
    sim = SimulationConfig(
        id="sim-1",
        symbol="AAPL",
        start_capital=1000.0,
        duration_days=duration_days,
        current_day=current_day,
        status=SimulationStatus.RUNNING,
        cheap_model_id="cheap:free",
        premium_model_id="premium",
    )
    store.insert_simulation(sim)
    for bot in BotType:
        store.insert_portfolio(Portfolio.seed(f"p-{bot.value}", sim.id, bot, sim.start_capital))
    return sim


def default_agents() -> dict[BotType, TradingAgent]:
    return {
        BotType.ALGO: FixedAgent(TradeDecision(action=TradeAction.BUY, quantity=2, reason="algo buy")),
        BotType.CHEAP: FixedAgent(TradeDecision(action=TradeAction.BUY, quantity=1000, reason="all in")),
        BotType.PREMIUM: FixedAgent(TradeDecision.hold("wait")),
    }


def make_orchestrator(
    store,
    now=MONDAY,
    finnhub=None,
    agents=None,
    builder=None,
    broker=None,
    secret=SECRET,
) -> TickOrchestrator:
    finnhub = finnhub or FakeFinnhub()
    builder = builder or SnapshotBuilder(store, finnhub, SentimentScorer(None, "sentiment-model"))
    return TickOrchestrator(
        store,
        builder,
        finnhub,
        agents or default_agents(),
        cron_secret=secret,
        clock=lambda: now,
        broker=broker,
    )


def authorized(force: bool = False) -> TickRequest:
    return TickRequest(header_key=SECRET, force=force)


def count(store: TradingStore, table: str) -> int:
    return store._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


# =============================================================================
# 1. Authentication
# =============================================================================


class TestAuthentication:
    @pytest.mark.parametrize(
        "request_",
        [
            TickRequest(bearer=f"Bearer {SECRET}"),
            TickRequest(header_key=SECRET),
            TickRequest(query_key=SECRET),
        ],
    )
    def test_any_channel_is_enough(self, store, request_):
        assert make_orchestrator(store).authenticate(request_)

    @pytest.mark.parametrize(
        "request_",
        [
            TickRequest(),
            TickRequest(bearer="Bearer wrong", header_key="wrong", query_key="wrong"),
            TickRequest(bearer=SECRET),
            TickRequest(bearer=f"Basic {SECRET}"),
        ],
    )
    def test_rejected(self, store, request_):
        start_simulation(store)
        outcome = _run(make_orchestrator(store).run(request_))
        assert outcome.kind is TickStatus.UNAUTHORIZED
        assert outcome.http_status() == 401
        assert outcome.to_response() == {"error": "Unauthorized"}
        assert count(store, "market_snapshots") == 0

    def test_unset_secret_rejects_everyone(self, store):
        orchestrator = make_orchestrator(store, secret=None)
        assert not orchestrator.authenticate(TickRequest(header_key=""))
        assert not orchestrator.authenticate(TickRequest(query_key="anything"))

    def test_force_does_not_bypass_auth(self, store):
        outcome = _run(make_orchestrator(store).run(TickRequest(force=True)))
        assert outcome.kind is TickStatus.UNAUTHORIZED


# =============================================================================
# 2. Calendar and idempotence guards
# =============================================================================


class TestGuards:
    def test_weekend(self, store):
        start_simulation(store)
        outcome = _run(make_orchestrator(store, now=SATURDAY).run(authorized()))
        assert outcome.kind is TickStatus.SKIPPED
        assert outcome.to_response() == {"skipped": True, "reason": "weekend"}
        assert outcome.http_status() == 200
        assert count(store, "market_snapshots") == 0

    def test_holiday(self, store):
        start_simulation(store)
        outcome = _run(make_orchestrator(store, now=CHRISTMAS).run(authorized()))
        assert outcome.to_response() == {"skipped": True, "reason": "holiday: 2025-12-25"}

    @pytest.mark.parametrize("now", [SATURDAY, CHRISTMAS])
    def test_force_bypasses_calendar(self, store, now):
        start_simulation(store)
        outcome = _run(make_orchestrator(store, now=now).run(authorized(force=True)))
        assert outcome.kind is TickStatus.SUCCESS

    def test_same_hour_runs_once(self, store):
        start_simulation(store)
        orchestrator = make_orchestrator(store)

        first = _run(orchestrator.run(authorized()))
        second = _run(orchestrator.run(authorized()))

        assert first.kind is TickStatus.SUCCESS
        assert second.kind is TickStatus.SKIPPED
        assert second.reason == ALREADY_PROCESSED
        assert count(store, "market_snapshots") == 1
        assert count(store, "bot_decisions") == 3
        assert store.get_simulation("sim-1").current_day == 1

    def test_force_bypasses_idempotence(self, store):
        start_simulation(store)
        orchestrator = make_orchestrator(store)
        _run(orchestrator.run(authorized()))
        again = _run(orchestrator.run(authorized(force=True)))
        assert again.kind is TickStatus.SUCCESS
        assert count(store, "market_snapshots") == 2
        assert store.get_simulation("sim-1").current_day == 2


# =============================================================================
# 3. Processing
# =============================================================================


class TestProcessing:
    def test_no_active_simulation(self, store):
        outcome = _run(make_orchestrator(store).run(authorized()))
        assert outcome.kind is TickStatus.NO_ACTIVE_SIMULATION
        assert outcome.to_response() == {"message": "No active simulation"}
        assert outcome.http_status() == 200

    def test_invalid_symbol(self, store):
        start_simulation(store)
        outcome = _run(make_orchestrator(store, finnhub=FakeFinnhub(fail=True)).run(authorized()))
        assert outcome.kind is TickStatus.INVALID_SYMBOL
        assert outcome.http_status() == 400
        assert outcome.to_response()["error"] == "Invalid symbol"
        assert count(store, "market_snapshots") == 0
        assert store.get_simulation("sim-1").current_day == 0

    def test_success_settles_and_records(self, store):
        start_simulation(store)
        outcome = _run(make_orchestrator(store).run(authorized()))

        assert outcome.kind is TickStatus.SUCCESS
        body = outcome.to_response()
        assert body["success"] is True
        assert body["day"] == 1
        assert body["status"] == "RUNNING"
        assert {d["botType"] for d in body["decisions"]} == {"ALGO", "CHEAP", "PREMIUM"}

        decisions = {d["botType"]: d for d in body["decisions"]}
        assert decisions["ALGO"]["action"] == "BUY"
        assert decisions["CHEAP"]["action"] == "HOLD"
        assert "fonds insuffisants" in decisions["CHEAP"]["reason"]

        portfolios = store.get_portfolios("sim-1")
        assert portfolios[BotType.ALGO].cash == pytest.approx(900.0)
        assert portfolios[BotType.ALGO].shares == 2
        assert portfolios[BotType.CHEAP].cash == 1000.0

    def test_agents_see_same_snapshot_and_history(self, store):
        start_simulation(store)
        agents = default_agents()
        _run(make_orchestrator(store, agents=agents).run(authorized()))

        invocations = [agent.invocations[0] for agent in agents.values()]
        assert len({inv.snapshot.id for inv in invocations}) == 1
        assert all(inv.history == "Première décision de trading." for inv in invocations)

    def test_history_passed_on_next_tick(self, store):
        start_simulation(store)
        agents = default_agents()
        orchestrator = make_orchestrator(store, agents=agents)
        _run(orchestrator.run(authorized()))
        _run(orchestrator.run(authorized(force=True)))

        history = agents[BotType.ALGO].invocations[1].history
        assert history.startswith("1. BUY 2 actions à 50$")

    def test_day_completion(self, store):
        start_simulation(store, current_day=20, duration_days=21)
        outcome = _run(make_orchestrator(store).run(authorized()))

        assert outcome.day == 21
        assert outcome.status is SimulationStatus.COMPLETED
        sim = store.get_simulation("sim-1")
        assert sim.current_day == 21
        assert sim.status is SimulationStatus.COMPLETED

    def test_failing_agent_becomes_hold(self, store):
        start_simulation(store)
        agents = default_agents()
        agents[BotType.PREMIUM] = ExplodingAgent()
        outcome = _run(make_orchestrator(store, agents=agents).run(authorized()))

        assert outcome.kind is TickStatus.SUCCESS
        decisions = {d.bot_type: d for d in outcome.decisions}
        assert decisions[BotType.PREMIUM].action is TradeAction.HOLD
        assert "model exploded" in decisions[BotType.PREMIUM].reason
        assert decisions[BotType.ALGO].action is TradeAction.BUY
        assert count(store, "bot_decisions") == 3

    def test_missing_agent_rejected_at_construction(self, store):
        agents = default_agents()
        del agents[BotType.CHEAP]
        with pytest.raises(ValueError, match="CHEAP"):
            make_orchestrator(store, agents=agents)


# =============================================================================
# 4. Fatal errors
# =============================================================================


class TestFatalErrors:
    def test_missing_snapshot_is_internal_error(self, store):
        start_simulation(store)
        outcome = _run(make_orchestrator(store, builder=UnsavedSnapshotBuilder()).run(authorized()))

        assert outcome.kind is TickStatus.INTERNAL_ERROR
        assert outcome.http_status() == 500
        body = outcome.to_response()
        assert body["error"] == "Internal server error"
        assert "never-saved" in body["details"]
        assert count(store, "bot_decisions") == 0
        assert store.get_simulation("sim-1").current_day == 0

    def test_failure_after_settlement_rolls_back(self, store):
        start_simulation(store)
        outcome = _run(make_orchestrator(store, broker=CrashAfterSettleBroker(store)).run(authorized()))

        assert outcome.kind is TickStatus.INTERNAL_ERROR
        assert outcome.details == "disk gone"
        assert count(store, "bot_decisions") == 0
        assert store.get_portfolios("sim-1")[BotType.ALGO].cash == 1000.0
        assert store.get_simulation("sim-1").current_day == 0

    def test_claim_failure_is_internal_error(self):
        store = BrokenClaimStore(":memory:")
        try:
            start_simulation(store)
            outcome = _run(make_orchestrator(store).run(authorized()))

            assert outcome.kind is TickStatus.INTERNAL_ERROR
            assert outcome.http_status() == 500
            assert outcome.to_response() == {
                "error": "Internal server error",
                "details": "database file unavailable",
            }
            assert count(store, "market_snapshots") == 0
        finally:
            store.close()


# =============================================================================
# 5. Overlapping ticks and concurrent writers
# =============================================================================


def stop_simulation(store, simulation):
    store.set_status(simulation.id, SimulationStatus.COMPLETED, MONDAY)


def advance_day(store, simulation):
    store.update_simulation(store.get_simulation(simulation.id).advanced())


class TestConcurrency:
    def test_overlapping_calls_settle_once(self, store):
        start_simulation(store)
        orchestrator = make_orchestrator(store, finnhub=YieldingFinnhub())

        async def both():
            return await asyncio.gather(orchestrator.run(authorized()), orchestrator.run(authorized()))

        outcomes = _run(both())

        assert sorted(o.kind.value for o in outcomes) == sorted(
            [TickStatus.SUCCESS.value, TickStatus.SKIPPED.value]
        )
        skipped = next(o for o in outcomes if o.kind is TickStatus.SKIPPED)
        assert skipped.reason == ALREADY_PROCESSED
        assert count(store, "market_snapshots") == 1
        assert count(store, "bot_decisions") == 3
        assert store.get_simulation("sim-1").current_day == 1
        algo = store.get_portfolios("sim-1")[BotType.ALGO]
        assert algo.cash == pytest.approx(900.0)
        assert algo.shares == 2

    def test_stop_during_tick_is_kept(self, store):
        start_simulation(store)
        agents = default_agents()
        agents[BotType.ALGO] = MeddlingAgent(store, stop_simulation)
        outcome = _run(make_orchestrator(store, agents=agents).run(authorized()))

        assert outcome.kind is TickStatus.NO_ACTIVE_SIMULATION
        sim = store.get_simulation("sim-1")
        assert sim.status is SimulationStatus.COMPLETED
        assert sim.current_day == 0
        assert count(store, "bot_decisions") == 0
        assert store.get_portfolios("sim-1")[BotType.ALGO].cash == 1000.0

    def test_day_advanced_during_tick_settles_nothing(self, store):
        start_simulation(store)
        agents = default_agents()
        agents[BotType.ALGO] = MeddlingAgent(store, advance_day)
        outcome = _run(make_orchestrator(store, agents=agents).run(authorized()))

        assert outcome.kind is TickStatus.SKIPPED
        assert outcome.reason == ALREADY_PROCESSED
        assert store.get_simulation("sim-1").current_day == 1
        assert count(store, "bot_decisions") == 0
        assert store.get_portfolios("sim-1")[BotType.ALGO].shares == 0

    def test_failed_tick_releases_the_hour(self, store):
        start_simulation(store)
        failed = _run(make_orchestrator(store, finnhub=FakeFinnhub(fail=True)).run(authorized()))
        retried = _run(make_orchestrator(store).run(authorized()))

        assert failed.kind is TickStatus.INVALID_SYMBOL
        assert retried.kind is TickStatus.SUCCESS
        assert store.get_simulation("sim-1").current_day == 1

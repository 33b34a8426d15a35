"""Tests for the DuckDB-backed TradingStore (in-memory databases)."""

from datetime import datetime, timedelta, timezone

import pytest

from models.decision import BotDecision, TradeAction
from models.portfolio import Portfolio
from models.simulation import BotType, SimulationConfig, SimulationStatus
from models.snapshot import MarketSnapshot
from simulation.store import TradingStore

T0 = datetime(2025, 12, 1, 15, 0, tzinfo=timezone.utc)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def store():
    s = TradingStore(":memory:")
    yield s
    s.close()


def make_simulation(sim_id: str = "sim-1", status=SimulationStatus.RUNNING, **overrides) -> SimulationConfig:
    fields = dict(
        id=sim_id,
        symbol="AAPL",
        start_capital=10_000.0,
        status=status,
        cheap_model_id="cheap/model:free",
        premium_model_id="premium/model",
        created_at=T0,
        updated_at=T0,
    )
    fields.update(overrides)
    return SimulationConfig(**fields)


def make_snapshot(snap_id: str, sim_id: str = "sim-1", at: datetime = T0, price: float = 100.0) -> MarketSnapshot:
    return MarketSnapshot(
        id=snap_id,
        simulation_id=sim_id,
        symbol="AAPL",
        timestamp=at,
        created_at=at,
        price=price,
        sentiment_score=0.2,
        sentiment_reason="ok",
        rsi=45.0,
        headlines=["not persisted"],
    )


def make_decision(dec_id: str, snap_id: str, bot_type=BotType.ALGO, action=TradeAction.HOLD, at: datetime = T0) -> BotDecision:
    return BotDecision(
        id=dec_id,
        snapshot_id=snap_id,
        bot_type=bot_type,
        action=action,
        quantity=0 if action is TradeAction.HOLD else 2,
        price=100.0,
        reason=f"reason {dec_id}",
        confidence=0.5,
        debug_data={"model": "x", "nested": {"k": 1}},
        created_at=at,
    )


# =============================================================================
# Simulations
# =============================================================================


class TestSimulations:
    def test_insert_and_get(self, store):
        store.insert_simulation(make_simulation())
        loaded = store.get_simulation("sim-1")
        assert loaded is not None
        assert loaded.symbol == "AAPL"
        assert loaded.status is SimulationStatus.RUNNING
        assert loaded.created_at == T0
        assert loaded.created_at.tzinfo is not None

    def test_get_missing(self, store):
        assert store.get_simulation("nope") is None
        assert store.get_running_simulation() is None

    def test_running_and_count(self, store):
        store.insert_simulation(make_simulation("old", status=SimulationStatus.COMPLETED))
        store.insert_simulation(make_simulation("live"))
        assert store.get_running_simulation().id == "live"
        assert store.count_running_simulations() == 1

    def test_update(self, store):
        sim = make_simulation(current_day=20)
        store.insert_simulation(sim)
        store.update_simulation(sim.advanced())
        loaded = store.get_simulation("sim-1")
        assert loaded.current_day == 21
        assert loaded.status is SimulationStatus.COMPLETED

    def test_set_status_keeps_other_fields(self, store):
        store.insert_simulation(make_simulation(current_day=4))
        store.set_status("sim-1", SimulationStatus.COMPLETED, T0 + timedelta(hours=1))
        loaded = store.get_simulation("sim-1")
        assert loaded.status is SimulationStatus.COMPLETED
        assert loaded.current_day == 4
        assert loaded.updated_at == T0 + timedelta(hours=1)

    def test_set_algo_weight(self, store):
        store.insert_simulation(make_simulation(current_day=4))
        store.set_algo_weight("sim-1", 35, T0)
        loaded = store.get_simulation("sim-1")
        assert loaded.algo_weight_technical == 35
        assert loaded.current_day == 4
        assert loaded.status is SimulationStatus.RUNNING

    def test_list_finished(self, store):
        store.insert_simulation(make_simulation("done", status=SimulationStatus.COMPLETED))
        store.insert_simulation(make_simulation("idle-played", status=SimulationStatus.IDLE, current_day=3))
        store.insert_simulation(make_simulation("idle-fresh", status=SimulationStatus.IDLE))
        store.insert_simulation(make_simulation("running"))
        ids = {s.id for s in store.list_finished_simulations()}
        assert ids == {"done", "idle-played"}


# =============================================================================
# Portfolios
# =============================================================================


class TestPortfolios:
    def test_seed_and_save(self, store):
        for bot in BotType:
            store.insert_portfolio(Portfolio.seed(f"p-{bot.value}", "sim-1", bot, 10_000.0))

        portfolios = store.get_portfolios("sim-1")
        assert set(portfolios) == set(BotType)
        assert portfolios[BotType.ALGO].avg_buy_price is None

        updated = portfolios[BotType.ALGO].model_copy(
            update={"cash": 9_000.0, "shares": 10.0, "avg_buy_price": 100.0, "total_value": 10_000.0}
        )
        store.save_portfolio(updated)
        reloaded = store.get_portfolios("sim-1")[BotType.ALGO]
        assert reloaded.cash == 9_000.0
        assert reloaded.shares == 10.0
        assert reloaded.avg_buy_price == 100.0


# =============================================================================
# Snapshots and decisions
# =============================================================================


class TestSnapshots:
    def test_headlines_not_persisted(self, store):
        store.insert_snapshot(make_snapshot("s1"))
        loaded = store.get_snapshot("s1")
        assert loaded.price == 100.0
        assert loaded.headlines == []
        assert loaded.timestamp == T0

    def test_exists_for_hour_is_global(self, store):
        store.insert_snapshot(make_snapshot("s1", sim_id="other"))
        assert store.snapshot_exists_for_hour(T0)
        assert not store.snapshot_exists_for_hour(T0 + timedelta(hours=1))

    def test_latest_and_list_order(self, store):
        store.insert_snapshot(make_snapshot("s2", at=T0 + timedelta(hours=1)))
        store.insert_snapshot(make_snapshot("s1", at=T0))
        assert store.latest_snapshot("sim-1").id == "s2"
        assert [s.id for s in store.list_snapshots("sim-1")] == ["s1", "s2"]


class TestHourClaims:
    def test_second_claim_rejected(self, store):
        assert store.claim_hour(T0, T0)
        assert not store.claim_hour(T0, T0 + timedelta(minutes=1))
        assert store.claim_hour(T0 + timedelta(hours=1), T0)

    def test_hour_with_snapshot_cannot_be_claimed(self, store):
        store.insert_snapshot(make_snapshot("s1", sim_id="other"))
        assert not store.claim_hour(T0, T0)

    def test_release_allows_new_claim(self, store):
        assert store.claim_hour(T0, T0)
        store.release_hour(T0)
        assert store.claim_hour(T0, T0)


class TestDecisions:
    def test_debug_data_roundtrip(self, store):
        store.insert_snapshot(make_snapshot("s1"))
        store.insert_decision(make_decision("d1", "s1"))
        [loaded] = store.decisions_for_snapshot("s1")
        assert loaded.debug_data == {"model": "x", "nested": {"k": 1}}
        assert loaded.action is TradeAction.HOLD

    def test_recent_decisions_newest_first(self, store):
        for i in range(5):
            at = T0 + timedelta(hours=i)
            store.insert_snapshot(make_snapshot(f"s{i}", at=at))
            store.insert_decision(make_decision(f"a{i}", f"s{i}", at=at))
            store.insert_decision(make_decision(f"c{i}", f"s{i}", bot_type=BotType.CHEAP, at=at))

        recent = store.recent_decisions("sim-1", BotType.ALGO, limit=3)
        assert [d.id for d in recent] == ["a4", "a3", "a2"]
        assert all(d.bot_type is BotType.ALGO for d in recent)

    def test_decisions_for_simulation_scoped(self, store):
        store.insert_snapshot(make_snapshot("mine"))
        store.insert_snapshot(make_snapshot("theirs", sim_id="sim-2"))
        store.insert_decision(make_decision("d1", "mine"))
        store.insert_decision(make_decision("d2", "theirs"))
        assert [d.id for d in store.decisions_for_simulation("sim-1")] == ["d1"]

    def test_decisions_for_simulation_limit(self, store):
        for i in range(3):
            at = T0 + timedelta(hours=i)
            store.insert_snapshot(make_snapshot(f"s{i}", at=at))
            store.insert_decision(make_decision(f"d{i}", f"s{i}", at=at))
        assert [d.id for d in store.decisions_for_simulation("sim-1", limit=2)] == ["d2", "d1"]


# =============================================================================
# Transactions
# =============================================================================


class TestTransactions:
    def test_commit(self, store):
        with store.transaction() as cur:
            store.insert_snapshot(make_snapshot("s1"), cur=cur)
            store.insert_decision(make_decision("d1", "s1"), cur=cur)
        assert store.get_snapshot("s1") is not None
        assert len(store.decisions_for_snapshot("s1")) == 1

    def test_rollback_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction() as cur:
                store.insert_decision(make_decision("d1", "s1"), cur=cur)
                raise RuntimeError("boom")
        assert store.decisions_for_snapshot("s1") == []

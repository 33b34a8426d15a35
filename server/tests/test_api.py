"""HTTP tests for the FastAPI app, wired to an in-memory store and fake providers."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from agents.registry import create_agents
from api_client.llm.model_catalog import ModelInfo
from api_client.llm.sentiment import SentimentScorer
from api_client.market.base import MarketDataError
from models.market import Candles
from server.app import create_app
from server.dependencies import ServiceContainer
from simulation.backtest import BacktestService
from simulation.history import HistoryReader
from simulation.lifecycle import SimulationService
from simulation.snapshot_builder import SnapshotBuilder
from simulation.store import TradingStore
from simulation.tick import TickOrchestrator

SECRET = "s3cret"
MONDAY = datetime(2025, 12, 1, 15, 30, tzinfo=timezone.utc)
SATURDAY = datetime(2025, 11, 29, 15, 30, tzinfo=timezone.utc)


class FakeFinnhub:
    def __init__(self, known=("AAPL", "MSFT"), price=150.0):
        self.known = set(known)
        self.price = price

    async def get_quote(self, symbol):
        if symbol not in self.known:
            raise MarketDataError("finnhub", f"no price available for {symbol}")
        return self.price

    async def get_news(self, symbol, now):
        return []

    async def get_candles(self, symbol, now):
        return Candles()


class FakeYahoo:
    def __init__(self, closes):
        self.closes = closes
        self.calls = []

    async def get_candles(self, symbol, now, days=None):
        self.calls.append((symbol, days))
        if symbol != "NVDA":
            raise MarketDataError("yahoo", f"no history for {symbol}")
        start = int(datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp())
        return Candles(closes=list(self.closes), timestamps=[start + i * 86400 for i in range(len(self.closes))])


class FakeCatalog:
    async def paid_models(self):
        return [ModelInfo(id="openai/gpt-4o-mini", name="GPT-4o mini", prompt_price=1.5e-7, completion_price=6e-7)]


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(MONDAY)


@pytest.fixture
def finnhub():
    return FakeFinnhub()


@pytest.fixture
def yahoo():
    return FakeYahoo([100.0 + i for i in range(40)])


@pytest.fixture
def client(clock, finnhub, yahoo):
    store = TradingStore(":memory:")
    builder = SnapshotBuilder(store, finnhub, SentimentScorer(None, "m"))
    orchestrator = TickOrchestrator(
        store, builder, finnhub, create_agents(llm=None), cron_secret=SECRET, clock=clock
    )
    services = ServiceContainer(
        store,
        orchestrator,
        SimulationService(store, finnhub, clock=clock),
        HistoryReader(store),
        backtest=BacktestService(yahoo, clock=clock),
        catalog=FakeCatalog(),
    )
    with TestClient(create_app(services=services)) as test_client:
        yield test_client
    store.close()


START_BODY = {
    "symbol": "aapl",
    "startCapital": 10000,
    "cheapModelId": "meta/llama-3.3:free",
    "premiumModelId": "openai/gpt-4o",
}


def start(client, body=None, user="alice"):
    return client.post("/api/simulation/start", json=body or START_BODY, headers={"x-user-id": user})


# =============================================================================
# Tick endpoint
# =============================================================================


class TestTickEndpoint:
    def test_rejects_missing_secret(self, client):
        resp = client.get("/api/cron/simulation-tick")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_rejects_wrong_secret(self, client):
        resp = client.get("/api/cron/simulation-tick", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"headers": {"Authorization": f"Bearer {SECRET}"}},
            {"headers": {"x-cron-key": SECRET}},
            {"params": {"key": SECRET}},
        ],
    )
    def test_each_channel_authenticates(self, client, kwargs):
        resp = client.get("/api/cron/simulation-tick", **kwargs)
        assert resp.status_code == 200
        assert resp.json() == {"message": "No active simulation"}

    def test_weekend_skipped(self, client, clock):
        clock.now = SATURDAY
        resp = client.get("/api/cron/simulation-tick", params={"key": SECRET})
        assert resp.json() == {"skipped": True, "reason": "weekend"}

    def test_full_tick(self, client):
        assert start(client).status_code == 200

        resp = client.get("/api/cron/simulation-tick", params={"key": SECRET})
        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["day"] == 1
        assert body["status"] == "RUNNING"
        assert {d["botType"] for d in body["decisions"]} == {"ALGO", "CHEAP", "PREMIUM"}
        assert all("debugData" not in d for d in body["decisions"])

        again = client.get("/api/cron/simulation-tick", params={"key": SECRET})
        assert again.json() == {"skipped": True, "reason": "already_processed"}

    def test_invalid_symbol_on_tick(self, client, finnhub):
        start(client)
        finnhub.known.clear()
        resp = client.get("/api/cron/simulation-tick", params={"key": SECRET})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid symbol"


# =============================================================================
# Start / stop
# =============================================================================


class TestStartStop:
    def test_start(self, client):
        resp = start(client)
        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["simulation"]["symbol"] == "AAPL"
        assert body["simulation"]["status"] == "RUNNING"
        assert body["simulation"]["createdBy"] == "alice"
        assert sorted(p["botType"] for p in body["portfolios"]) == ["ALGO", "CHEAP", "PREMIUM"]
        assert all(p["cash"] == 10000 and p["avgBuyPrice"] is None for p in body["portfolios"])

    def test_capital_below_minimum(self, client):
        resp = start(client, {**START_BODY, "startCapital": 500})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request"

    def test_missing_fields(self, client):
        resp = start(client, {"symbol": "AAPL"})
        assert resp.status_code == 400
        assert len(resp.json()["details"]) == 3

    def test_conflict(self, client):
        start(client)
        resp = start(client, {**START_BODY, "symbol": "MSFT"})
        assert resp.status_code == 409

    def test_invalid_symbol(self, client):
        resp = start(client, {**START_BODY, "symbol": "ZZZZ"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid symbol"

    def test_stop_by_creator(self, client):
        sim_id = start(client).json()["simulation"]["id"]
        resp = client.post("/api/simulation/stop", json={"simulationId": sim_id}, headers={"x-user-id": "alice"})
        assert resp.status_code == 200
        assert resp.json()["simulation"]["status"] == "COMPLETED"

    def test_stop_by_someone_else(self, client):
        sim_id = start(client).json()["simulation"]["id"]
        resp = client.post("/api/simulation/stop", json={"simulationId": sim_id}, headers={"x-user-id": "mallory"})
        assert resp.status_code == 403

    def test_stop_unknown(self, client):
        resp = client.post("/api/simulation/stop", json={"simulationId": "missing"})
        assert resp.status_code == 404


# =============================================================================
# Status / history / algo config
# =============================================================================


class TestReadEndpoints:
    def test_status_without_simulation(self, client):
        resp = client.get("/api/simulation/status")
        assert resp.status_code == 200
        assert resp.json() == {"active": False}

    def test_status_after_tick(self, client):
        start(client)
        client.get("/api/cron/simulation-tick", params={"key": SECRET})

        body = client.get("/api/simulation/status").json()
        assert body["active"] is True
        sim = body["simulation"]
        assert sim["currentDay"] == 1
        assert len(sim["portfolios"]) == 3
        assert sim["latestSnapshot"]["price"] == 150.0
        assert len(sim["latestSnapshot"]["decisions"]) == 3
        assert "headlines" not in sim["latestSnapshot"]

    def test_history(self, client):
        sim_id = start(client).json()["simulation"]["id"]
        client.get("/api/cron/simulation-tick", params={"key": SECRET})
        client.post("/api/simulation/stop", json={"simulationId": sim_id}, headers={"x-user-id": "alice"})

        [item] = client.get("/api/simulation/history").json()["history"]
        assert item["id"] == sim_id
        assert item["winner"]["botType"] in {"ALGO", "CHEAP", "PREMIUM"}
        [point] = item["roiHistory"]
        assert point["day"] == 1
        assert point["BUYHOLD"] == 0.0
        assert point["ALGO"] == 0.0
        assert len(item["decisions"]) == 3

    def test_history_empty(self, client):
        assert client.get("/api/simulation/history").json() == {"history": []}

    def test_algo_config_default(self, client):
        assert client.get("/api/simulation/algo-config").json() == {"algoWeightTechnical": 60}

    def test_algo_config_update(self, client):
        start(client)
        resp = client.patch("/api/simulation/algo-config", json={"weightTechnical": 35.4})
        assert resp.status_code == 200
        assert resp.json() == {"algoWeightTechnical": 35}
        assert client.get("/api/simulation/algo-config").json() == {"algoWeightTechnical": 35}

    def test_algo_config_out_of_range(self, client):
        start(client)
        resp = client.patch("/api/simulation/algo-config", json={"weightTechnical": 150})
        assert resp.status_code == 400

    def test_algo_config_without_simulation(self, client):
        resp = client.patch("/api/simulation/algo-config", json={"weightTechnical": 50})
        assert resp.status_code == 404

    def test_status_with_corrupted_row_is_server_error(self, client):
        start(client)
        store = client.app.state.services.store
        with store.transaction() as cur:
            cur.execute("UPDATE portfolios SET cash = -5 WHERE bot_type = 'ALGO'")

        resp = TestClient(client.app, raise_server_exceptions=False).get("/api/simulation/status")
        assert resp.status_code == 500


# =============================================================================
# Backtest
# =============================================================================


class TestBacktestEndpoint:
    def test_runs_with_defaults(self, client, yahoo):
        resp = client.post("/api/backtest", json={})
        assert resp.status_code == 200
        body = resp.json()
        assert yahoo.calls == [("NVDA", 180)]
        assert body["success"] is True
        assert body["symbol"] == "NVDA"
        assert body["dataPoints"] == 40
        assert body["weightTechnical"] == 70
        assert len(body["history"]) == 28
        assert body["buyHold"]["shares"] == 100
        assert body["buyHold"]["roi"] == pytest.approx(39.0)
        assert body["algo"]["totalTrades"] == len(body["trades"])

    def test_symbol_is_normalised(self, client, yahoo):
        resp = client.post("/api/backtest", json={"symbol": " nvda ", "days": 60, "weightTechnical": 40})
        assert resp.status_code == 200
        assert yahoo.calls == [("NVDA", 60)]
        assert resp.json()["weightTechnical"] == 40

    def test_insufficient_history(self, client, yahoo):
        yahoo.closes = [100.0] * 10
        resp = client.post("/api/backtest", json={"symbol": "NVDA"})
        assert resp.status_code == 400
        assert "Insufficient data" in resp.json()["error"]

    def test_history_unavailable(self, client):
        resp = client.post("/api/backtest", json={"symbol": "ZZZZ"})
        assert resp.status_code == 502
        assert resp.json()["error"] == "Market data unavailable"

    def test_weight_out_of_range(self, client):
        resp = client.post("/api/backtest", json={"weightTechnical": 120})
        assert resp.status_code == 400


# =============================================================================
# Debug decisions / model list
# =============================================================================


class TestDebugAndModels:
    def test_debug_decisions_without_simulation(self, client):
        assert client.get("/api/debug/decisions").json() == {"decisions": []}

    def test_debug_decisions_after_tick(self, client):
        start(client)
        client.get("/api/cron/simulation-tick", params={"key": SECRET})

        decisions = client.get("/api/debug/decisions").json()["decisions"]
        assert {d["botType"] for d in decisions} == {"ALGO", "CHEAP", "PREMIUM"}
        for d in decisions:
            assert d["snapshotPrice"] == 150.0
            assert "sentimentScore" in d
            assert "sentimentReason" in d
            assert "timestamp" in d
        cheap = next(d for d in decisions if d["botType"] == "CHEAP")
        assert cheap["debugData"]["error"]

    def test_models(self, client):
        body = client.get("/api/openrouter/models").json()
        assert body == {
            "models": [
                {
                    "id": "openai/gpt-4o-mini",
                    "name": "GPT-4o mini",
                    "promptPrice": 1.5e-7,
                    "completionPrice": 6e-7,
                    "contextLength": None,
                }
            ]
        }

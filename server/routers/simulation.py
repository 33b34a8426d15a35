"""Router for simulation endpoints: start, stop, status, history, algo-config.

Domain errors (conflict, invalid symbol, not found, forbidden) are mapped to
status codes by the handlers registered in ``server.app``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header

from server.dependencies import get_history_reader, get_simulation_service
from server.schemas import (
    AlgoConfigBody,
    AlgoConfigResponse,
    HistoryItemOut,
    HistoryResponse,
    PortfolioOut,
    SimulationOut,
    StartBody,
    StartResponse,
    StatusResponse,
    StopBody,
    StopResponse,
)
from simulation.history import HistoryReader
from simulation.lifecycle import SimulationService

router = APIRouter(prefix="/api/simulation", tags=["simulation"])


@router.post("/start", response_model=StartResponse)
async def start_simulation(
    body: StartBody,
    x_user_id: str | None = Header(None),
    service: SimulationService = Depends(get_simulation_service),
) -> StartResponse:
    """Create a RUNNING simulation with three seeded portfolios."""
    simulation, portfolios = await service.start(body.to_request(), created_by=x_user_id)
    return StartResponse(
        simulation=SimulationOut.from_domain(simulation),
        portfolios=[PortfolioOut.from_domain(p) for p in portfolios.values()],
    )


@router.post("/stop", response_model=StopResponse)
def stop_simulation(
    body: StopBody,
    x_user_id: str | None = Header(None),
    service: SimulationService = Depends(get_simulation_service),
) -> StopResponse:
    simulation = service.stop(body.simulation_id, caller=x_user_id)
    return StopResponse(simulation=SimulationOut.from_domain(simulation))


@router.get("/status")
def simulation_status(
    reader: HistoryReader = Depends(get_history_reader),
) -> dict[str, Any]:
    """The RUNNING simulation with its portfolios and latest snapshot, or ``{active: false}``."""
    response = StatusResponse.from_view(reader.status())
    return response.model_dump(by_alias=True, mode="json", exclude_unset=True)


@router.get("/history", response_model=HistoryResponse)
def simulation_history(
    reader: HistoryReader = Depends(get_history_reader),
) -> HistoryResponse:
    """Finished simulations, newest first, with replayed ROI series."""
    return HistoryResponse(history=[HistoryItemOut.from_history(item) for item in reader.history()])


@router.get("/algo-config", response_model=AlgoConfigResponse)
def get_algo_config(
    service: SimulationService = Depends(get_simulation_service),
) -> AlgoConfigResponse:
    return AlgoConfigResponse(algo_weight_technical=service.get_algo_weight())


@router.patch("/algo-config", response_model=AlgoConfigResponse)
def update_algo_config(
    body: AlgoConfigBody,
    service: SimulationService = Depends(get_simulation_service),
) -> AlgoConfigResponse:
    return AlgoConfigResponse(algo_weight_technical=service.set_algo_weight(body.weight_technical))

"""ALGO backtest endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from server.dependencies import get_backtest_service
from server.schemas import BacktestBody, BacktestResponse
from simulation.backtest import BacktestService

router = APIRouter(prefix="/api", tags=["backtest"])


@router.post("/backtest", response_model=BacktestResponse)
async def run_backtest(
    body: BacktestBody,
    service: BacktestService = Depends(get_backtest_service),
) -> BacktestResponse:
    """Replay ALGO over Yahoo Finance history and compare it with Buy & Hold.

    400 when the history is too short, 502 when it cannot be fetched.
    """
    result = await service.run(body.to_request())
    return BacktestResponse.from_result(result)

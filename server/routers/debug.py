"""Debug view of the running simulation's decisions, debug payloads included."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from server.dependencies import get_history_reader
from server.schemas import DebugDecisionOut, DebugDecisionsResponse
from simulation.history import HistoryReader

router = APIRouter(prefix="/api/debug", tags=["debug"])


@router.get("/decisions", response_model=DebugDecisionsResponse)
def debug_decisions(
    reader: HistoryReader = Depends(get_history_reader),
) -> DebugDecisionsResponse:
    return DebugDecisionsResponse(decisions=[DebugDecisionOut.from_domain(d) for d in reader.debug_decisions()])

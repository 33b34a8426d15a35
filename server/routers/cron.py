"""Scheduler-facing tick endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from models.tick import TickRequest
from server.dependencies import get_orchestrator
from simulation.tick import TickOrchestrator

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.get("/simulation-tick")
async def simulation_tick(
    force: bool = Query(False, description="Bypass the calendar and idempotence guards"),
    key: str | None = Query(None, description="Shared secret (query channel)"),
    authorization: str | None = Header(None),
    x_cron_key: str | None = Header(None),
    orchestrator: TickOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Advance the running simulation by one tick.

    Always answers with a terminal JSON body; see ``TickOutcome.to_response``
    for the shapes.
    """
    outcome = await orchestrator.run(
        TickRequest(bearer=authorization, header_key=x_cron_key, query_key=key, force=force)
    )
    return JSONResponse(outcome.to_response(), status_code=outcome.http_status())

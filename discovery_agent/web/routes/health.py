"""Health route."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from discovery_agent import __version__
from discovery_agent.core.enums import RunKind, RunStatus
from discovery_agent.services.budget import BudgetGovernor
from discovery_agent.services.run_tracker import RunTracker
from discovery_agent.web.dependencies import ConfigDep, SessionDep

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(session: SessionDep, config: ConfigDep) -> JSONResponse:
    """Database reachability, latest run per kind and the throttle state."""
    session.execute(text("SELECT 1"))
    tracker = RunTracker(session)
    latest = {}
    for kind in RunKind:
        run = tracker.get_latest(kind)
        latest[kind.value] = (
            {
                "runId": str(run.id),
                "status": run.status.value,
                "createdAt": run.created_at.isoformat(),
                "completedAt": run.completed_at.isoformat() if run.completed_at else None,
            }
            if run
            else None
        )
    throttle = BudgetGovernor(session, config.budget).get_status().throttle
    running = tracker.list_runs(status=RunStatus.RUNNING, limit=100)
    return JSONResponse(
        {
            "status": "ok",
            "version": __version__,
            "database": "ok",
            "latest_runs": latest,
            "running": len(running),
            "budget_throttled": throttle.throttle,
        }
    )

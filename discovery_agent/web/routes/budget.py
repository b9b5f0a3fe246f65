"""Budget routes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from discovery_agent.services.budget import BudgetGovernor
from discovery_agent.web.dependencies import ConfigDep, SessionDep

router = APIRouter(prefix="/budget", tags=["budget"])


@router.get("/status")
async def budget_status(session: SessionDep, config: ConfigDep) -> JSONResponse:
    """Today's spend, this month's spend and the current throttle decision."""
    governor = BudgetGovernor(session, config.budget)
    status = governor.get_status()
    return JSONResponse(
        {
            **status.model_dump(mode="json"),
            "throttle_events": [e.model_dump(mode="json") for e in governor.get_throttle_events(limit=10)],
        }
    )

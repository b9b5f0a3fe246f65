"""Strategy routes for inspecting and retiring query strategies."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from discovery_agent.core.enums import Country, Platform
from discovery_agent.services.strategy_store import StrategyStore
from discovery_agent.web.dependencies import SessionDep

router = APIRouter(prefix="/strategies", tags=["strategies"])


class DeprecateRequest(BaseModel):
    """Body of POST /strategies/{id}/deprecate."""

    reason: str = "Deprecated by reviewer"


@router.get("")
async def list_strategies(
    session: SessionDep,
    platform: Platform | None = None,
    country: Country | None = None,
    include_deprecated: bool = False,
    limit: int = 500,
) -> JSONResponse:
    """List strategies, best first for active ones."""
    strategies = StrategyStore(session).list_strategies(platform, country, include_deprecated, limit)
    return JSONResponse(
        {
            "strategies": [s.model_dump(mode="json") for s in strategies],
            "count": len(strategies),
        }
    )


@router.get("/tiers")
async def strategy_tiers(
    session: SessionDep,
    platform: Platform | None = None,
    country: Country | None = None,
) -> JSONResponse:
    """Active strategies grouped by performance tier."""
    tiers = StrategyStore(session).get_strategy_tiers(platform, country)
    return JSONResponse(
        {
            "tiers": tiers.model_dump(mode="json"),
            "counts": {
                "high": len(tiers.high),
                "medium": len(tiers.medium),
                "low": len(tiers.low),
                "untested": len(tiers.untested),
            },
        }
    )


@router.post("/{strategy_id}/deprecate")
async def deprecate_strategy(
    strategy_id: str,
    session: SessionDep,
    body: DeprecateRequest | None = None,
) -> JSONResponse:
    """Exclude a strategy from future runs."""
    reason = body.reason if body else DeprecateRequest().reason
    strategy = StrategyStore(session).deprecate(strategy_id, reason)
    session.commit()
    return JSONResponse({"strategy": strategy.model_dump(mode="json")})

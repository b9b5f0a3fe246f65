"""Review routes for staged venues."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from discovery_agent.core.enums import Country, EntityStatus, EntityType, FeedbackResultType, Platform
from discovery_agent.services.feedback_service import RESULT_STATUS, FeedbackService
from discovery_agent.services.staging_service import StagingService
from discovery_agent.web.dependencies import SessionDep

router = APIRouter(prefix="/review", tags=["review"])


class ApproveRequest(BaseModel):
    """Optional body of POST /review/venues/{id}/approve."""

    reviewer: str = "unknown"
    notes: str = ""


class RejectRequest(BaseModel):
    """Body of POST /review/venues/{id}/reject."""

    model_config = ConfigDict(populate_by_name=True)

    reason: str
    reviewer: str = "unknown"
    result_type: FeedbackResultType = Field(default=FeedbackResultType.NOT_PLANTED, alias="resultType")

    @field_validator("result_type")
    @classmethod
    def must_reject(cls, value: FeedbackResultType) -> FeedbackResultType:
        if RESULT_STATUS[value] != EntityStatus.REJECTED:
            raise ValueError(f"{value.value} does not reject a venue")
        return value


@router.get("/queue")
async def review_queue(session: SessionDep, limit: int = 50) -> JSONResponse:
    """Venues awaiting a decision, flagged ones first."""
    staging = StagingService(session)
    venues = staging.get_review_queue(limit=limit)
    return JSONResponse(
        {
            "venues": [v.model_dump(mode="json") for v in venues],
            "count": len(venues),
            "by_status": staging.venues.count_by_status(),
        }
    )


@router.get("/venues")
async def list_venues(
    session: SessionDep,
    status: EntityStatus | None = None,
    platform: Platform | None = None,
    country: Country | None = None,
    chain: str | None = None,
    run_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> JSONResponse:
    """Search staged venues."""
    venues = StagingService(session).venues.search(
        status=status,
        platform=platform,
        country=country,
        chain_name=chain,
        run_id=run_id,
        limit=limit,
        offset=offset,
    )
    return JSONResponse({"venues": [v.model_dump(mode="json") for v in venues], "count": len(venues)})


@router.get("/venues/{venue_id}")
async def get_venue(venue_id: str, session: SessionDep) -> JSONResponse:
    """A staged venue with its dishes."""
    staging = StagingService(session)
    venue = staging.get_venue(venue_id)
    dishes = staging.get_dishes(venue_id)
    return JSONResponse(
        {
            "venue": venue.model_dump(mode="json"),
            "dishes": [d.model_dump(mode="json") for d in dishes],
        }
    )


@router.post("/venues/{venue_id}/approve")
async def approve_venue(venue_id: str, session: SessionDep, body: ApproveRequest | None = None) -> JSONResponse:
    """Approve a venue and credit the strategy that found it."""
    body = body or ApproveRequest()
    service = FeedbackService(session)
    service.record_feedback(
        EntityType.VENUE,
        venue_id,
        FeedbackResultType.CORRECT,
        reviewer=body.reviewer,
        notes=body.notes,
        strict=True,
    )
    session.commit()
    return JSONResponse({"venue": service.staging.get_venue(venue_id).model_dump(mode="json")})


@router.post("/venues/{venue_id}/reject")
async def reject_venue(venue_id: str, body: RejectRequest, session: SessionDep) -> JSONResponse:
    """Reject a venue and count it against the strategy that found it."""
    service = FeedbackService(session)
    service.record_feedback(
        EntityType.VENUE,
        venue_id,
        body.result_type,
        reviewer=body.reviewer,
        notes=body.reason,
        strict=True,
    )
    session.commit()
    return JSONResponse({"venue": service.staging.get_venue(venue_id).model_dump(mode="json")})


@router.post("/venues/{venue_id}/promote")
async def promote_venue(venue_id: str, session: SessionDep) -> JSONResponse:
    """Promote an approved venue and its approved dishes."""
    venue = StagingService(session).promote(venue_id)
    session.commit()
    return JSONResponse({"venue": venue.model_dump(mode="json")})

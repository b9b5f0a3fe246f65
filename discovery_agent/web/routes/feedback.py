"""Feedback routes: review outcomes that tune strategy performance."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from discovery_agent.core.schema import FeedbackRequest
from discovery_agent.services.feedback_service import FeedbackService
from discovery_agent.web.dependencies import SessionDep

router = APIRouter(prefix="/feedback", tags=["feedback"])


class ProcessRequest(BaseModel):
    """Body of POST /feedback/process."""

    model_config = ConfigDict(populate_by_name=True)

    deprecate: bool = False
    dry_run: bool = Field(default=False, alias="dryRun")


@router.post("", status_code=201)
async def submit_feedback(request: FeedbackRequest, session: SessionDep) -> JSONResponse:
    """Record a review outcome for a staged venue or dish."""
    record = FeedbackService(session).record_feedback(
        request.entity_type,
        request.entity_id,
        request.result_type,
        reviewer=request.reviewer,
        notes=request.notes,
    )
    session.commit()
    return JSONResponse({"feedback": record.model_dump(mode="json")}, status_code=201)


@router.get("/stats")
async def feedback_stats(session: SessionDep) -> JSONResponse:
    stats = FeedbackService(session).get_stats()
    return JSONResponse(stats.model_dump(mode="json"))


@router.post("/process")
async def process_feedback(session: SessionDep, body: ProcessRequest | None = None) -> JSONResponse:
    """Find strategies with too many wrong results and optionally deprecate them."""
    body = body or ProcessRequest()
    summary = FeedbackService(session).process_feedback(
        deprecate_problematic=body.deprecate,
        dry_run=body.dry_run,
    )
    session.commit()
    return JSONResponse(summary)

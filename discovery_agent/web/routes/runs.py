"""Run control routes: start, inspect, stream and cancel discovery and extraction runs."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse

from discovery_agent.core.enums import RunKind, RunStatus
from discovery_agent.core.schema import DiscoveryStartRequest, ExtractionStartRequest, ScraperRun
from discovery_agent.discovery.jobs import enqueue_run
from discovery_agent.services.run_tracker import RunTracker
from discovery_agent.web.dependencies import ConfigDep, SessionDep, require_budget, session_scope

logger = logging.getLogger(__name__)

router = APIRouter(tags=["runs"])

STREAM_POLL_SECONDS = 1.0
HEARTBEAT_SECONDS = 15.0
LOG_TAIL = 20


def run_payload(run: ScraperRun) -> dict[str, Any]:
    """JSON view of a run with the most recent log lines."""
    data = run.model_dump(mode="json", exclude={"logs"})
    data["logs"] = [entry.model_dump(mode="json") for entry in run.logs[-LOG_TAIL:]]
    data["duration_seconds"] = run.duration_seconds
    return data


async def _enqueue(kind: RunKind, run: ScraperRun) -> None:
    try:
        await enqueue_run(kind, run.id)
    except Exception as e:
        # The worker re-enqueues pending runs on startup
        logger.warning(f"Could not enqueue {kind.value} run {run.id}, left pending: {e}")


def _accepted(run: ScraperRun, estimated_cost: float) -> JSONResponse:
    return JSONResponse(
        {
            "runId": str(run.id),
            "statusUrl": f"/runs/{run.id}",
            "streamUrl": f"/runs/{run.id}/stream",
            "status": run.status.value,
            "config": run.config,
            "estimatedCost": estimated_cost,
        },
        status_code=202,
    )


# ============================================================================
# Start
# ============================================================================


@router.post("/discovery/start", status_code=202)
async def start_discovery(
    request: DiscoveryStartRequest,
    session: SessionDep,
    config: ConfigDep,
) -> JSONResponse:
    """
    Create a discovery run and hand it to the worker.

    The budget pre-check runs first; a refused request creates no run.
    """
    affordability = require_budget(session, config, search_queries=request.max_queries)
    scraper_id = f"discovery-{request.mode.value}-{'-'.join(c.value for c in request.countries)}"
    run = RunTracker(session).create(
        RunKind.DISCOVERY, request.model_dump(mode="json", by_alias=True), scraper_id=scraper_id
    )
    session.commit()

    await _enqueue(RunKind.DISCOVERY, run)
    return _accepted(run, affordability.estimated_cost)


@router.post("/extraction/start", status_code=202)
async def start_extraction(
    request: ExtractionStartRequest,
    session: SessionDep,
    config: ConfigDep,
) -> JSONResponse:
    """Create an extraction run and hand it to the worker."""
    affordability = require_budget(session, config, search_queries=0)
    scraper_id = f"extraction-{request.mode.value}-{request.target.value}"
    run = RunTracker(session).create(
        RunKind.EXTRACTION, request.model_dump(mode="json", by_alias=True), scraper_id=scraper_id
    )
    session.commit()

    await _enqueue(RunKind.EXTRACTION, run)
    return _accepted(run, affordability.estimated_cost)


# ============================================================================
# Inspect
# ============================================================================


@router.get("/runs")
async def list_runs(
    session: SessionDep,
    kind: RunKind | None = None,
    status: RunStatus | None = None,
    limit: int = 50,
) -> JSONResponse:
    """List runs, newest first."""
    runs = RunTracker(session).list_runs(kind=kind, status=status, limit=limit)
    return JSONResponse({"runs": [run_payload(r) for r in runs], "count": len(runs)})


@router.get("/runs/{run_id}")
async def get_run(run_id: str, session: SessionDep) -> JSONResponse:
    """Current state and stats of a run."""
    run = RunTracker(session).get(run_id)
    return JSONResponse(run_payload(run))


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def run_events(
    run_id: str,
    poll_interval: float = STREAM_POLL_SECONDS,
    heartbeat_interval: float = HEARTBEAT_SECONDS,
) -> AsyncIterator[str]:
    """
    Server-sent events for one run.

    Emits init once, update whenever status or stats change, heartbeat
    while nothing changes and done when the run reaches a terminal state.
    """
    previous: tuple[str, dict[str, int]] | None = None
    quiet = 0.0
    while True:
        with session_scope() as session:
            run = RunTracker(session).get(run_id)
        payload = run_payload(run)
        state = (run.status.value, dict(run.stats))

        if previous is None:
            yield _sse("init", payload)
        elif state != previous:
            yield _sse("update", payload)
            quiet = 0.0
        elif quiet >= heartbeat_interval:
            yield _sse("heartbeat", {"runId": run_id, "status": run.status.value})
            quiet = 0.0
        previous = state

        if run.status.is_terminal:
            yield _sse("done", payload)
            return

        await asyncio.sleep(poll_interval)
        quiet += poll_interval


@router.get("/runs/{run_id}/stream")
async def stream_run(run_id: str, session: SessionDep) -> StreamingResponse:
    """Stream run progress as server-sent events."""
    RunTracker(session).get(run_id)
    return StreamingResponse(
        run_events(run_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ============================================================================
# Cancel
# ============================================================================


@router.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: str, session: SessionDep) -> JSONResponse:
    """
    Ask a run to stop.

    Pending runs are cancelled at once; running runs stop at the next
    work unit. Terminal runs answer 400.
    """
    tracker = RunTracker(session)
    run = tracker.get(run_id)
    if run.status.is_terminal:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_state", "message": f"Invalid state: run is {run.status.value}"},
        )
    run = tracker.request_cancel(run_id)
    session.commit()
    return JSONResponse({"runId": str(run.id), "status": run.status.value, "cancelRequested": True})

"""
Background Jobs Module
======================

Defines arq tasks that execute discovery and extraction runs.
Uses Redis as the job queue backend.

Runs are created in the database first (status pending) and only their
id travels through the queue. On startup the worker re-enqueues every run
that is still pending, so runs created while no worker was up, or lost
from Redis, are picked up again.
"""

from __future__ import annotations

import logging
import os
from typing import Any
from uuid import UUID

from arq import create_pool
from arq.connections import RedisSettings

from discovery_agent.config import get_default_config
from discovery_agent.core.enums import RunKind
from discovery_agent.core.schema import ScraperRun
from discovery_agent.db.engine import get_session
from discovery_agent.discovery.extraction import ExtractionPipeline
from discovery_agent.discovery.fetcher import PageFetcher
from discovery_agent.discovery.orchestrator import DiscoveryOrchestrator
from discovery_agent.discovery.search import create_search_backend
from discovery_agent.services.run_tracker import RunTracker

logger = logging.getLogger(__name__)

JOB_FUNCTIONS = {
    RunKind.DISCOVERY: "run_discovery",
    RunKind.EXTRACTION: "run_extraction",
}


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


def _summary(run: ScraperRun) -> dict[str, Any]:
    return {
        "run_id": str(run.id),
        "kind": run.kind.value,
        "status": run.status.value,
        "stats": dict(run.stats),
        "errors": list(run.errors),
        "duration_seconds": run.duration_seconds,
    }


def _failure(run_id: str, kind: RunKind, error: Exception) -> dict[str, Any]:
    return {"run_id": run_id, "kind": kind.value, "status": "failed", "errors": [str(error)]}


def _fail_pending(run_id: str, error: Exception) -> None:
    """Mark a run failed when it could not even be started."""
    with get_session() as session:
        tracker = RunTracker(session)
        if not tracker.get(run_id).status.is_terminal:
            tracker.fail(run_id, str(error))
            session.commit()


async def run_discovery(ctx: dict[str, Any], run_id: str) -> dict[str, Any]:
    """
    Execute a discovery run.

    Failures are recorded on the run by the orchestrator; the job itself
    only logs them so arq does not retry a run that already failed.

    Args:
        ctx: arq context (contains Redis connection)
        run_id: Id of a pending discovery run

    Returns:
        Run summary as dictionary
    """
    config = get_default_config()
    try:
        search = create_search_backend(config.discovery)
    except ValueError as e:
        logger.error(f"Cannot start discovery run {run_id}: {e}")
        _fail_pending(run_id, e)
        return _failure(run_id, RunKind.DISCOVERY, e)

    try:
        with get_session() as session:
            orchestrator = DiscoveryOrchestrator(session, search, config)
            run = await orchestrator.run(run_id)
            return _summary(run)
    except Exception as e:
        logger.exception(f"Discovery run {run_id} failed: {e}")
        return _failure(run_id, RunKind.DISCOVERY, e)
    finally:
        await search.close()


async def run_extraction(ctx: dict[str, Any], run_id: str) -> dict[str, Any]:
    """
    Execute an extraction run.

    Args:
        ctx: arq context (contains Redis connection)
        run_id: Id of a pending extraction run

    Returns:
        Run summary as dictionary
    """
    config = get_default_config()
    fetcher = PageFetcher(config.fetch)
    try:
        with get_session() as session:
            pipeline = ExtractionPipeline(session, fetcher, config)
            run = await pipeline.run(run_id)
            return _summary(run)
    except Exception as e:
        logger.exception(f"Extraction run {run_id} failed: {e}")
        return _failure(run_id, RunKind.EXTRACTION, e)
    finally:
        await fetcher.close()


async def execute_run_sync(kind: RunKind, run_id: UUID | str) -> dict[str, Any]:
    """
    Execute a run in the current process (without arq).

    Useful for CLI commands with --sync flag.
    """
    ctx: dict[str, Any] = {"job_id": f"sync-{run_id}"}
    if kind == RunKind.DISCOVERY:
        return await run_discovery(ctx, str(run_id))
    return await run_extraction(ctx, str(run_id))


async def enqueue_run(kind: RunKind, run_id: UUID | str) -> str:
    """
    Enqueue a run for a worker.

    The arq job id is derived from the run id, so enqueueing the same run
    twice is a no-op while the first job is known to Redis.

    Returns:
        Job ID
    """
    job_id = f"{kind.value}-{run_id}"
    redis = await create_pool(get_redis_settings())
    try:
        await redis.enqueue_job(JOB_FUNCTIONS[kind], str(run_id), _job_id=job_id)
    finally:
        await redis.close()
    return job_id


async def requeue_pending_runs(ctx: dict[str, Any]) -> int:
    """
    Worker startup hook: enqueue every run still waiting for a worker.

    Returns:
        Number of runs enqueued
    """
    redis = ctx["redis"]
    with get_session() as session:
        pending = RunTracker(session).list_pending()

    for run in pending:
        await redis.enqueue_job(JOB_FUNCTIONS[run.kind], str(run.id), _job_id=f"{run.kind.value}-{run.id}")
    if pending:
        logger.info(f"Re-enqueued {len(pending)} pending runs")
    return len(pending)


class WorkerSettings:
    """arq worker settings."""

    functions = [run_discovery, run_extraction]
    on_startup = requeue_pending_runs
    redis_settings = get_redis_settings()
    max_jobs = 5
    job_timeout = 3600  # 1 hour
    keep_result = 86400  # 24 hours
    max_tries = 1

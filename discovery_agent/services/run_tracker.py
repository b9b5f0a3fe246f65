"""Run tracker for discovery and extraction runs.

Lifecycle: pending -> running -> completed | failed, plus cancelled for
runs stopped from outside. Every status change is a compare-and-set on
the stored status, so exactly one terminal transition can succeed.
"""

import copy
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from discovery_agent.core.enums import RunKind, RunStatus
from discovery_agent.core.exceptions import InvalidTransitionError, RunNotFoundError, ValidationError
from discovery_agent.core.schema import RunLogEntry, ScraperRun
from discovery_agent.db.repositories import ScraperRunRepository

logger = logging.getLogger(__name__)

ERRORS_STAT = "errors"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class RunTracker:
    """Service owning the state machine of scraper runs."""

    def __init__(self, session: Session, clock: Callable[[], datetime] | None = None):
        self.session = session
        self.clock = clock or _utc_now
        self.repo = ScraperRunRepository(session)

    def create(self, kind: RunKind, config: dict[str, Any], scraper_id: str = "") -> ScraperRun:
        """Create a pending run. The config is copied and never changed afterwards."""
        run = ScraperRun(
            kind=kind,
            scraper_id=scraper_id,
            config=copy.deepcopy(config),
            created_at=self.clock(),
        )
        created = self.repo.create(run)
        logger.info(f"Created {kind.value} run {created.id} ({scraper_id})")
        return created

    def get(self, run_id: UUID | str) -> ScraperRun:
        """Get a run or raise RunNotFoundError."""
        run = self.repo.get_by_id(run_id)
        if run is None:
            raise RunNotFoundError(f"Run {run_id} not found")
        return run

    def start(self, run_id: UUID | str) -> ScraperRun:
        """Move a pending run to running."""
        self._transition(run_id, [RunStatus.PENDING], RunStatus.RUNNING, started_at=self.clock())
        return self.get(run_id)

    def update_stats(self, run_id: UUID | str, delta: dict[str, int]) -> dict[str, int]:
        """
        Add counters to a run.

        Args:
            run_id: Run to update
            delta: Per-key increments; must be non-negative integers

        Returns:
            The counters after the update.
        """
        for key, amount in delta.items():
            if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
                raise ValidationError(f"Stat '{key}' must be a non-negative integer, got {amount!r}")
        self._require(run_id)
        self.repo.increment_stats(run_id, delta)
        return self.repo.get_stats(run_id)

    def add_error(self, run_id: UUID | str, error: str) -> None:
        """Append an error message and count it."""
        self._require(run_id)
        self.repo.add_log(run_id, RunLogEntry(level="error", message=error, created_at=self.clock()))
        self.repo.increment_stats(run_id, {ERRORS_STAT: 1})

    def log(self, run_id: UUID | str, message: str, level: str = "info") -> None:
        """Append a progress message to a run."""
        self.repo.add_log(run_id, RunLogEntry(level=level, message=message, created_at=self.clock()))

    def complete(self, run_id: UUID | str, final_stats: dict[str, int] | None = None) -> ScraperRun:
        """
        Mark a running run completed.

        final_stats raise counters to at least the given values; counters
        never decrease.
        """
        self._transition(run_id, [RunStatus.RUNNING], RunStatus.COMPLETED, completed_at=self.clock())
        if final_stats:
            current = self.repo.get_stats(run_id)
            raise_by = {
                key: value - current.get(key, 0)
                for key, value in final_stats.items()
                if value > current.get(key, 0)
            }
            self.repo.increment_stats(run_id, raise_by)
        logger.info(f"Run {run_id} completed")
        return self.get(run_id)

    def fail(self, run_id: UUID | str, error: str) -> ScraperRun:
        """Mark a pending or running run failed and record the error."""
        self._transition(
            run_id, [RunStatus.PENDING, RunStatus.RUNNING], RunStatus.FAILED, completed_at=self.clock()
        )
        self.add_error(run_id, error)
        logger.error(f"Run {run_id} failed: {error}")
        return self.get(run_id)

    def request_cancel(self, run_id: UUID | str) -> ScraperRun:
        """
        Ask a run to stop.

        A pending run is cancelled immediately. A running run keeps going
        until the worker observes the flag between work units.
        """
        run = self.get(run_id)
        if run.status.is_terminal:
            raise InvalidTransitionError(f"Run {run_id} is already {run.status.value}")
        self.repo.set_cancel_requested(run_id)
        if run.status == RunStatus.PENDING:
            self.repo.transition(
                run_id, [RunStatus.PENDING], RunStatus.CANCELLED, completed_at=self.clock()
            )
        self.log(run_id, "Cancellation requested", level="warning")
        return self.get(run_id)

    def mark_cancelled(self, run_id: UUID | str) -> ScraperRun:
        """Called by the worker once it has stopped a running run."""
        self._transition(run_id, [RunStatus.RUNNING], RunStatus.CANCELLED, completed_at=self.clock())
        logger.info(f"Run {run_id} cancelled")
        return self.get(run_id)

    def is_cancel_requested(self, run_id: UUID | str) -> bool:
        return self.repo.is_cancel_requested(run_id)

    def should_stop(self, run_id: UUID | str) -> bool:
        """
        True once the worker should stop issuing work for a run.

        That is when cancellation was requested or the run already reached
        a terminal status, for example because another task failed it.
        """
        if self.repo.is_cancel_requested(run_id):
            return True
        status = self.repo.get_status(run_id)
        return status is None or status.is_terminal

    def list_runs(
        self,
        kind: RunKind | None = None,
        status: RunStatus | None = None,
        limit: int = 50,
    ) -> list[ScraperRun]:
        """List runs, newest first."""
        return self.repo.list_runs(kind=kind, status=status, limit=limit)

    def list_pending(self, kind: RunKind | None = None) -> list[ScraperRun]:
        """Runs waiting for a worker, oldest first."""
        runs = self.repo.list_runs(kind=kind, status=RunStatus.PENDING, limit=1000)
        return sorted(runs, key=lambda r: r.created_at)

    def get_latest(self, kind: RunKind) -> ScraperRun | None:
        """Most recent run of a kind."""
        runs = self.repo.list_runs(kind=kind, limit=1)
        return runs[0] if runs else None

    def _require(self, run_id: UUID | str) -> RunStatus:
        status = self.repo.get_status(run_id)
        if status is None:
            raise RunNotFoundError(f"Run {run_id} not found")
        return status

    def _transition(
        self,
        run_id: UUID | str,
        from_statuses: list[RunStatus],
        to_status: RunStatus,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> None:
        if self.repo.transition(run_id, from_statuses, to_status, started_at, completed_at):
            return
        status = self._require(run_id)
        expected = ", ".join(s.value for s in from_statuses)
        raise InvalidTransitionError(
            f"Run {run_id} is {status.value}; cannot move to {to_status.value} (expected {expected})"
        )

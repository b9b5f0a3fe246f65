"""Tests for the run tracker."""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from discovery_agent.core.enums import RunKind, RunStatus
from discovery_agent.core.exceptions import InvalidTransitionError, RunNotFoundError, ValidationError
from discovery_agent.db.models import Base
from discovery_agent.services.run_tracker import RunTracker


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create a database session for testing."""
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


class Clock:
    """Manually advanced clock."""

    def __init__(self) -> None:
        self.now = datetime(2026, 6, 1, 7, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def tracker(session: Session, clock: Clock) -> RunTracker:
    return RunTracker(session, clock=clock)


class TestLifecycle:
    """Tests for run status transitions."""

    def test_create_pending(self, tracker: RunTracker) -> None:
        """Test a new run is pending with a copy of its config."""
        config = {"countries": ["CH"], "maxQueries": 5}
        run = tracker.create(RunKind.DISCOVERY, config, scraper_id="discovery-explore-CH")
        config["maxQueries"] = 99

        assert run.status == RunStatus.PENDING
        assert run.kind == RunKind.DISCOVERY
        assert run.scraper_id == "discovery-explore-CH"
        assert tracker.get(run.id).config == {"countries": ["CH"], "maxQueries": 5}
        assert run.started_at is None

    def test_start_and_complete(self, tracker: RunTracker, clock: Clock, session: Session) -> None:
        """Test the happy path records timestamps and duration."""
        run = tracker.create(RunKind.EXTRACTION, {})
        tracker.start(run.id)
        clock.advance(seconds=90)
        done = tracker.complete(run.id, {"venues_discovered": 2})
        session.commit()

        assert done.status == RunStatus.COMPLETED
        assert done.started_at == datetime(2026, 6, 1, 7, 0, tzinfo=UTC)
        assert done.duration_seconds == 90.0
        assert done.stats == {"venues_discovered": 2}

    def test_fail_records_error(self, tracker: RunTracker) -> None:
        """Test failing a run stores the error."""
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.start(run.id)
        failed = tracker.fail(run.id, "search backend unavailable")

        assert failed.status == RunStatus.FAILED
        assert failed.errors == ["search backend unavailable"]
        assert failed.stats["errors"] == 1
        assert failed.completed_at is not None

    def test_pending_run_can_fail(self, tracker: RunTracker) -> None:
        """Test a run that never started can still fail."""
        run = tracker.create(RunKind.DISCOVERY, {})
        assert tracker.fail(run.id, "no api key").status == RunStatus.FAILED

    def test_single_terminal_transition(self, tracker: RunTracker) -> None:
        """Test a finished run cannot finish again."""
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.start(run.id)
        tracker.complete(run.id)

        with pytest.raises(InvalidTransitionError):
            tracker.fail(run.id, "late failure")
        with pytest.raises(InvalidTransitionError):
            tracker.complete(run.id)
        assert tracker.get(run.id).status == RunStatus.COMPLETED

    def test_cannot_start_twice(self, tracker: RunTracker) -> None:
        """Test only a pending run starts."""
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.start(run.id)
        with pytest.raises(InvalidTransitionError):
            tracker.start(run.id)

    def test_unknown_run(self, tracker: RunTracker) -> None:
        """Test unknown ids raise RunNotFoundError."""
        with pytest.raises(RunNotFoundError):
            tracker.get(uuid4())
        with pytest.raises(RunNotFoundError):
            tracker.start(uuid4())


class TestStats:
    """Tests for run counters."""

    def test_increments(self, tracker: RunTracker) -> None:
        """Test deltas accumulate."""
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.update_stats(run.id, {"queries_executed": 2, "venues_discovered": 1})
        stats = tracker.update_stats(run.id, {"queries_executed": 3})

        assert stats == {"queries_executed": 5, "venues_discovered": 1}

    def test_negative_delta_rejected(self, tracker: RunTracker) -> None:
        """Test counters never decrease."""
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.update_stats(run.id, {"queries_executed": 2})
        with pytest.raises(ValidationError):
            tracker.update_stats(run.id, {"queries_executed": -1})
        assert tracker.get(run.id).stats == {"queries_executed": 2}

    def test_final_stats_only_raise(self, tracker: RunTracker) -> None:
        """Test final stats below the current value leave it unchanged."""
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.start(run.id)
        tracker.update_stats(run.id, {"queries_executed": 7})

        done = tracker.complete(run.id, {"queries_executed": 4, "queries_skipped": 2})
        assert done.stats == {"queries_executed": 7, "queries_skipped": 2}

    def test_logs_kept_in_order(self, tracker: RunTracker) -> None:
        """Test log lines are returned oldest first."""
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.log(run.id, "first")
        tracker.log(run.id, "second", level="warning")

        logs = tracker.get(run.id).logs
        assert [entry.message for entry in logs] == ["first", "second"]
        assert logs[1].level == "warning"


class TestCancellation:
    """Tests for cancellation."""

    def test_cancel_pending(self, tracker: RunTracker) -> None:
        """Test a pending run is cancelled at once."""
        run = tracker.create(RunKind.DISCOVERY, {})
        cancelled = tracker.request_cancel(run.id)

        assert cancelled.status == RunStatus.CANCELLED
        assert cancelled.cancel_requested is True
        with pytest.raises(InvalidTransitionError):
            tracker.start(run.id)

    def test_cancel_running(self, tracker: RunTracker) -> None:
        """Test a running run keeps running until the worker stops it."""
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.start(run.id)

        requested = tracker.request_cancel(run.id)
        assert requested.status == RunStatus.RUNNING
        assert tracker.is_cancel_requested(run.id) is True

        assert tracker.mark_cancelled(run.id).status == RunStatus.CANCELLED

    def test_cancel_terminal(self, tracker: RunTracker) -> None:
        """Test a finished run cannot be cancelled."""
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.start(run.id)
        tracker.complete(run.id)
        with pytest.raises(InvalidTransitionError):
            tracker.request_cancel(run.id)


class TestListing:
    """Tests for run queries."""

    def test_list_and_latest(self, tracker: RunTracker, clock: Clock) -> None:
        """Test runs are listed newest first and filtered."""
        first = tracker.create(RunKind.DISCOVERY, {})
        clock.advance(minutes=1)
        second = tracker.create(RunKind.DISCOVERY, {})
        clock.advance(minutes=1)
        extraction = tracker.create(RunKind.EXTRACTION, {})
        tracker.start(second.id)

        assert [r.id for r in tracker.list_runs(kind=RunKind.DISCOVERY)] == [second.id, first.id]
        assert [r.id for r in tracker.list_pending()] == [first.id, extraction.id]
        assert tracker.get_latest(RunKind.EXTRACTION).id == extraction.id
        assert [r.id for r in tracker.list_runs(status=RunStatus.RUNNING)] == [second.id]

"""Tests for web routes."""

import tempfile
from contextlib import contextmanager
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from discovery_agent.config import AgentConfig, BudgetConfig
from discovery_agent.core.enums import Country, Platform, RunKind, RunStatus
from discovery_agent.core.schema import DiscoveredVenue
from discovery_agent.db.models import Base
from discovery_agent.services.budget import BudgetGovernor
from discovery_agent.services.run_tracker import RunTracker
from discovery_agent.services.staging_service import StagingService
from discovery_agent.services.strategy_store import StrategyStore


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def test_engine(temp_db_path):
    """Create a test database engine."""
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_session(test_engine):
    """Create a database session for testing."""
    SessionLocal = sessionmaker(bind=test_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def config():
    return AgentConfig(budget=BudgetConfig(daily_limit=1.0, search_query_paid_cost=1.0))


@pytest.fixture
def enqueued():
    return []


@pytest.fixture
def client(test_engine, config, enqueued, monkeypatch):
    """Create a test client with mocked database and queue."""
    TestSessionLocal = sessionmaker(bind=test_engine)

    @contextmanager
    def mock_get_session():
        session = TestSessionLocal()
        try:
            yield session
        finally:
            session.close()

    async def fake_enqueue(kind, run_id):
        enqueued.append((kind, run_id))
        return f"{kind.value}-{run_id}"

    monkeypatch.setattr("discovery_agent.web.dependencies.get_session", mock_get_session)
    monkeypatch.setattr("discovery_agent.web.routes.runs.enqueue_run", fake_enqueue)

    from discovery_agent.web.app import create_app
    from discovery_agent.web.dependencies import get_config

    app = create_app(init_database=False)
    app.dependency_overrides[get_config] = lambda: config
    return TestClient(app)


def stage_venue(session, slug: str = "tibits-zurich", strategy_id=None) -> DiscoveredVenue:
    venue, _ = StagingService(session).stage_venue(
        DiscoveredVenue(
            name="Tibits",
            platform=Platform.UBER_EATS,
            country=Country.CH,
            url=f"https://www.ubereats.com/ch/store/{slug}",
            discovered_by_strategy_id=strategy_id,
        )
    )
    session.commit()
    return venue


class TestHealth:
    """Tests for the health route."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["latest_runs"] == {"discovery": None, "extraction": None}
        assert data["budget_throttled"] is False


class TestStartRuns:
    """Tests for starting runs."""

    def test_start_discovery(self, client: TestClient, test_session, enqueued) -> None:
        """Test a discovery run is created pending and enqueued."""
        response = client.post(
            "/discovery/start",
            json={"countries": ["CH"], "platforms": ["uber-eats"], "maxQueries": 5},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending"
        assert data["statusUrl"] == f"/runs/{data['runId']}"
        assert data["config"]["maxQueries"] == 5

        run = RunTracker(test_session).get(data["runId"])
        assert run.kind == RunKind.DISCOVERY
        assert run.scraper_id == "discovery-explore-CH"
        assert enqueued == [(RunKind.DISCOVERY, run.id)]

    def test_enqueue_failure_leaves_run_pending(self, client: TestClient, test_session, monkeypatch) -> None:
        """Test a queue outage still accepts the run."""

        async def broken_enqueue(kind, run_id):
            raise ConnectionError("redis down")

        monkeypatch.setattr("discovery_agent.web.routes.runs.enqueue_run", broken_enqueue)
        response = client.post("/discovery/start", json={"countries": ["DE"]})

        assert response.status_code == 202
        assert RunTracker(test_session).get(response.json()["runId"]).status == RunStatus.PENDING

    def test_invalid_request(self, client: TestClient) -> None:
        """Test validation errors answer 400."""
        response = client.post("/discovery/start", json={"countries": []})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation_error"

    def test_enumerate_requires_chain(self, client: TestClient) -> None:
        response = client.post("/discovery/start", json={"countries": ["CH"], "mode": "enumerate"})
        assert response.status_code == 400

    def test_budget_refusal(self, client: TestClient, test_session, config, enqueued) -> None:
        """Test a throttled budget answers 429 without creating a run."""
        BudgetGovernor(test_session, config.budget).record_scraper_costs(search_queries_paid=1)
        test_session.commit()

        response = client.post("/discovery/start", json={"countries": ["CH"]})

        assert response.status_code == 429
        detail = response.json()["detail"]
        assert detail["error"] == "budget_exceeded"
        assert detail["current_cost"] == 1.0
        assert detail["daily_limit"] == 1.0
        assert RunTracker(test_session).list_runs() == []
        assert enqueued == []
        assert len(BudgetGovernor(test_session, config.budget).get_throttle_events()) == 1

    def test_start_extraction(self, client: TestClient, enqueued) -> None:
        response = client.post("/extraction/start", json={"target": "all", "mode": "verify"})

        assert response.status_code == 202
        assert enqueued[0][0] == RunKind.EXTRACTION

    def test_extraction_venue_requires_id(self, client: TestClient) -> None:
        response = client.post("/extraction/start", json={"target": "venue"})
        assert response.status_code == 400


class TestRuns:
    """Tests for run inspection and cancellation."""

    def test_get_run(self, client: TestClient, test_session) -> None:
        run = RunTracker(test_session).create(RunKind.DISCOVERY, {"countries": ["CH"]})
        test_session.commit()

        response = client.get(f"/runs/{run.id}")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["duration_seconds"] is None

    def test_unknown_run(self, client: TestClient) -> None:
        response = client.get(f"/runs/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_list_runs(self, client: TestClient, test_session) -> None:
        tracker = RunTracker(test_session)
        tracker.create(RunKind.DISCOVERY, {})
        tracker.create(RunKind.EXTRACTION, {})
        test_session.commit()

        response = client.get("/runs", params={"kind": "extraction"})
        assert response.json()["count"] == 1

    def test_cancel(self, client: TestClient, test_session) -> None:
        """Test a pending run is cancelled and a second cancel is refused."""
        run = RunTracker(test_session).create(RunKind.DISCOVERY, {})
        test_session.commit()

        response = client.post(f"/runs/{run.id}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        again = client.post(f"/runs/{run.id}/cancel")
        assert again.status_code == 400
        assert again.json()["detail"]["error"] == "invalid_state"

    def test_stream_finished_run(self, client: TestClient, test_session) -> None:
        """Test the event stream of a finished run sends init and done."""
        tracker = RunTracker(test_session)
        run = tracker.create(RunKind.DISCOVERY, {})
        tracker.start(run.id)
        tracker.complete(run.id, {"queries_executed": 3})
        test_session.commit()

        response = client.get(f"/runs/{run.id}/stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        body = response.text
        assert body.index("event: init") < body.index("event: done")
        assert '"queries_executed": 3' in body

    def test_stream_unknown_run(self, client: TestClient) -> None:
        assert client.get(f"/runs/{uuid4()}/stream").status_code == 404


class TestReview:
    """Tests for review routes."""

    def test_queue_and_approve(self, client: TestClient, test_session) -> None:
        venue = stage_venue(test_session)

        queue = client.get("/review/queue").json()
        assert queue["count"] == 1
        assert queue["venues"][0]["id"] == str(venue.id)

        response = client.post(f"/review/venues/{venue.id}/approve")
        assert response.json()["venue"]["status"] == "approved"

        promoted = client.post(f"/review/venues/{venue.id}/promote")
        assert promoted.json()["venue"]["status"] == "promoted"

    def test_promote_pending_refused(self, client: TestClient, test_session) -> None:
        venue = stage_venue(test_session)
        assert client.post(f"/review/venues/{venue.id}/promote").status_code == 400

    def test_reject(self, client: TestClient, test_session) -> None:
        venue = stage_venue(test_session)
        response = client.post(f"/review/venues/{venue.id}/reject", json={"reason": "closed"})
        assert response.json()["venue"]["rejection_reason"] == "closed"

    def test_decisions_update_strategy(self, client: TestClient, test_session) -> None:
        """Test approvals and rejections feed the success rate of the strategy that found the venue."""
        strategy = StrategyStore(test_session).create(
            Platform.UBER_EATS, Country.CH, "site:ubereats.com/ch planted {city}", success_rate=80
        )
        test_session.commit()
        good = stage_venue(test_session, "tibits-zurich", strategy_id=strategy.id)
        bad = stage_venue(test_session, "goldies-zurich", strategy_id=strategy.id)

        client.post(f"/review/venues/{good.id}/approve", json={"reviewer": "ana"})
        response = client.post(
            f"/review/venues/{bad.id}/reject", json={"reason": "no planted on the menu", "reviewer": "ana"}
        )

        assert response.json()["venue"]["status"] == "rejected"
        assert response.json()["venue"]["rejection_reason"] == "no planted on the menu"
        test_session.expire_all()
        updated = StrategyStore(test_session).get(strategy.id)
        assert updated.total_uses == 2
        assert updated.successful_discoveries == 1
        assert updated.false_positives == 1
        assert updated.success_rate == 50
        assert client.get("/feedback/stats").json()["total_feedback"] == 2

    def test_invalid_decision_writes_nothing(self, client: TestClient, test_session) -> None:
        """Test a refused status change leaves no feedback behind."""
        venue = stage_venue(test_session)
        client.post(f"/review/venues/{venue.id}/approve")
        client.post(f"/review/venues/{venue.id}/promote")

        response = client.post(f"/review/venues/{venue.id}/reject", json={"reason": "closed"})

        assert response.status_code == 400
        assert client.get("/feedback/stats").json()["total_feedback"] == 1

    def test_reject_requires_rejecting_outcome(self, client: TestClient, test_session) -> None:
        venue = stage_venue(test_session)
        response = client.post(
            f"/review/venues/{venue.id}/reject", json={"reason": "typo", "resultType": "wrong_name"}
        )
        assert response.status_code == 400

    def test_venue_detail(self, client: TestClient, test_session) -> None:
        venue = stage_venue(test_session)
        data = client.get(f"/review/venues/{venue.id}").json()
        assert data["venue"]["name"] == "Tibits"
        assert data["dishes"] == []
        assert client.get(f"/review/venues/{uuid4()}").status_code == 404


class TestFeedback:
    """Tests for feedback routes."""

    def test_submit_feedback(self, client: TestClient, test_session) -> None:
        venue = stage_venue(test_session)

        response = client.post(
            "/feedback",
            json={"entityType": "venue", "entityId": str(venue.id), "resultType": "correct", "reviewer": "ana"},
        )

        assert response.status_code == 201
        assert response.json()["feedback"]["result_type"] == "correct"
        assert StagingService(test_session).get_venue(venue.id).status.value == "approved"
        assert client.get("/feedback/stats").json()["total_feedback"] == 1

    def test_process(self, client: TestClient) -> None:
        response = client.post("/feedback/process", json={"deprecate": True, "dryRun": True})
        assert response.json() == {"problematic": [], "deprecated": [], "dry_run": True}


class TestStrategiesAndBudget:
    """Tests for strategy and budget routes."""

    def test_strategies(self, client: TestClient, test_session) -> None:
        strategy = StrategyStore(test_session).create(Platform.WOLT, Country.DE, "site:wolt.com/de planted {city}")
        test_session.commit()

        assert client.get("/strategies", params={"platform": "wolt"}).json()["count"] == 1
        assert client.get("/strategies/tiers").json()["counts"]["untested"] == 1

        response = client.post(f"/strategies/{strategy.id}/deprecate", json={"reason": "too broad"})
        assert response.json()["strategy"]["deprecation_reason"] == "too broad"
        assert client.get("/strategies").json()["count"] == 0

    def test_budget_status(self, client: TestClient) -> None:
        data = client.get("/budget/status").json()
        assert data["throttle"]["throttle"] is False
        assert data["throttle"]["daily_limit"] == 1.0
        assert data["throttle_events"] == []

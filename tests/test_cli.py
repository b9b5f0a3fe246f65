"""Tests for CLI commands."""

import tempfile
from contextlib import contextmanager
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

from discovery_agent import __version__
from discovery_agent.cli.main import app
from discovery_agent.config import AgentConfig
from discovery_agent.core.enums import Country, Platform, RunKind, RunStatus
from discovery_agent.db.models import Base
from discovery_agent.services.run_tracker import RunTracker
from discovery_agent.services.strategy_store import StrategyStore

runner = CliRunner()


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
    SessionLocal = sessionmaker(bind=test_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def enqueued():
    return []


@pytest.fixture(autouse=True)
def mock_environment(test_engine, enqueued, monkeypatch):
    """Point the CLI at the test database, a default config and a fake queue."""
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

    config = AgentConfig()
    monkeypatch.setattr("discovery_agent.cli.discovery.get_session", mock_get_session)
    monkeypatch.setattr("discovery_agent.cli.discovery.get_default_config", lambda: config)
    monkeypatch.setattr("discovery_agent.cli.discovery.enqueue_run", fake_enqueue)


class TestBasics:
    """Tests for top-level commands."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_check_config(self, monkeypatch) -> None:
        monkeypatch.setenv("SERPAPI_API_KEY", "k")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///test.db")
        monkeypatch.setattr("discovery_agent.config.get_default_config", lambda: AgentConfig())
        result = runner.invoke(app, ["check-config"])

        assert result.exit_code == 0
        assert "Search: SerpAPI (configured)" in result.output
        assert "Budget: $50.00/day" in result.output


class TestDiscoveryRun:
    """Tests for 'discovery run'."""

    def test_enqueue(self, test_session, enqueued) -> None:
        """Test a run is created and handed to the queue."""
        result = runner.invoke(app, ["discovery", "run", "--countries", "ch,de", "--max-queries", "5"])

        assert result.exit_code == 0, result.output
        assert "Run enqueued successfully" in result.output
        (run,) = RunTracker(test_session).list_runs()
        assert run.status == RunStatus.PENDING
        assert run.config["countries"] == ["CH", "DE"]
        assert run.scraper_id == "discovery-explore-CH-DE"
        assert enqueued == [(RunKind.DISCOVERY, run.id)]

    def test_unknown_country(self, test_session) -> None:
        result = runner.invoke(app, ["discovery", "run", "--countries", "XX"])

        assert result.exit_code == 1
        assert "Error" in result.output
        assert RunTracker(test_session).list_runs() == []

    def test_enumerate_needs_chain(self) -> None:
        result = runner.invoke(app, ["discovery", "run", "-c", "CH", "--mode", "enumerate"])
        assert result.exit_code == 1

    def test_enqueue_failure(self, test_session, monkeypatch) -> None:
        """Test a queue outage leaves the run pending."""

        async def broken_enqueue(kind, run_id):
            raise ConnectionError("redis down")

        monkeypatch.setattr("discovery_agent.cli.discovery.enqueue_run", broken_enqueue)
        result = runner.invoke(app, ["discovery", "run", "-c", "CH"])

        assert result.exit_code == 1
        assert "stays pending" in result.output
        assert RunTracker(test_session).list_runs()[0].status == RunStatus.PENDING


class TestManagementCommands:
    """Tests for strategy, run, budget, feedback and cache commands."""

    def test_seed_and_list(self) -> None:
        first = runner.invoke(app, ["strategies", "seed"])
        second = runner.invoke(app, ["strategies", "seed"])
        listed = runner.invoke(app, ["strategies", "list", "--platform", "wolt"])

        assert first.exit_code == 0
        assert "Seeded 0 strategies" not in first.output
        assert "Seeded 0 strategies" in second.output
        assert listed.exit_code == 0
        assert "No strategies found" not in listed.output

    def test_list_empty(self) -> None:
        result = runner.invoke(app, ["strategies", "list"])
        assert "No strategies found" in result.output

    def test_run_status(self, test_session) -> None:
        run = RunTracker(test_session).create(RunKind.EXTRACTION, {})
        test_session.commit()

        shown = runner.invoke(app, ["runs", "status", str(run.id)])
        missing = runner.invoke(app, ["runs", "status", str(uuid4())])

        assert shown.exit_code == 0
        assert "pending" in shown.output
        assert missing.exit_code == 1

    def test_budget_status(self) -> None:
        result = runner.invoke(app, ["budget", "status"])
        assert result.exit_code == 0
        assert "Not throttled" in result.output

    def test_feedback_process(self) -> None:
        result = runner.invoke(app, ["feedback", "process", "--dry-run"])
        assert "No problematic strategies" in result.output

    def test_cache_cleanup(self) -> None:
        result = runner.invoke(app, ["cache", "cleanup"])
        assert result.exit_code == 0
        assert "Removed 0 expired entries" in result.output

    def test_strategy_show(self, test_session) -> None:
        """Test a strategy is shown with its recorded usage."""
        store = StrategyStore(test_session)
        strategy = store.create(Platform.WOLT, Country.DE, "site:wolt.com/de planted {city}")
        store.record_usage(strategy.id, success=True)
        store.record_usage(strategy.id, success=False, was_false_positive=True)
        test_session.commit()

        shown = runner.invoke(app, ["strategies", "show", str(strategy.id)])
        missing = runner.invoke(app, ["strategies", "show", str(uuid4())])

        assert shown.exit_code == 0, shown.output
        assert "site:wolt.com/de planted {city}" in shown.output
        assert "1 successful, 1 false positives" in shown.output
        assert "false positive" in shown.output
        assert missing.exit_code == 1

    def test_strategy_show_without_usage(self, test_session) -> None:
        strategy = StrategyStore(test_session).create(Platform.SMOOD, Country.CH, "site:smood.ch planted")
        test_session.commit()

        result = runner.invoke(app, ["strategies", "show", str(strategy.id)])
        assert result.exit_code == 0
        assert "No recorded usage yet" in result.output


class TestAdapters:
    """Tests for 'adapters list'."""

    def test_lists_every_platform(self) -> None:
        result = runner.invoke(app, ["adapters", "list"])

        assert result.exit_code == 0
        for platform in Platform:
            assert platform.value in result.output
        assert "WoltAdapter" in result.output

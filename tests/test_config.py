"""Tests for agent configuration loading."""

import tempfile
from pathlib import Path

import pytest
import yaml

from discovery_agent.config import (
    AgentConfig,
    BudgetConfig,
    ConfidenceConfig,
    get_default_config,
    reset_default_config,
)


@pytest.fixture
def config_file():
    """Write a partial configuration file."""
    data = {
        "budget": {"daily_limit": 10, "costs": {"search_query_paid": 0.01}},
        "confidence": {"review_threshold": 70, "weights": {"product": 0.6}},
        "discovery": {"max_queries": 5, "use_free_tier": False},
        "products": {"patterns": [{"pattern": "planted\\s+kebab", "product": "planted.kebab"}]},
        "disabled_platforms": ["smood"],
    }
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "discovery.yaml"
        path.write_text(yaml.safe_dump(data))
        yield path


class TestAgentConfig:
    """Tests for AgentConfig."""

    def test_defaults(self) -> None:
        """Test default limits and weights."""
        config = AgentConfig()
        assert config.budget.daily_limit == 50.0
        assert config.budget.throttle_threshold == 0.8
        assert config.confidence.specific_match == 90
        assert config.confidence.generic_match == 60
        assert config.discovery.max_chain_depth == 2
        assert config.disabled_platforms == []

    def test_load_partial_file(self, config_file: Path) -> None:
        """Test that missing keys fall back to defaults."""
        config = AgentConfig.load(config_file)

        assert config.budget.daily_limit == 10.0
        assert config.budget.monthly_limit == 1000.0
        assert config.budget.search_query_paid_cost == 0.01
        assert config.budget.search_query_free_cost == 0.0
        assert config.confidence.review_threshold == 70
        assert config.confidence.product_weight == 0.6
        assert config.confidence.strategy_weight == 0.3
        assert config.discovery.max_queries == 5
        assert config.discovery.use_free_tier is False
        assert len(config.products.patterns) == 1
        assert config.products.patterns[0].product == "planted.kebab"
        assert config.disabled_platforms == ["smood"]

    def test_load_missing_file(self) -> None:
        """Test that a missing file raises."""
        with pytest.raises(FileNotFoundError):
            AgentConfig.load("/nonexistent/discovery.yaml")

    def test_env_overrides(self, monkeypatch) -> None:
        """Test environment variables override file values."""
        monkeypatch.setenv("DAILY_BUDGET_LIMIT", "5")
        monkeypatch.setenv("SERPAPI_API_KEY", "secret")
        config = AgentConfig()
        config.apply_env_overrides()

        assert config.budget.daily_limit == 5.0
        assert config.discovery.search_api_key == "secret"

    def test_default_config_reads_env_path(self, config_file: Path, monkeypatch) -> None:
        """Test DISCOVERY_CONFIG_PATH selects the file."""
        monkeypatch.setenv("DISCOVERY_CONFIG_PATH", str(config_file))
        monkeypatch.delenv("DAILY_BUDGET_LIMIT", raising=False)
        reset_default_config()
        try:
            config = get_default_config()
            assert config.budget.daily_limit == 10.0
            assert get_default_config() is config
        finally:
            reset_default_config()


class TestSectionDefaults:
    """Tests for per-section from_dict."""

    def test_budget_none(self) -> None:
        """Test None gives defaults."""
        assert BudgetConfig.from_dict(None) == BudgetConfig()

    def test_confidence_none(self) -> None:
        """Test None gives defaults."""
        assert ConfidenceConfig.from_dict(None) == ConfidenceConfig()

"""Tests for success-rate, tier and confidence calculations."""

import pytest

from discovery_agent.config import ConfidenceConfig
from discovery_agent.core.enums import ChainConfidence, StrategyTier
from discovery_agent.core.scoring import (
    classify_tier,
    is_problematic,
    percentage,
    score_venue_confidence,
)


class TestPercentage:
    """Tests for integer percentages."""

    def test_rounds_half_up(self) -> None:
        """Test that halves round up."""
        assert percentage(1, 8) == 13  # 12.5
        assert percentage(1, 3) == 33
        assert percentage(2, 3) == 67

    def test_bounds(self) -> None:
        """Test the extremes."""
        assert percentage(0, 7) == 0
        assert percentage(7, 7) == 100

    def test_single_use_rates(self) -> None:
        """Test that 1/1 then 1/2 gives 100 then 50."""
        assert percentage(1, 1) == 100
        assert percentage(1, 2) == 50

    def test_rejects_zero_total(self) -> None:
        """Test that a zero denominator is refused."""
        with pytest.raises(ValueError):
            percentage(0, 0)

    def test_rejects_part_above_total(self) -> None:
        """Test that part cannot exceed total."""
        with pytest.raises(ValueError):
            percentage(3, 2)


class TestClassifyTier:
    """Tests for strategy tiering."""

    @pytest.mark.parametrize(
        "uses,rate,expected",
        [
            (4, 100, StrategyTier.UNTESTED),
            (5, 70, StrategyTier.HIGH),
            (5, 69, StrategyTier.MEDIUM),
            (10, 40, StrategyTier.MEDIUM),
            (10, 39, StrategyTier.LOW),
            (0, 50, StrategyTier.UNTESTED),
        ],
    )
    def test_tiers(self, uses: int, rate: int, expected: StrategyTier) -> None:
        """Test tier boundaries."""
        assert classify_tier(uses, rate) == expected


class TestIsProblematic:
    """Tests for the feedback error-rate check."""

    def test_needs_enough_samples(self) -> None:
        """Test that four wrong reviews are not enough."""
        assert is_problematic(4, 0) is False

    def test_error_rate_above_threshold(self) -> None:
        """Test that 3 correct of 5 (40% errors) is problematic."""
        assert is_problematic(5, 3) is True

    def test_error_rate_at_threshold(self) -> None:
        """Test that exactly 30% errors is not problematic."""
        assert is_problematic(10, 7) is False


class TestScoreVenueConfidence:
    """Tests for weighted venue confidence."""

    def test_all_signals_strong(self) -> None:
        """Test a specific match from a perfect strategy on a chain."""
        score, factors = score_venue_confidence(
            ConfidenceConfig(),
            product_score=100,
            strategy_success_rate=100,
            chain_confidence=ChainConfidence.HIGH,
            url_matches_platform=True,
        )
        assert score == 100
        assert factors == {"product": 100, "strategy": 100, "chain": 100, "url": 100}

    def test_missing_strategy_uses_prior(self) -> None:
        """Test that ad hoc queries use the default prior."""
        score, factors = score_venue_confidence(
            ConfidenceConfig(),
            product_score=90,
            strategy_success_rate=None,
            chain_confidence=ChainConfidence.LOW,
            url_matches_platform=True,
        )
        assert factors["strategy"] == 50
        # 45 + 15 + 4 + 10
        assert score == 74

    def test_no_product_match_scores_low(self) -> None:
        """Test that a page without a product mention stays under the review threshold."""
        config = ConfidenceConfig()
        score, _ = score_venue_confidence(
            config,
            product_score=0,
            strategy_success_rate=70,
            chain_confidence=ChainConfidence.MEDIUM,
            url_matches_platform=False,
        )
        # 0 + 21 + 7 + 0
        assert score == 28
        assert score < config.review_threshold

    def test_zero_weights(self) -> None:
        """Test that a configuration with no weight scores zero."""
        config = ConfidenceConfig(product_weight=0, strategy_weight=0, chain_weight=0, url_weight=0)
        score, _ = score_venue_confidence(config, 90, 90, ChainConfidence.HIGH, True)
        assert score == 0

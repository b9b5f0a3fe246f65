"""Success-rate, tiering and confidence calculations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from discovery_agent.core.enums import ChainConfidence, StrategyTier

if TYPE_CHECKING:
    from discovery_agent.config import ConfidenceConfig

# Rates from fewer trials than this are not used for tiering or deprecation.
MIN_USES_FOR_TIER = 5

HIGH_TIER_RATE = 70
MEDIUM_TIER_RATE = 40

PROBLEMATIC_ERROR_RATE = 30

CHAIN_FACTOR_SCORES: dict[ChainConfidence, int] = {
    ChainConfidence.HIGH: 100,
    ChainConfidence.MEDIUM: 70,
    ChainConfidence.LOW: 40,
}


def percentage(part: int, total: int) -> int:
    """
    Integer percentage of part/total, rounded half up.

    Args:
        part: Numerator count.
        total: Denominator count, must be positive.

    Returns:
        round(part / total * 100) computed in integer arithmetic.

    Raises:
        ValueError: If total is not positive or part is out of range.
    """
    if total <= 0:
        raise ValueError(f"total must be positive, got {total}")
    if part < 0 or part > total:
        raise ValueError(f"part must be between 0 and {total}, got {part}")
    return (200 * part + total) // (2 * total)


def classify_tier(total_uses: int, success_rate: int) -> StrategyTier:
    """
    Classify a strategy into a performance tier.

    Strategies with fewer than MIN_USES_FOR_TIER uses are untested
    regardless of their rate.
    """
    if total_uses < MIN_USES_FOR_TIER:
        return StrategyTier.UNTESTED
    if success_rate >= HIGH_TIER_RATE:
        return StrategyTier.HIGH
    if success_rate >= MEDIUM_TIER_RATE:
        return StrategyTier.MEDIUM
    return StrategyTier.LOW


def is_problematic(total: int, correct: int) -> bool:
    """Whether feedback shows an error rate above the threshold with enough samples."""
    if total < MIN_USES_FOR_TIER:
        return False
    return 100 - percentage(correct, total) > PROBLEMATIC_ERROR_RATE


def score_venue_confidence(
    config: ConfidenceConfig,
    product_score: int,
    strategy_success_rate: int | None,
    chain_confidence: ChainConfidence,
    url_matches_platform: bool,
) -> tuple[int, dict[str, int]]:
    """
    Combine independent signals into a 0-100 venue confidence score.

    Args:
        config: Weights and defaults.
        product_score: Adapter pattern specificity (0 when no product matched).
        strategy_success_rate: Rate of the strategy that found the venue,
            or None for ad hoc queries.
        chain_confidence: Chain detection outcome.
        url_matches_platform: Whether the URL belongs to the expected platform.

    Returns:
        Tuple of (score, per-factor scores).
    """
    strategy_score = (
        strategy_success_rate
        if strategy_success_rate is not None
        else config.default_strategy_prior
    )
    factors = {
        "product": product_score,
        "strategy": strategy_score,
        "chain": CHAIN_FACTOR_SCORES[chain_confidence],
        "url": 100 if url_matches_platform else 0,
    }
    weighted = (
        factors["product"] * config.product_weight
        + factors["strategy"] * config.strategy_weight
        + factors["chain"] * config.chain_weight
        + factors["url"] * config.url_weight
    )
    total_weight = (
        config.product_weight + config.strategy_weight + config.chain_weight + config.url_weight
    )
    score = int(weighted / total_weight + 0.5) if total_weight > 0 else 0
    return max(0, min(100, score)), factors

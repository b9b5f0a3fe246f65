"""Strategy store: ranked, self-tuning query templates.

Strategies are scoped to a (platform, country) pair. Every use appends
to the usage log and updates the counters; success_rate is always
recomputed from the stored counts, never averaged incrementally.
"""

import logging
import re
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from discovery_agent.core.enums import Country, Platform, StrategyOrigin, StrategyTier
from discovery_agent.core.exceptions import StrategyNotFoundError, ValidationError
from discovery_agent.core.markets import SEED_STRATEGIES, platform_site
from discovery_agent.core.schema import Strategy, StrategyTiers, StrategyUsage
from discovery_agent.core.scoring import classify_tier, percentage
from discovery_agent.db.repositories import StrategyRepository, StrategyUsageRepository

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def template_variables(template: str) -> set[str]:
    """Return the placeholder names used by a query template."""
    return set(_PLACEHOLDER.findall(template))


def render_query(template: str, variables: dict[str, str]) -> str:
    """
    Fill a query template.

    Args:
        template: Template such as 'site:wolt.com/de planted {city}'.
        variables: Values for placeholders ({city}, {chain}, {platform}, {country}).

    Returns:
        The rendered query with whitespace collapsed.

    Raises:
        ValidationError: If a placeholder has no value.
    """
    missing = template_variables(template) - set(variables)
    if missing:
        raise ValidationError(f"Missing template values: {', '.join(sorted(missing))}")
    rendered = _PLACEHOLDER.sub(lambda m: str(variables[m.group(1)]), template)
    return " ".join(rendered.split())


def _rank_key(strategy: Strategy) -> tuple[Any, ...]:
    # Higher rate first; among equals prefer the less tested strategy
    return (-strategy.success_rate, strategy.total_uses, strategy.created_at, str(strategy.id))


class StrategyStore:
    """Service for selecting, tracking and evolving query strategies."""

    def __init__(self, session: Session, clock: Callable[[], datetime] | None = None):
        """
        Initialize the strategy store.

        Args:
            session: SQLAlchemy session (caller commits)
            clock: Returns the current UTC time; injectable for tests
        """
        self.session = session
        self.clock = clock or _utc_now
        self.strategies = StrategyRepository(session)
        self.usage = StrategyUsageRepository(session)

    def get(self, strategy_id: UUID | str) -> Strategy:
        """Get a strategy or raise StrategyNotFoundError."""
        strategy = self.strategies.get_by_id(strategy_id)
        if strategy is None:
            raise StrategyNotFoundError(f"Strategy {strategy_id} not found")
        return strategy

    def create(
        self,
        platform: Platform,
        country: Country,
        query_template: str,
        success_rate: int = 50,
        tags: list[str] | None = None,
        origin: StrategyOrigin = StrategyOrigin.MANUAL,
        parent_strategy_id: UUID | None = None,
    ) -> Strategy:
        """Create a new strategy with zeroed counters."""
        now = self.clock()
        strategy = Strategy(
            platform=platform,
            country=country,
            query_template=query_template,
            success_rate=success_rate,
            tags=list(tags or []),
            origin=origin,
            parent_strategy_id=parent_strategy_id,
            created_at=now,
            updated_at=now,
        )
        return self.strategies.create(strategy)

    def get_active_strategies(
        self,
        platform: Platform,
        country: Country,
        min_success_rate: int | None = None,
        tags: Iterable[str] | None = None,
    ) -> list[Strategy]:
        """
        Get non-deprecated strategies for a target, best first.

        Args:
            platform: Delivery platform
            country: Market
            min_success_rate: Only strategies at or above this rate
            tags: Only strategies carrying at least one of these tags

        Returns:
            Strategies sorted by success_rate descending, then by fewer
            uses, creation time and id so the order is deterministic.
        """
        strategies = self.strategies.list_active(platform, country)
        if min_success_rate is not None:
            strategies = [s for s in strategies if s.success_rate >= min_success_rate]
        if tags:
            wanted = set(tags)
            strategies = [s for s in strategies if wanted.intersection(s.tags)]
        return sorted(strategies, key=_rank_key)

    def record_usage(
        self,
        strategy_id: UUID | str,
        success: bool,
        was_false_positive: bool = False,
        run_id: UUID | None = None,
    ) -> Strategy:
        """
        Record one outcome of a strategy.

        Appends to the usage log, increments the counters in place and
        stores a success_rate recomputed from the updated counts.

        Raises:
            StrategyNotFoundError: If the strategy does not exist.
        """
        now = self.clock()
        if not self.strategies.increment_counters(strategy_id, success, was_false_positive, now):
            raise StrategyNotFoundError(f"Strategy {strategy_id} not found")

        self.usage.append(
            StrategyUsage(
                strategy_id=UUID(str(strategy_id)),
                success=success,
                was_false_positive=was_false_positive,
                run_id=run_id,
                created_at=now,
            )
        )

        strategy = self.get(strategy_id)
        rate = percentage(strategy.successful_discoveries, strategy.total_uses)
        self.strategies.set_success_rate(strategy_id, rate)
        return strategy.model_copy(update={"success_rate": rate})

    def get_usage_history(self, strategy_id: UUID | str, limit: int | None = None) -> list[StrategyUsage]:
        """
        Recorded outcomes of a strategy, newest first.

        Raises:
            StrategyNotFoundError: If the strategy does not exist.
        """
        self.get(strategy_id)
        history = list(reversed(self.usage.list_for_strategy(strategy_id)))
        return history[:limit] if limit is not None else history

    def recompute_from_log(self, strategy_id: UUID | str) -> Strategy:
        """
        Rebuild a strategy's counters from its usage log.

        A strategy with an empty log keeps its prior rate.
        """
        strategy = self.get(strategy_id)
        total, successes, false_positives = self.usage.totals_for_strategy(strategy_id)
        rate = percentage(successes, total) if total > 0 else strategy.success_rate
        self.strategies.set_counters(
            strategy_id,
            total_uses=total,
            successful_discoveries=successes,
            false_positives=false_positives,
            success_rate=rate,
            now=self.clock(),
        )
        if total != strategy.total_uses or successes != strategy.successful_discoveries:
            logger.warning(
                f"Strategy {strategy_id} counters drifted from log: "
                f"{strategy.successful_discoveries}/{strategy.total_uses} -> {successes}/{total}"
            )
        return self.get(strategy_id)

    def create_evolved(
        self,
        parent_id: UUID | str,
        new_template: str,
        tags: list[str] | None = None,
    ) -> Strategy:
        """
        Derive a new strategy from an existing one.

        The child starts with zeroed counters and the parent's rate as a prior.
        """
        parent = self.get(parent_id)
        evolved = self.create(
            platform=parent.platform,
            country=parent.country,
            query_template=new_template,
            success_rate=parent.success_rate,
            tags=tags if tags is not None else parent.tags,
            origin=StrategyOrigin.EVOLVED,
            parent_strategy_id=parent.id,
        )
        logger.info(f"Evolved strategy {evolved.id} from {parent.id}: {new_template}")
        return evolved

    def get_strategy_tiers(
        self,
        platform: Platform | None = None,
        country: Country | None = None,
    ) -> StrategyTiers:
        """Partition active strategies into high/medium/low/untested tiers."""
        tiers = StrategyTiers()
        for strategy in sorted(self.strategies.list_active(platform, country), key=_rank_key):
            tier = classify_tier(strategy.total_uses, strategy.success_rate)
            if tier == StrategyTier.HIGH:
                tiers.high.append(strategy)
            elif tier == StrategyTier.MEDIUM:
                tiers.medium.append(strategy)
            elif tier == StrategyTier.LOW:
                tiers.low.append(strategy)
            else:
                tiers.untested.append(strategy)
        return tiers

    def deprecate(self, strategy_id: UUID | str, reason: str) -> Strategy:
        """Permanently exclude a strategy from selection."""
        if not self.strategies.deprecate(strategy_id, reason, self.clock()):
            raise StrategyNotFoundError(f"Strategy {strategy_id} not found")
        logger.info(f"Deprecated strategy {strategy_id}: {reason}")
        return self.get(strategy_id)

    def list_strategies(
        self,
        platform: Platform | None = None,
        country: Country | None = None,
        include_deprecated: bool = False,
        limit: int = 500,
    ) -> list[Strategy]:
        """List strategies for display; active ones are ranked, deprecated ones sort last."""
        if include_deprecated:
            strategies = [
                s
                for s in self.strategies.list_all(limit=limit)
                if (platform is None or s.platform == platform) and (country is None or s.country == country)
            ]
        else:
            strategies = self.strategies.list_active(platform, country)
        return sorted(strategies, key=lambda s: (not s.is_active, _rank_key(s)))[:limit]

    def get_top_strategies(self, limit: int = 10) -> list[Strategy]:
        """Best active strategies across all targets."""
        return sorted(self.strategies.list_active(), key=_rank_key)[:limit]

    def get_undertested_strategies(self, max_uses: int = 5) -> list[Strategy]:
        """Active strategies with fewer than max_uses recorded uses."""
        return sorted(
            (s for s in self.strategies.list_active() if s.total_uses < max_uses),
            key=_rank_key,
        )

    def render_query(self, strategy: Strategy, variables: dict[str, str] | None = None) -> str:
        """Render a strategy's template; {platform} and {country} come from its scope."""
        values = {
            "platform": platform_site(strategy.platform, strategy.country),
            "country": strategy.country.value,
        }
        values.update(variables or {})
        return render_query(strategy.query_template, values)

    def seed_strategies(self, seeds: list[dict[str, Any]] | None = None) -> int:
        """
        Insert seed strategies that do not exist yet.

        Returns:
            Number of strategies created.
        """
        created = 0
        for seed in seeds if seeds is not None else SEED_STRATEGIES:
            platform = Platform(seed["platform"])
            country = Country(seed["country"])
            template = seed["query_template"]
            if self.strategies.find_by_template(platform, country, template) is not None:
                continue
            self.create(
                platform=platform,
                country=country,
                query_template=template,
                success_rate=int(seed.get("success_rate", 50)),
                tags=list(seed.get("tags", [])),
                origin=StrategyOrigin(seed.get("origin", StrategyOrigin.SEED)),
            )
            created += 1
        logger.info(f"Seeded {created} strategies")
        return created

"""Budget governor.

Tracks daily and monthly spend on search queries and AI calls and
decides when new paid work should be throttled. The governor is
advisory: callers check it and refuse work themselves.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from discovery_agent.config import BudgetConfig, get_default_config
from discovery_agent.core.schema import (
    AffordabilityResult,
    BudgetLedger,
    BudgetStatus,
    ThrottleCheckResult,
    ThrottleEvent,
)
from discovery_agent.db.repositories import BudgetRepository

logger = logging.getLogger(__name__)

# Costs are stored as floats; compare at micro-dollar precision.
_COST_PRECISION = 6


def _utc_now() -> datetime:
    return datetime.now(UTC)


def day_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def month_key(now: datetime) -> str:
    return now.strftime("%Y-%m")


class BudgetGovernor:
    """Service for cost estimation, recording and throttling."""

    def __init__(
        self,
        session: Session,
        config: BudgetConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the budget governor.

        Args:
            session: SQLAlchemy session (caller commits)
            config: Limits and unit costs (defaults to the global config)
            clock: Returns the current UTC time
        """
        self.session = session
        self.config = config or get_default_config().budget
        self.clock = clock or _utc_now
        self.repo = BudgetRepository(session)

    def get_today(self) -> BudgetLedger:
        """Today's ledger row, zeroed if nothing was spent yet."""
        now = self.clock()
        ledger = self.repo.get_day(day_key(now))
        return ledger or BudgetLedger(day_key=day_key(now), month_key=month_key(now))

    def should_throttle(self) -> ThrottleCheckResult:
        """
        Check whether new paid work should be throttled.

        Throttles when today's spend reaches daily_limit * throttle_threshold
        or the month's spend reaches monthly_limit. Every throttle decision
        is appended to the audit log.
        """
        result = self._evaluate()
        if result.throttle:
            logger.warning(f"Budget throttle: {result.reason}")
            self.repo.add_throttle_event(
                ThrottleEvent(
                    reason=result.reason or "",
                    current_cost=result.current_cost,
                    monthly_cost=result.monthly_cost,
                    created_at=self.clock(),
                )
            )
        return result

    def estimate_scraper_cost(
        self,
        search_queries: int,
        ai_calls: int,
        use_free_tier: bool = True,
    ) -> float:
        """
        Estimate the cost of a run in USD.

        AI calls are spread across model tiers using the configured split.
        """
        per_query = (
            self.config.search_query_free_cost if use_free_tier else self.config.search_query_paid_cost
        )
        search_cost = search_queries * per_query
        ai_cost = sum(
            ai_calls * share * self.config.ai_call_costs.get(tier, 0.0)
            for tier, share in self.config.ai_tier_split.items()
        )
        return round(search_cost + ai_cost, _COST_PRECISION)

    def can_afford_scraper_run(
        self,
        search_queries: int,
        ai_calls: int,
        use_free_tier: bool = True,
    ) -> AffordabilityResult:
        """Check a planned run against the throttle and the remaining daily budget."""
        estimated = self.estimate_scraper_cost(search_queries, ai_calls, use_free_tier)
        check = self.should_throttle()
        if check.throttle:
            return AffordabilityResult(can_afford=False, estimated_cost=estimated, reason=check.reason)
        if round(estimated, _COST_PRECISION) > round(check.remaining_budget, _COST_PRECISION):
            return AffordabilityResult(
                can_afford=False,
                estimated_cost=estimated,
                reason=(
                    f"Estimated cost (${estimated:.4f}) exceeds remaining daily budget "
                    f"(${check.remaining_budget:.2f})"
                ),
            )
        return AffordabilityResult(can_afford=True, estimated_cost=estimated)

    def record_scraper_costs(
        self,
        search_queries_free: int = 0,
        search_queries_paid: int = 0,
        ai_calls_by_tier: dict[str, int] | None = None,
    ) -> BudgetLedger:
        """
        Add actual usage to today's ledger.

        Args:
            search_queries_free: Queries on the free search tier
            search_queries_paid: Queries billed per request
            ai_calls_by_tier: Number of AI calls per model tier

        Returns:
            Today's ledger after the update.
        """
        ai_calls_by_tier = ai_calls_by_tier or {}
        search_cost = (
            search_queries_free * self.config.search_query_free_cost
            + search_queries_paid * self.config.search_query_paid_cost
        )
        ai_cost = sum(
            calls * self.config.ai_call_costs.get(tier, 0.0) for tier, calls in ai_calls_by_tier.items()
        )
        now = self.clock()
        self.repo.increment(
            day_key(now),
            month_key(now),
            search_queries_free=search_queries_free,
            search_queries_paid=search_queries_paid,
            ai_calls=sum(ai_calls_by_tier.values()),
            search_cost=round(search_cost, _COST_PRECISION),
            ai_cost=round(ai_cost, _COST_PRECISION),
        )
        return self.get_today()

    def get_status(self) -> BudgetStatus:
        """Dashboard view; does not write throttle events."""
        check = self._evaluate()
        return BudgetStatus(today=self.get_today(), monthly_cost=check.monthly_cost, throttle=check)

    def get_throttle_events(self, limit: int = 50) -> list[ThrottleEvent]:
        """Recent throttle decisions, newest first."""
        return self.repo.list_throttle_events(limit)

    def _evaluate(self) -> ThrottleCheckResult:
        now = self.clock()
        today = self.get_today()
        current = round(today.total_cost, _COST_PRECISION)
        monthly = round(self.repo.month_total(month_key(now)), _COST_PRECISION)
        daily_limit = self.config.daily_limit
        monthly_limit = self.config.monthly_limit
        threshold = self.config.throttle_threshold

        percentage_used = round(current / daily_limit * 100, 2) if daily_limit > 0 else 100.0
        remaining = round(daily_limit - current, _COST_PRECISION)

        reason = None
        if current >= round(daily_limit * threshold, _COST_PRECISION):
            reason = (
                f"Daily budget at {percentage_used:.1f}% (${current:.2f}/${daily_limit:.2f} USD). "
                f"Throttle threshold: {threshold * 100:.0f}%"
            )
        elif monthly >= monthly_limit:
            reason = f"Monthly budget exceeded: ${monthly:.2f}/${monthly_limit:.2f} USD"

        return ThrottleCheckResult(
            throttle=reason is not None,
            reason=reason,
            current_cost=current,
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
            monthly_cost=monthly,
            percentage_used=percentage_used,
            remaining_budget=remaining,
        )

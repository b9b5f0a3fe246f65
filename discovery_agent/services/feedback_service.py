"""Feedback service: closes the loop between human review and strategies.

Review outcomes are appended to the feedback log, applied to the staged
entity and fed back into the strategy that discovered it. All statistics
are aggregated from the log.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from discovery_agent.core.enums import EntityStatus, EntityType, FeedbackResultType
from discovery_agent.core.exceptions import InvalidTransitionError
from discovery_agent.core.schema import FeedbackRecord, FeedbackStats, StrategyPerformance
from discovery_agent.core.scoring import is_problematic, percentage
from discovery_agent.db.repositories import FeedbackRepository
from discovery_agent.services.staging_service import StagingService
from discovery_agent.services.strategy_store import StrategyStore

logger = logging.getLogger(__name__)

# Review decision applied to the staged entity for each outcome.
RESULT_STATUS: dict[FeedbackResultType, EntityStatus] = {
    FeedbackResultType.CORRECT: EntityStatus.APPROVED,
    FeedbackResultType.NOT_PLANTED: EntityStatus.REJECTED,
    FeedbackResultType.WRONG_PRODUCT: EntityStatus.REJECTED,
    FeedbackResultType.NOT_FOUND: EntityStatus.REJECTED,
    FeedbackResultType.WRONG_PRICE: EntityStatus.NEEDS_REVIEW,
    FeedbackResultType.WRONG_NAME: EntityStatus.NEEDS_REVIEW,
    FeedbackResultType.ERROR: EntityStatus.NEEDS_REVIEW,
}

PROBLEMATIC_LIMIT = 10


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _performance(strategy_id: UUID | str, counts: dict[str, int]) -> StrategyPerformance:
    total = sum(counts.values())
    correct = counts.get(FeedbackResultType.CORRECT.value, 0)
    success_rate = percentage(correct, total) if total else 0
    return StrategyPerformance(
        strategy_id=UUID(str(strategy_id)),
        total=total,
        correct=correct,
        success_rate=success_rate,
        error_rate=100 - success_rate if total else 0,
        by_result_type=dict(counts),
    )


class FeedbackService:
    """Service for recording reviews and analysing strategy quality."""

    def __init__(
        self,
        session: Session,
        strategy_store: StrategyStore | None = None,
        staging: StagingService | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session = session
        self.clock = clock or _utc_now
        self.strategy_store = strategy_store or StrategyStore(session, clock=self.clock)
        self.staging = staging or StagingService(session, clock=self.clock)
        self.repo = FeedbackRepository(session)

    def record_feedback(
        self,
        entity_type: EntityType,
        entity_id: UUID | str,
        result_type: FeedbackResultType,
        reviewer: str = "unknown",
        notes: str = "",
        strict: bool = False,
    ) -> FeedbackRecord:
        """
        Record a review outcome.

        The strategy is resolved from the staged venue (or the dish's
        venue). When one is known its usage is recorded with
        success = correct and false positive = not_planted / wrong_product.

        Args:
            strict: Raise instead of logging when the entity cannot move to
                the status the outcome implies. Nothing is written then.

        Raises:
            EntityNotFoundError: If the entity does not exist.
            InvalidTransitionError: If strict and the status change is not allowed.
        """
        if entity_type == EntityType.VENUE:
            venue = self.staging.get_venue(entity_id)
        else:
            dish = self.staging.get_dish(entity_id)
            venue = self.staging.get_venue(dish.venue_id)
        strategy_id = venue.discovered_by_strategy_id

        self._apply_decision(entity_type, entity_id, result_type, notes, strict)

        record = self.repo.create(
            FeedbackRecord(
                entity_type=entity_type,
                entity_id=UUID(str(entity_id)),
                strategy_id=strategy_id,
                result_type=result_type,
                reviewer=reviewer,
                notes=notes,
                created_at=self.clock(),
            )
        )

        if strategy_id is not None:
            self.strategy_store.record_usage(
                strategy_id,
                success=result_type == FeedbackResultType.CORRECT,
                was_false_positive=result_type.is_false_positive,
            )
        logger.info(f"Feedback {result_type.value} for {entity_type.value} {entity_id} by {reviewer}")
        return record

    def get_strategy_performance(self, strategy_id: UUID | str) -> StrategyPerformance:
        """Feedback-derived performance of one strategy."""
        return _performance(strategy_id, self.repo.counts_by_result_type(strategy_id))

    def get_problematic_strategies(self, limit: int = PROBLEMATIC_LIMIT) -> list[StrategyPerformance]:
        """Strategies with enough feedback and an error rate above the threshold, worst first."""
        problematic = [
            _performance(strategy_id, counts)
            for strategy_id, counts in self.repo.counts_by_strategy().items()
        ]
        problematic = [p for p in problematic if is_problematic(p.total, p.correct)]
        problematic.sort(key=lambda p: (-p.error_rate, -p.total, str(p.strategy_id)))
        return problematic[:limit]

    def get_stats(self) -> FeedbackStats:
        """Pipeline-wide review statistics."""
        by_result_type = self.repo.counts_by_result_type()
        total = sum(by_result_type.values())
        correct = by_result_type.get(FeedbackResultType.CORRECT.value, 0)
        start_of_day = self.clock().replace(hour=0, minute=0, second=0, microsecond=0)
        return FeedbackStats(
            total_feedback=total,
            overall_success_rate=percentage(correct, total) if total else 0,
            by_result_type=by_result_type,
            by_strategy={
                strategy_id: _performance(strategy_id, counts)
                for strategy_id, counts in self.repo.counts_by_strategy().items()
            },
            reviewed_today=self.repo.count_since(start_of_day),
        )

    def process_feedback(
        self,
        deprecate_problematic: bool = False,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        """
        Review strategy quality from accumulated feedback.

        Args:
            deprecate_problematic: Deprecate strategies flagged as problematic
            dry_run: Report what would happen without changing anything

        Returns:
            Summary with problematic strategies and the ids deprecated.
        """
        problematic = self.get_problematic_strategies()
        deprecated: list[str] = []
        for perf in problematic:
            logger.warning(
                f"Strategy {perf.strategy_id} has {perf.error_rate}% errors over {perf.total} reviews"
            )
            if deprecate_problematic and not dry_run:
                self.strategy_store.deprecate(
                    perf.strategy_id,
                    f"Error rate {perf.error_rate}% over {perf.total} reviews",
                )
                deprecated.append(str(perf.strategy_id))
        return {
            "problematic": [p.model_dump(mode="json") for p in problematic],
            "deprecated": deprecated,
            "dry_run": dry_run,
        }

    def _apply_decision(
        self,
        entity_type: EntityType,
        entity_id: UUID | str,
        result_type: FeedbackResultType,
        notes: str,
        strict: bool = False,
    ) -> None:
        status = RESULT_STATUS[result_type]
        reason = notes or result_type.value
        try:
            if entity_type == EntityType.VENUE:
                self.staging.set_venue_status(entity_id, status, reason)
            else:
                self.staging.set_dish_status(entity_id, status, reason)
        except InvalidTransitionError as e:
            if strict:
                raise
            # Feedback on promoted entities is still logged and counted
            logger.info(f"Review status of {entity_type.value} {entity_id} unchanged: {e}")

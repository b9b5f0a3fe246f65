"""Repository classes for database operations.

Repositories flush but never commit; the caller owns the transaction.
Counter updates are expressed as ``col = col + delta`` so concurrent
writers never lose increments.
"""

import json
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from discovery_agent.core.enums import (
    ChainConfidence,
    Country,
    EntityStatus,
    EntityType,
    FeedbackResultType,
    Platform,
    RunKind,
    RunStatus,
    StrategyOrigin,
)
from discovery_agent.core.schema import (
    BudgetLedger,
    DiscoveredDish,
    DiscoveredVenue,
    FeedbackRecord,
    QueryCacheEntry,
    RunLogEntry,
    ScraperRun,
    Strategy,
    StrategyUsage,
    ThrottleEvent,
)
from discovery_agent.db.models import (
    BudgetLedgerDB,
    DiscoveredDishDB,
    DiscoveredVenueDB,
    FeedbackDB,
    QueryCacheDB,
    QueryClaimDB,
    RunLogDB,
    RunStatDB,
    ScraperRunDB,
    StrategyDB,
    StrategyUsageDB,
    ThrottleEventDB,
)


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _uuid_or_none(value: str | None) -> UUID | None:
    return UUID(value) if value else None


# Bulk deletes look up matching rows first so the identity map stays in step
_SYNC_FETCH = {"synchronize_session": "fetch"}


# ============================================================================
# Strategies
# ============================================================================


class StrategyRepository:
    """Repository for Strategy persistence."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, strategy: Strategy) -> Strategy:
        """Create a new strategy."""
        db_item = StrategyDB(
            id=str(strategy.id),
            platform=strategy.platform.value,
            country=strategy.country.value,
            query_template=strategy.query_template,
            success_rate=strategy.success_rate,
            total_uses=strategy.total_uses,
            successful_discoveries=strategy.successful_discoveries,
            false_positives=strategy.false_positives,
            tags_json=json.dumps(strategy.tags),
            origin=strategy.origin.value,
            parent_strategy_id=str(strategy.parent_strategy_id) if strategy.parent_strategy_id else None,
            created_at=strategy.created_at,
            updated_at=strategy.updated_at,
            last_used=strategy.last_used,
            deprecated_at=strategy.deprecated_at,
            deprecation_reason=strategy.deprecation_reason,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, strategy_id: UUID | str) -> Strategy | None:
        """Get a strategy by ID."""
        db_item = self._get_db(strategy_id)
        return self._to_domain(db_item) if db_item else None

    def find_by_template(
        self, platform: Platform, country: Country, query_template: str
    ) -> Strategy | None:
        """Find a strategy by its (platform, country, template) triple."""
        stmt = select(StrategyDB).where(
            StrategyDB.platform == platform.value,
            StrategyDB.country == country.value,
            StrategyDB.query_template == query_template,
        )
        db_item = self.session.execute(stmt).scalars().first()
        return self._to_domain(db_item) if db_item else None

    def list_active(
        self,
        platform: Platform | None = None,
        country: Country | None = None,
    ) -> list[Strategy]:
        """List non-deprecated strategies, optionally scoped."""
        stmt = select(StrategyDB).where(StrategyDB.deprecated_at.is_(None))
        if platform is not None:
            stmt = stmt.where(StrategyDB.platform == platform.value)
        if country is not None:
            stmt = stmt.where(StrategyDB.country == country.value)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(s) for s in result]

    def list_all(self, limit: int = 500, offset: int = 0) -> list[Strategy]:
        """List every strategy including deprecated ones."""
        stmt = (
            select(StrategyDB)
            .order_by(StrategyDB.platform, StrategyDB.country, StrategyDB.created_at)
            .limit(limit)
            .offset(offset)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(s) for s in result]

    def increment_counters(
        self,
        strategy_id: UUID | str,
        success: bool,
        was_false_positive: bool,
        now: datetime,
    ) -> bool:
        """
        Atomically add one use to a strategy's counters.

        Returns:
            False if the strategy does not exist.
        """
        stmt = (
            update(StrategyDB)
            .where(StrategyDB.id == str(strategy_id))
            .values(
                total_uses=StrategyDB.total_uses + 1,
                successful_discoveries=StrategyDB.successful_discoveries + (1 if success else 0),
                false_positives=StrategyDB.false_positives + (1 if was_false_positive else 0),
                last_used=now,
                updated_at=now,
            )
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def set_counters(
        self,
        strategy_id: UUID | str,
        total_uses: int,
        successful_discoveries: int,
        false_positives: int,
        success_rate: int,
        now: datetime,
    ) -> None:
        """Overwrite counters and rate, used when rebuilding from the log."""
        stmt = (
            update(StrategyDB)
            .where(StrategyDB.id == str(strategy_id))
            .values(
                total_uses=total_uses,
                successful_discoveries=successful_discoveries,
                false_positives=false_positives,
                success_rate=success_rate,
                updated_at=now,
            )
        )
        self.session.execute(stmt)
        self.session.flush()

    def set_success_rate(self, strategy_id: UUID | str, success_rate: int) -> None:
        """Store a freshly computed success rate."""
        stmt = (
            update(StrategyDB)
            .where(StrategyDB.id == str(strategy_id))
            .values(success_rate=success_rate)
        )
        self.session.execute(stmt)
        self.session.flush()

    def deprecate(self, strategy_id: UUID | str, reason: str, now: datetime) -> bool:
        """Mark a strategy deprecated. Returns False if not found."""
        db_item = self._get_db(strategy_id)
        if db_item is None:
            return False
        if db_item.deprecated_at is None:
            db_item.deprecated_at = now
            db_item.deprecation_reason = reason
            db_item.updated_at = now
            self.session.flush()
        return True

    def count(self, include_deprecated: bool = False) -> int:
        """Get total count of strategies."""
        stmt = select(func.count()).select_from(StrategyDB)
        if not include_deprecated:
            stmt = stmt.where(StrategyDB.deprecated_at.is_(None))
        return self.session.execute(stmt).scalar() or 0

    def _get_db(self, strategy_id: UUID | str) -> StrategyDB | None:
        stmt = select(StrategyDB).where(StrategyDB.id == str(strategy_id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is not None:
            self.session.refresh(db_item)
        return db_item

    def _to_domain(self, db_item: StrategyDB) -> Strategy:
        """Convert database model to domain model."""
        return Strategy(
            id=UUID(db_item.id),
            platform=Platform(db_item.platform),
            country=Country(db_item.country),
            query_template=db_item.query_template,
            success_rate=db_item.success_rate,
            total_uses=db_item.total_uses,
            successful_discoveries=db_item.successful_discoveries,
            false_positives=db_item.false_positives,
            tags=json.loads(db_item.tags_json),
            origin=StrategyOrigin(db_item.origin),
            parent_strategy_id=_uuid_or_none(db_item.parent_strategy_id),
            created_at=_as_utc(db_item.created_at),
            updated_at=_as_utc(db_item.updated_at),
            last_used=_as_utc(db_item.last_used),
            deprecated_at=_as_utc(db_item.deprecated_at),
            deprecation_reason=db_item.deprecation_reason,
        )


class StrategyUsageRepository:
    """Repository for the append-only strategy usage log."""

    def __init__(self, session: Session):
        self.session = session

    def append(self, usage: StrategyUsage) -> StrategyUsage:
        """Append a usage record."""
        db_item = StrategyUsageDB(
            id=str(usage.id),
            strategy_id=str(usage.strategy_id),
            success=usage.success,
            was_false_positive=usage.was_false_positive,
            run_id=str(usage.run_id) if usage.run_id else None,
            created_at=usage.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return usage

    def list_for_strategy(self, strategy_id: UUID | str) -> list[StrategyUsage]:
        """List usage records for a strategy, oldest first."""
        stmt = (
            select(StrategyUsageDB)
            .where(StrategyUsageDB.strategy_id == str(strategy_id))
            .order_by(StrategyUsageDB.created_at)
        )
        result = self.session.execute(stmt).scalars().all()
        return [
            StrategyUsage(
                id=UUID(u.id),
                strategy_id=UUID(u.strategy_id),
                success=u.success,
                was_false_positive=u.was_false_positive,
                run_id=_uuid_or_none(u.run_id),
                created_at=_as_utc(u.created_at),
            )
            for u in result
        ]

    def totals_for_strategy(self, strategy_id: UUID | str) -> tuple[int, int, int]:
        """
        Aggregate the log for one strategy.

        Returns:
            Tuple of (total_uses, successes, false_positives).
        """
        stmt = select(StrategyUsageDB.success, StrategyUsageDB.was_false_positive).where(
            StrategyUsageDB.strategy_id == str(strategy_id)
        )
        rows = self.session.execute(stmt).all()
        total = len(rows)
        successes = sum(1 for success, _ in rows if success)
        false_positives = sum(1 for _, fp in rows if fp)
        return total, successes, false_positives


# ============================================================================
# Query cache
# ============================================================================


class QueryCacheRepository:
    """Repository for cached query outcomes and query claims."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, query_hash: str) -> QueryCacheEntry | None:
        """Get a cache entry by hash."""
        db_item = self.session.get(QueryCacheDB, query_hash)
        if db_item is None:
            return None
        self.session.refresh(db_item)
        return self._to_domain(db_item)

    def upsert(self, entry: QueryCacheEntry) -> QueryCacheEntry:
        """Insert or overwrite the entry for a hash."""
        self.session.merge(
            QueryCacheDB(
                query_hash=entry.query_hash,
                normalized_query=entry.normalized_query,
                original_query=entry.original_query,
                executed_at=entry.executed_at,
                results_count=entry.results_count,
                expires_at=entry.expires_at,
            )
        )
        self.session.flush()
        return entry

    def delete_expired(self, now: datetime) -> int:
        """Bulk-delete entries past their expiry. Returns number removed."""
        result = self.session.execute(
            delete(QueryCacheDB).where(QueryCacheDB.expires_at <= now), execution_options=_SYNC_FETCH
        )
        self.session.flush()
        return result.rowcount or 0

    def delete_all(self) -> int:
        """Remove every cache entry."""
        result = self.session.execute(delete(QueryCacheDB), execution_options=_SYNC_FETCH)
        self.session.flush()
        return result.rowcount or 0

    def count(self, now: datetime | None = None, with_results: bool | None = None) -> int:
        """Count entries, optionally only unexpired ones or by outcome."""
        stmt = select(func.count()).select_from(QueryCacheDB)
        if now is not None:
            stmt = stmt.where(QueryCacheDB.expires_at > now)
        if with_results is True:
            stmt = stmt.where(QueryCacheDB.results_count > 0)
        elif with_results is False:
            stmt = stmt.where(QueryCacheDB.results_count == 0)
        return self.session.execute(stmt).scalar() or 0

    def try_claim(
        self,
        query_hash: str,
        run_id: UUID | str | None,
        now: datetime,
        lease: timedelta,
    ) -> bool:
        """
        Claim a query hash for execution.

        A claim older than the lease is considered abandoned and replaced.

        Returns:
            True if this caller now holds the claim.
        """
        self.session.execute(
            delete(QueryClaimDB).where(
                QueryClaimDB.query_hash == query_hash,
                QueryClaimDB.claimed_at < now - lease,
            ),
            execution_options=_SYNC_FETCH,
        )
        if self.session.get(QueryClaimDB, query_hash) is not None:
            return False
        try:
            with self.session.begin_nested():
                self.session.add(
                    QueryClaimDB(
                        query_hash=query_hash,
                        run_id=str(run_id) if run_id else None,
                        claimed_at=now,
                    )
                )
        except IntegrityError:
            return False
        return True

    def release_claim(self, query_hash: str) -> None:
        """Release a claim, if held."""
        self.session.execute(
            delete(QueryClaimDB).where(QueryClaimDB.query_hash == query_hash),
            execution_options=_SYNC_FETCH,
        )
        self.session.flush()

    def _to_domain(self, db_item: QueryCacheDB) -> QueryCacheEntry:
        """Convert database model to domain model."""
        return QueryCacheEntry(
            query_hash=db_item.query_hash,
            normalized_query=db_item.normalized_query,
            original_query=db_item.original_query,
            executed_at=_as_utc(db_item.executed_at),
            results_count=db_item.results_count,
            expires_at=_as_utc(db_item.expires_at),
        )


# ============================================================================
# Budget
# ============================================================================


class BudgetRepository:
    """Repository for the daily spend ledger and throttle audit log."""

    def __init__(self, session: Session):
        self.session = session

    def get_day(self, day_key: str) -> BudgetLedger | None:
        """Get the ledger row for a day."""
        db_item = self.session.get(BudgetLedgerDB, day_key)
        if db_item is None:
            return None
        self.session.refresh(db_item)
        return BudgetLedger(
            day_key=db_item.day_key,
            month_key=db_item.month_key,
            search_queries_free=db_item.search_queries_free,
            search_queries_paid=db_item.search_queries_paid,
            ai_calls=db_item.ai_calls,
            search_cost=db_item.search_cost,
            ai_cost=db_item.ai_cost,
            total_cost=db_item.total_cost,
        )

    def month_total(self, month_key: str) -> float:
        """Sum of total_cost across all days of a month."""
        stmt = select(func.coalesce(func.sum(BudgetLedgerDB.total_cost), 0.0)).where(
            BudgetLedgerDB.month_key == month_key
        )
        return float(self.session.execute(stmt).scalar() or 0.0)

    def increment(
        self,
        day_key: str,
        month_key: str,
        search_queries_free: int = 0,
        search_queries_paid: int = 0,
        ai_calls: int = 0,
        search_cost: float = 0.0,
        ai_cost: float = 0.0,
    ) -> None:
        """Atomically add to a day's counters, creating the row if needed."""
        if self.session.get(BudgetLedgerDB, day_key) is None:
            try:
                with self.session.begin_nested():
                    self.session.add(BudgetLedgerDB(day_key=day_key, month_key=month_key))
            except IntegrityError:
                # Another writer created the row first
                pass

        stmt = (
            update(BudgetLedgerDB)
            .where(BudgetLedgerDB.day_key == day_key)
            .values(
                search_queries_free=BudgetLedgerDB.search_queries_free + search_queries_free,
                search_queries_paid=BudgetLedgerDB.search_queries_paid + search_queries_paid,
                ai_calls=BudgetLedgerDB.ai_calls + ai_calls,
                search_cost=BudgetLedgerDB.search_cost + search_cost,
                ai_cost=BudgetLedgerDB.ai_cost + ai_cost,
                total_cost=BudgetLedgerDB.total_cost + search_cost + ai_cost,
            )
        )
        self.session.execute(stmt)
        self.session.flush()

    def add_throttle_event(self, event: ThrottleEvent) -> ThrottleEvent:
        """Append a throttle audit record."""
        self.session.add(
            ThrottleEventDB(
                id=str(event.id),
                reason=event.reason,
                current_cost=event.current_cost,
                monthly_cost=event.monthly_cost,
                created_at=event.created_at,
            )
        )
        self.session.flush()
        return event

    def list_throttle_events(self, limit: int = 50) -> list[ThrottleEvent]:
        """List recent throttle events, newest first."""
        stmt = select(ThrottleEventDB).order_by(ThrottleEventDB.created_at.desc()).limit(limit)
        result = self.session.execute(stmt).scalars().all()
        return [
            ThrottleEvent(
                id=UUID(e.id),
                reason=e.reason,
                current_cost=e.current_cost,
                monthly_cost=e.monthly_cost,
                created_at=_as_utc(e.created_at),
            )
            for e in result
        ]


# ============================================================================
# Runs
# ============================================================================


class ScraperRunRepository:
    """Repository for scraper runs, their counters and logs."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, run: ScraperRun) -> ScraperRun:
        """Create a new run."""
        db_item = ScraperRunDB(
            id=str(run.id),
            scraper_id=run.scraper_id,
            kind=run.kind.value,
            status=run.status.value,
            config_json=json.dumps(run.config, default=str),
            cancel_requested=run.cancel_requested,
            created_at=run.created_at,
            started_at=run.started_at,
            completed_at=run.completed_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self.get_by_id(run.id)  # type: ignore[return-value]

    def get_by_id(self, run_id: UUID | str) -> ScraperRun | None:
        """Get a run with its stats and logs."""
        stmt = select(ScraperRunDB).where(ScraperRunDB.id == str(run_id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            return None
        self.session.refresh(db_item)
        return self._to_domain(db_item)

    def get_status(self, run_id: UUID | str) -> RunStatus | None:
        """Read only the current status."""
        stmt = select(ScraperRunDB.status).where(ScraperRunDB.id == str(run_id))
        value = self.session.execute(stmt).scalar_one_or_none()
        return RunStatus(value) if value else None

    def is_cancel_requested(self, run_id: UUID | str) -> bool:
        """Read only the cancellation flag."""
        stmt = select(ScraperRunDB.cancel_requested).where(ScraperRunDB.id == str(run_id))
        return bool(self.session.execute(stmt).scalar_one_or_none())

    def transition(
        self,
        run_id: UUID | str,
        from_statuses: list[RunStatus],
        to_status: RunStatus,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        """
        Compare-and-set the status of a run.

        Returns:
            True if the run was in one of from_statuses and was updated.
        """
        values: dict[str, object] = {"status": to_status.value}
        if started_at is not None:
            values["started_at"] = started_at
        if completed_at is not None:
            values["completed_at"] = completed_at
        stmt = (
            update(ScraperRunDB)
            .where(
                ScraperRunDB.id == str(run_id),
                ScraperRunDB.status.in_([s.value for s in from_statuses]),
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        self.session.flush()
        return result.rowcount == 1

    def set_cancel_requested(self, run_id: UUID | str) -> None:
        """Raise the cancellation flag."""
        stmt = update(ScraperRunDB).where(ScraperRunDB.id == str(run_id)).values(cancel_requested=True)
        self.session.execute(stmt)
        self.session.flush()

    def increment_stats(self, run_id: UUID | str, delta: dict[str, int]) -> None:
        """Add each delta to its counter, creating counters on first use."""
        for key, amount in delta.items():
            if amount == 0:
                continue
            stat_key = {"run_id": str(run_id), "key": key}
            if self.session.get(RunStatDB, stat_key) is None:
                try:
                    with self.session.begin_nested():
                        self.session.add(RunStatDB(run_id=str(run_id), key=key, value=0))
                except IntegrityError:
                    pass
            self.session.execute(
                update(RunStatDB)
                .where(RunStatDB.run_id == str(run_id), RunStatDB.key == key)
                .values(value=RunStatDB.value + amount)
            )
        self.session.flush()

    def get_stats(self, run_id: UUID | str) -> dict[str, int]:
        """Read all counters of a run."""
        stmt = select(RunStatDB.key, RunStatDB.value).where(RunStatDB.run_id == str(run_id))
        return {key: value for key, value in self.session.execute(stmt).all()}

    def add_log(self, run_id: UUID | str, entry: RunLogEntry) -> None:
        """Append a log line to a run."""
        self.session.add(
            RunLogDB(
                run_id=str(run_id),
                level=entry.level,
                message=entry.message,
                created_at=entry.created_at,
            )
        )
        self.session.flush()

    def get_logs(self, run_id: UUID | str, level: str | None = None) -> list[RunLogEntry]:
        """Read the log of a run, oldest first."""
        stmt = select(RunLogDB).where(RunLogDB.run_id == str(run_id))
        if level is not None:
            stmt = stmt.where(RunLogDB.level == level)
        stmt = stmt.order_by(RunLogDB.id)
        return [
            RunLogEntry(level=log.level, message=log.message, created_at=_as_utc(log.created_at))
            for log in self.session.execute(stmt).scalars().all()
        ]

    def list_runs(
        self,
        kind: RunKind | None = None,
        status: RunStatus | None = None,
        limit: int = 50,
    ) -> list[ScraperRun]:
        """List runs, newest first."""
        stmt = select(ScraperRunDB)
        if kind is not None:
            stmt = stmt.where(ScraperRunDB.kind == kind.value)
        if status is not None:
            stmt = stmt.where(ScraperRunDB.status == status.value)
        stmt = stmt.order_by(ScraperRunDB.created_at.desc()).limit(limit)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(r) for r in result]

    def _to_domain(self, db_item: ScraperRunDB) -> ScraperRun:
        """Convert database model to domain model."""
        logs = self.get_logs(db_item.id)
        return ScraperRun(
            id=UUID(db_item.id),
            scraper_id=db_item.scraper_id,
            kind=RunKind(db_item.kind),
            status=RunStatus(db_item.status),
            config=json.loads(db_item.config_json),
            stats=self.get_stats(db_item.id),
            errors=[log.message for log in logs if log.level == "error"],
            logs=logs,
            cancel_requested=db_item.cancel_requested,
            created_at=_as_utc(db_item.created_at),
            started_at=_as_utc(db_item.started_at),
            completed_at=_as_utc(db_item.completed_at),
        )


# ============================================================================
# Staged entities
# ============================================================================


class DiscoveredVenueRepository:
    """Repository for staged venues."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, venue: DiscoveredVenue) -> DiscoveredVenue:
        """Create a staged venue."""
        db_item = DiscoveredVenueDB(
            id=str(venue.id),
            name=venue.name,
            platform=venue.platform.value,
            country=venue.country.value,
            city=venue.city,
            url=venue.url,
            venue_id=venue.venue_id,
            address=venue.address,
            is_chain=venue.is_chain,
            chain_name=venue.chain_name,
            chain_confidence=venue.chain_confidence.value,
            products_json=json.dumps(venue.products),
            confidence_score=venue.confidence_score,
            confidence_factors_json=json.dumps(venue.confidence_factors),
            flags_json=json.dumps(venue.flags),
            status=venue.status.value,
            discovered_by_strategy_id=(
                str(venue.discovered_by_strategy_id) if venue.discovered_by_strategy_id else None
            ),
            discovered_by_query=venue.discovered_by_query,
            discovery_run_id=str(venue.discovery_run_id) if venue.discovery_run_id else None,
            created_at=venue.created_at,
            updated_at=venue.updated_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, venue_id: UUID | str) -> DiscoveredVenue | None:
        """Get a staged venue by ID."""
        db_item = self._get_db(venue_id)
        return self._to_domain(db_item) if db_item else None

    def get_by_url(self, url: str) -> DiscoveredVenue | None:
        """Get a staged venue by its platform URL."""
        stmt = select(DiscoveredVenueDB).where(DiscoveredVenueDB.url == url)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def update(self, venue: DiscoveredVenue) -> DiscoveredVenue:
        """Update mutable review fields of a staged venue."""
        db_item = self._get_db(venue.id)
        if db_item is None:
            raise ValueError(f"Venue with id {venue.id} not found")

        db_item.name = venue.name
        db_item.city = venue.city
        db_item.address = venue.address
        db_item.is_chain = venue.is_chain
        db_item.chain_name = venue.chain_name
        db_item.chain_confidence = venue.chain_confidence.value
        db_item.products_json = json.dumps(venue.products)
        db_item.confidence_score = venue.confidence_score
        db_item.confidence_factors_json = json.dumps(venue.confidence_factors)
        db_item.flags_json = json.dumps(venue.flags)
        db_item.status = venue.status.value
        db_item.rejection_reason = venue.rejection_reason
        db_item.updated_at = _utc_now()

        self.session.flush()
        return self._to_domain(db_item)

    def search(
        self,
        status: EntityStatus | None = None,
        platform: Platform | None = None,
        country: Country | None = None,
        chain_name: str | None = None,
        run_id: UUID | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DiscoveredVenue]:
        """List staged venues with optional filters, highest confidence first."""
        stmt = select(DiscoveredVenueDB)
        if status is not None:
            stmt = stmt.where(DiscoveredVenueDB.status == status.value)
        if platform is not None:
            stmt = stmt.where(DiscoveredVenueDB.platform == platform.value)
        if country is not None:
            stmt = stmt.where(DiscoveredVenueDB.country == country.value)
        if chain_name is not None:
            stmt = stmt.where(func.lower(DiscoveredVenueDB.chain_name) == chain_name.lower())
        if run_id is not None:
            stmt = stmt.where(DiscoveredVenueDB.discovery_run_id == str(run_id))
        stmt = (
            stmt.order_by(DiscoveredVenueDB.confidence_score.desc(), DiscoveredVenueDB.created_at)
            .limit(limit)
            .offset(offset)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(v) for v in result]

    def count_by_status(self) -> dict[str, int]:
        """Count staged venues per review status."""
        stmt = select(DiscoveredVenueDB.status, func.count()).group_by(DiscoveredVenueDB.status)
        return {status: count for status, count in self.session.execute(stmt).all()}

    def _get_db(self, venue_id: UUID | str) -> DiscoveredVenueDB | None:
        stmt = select(DiscoveredVenueDB).where(DiscoveredVenueDB.id == str(venue_id))
        return self.session.execute(stmt).scalar_one_or_none()

    def _to_domain(self, db_item: DiscoveredVenueDB) -> DiscoveredVenue:
        """Convert database model to domain model."""
        return DiscoveredVenue(
            id=UUID(db_item.id),
            name=db_item.name,
            platform=Platform(db_item.platform),
            country=Country(db_item.country),
            city=db_item.city,
            url=db_item.url,
            venue_id=db_item.venue_id,
            address=db_item.address,
            is_chain=db_item.is_chain,
            chain_name=db_item.chain_name,
            chain_confidence=ChainConfidence(db_item.chain_confidence),
            products=json.loads(db_item.products_json),
            confidence_score=db_item.confidence_score,
            confidence_factors=json.loads(db_item.confidence_factors_json),
            flags=json.loads(db_item.flags_json),
            status=EntityStatus(db_item.status),
            discovered_by_strategy_id=_uuid_or_none(db_item.discovered_by_strategy_id),
            discovered_by_query=db_item.discovered_by_query,
            discovery_run_id=_uuid_or_none(db_item.discovery_run_id),
            rejection_reason=db_item.rejection_reason,
            created_at=_as_utc(db_item.created_at),
            updated_at=_as_utc(db_item.updated_at),
        )


class DiscoveredDishRepository:
    """Repository for staged dishes."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, dish: DiscoveredDish) -> DiscoveredDish:
        """Create a staged dish."""
        db_item = DiscoveredDishDB(
            id=str(dish.id),
            venue_id=str(dish.venue_id),
            name=dish.name,
            description=dish.description,
            price=dish.price,
            currency=dish.currency,
            product=dish.product,
            is_vegan=dish.is_vegan,
            confidence_score=dish.confidence_score,
            flags_json=json.dumps(dish.flags),
            status=dish.status.value,
            extraction_run_id=str(dish.extraction_run_id) if dish.extraction_run_id else None,
            created_at=dish.created_at,
            updated_at=dish.updated_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, dish_id: UUID | str) -> DiscoveredDish | None:
        """Get a staged dish by ID."""
        db_item = self.session.get(DiscoveredDishDB, str(dish_id))
        return self._to_domain(db_item) if db_item else None

    def find(self, venue_id: UUID | str, name: str) -> DiscoveredDish | None:
        """Find a dish of a venue by exact name."""
        stmt = select(DiscoveredDishDB).where(
            DiscoveredDishDB.venue_id == str(venue_id),
            DiscoveredDishDB.name == name,
        )
        db_item = self.session.execute(stmt).scalars().first()
        return self._to_domain(db_item) if db_item else None

    def update(self, dish: DiscoveredDish) -> DiscoveredDish:
        """Update mutable fields of a staged dish."""
        db_item = self.session.get(DiscoveredDishDB, str(dish.id))
        if db_item is None:
            raise ValueError(f"Dish with id {dish.id} not found")

        db_item.description = dish.description
        db_item.price = dish.price
        db_item.currency = dish.currency
        db_item.product = dish.product
        db_item.is_vegan = dish.is_vegan
        db_item.confidence_score = dish.confidence_score
        db_item.flags_json = json.dumps(dish.flags)
        db_item.status = dish.status.value
        db_item.extraction_run_id = str(dish.extraction_run_id) if dish.extraction_run_id else None
        db_item.updated_at = _utc_now()

        self.session.flush()
        return self._to_domain(db_item)

    def list_for_venue(self, venue_id: UUID | str) -> list[DiscoveredDish]:
        """List dishes of a venue, highest confidence first."""
        stmt = (
            select(DiscoveredDishDB)
            .where(DiscoveredDishDB.venue_id == str(venue_id))
            .order_by(DiscoveredDishDB.confidence_score.desc(), DiscoveredDishDB.name)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(d) for d in result]

    def _to_domain(self, db_item: DiscoveredDishDB) -> DiscoveredDish:
        """Convert database model to domain model."""
        return DiscoveredDish(
            id=UUID(db_item.id),
            venue_id=UUID(db_item.venue_id),
            name=db_item.name,
            description=db_item.description,
            price=db_item.price,
            currency=db_item.currency,
            product=db_item.product,
            is_vegan=db_item.is_vegan,
            confidence_score=db_item.confidence_score,
            flags=json.loads(db_item.flags_json),
            status=EntityStatus(db_item.status),
            extraction_run_id=_uuid_or_none(db_item.extraction_run_id),
            created_at=_as_utc(db_item.created_at),
            updated_at=_as_utc(db_item.updated_at),
        )


# ============================================================================
# Feedback
# ============================================================================


class FeedbackRepository:
    """Repository for the append-only review log."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, record: FeedbackRecord) -> FeedbackRecord:
        """Append a feedback record."""
        self.session.add(
            FeedbackDB(
                id=str(record.id),
                entity_type=record.entity_type.value,
                entity_id=str(record.entity_id),
                strategy_id=str(record.strategy_id) if record.strategy_id else None,
                result_type=record.result_type.value,
                reviewer=record.reviewer,
                notes=record.notes,
                created_at=record.created_at,
            )
        )
        self.session.flush()
        return record

    def list_records(
        self,
        strategy_id: UUID | str | None = None,
        entity_id: UUID | str | None = None,
        limit: int = 100,
    ) -> list[FeedbackRecord]:
        """List feedback records, newest first."""
        stmt = select(FeedbackDB)
        if strategy_id is not None:
            stmt = stmt.where(FeedbackDB.strategy_id == str(strategy_id))
        if entity_id is not None:
            stmt = stmt.where(FeedbackDB.entity_id == str(entity_id))
        stmt = stmt.order_by(FeedbackDB.created_at.desc()).limit(limit)
        return [self._to_domain(f) for f in self.session.execute(stmt).scalars().all()]

    def counts_by_result_type(self, strategy_id: UUID | str | None = None) -> dict[str, int]:
        """Count records per result type, optionally for one strategy."""
        stmt = select(FeedbackDB.result_type, func.count()).group_by(FeedbackDB.result_type)
        if strategy_id is not None:
            stmt = stmt.where(FeedbackDB.strategy_id == str(strategy_id))
        return {result_type: count for result_type, count in self.session.execute(stmt).all()}

    def counts_by_strategy(self) -> dict[str, dict[str, int]]:
        """Count records per strategy and result type."""
        stmt = (
            select(FeedbackDB.strategy_id, FeedbackDB.result_type, func.count())
            .where(FeedbackDB.strategy_id.is_not(None))
            .group_by(FeedbackDB.strategy_id, FeedbackDB.result_type)
        )
        counts: dict[str, dict[str, int]] = {}
        for strategy_id, result_type, count in self.session.execute(stmt).all():
            counts.setdefault(strategy_id, {})[result_type] = count
        return counts

    def count_since(self, since: datetime) -> int:
        """Count records created at or after a point in time."""
        stmt = select(func.count()).select_from(FeedbackDB).where(FeedbackDB.created_at >= since)
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, db_item: FeedbackDB) -> FeedbackRecord:
        """Convert database model to domain model."""
        return FeedbackRecord(
            id=UUID(db_item.id),
            entity_type=EntityType(db_item.entity_type),
            entity_id=UUID(db_item.entity_id),
            strategy_id=_uuid_or_none(db_item.strategy_id),
            result_type=FeedbackResultType(db_item.result_type),
            reviewer=db_item.reviewer,
            notes=db_item.notes,
            created_at=_as_utc(db_item.created_at),
        )

"""SQLAlchemy ORM models for the discovery agent database.

Tables:
- strategies, strategy_usage (query templates and their outcome log)
- query_cache, query_claims (deduplication and per-query critical section)
- budget_ledger, throttle_events (spend tracking)
- scraper_runs, run_stats, run_logs (run lifecycle)
- discovered_venues, discovered_dishes (staged entities)
- feedback (human review log)
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ============================================================================
# Strategies
# ============================================================================


class StrategyDB(Base):
    """
    Database model for query strategies.

    Counters are only changed through the strategy store, which also
    appends to strategy_usage so the counters can be rebuilt.
    """

    __tablename__ = "strategies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    platform: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    country: Mapped[str] = mapped_column(String(5), nullable=False, index=True)
    query_template: Mapped[str] = mapped_column(Text, nullable=False)
    success_rate: Mapped[int] = mapped_column(Integer, default=50)
    total_uses: Mapped[int] = mapped_column(Integer, default=0)
    successful_discoveries: Mapped[int] = mapped_column(Integer, default=0)
    false_positives: Mapped[int] = mapped_column(Integer, default=0)
    tags_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    origin: Mapped[str] = mapped_column(String(20), default="seed")
    parent_strategy_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("strategies.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)
    last_used: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deprecated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    deprecation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<StrategyDB(id={self.id}, platform={self.platform}, rate={self.success_rate})>"


class StrategyUsageDB(Base):
    """Database model for the append-only strategy outcome log."""

    __tablename__ = "strategy_usage"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    strategy_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("strategies.id"), nullable=False, index=True
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    was_false_positive: Mapped[bool] = mapped_column(Boolean, default=False)
    run_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


# ============================================================================
# Query cache
# ============================================================================


class QueryCacheDB(Base):
    """Database model for executed search queries, one row per normalized query."""

    __tablename__ = "query_cache"

    query_hash: Mapped[str] = mapped_column(String(32), primary_key=True)
    normalized_query: Mapped[str] = mapped_column(Text, nullable=False)
    original_query: Mapped[str] = mapped_column(Text, default="")
    executed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    results_count: Mapped[int] = mapped_column(Integer, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class QueryClaimDB(Base):
    """
    Lease on a query hash while a worker executes it.

    The primary key makes the insert a compare-and-set across processes.
    """

    __tablename__ = "query_claims"

    query_hash: Mapped[str] = mapped_column(String(32), primary_key=True)
    run_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    claimed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# ============================================================================
# Budget
# ============================================================================


class BudgetLedgerDB(Base):
    """Daily spend counters; monthly totals are sums over month_key."""

    __tablename__ = "budget_ledger"

    day_key: Mapped[str] = mapped_column(String(10), primary_key=True)  # YYYY-MM-DD
    month_key: Mapped[str] = mapped_column(String(7), nullable=False, index=True)  # YYYY-MM
    search_queries_free: Mapped[int] = mapped_column(Integer, default=0)
    search_queries_paid: Mapped[int] = mapped_column(Integer, default=0)
    ai_calls: Mapped[int] = mapped_column(Integer, default=0)
    search_cost: Mapped[float] = mapped_column(Float, default=0.0)
    ai_cost: Mapped[float] = mapped_column(Float, default=0.0)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)


class ThrottleEventDB(Base):
    """Append-only audit log of throttle decisions."""

    __tablename__ = "throttle_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    current_cost: Mapped[float] = mapped_column(Float, default=0.0)
    monthly_cost: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, index=True)


# ============================================================================
# Runs
# ============================================================================


class ScraperRunDB(Base):
    """Database model for discovery and extraction runs."""

    __tablename__ = "scraper_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    scraper_id: Mapped[str] = mapped_column(String(255), default="", index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    config_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<ScraperRunDB(id={self.id}, kind={self.kind}, status={self.status})>"


class RunStatDB(Base):
    """One counter of a run, incremented in place."""

    __tablename__ = "run_stats"

    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scraper_runs.id"), primary_key=True
    )
    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, default=0)


class RunLogDB(Base):
    """Append-only progress and error messages of a run."""

    __tablename__ = "run_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scraper_runs.id"), nullable=False, index=True
    )
    level: Mapped[str] = mapped_column(String(10), default="info")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


# ============================================================================
# Staged entities
# ============================================================================


class DiscoveredVenueDB(Base):
    """Database model for staged venues awaiting review."""

    __tablename__ = "discovered_venues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    country: Mapped[str] = mapped_column(String(5), nullable=False, index=True)
    city: Mapped[str] = mapped_column(String(100), default="", index=True)
    url: Mapped[str] = mapped_column(String(1000), nullable=False, unique=True)
    venue_id: Mapped[str] = mapped_column(String(255), default="", index=True)
    address: Mapped[str] = mapped_column(String(500), default="")
    is_chain: Mapped[bool] = mapped_column(Boolean, default=False)
    chain_name: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    chain_confidence: Mapped[str] = mapped_column(String(10), default="low")
    products_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    confidence_score: Mapped[int] = mapped_column(Integer, default=0)
    confidence_factors_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    flags_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    discovered_by_strategy_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, index=True
    )
    discovered_by_query: Mapped[str] = mapped_column(Text, default="")
    discovery_run_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<DiscoveredVenueDB(id={self.id}, name='{self.name}', status={self.status})>"


class DiscoveredDishDB(Base):
    """Database model for staged dishes awaiting review."""

    __tablename__ = "discovered_dishes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    venue_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discovered_venues.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    product: Mapped[str] = mapped_column(String(50), default="", index=True)
    is_vegan: Mapped[bool] = mapped_column(Boolean, default=False)
    confidence_score: Mapped[int] = mapped_column(Integer, default=0)
    flags_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    extraction_run_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)


# ============================================================================
# Feedback
# ============================================================================


class FeedbackDB(Base):
    """Append-only human review log."""

    __tablename__ = "feedback"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    entity_type: Mapped[str] = mapped_column(String(10), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    strategy_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    result_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    reviewer: Mapped[str] = mapped_column(String(255), default="unknown")
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, index=True)

"""Pydantic v2 models for discovery, extraction and review.

These models define the domain entities shared by the services:
- Strategy, StrategyUsage (query templates and their outcome log)
- QueryCacheEntry (query deduplication)
- BudgetLedger, ThrottleEvent (spend tracking)
- ScraperRun, RunLogEntry (run lifecycle)
- DiscoveredVenue, DiscoveredDish (staged entities)
- FeedbackRecord (human review log)
"""

from datetime import UTC, datetime
from typing import Annotated, Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from discovery_agent.core.enums import (
    ChainConfidence,
    Country,
    DiscoveryMode,
    EntityStatus,
    EntityType,
    ExtractionMode,
    ExtractionTarget,
    FeedbackResultType,
    Platform,
    RunKind,
    RunStatus,
    StrategyOrigin,
)


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


# ============================================================================
# Strategies
# ============================================================================


class Strategy(BaseModel):
    """
    A scoped, performance-tracked query template.

    success_rate is recomputed from the stored counters on every use.
    Before the first use it holds a prior (seed value or parent's rate).
    """

    id: UUID = Field(default_factory=uuid4)
    platform: Platform
    country: Country
    query_template: str
    success_rate: Annotated[int, Field(ge=0, le=100)] = 50
    total_uses: Annotated[int, Field(ge=0)] = 0
    successful_discoveries: Annotated[int, Field(ge=0)] = 0
    false_positives: Annotated[int, Field(ge=0)] = 0
    tags: list[str] = Field(default_factory=list)
    origin: StrategyOrigin = StrategyOrigin.SEED
    parent_strategy_id: UUID | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    last_used: datetime | None = None
    deprecated_at: datetime | None = None
    deprecation_reason: str | None = None

    @field_validator("query_template")
    @classmethod
    def template_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query_template cannot be empty")
        return v.strip()

    @property
    def is_active(self) -> bool:
        return self.deprecated_at is None


class StrategyUsage(BaseModel):
    """One recorded outcome of a strategy. Append-only."""

    id: UUID = Field(default_factory=uuid4)
    strategy_id: UUID
    success: bool
    was_false_positive: bool = False
    run_id: UUID | None = None
    created_at: datetime = Field(default_factory=_utc_now)


class StrategyTiers(BaseModel):
    """Active strategies partitioned by observed performance."""

    high: list[Strategy] = Field(default_factory=list)
    medium: list[Strategy] = Field(default_factory=list)
    low: list[Strategy] = Field(default_factory=list)
    untested: list[Strategy] = Field(default_factory=list)


# ============================================================================
# Query cache
# ============================================================================


class QueryCacheEntry(BaseModel):
    """Record of a previously executed search query."""

    query_hash: str
    normalized_query: str
    original_query: str = ""
    executed_at: datetime
    results_count: Annotated[int, Field(ge=0)] = 0
    expires_at: datetime


class QueryCacheStats(BaseModel):
    """Summary of the query cache."""

    total_cached: int = 0
    with_results: int = 0
    without_results: int = 0
    expired: int = 0


# ============================================================================
# Budget
# ============================================================================


class BudgetLedger(BaseModel):
    """Accumulated spend for one day."""

    day_key: str
    month_key: str
    search_queries_free: int = 0
    search_queries_paid: int = 0
    ai_calls: int = 0
    search_cost: float = 0.0
    ai_cost: float = 0.0
    total_cost: float = 0.0


class ThrottleEvent(BaseModel):
    """Audit record of a throttle decision. Append-only."""

    id: UUID = Field(default_factory=uuid4)
    reason: str
    current_cost: float
    monthly_cost: float = 0.0
    created_at: datetime = Field(default_factory=_utc_now)


class ThrottleCheckResult(BaseModel):
    """Outcome of a throttle check."""

    throttle: bool
    reason: str | None = None
    current_cost: float
    daily_limit: float
    monthly_limit: float
    monthly_cost: float
    percentage_used: float
    remaining_budget: float


class AffordabilityResult(BaseModel):
    """Whether a planned run fits in the remaining budget."""

    can_afford: bool
    estimated_cost: float
    reason: str | None = None


class BudgetStatus(BaseModel):
    """Dashboard view of today's and this month's spend."""

    today: BudgetLedger
    monthly_cost: float
    throttle: ThrottleCheckResult


# ============================================================================
# Runs
# ============================================================================


class RunLogEntry(BaseModel):
    """Human-readable progress message attached to a run."""

    level: str = "info"
    message: str
    created_at: datetime = Field(default_factory=_utc_now)


class ScraperRun(BaseModel):
    """A batch of discovery or extraction work."""

    id: UUID = Field(default_factory=uuid4)
    scraper_id: str = ""
    kind: RunKind
    status: RunStatus = RunStatus.PENDING
    config: dict[str, Any] = Field(default_factory=dict)
    stats: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    logs: list[RunLogEntry] = Field(default_factory=list)
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=_utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


# ============================================================================
# Staged entities
# ============================================================================


class DiscoveredVenue(BaseModel):
    """A candidate venue found on a delivery platform, awaiting review."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    platform: Platform
    country: Country
    city: str = ""
    url: str
    venue_id: str = ""
    address: str = ""
    is_chain: bool = False
    chain_name: str | None = None
    chain_confidence: ChainConfidence = ChainConfidence.LOW
    products: list[str] = Field(default_factory=list)
    confidence_score: Annotated[int, Field(ge=0, le=100)] = 0
    confidence_factors: dict[str, int] = Field(default_factory=dict)
    flags: list[str] = Field(default_factory=list)
    status: EntityStatus = EntityStatus.PENDING
    discovered_by_strategy_id: UUID | None = None
    discovered_by_query: str = ""
    discovery_run_id: UUID | None = None
    rejection_reason: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class DiscoveredDish(BaseModel):
    """A menu item mentioning a product, awaiting review."""

    id: UUID = Field(default_factory=uuid4)
    venue_id: UUID
    name: str
    description: str = ""
    price: float | None = None
    currency: str | None = None
    product: str = ""
    is_vegan: bool = False
    confidence_score: Annotated[int, Field(ge=0, le=100)] = 0
    flags: list[str] = Field(default_factory=list)
    status: EntityStatus = EntityStatus.PENDING
    extraction_run_id: UUID | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# Feedback
# ============================================================================


class FeedbackRecord(BaseModel):
    """Human review outcome for a staged entity. Append-only."""

    id: UUID = Field(default_factory=uuid4)
    entity_type: EntityType
    entity_id: UUID
    strategy_id: UUID | None = None
    result_type: FeedbackResultType
    reviewer: str = "unknown"
    notes: str = ""
    created_at: datetime = Field(default_factory=_utc_now)


class StrategyPerformance(BaseModel):
    """Feedback-derived performance of one strategy."""

    strategy_id: UUID
    total: int = 0
    correct: int = 0
    success_rate: int = 0
    error_rate: int = 0
    by_result_type: dict[str, int] = Field(default_factory=dict)


class FeedbackStats(BaseModel):
    """Pipeline-wide review statistics."""

    total_feedback: int = 0
    overall_success_rate: int = 0
    by_result_type: dict[str, int] = Field(default_factory=dict)
    by_strategy: dict[str, StrategyPerformance] = Field(default_factory=dict)
    reviewed_today: int = 0


# ============================================================================
# Control-plane requests
# ============================================================================


class DiscoveryStartRequest(BaseModel):
    """Body of POST /discovery/start."""

    model_config = ConfigDict(populate_by_name=True)

    countries: list[Country] = Field(min_length=1)
    platforms: list[Platform] = Field(default_factory=list)
    mode: DiscoveryMode = DiscoveryMode.EXPLORE
    chain_id: str | None = Field(default=None, alias="chainId")
    max_queries: int = Field(default=50, gt=0, alias="maxQueries")
    dry_run: bool = Field(default=False, alias="dryRun")

    @model_validator(mode="after")
    def chain_required_for_enumerate(self) -> "DiscoveryStartRequest":
        if self.mode == DiscoveryMode.ENUMERATE and not self.chain_id:
            raise ValueError("chainId is required when mode is 'enumerate'")
        return self


class ExtractionStartRequest(BaseModel):
    """Body of POST /extraction/start."""

    model_config = ConfigDict(populate_by_name=True)

    target: ExtractionTarget = ExtractionTarget.ALL
    chain_id: str | None = Field(default=None, alias="chainId")
    venue_id: UUID | None = Field(default=None, alias="venueId")
    max_venues: int = Field(default=50, gt=0, alias="maxVenues")
    mode: ExtractionMode = ExtractionMode.ENRICH

    @model_validator(mode="after")
    def target_reference_present(self) -> "ExtractionStartRequest":
        if self.target == ExtractionTarget.CHAIN and not self.chain_id:
            raise ValueError("chainId is required when target is 'chain'")
        if self.target == ExtractionTarget.VENUE and self.venue_id is None:
            raise ValueError("venueId is required when target is 'venue'")
        return self


class FeedbackRequest(BaseModel):
    """Body of POST /feedback."""

    model_config = ConfigDict(populate_by_name=True)

    entity_type: EntityType = Field(alias="entityType")
    entity_id: UUID = Field(alias="entityId")
    result_type: FeedbackResultType = Field(alias="resultType")
    reviewer: str = "unknown"
    notes: str = ""

"""Database initialization and persistence layer."""

from discovery_agent.db.engine import (
    create_db_engine,
    get_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    reset_engine,
    run_migrations,
)
from discovery_agent.db.models import (
    Base,
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
from discovery_agent.db.repositories import (
    BudgetRepository,
    DiscoveredDishRepository,
    DiscoveredVenueRepository,
    FeedbackRepository,
    QueryCacheRepository,
    ScraperRunRepository,
    StrategyRepository,
    StrategyUsageRepository,
)

__all__ = [
    # Engine
    "create_db_engine",
    "get_database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "reset_engine",
    "run_migrations",
    # Models
    "Base",
    "StrategyDB",
    "StrategyUsageDB",
    "QueryCacheDB",
    "QueryClaimDB",
    "BudgetLedgerDB",
    "ThrottleEventDB",
    "ScraperRunDB",
    "RunStatDB",
    "RunLogDB",
    "DiscoveredVenueDB",
    "DiscoveredDishDB",
    "FeedbackDB",
    # Repositories
    "StrategyRepository",
    "StrategyUsageRepository",
    "QueryCacheRepository",
    "BudgetRepository",
    "ScraperRunRepository",
    "DiscoveredVenueRepository",
    "DiscoveredDishRepository",
    "FeedbackRepository",
]

"""Application services for the discovery agent."""

from discovery_agent.services.budget import BudgetGovernor
from discovery_agent.services.feedback_service import FeedbackService
from discovery_agent.services.query_cache import QueryCache, hash_query, normalize_query
from discovery_agent.services.run_tracker import RunTracker
from discovery_agent.services.staging_service import StagingService
from discovery_agent.services.strategy_store import StrategyStore, render_query

__all__ = [
    "BudgetGovernor",
    "FeedbackService",
    "QueryCache",
    "RunTracker",
    "StagingService",
    "StrategyStore",
    "hash_query",
    "normalize_query",
    "render_query",
]

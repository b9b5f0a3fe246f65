"""FastAPI dependencies for database sessions and budget pre-checks.

Routes receive a session through SessionDep and commit it themselves.
Run-start routes call require_budget before creating any run.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from discovery_agent.config import AgentConfig, get_default_config
from discovery_agent.core.exceptions import BudgetExceededError, ThrottledError
from discovery_agent.core.schema import AffordabilityResult
from discovery_agent.db.engine import get_session
from discovery_agent.services.budget import BudgetGovernor


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Session for work outside the request's dependency scope, such as event streams."""
    with get_session() as session:
        yield session


def get_db_session() -> Generator[Session, None, None]:
    """Dependency yielding a database session for one request."""
    with session_scope() as session:
        yield session


def get_config() -> AgentConfig:
    """Dependency returning the agent configuration."""
    return get_default_config()


SessionDep = Annotated[Session, Depends(get_db_session)]
ConfigDep = Annotated[AgentConfig, Depends(get_config)]


def require_budget(
    session: Session,
    config: AgentConfig,
    search_queries: int,
    ai_calls: int = 0,
) -> AffordabilityResult:
    """Refuse new work when the budget governor throttles or the estimate does not fit.

    The throttle decision is committed so the audit log keeps it even
    though the request fails.

    Returns:
        The affordability result, carrying the estimated cost.

    Raises:
        ThrottledError: If the governor is throttling new work.
        BudgetExceededError: If the estimate exceeds the remaining budget.
    """
    governor = BudgetGovernor(session, config.budget)
    result = governor.can_afford_scraper_run(
        search_queries, ai_calls, use_free_tier=config.discovery.use_free_tier
    )
    session.commit()

    if not result.can_afford:
        status = governor.get_status()
        details = {
            "estimated_cost": result.estimated_cost,
            "current_cost": status.throttle.current_cost,
            "daily_limit": status.throttle.daily_limit,
            "monthly_cost": status.monthly_cost,
            "monthly_limit": status.throttle.monthly_limit,
            "remaining_budget": status.throttle.remaining_budget,
        }
        if status.throttle.throttle:
            raise ThrottledError(result.reason or "Budget throttled", details)
        raise BudgetExceededError(result.reason or "Budget exceeded", details)
    return result

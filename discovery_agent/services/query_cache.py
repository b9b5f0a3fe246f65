"""Query deduplication cache.

Remembers which search queries were executed and what they returned so
that a query is not repeated within its window:
- 24 hours when it returned results
- 7 days when it returned nothing
"""

import hashlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from discovery_agent.core.schema import QueryCacheEntry, QueryCacheStats
from discovery_agent.db.repositories import QueryCacheRepository

logger = logging.getLogger(__name__)

CACHE_DURATION_WITH_RESULTS = timedelta(hours=24)
CACHE_DURATION_NO_RESULTS = timedelta(days=7)

# A claim not released within this window is treated as abandoned
CLAIM_LEASE = timedelta(minutes=10)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def normalize_query(query: str) -> str:
    """Lowercase, trim and collapse whitespace. Word order is preserved."""
    return " ".join(query.lower().split())


def hash_query(query: str) -> str:
    """Stable key for a query, computed from its normalized form."""
    return hashlib.md5(normalize_query(query).encode("utf-8")).hexdigest()


def cache_window(results_count: int) -> timedelta:
    """How long an executed query stays fresh."""
    return CACHE_DURATION_WITH_RESULTS if results_count > 0 else CACHE_DURATION_NO_RESULTS


class QueryCache:
    """Service deciding whether a search query can be skipped."""

    def __init__(self, session: Session, clock: Callable[[], datetime] | None = None):
        self.session = session
        self.clock = clock or _utc_now
        self.repo = QueryCacheRepository(session)

    def should_skip_query(self, query: str) -> bool:
        """
        Check whether a query was executed recently enough to skip.

        Args:
            query: Raw query text

        Returns:
            True if an entry exists and is still inside its window.
        """
        entry = self.repo.get(hash_query(query))
        if entry is None:
            return False
        age = self.clock() - entry.executed_at
        return age < cache_window(entry.results_count)

    def record_query(self, query: str, results_count: int) -> QueryCacheEntry:
        """Store the outcome of an executed query and release its claim."""
        now = self.clock()
        entry = self._build_entry(query, results_count, now)
        self.repo.upsert(entry)
        self.repo.release_claim(entry.query_hash)
        return entry

    def add_cache_entry(self, query: str, results_count: int, hours_ago: float = 0) -> QueryCacheEntry:
        """Insert an entry as if it had been executed hours_ago. Used for seeding."""
        executed_at = self.clock() - timedelta(hours=hours_ago)
        return self.repo.upsert(self._build_entry(query, results_count, executed_at))

    def cleanup_expired(self) -> int:
        """Delete entries past their expiry. Returns the number removed."""
        removed = self.repo.delete_expired(self.clock())
        if removed:
            logger.info(f"Removed {removed} expired query cache entries")
        return removed

    def get_stats(self) -> QueryCacheStats:
        """Summarize cache contents."""
        now = self.clock()
        total = self.repo.count()
        live = self.repo.count(now=now)
        return QueryCacheStats(
            total_cached=live,
            with_results=self.repo.count(now=now, with_results=True),
            without_results=self.repo.count(now=now, with_results=False),
            expired=total - live,
        )

    def clear_all(self) -> int:
        """Drop every entry."""
        return self.repo.delete_all()

    # =========================================================================
    # Claims
    # =========================================================================

    def try_claim(self, query: str, run_id: UUID | str | None = None) -> bool:
        """
        Claim a query for execution across processes.

        Returns:
            True if the caller may execute the query now.
        """
        return self.repo.try_claim(hash_query(query), run_id, self.clock(), CLAIM_LEASE)

    def release_claim(self, query: str) -> None:
        """Release a claim without recording an outcome."""
        self.repo.release_claim(hash_query(query))

    def _build_entry(self, query: str, results_count: int, executed_at: datetime) -> QueryCacheEntry:
        return QueryCacheEntry(
            query_hash=hash_query(query),
            normalized_query=normalize_query(query),
            original_query=query,
            executed_at=executed_at,
            results_count=results_count,
            expires_at=executed_at + cache_window(results_count),
        )

"""Per-run state threaded through discovery and extraction."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from uuid import UUID

COUNTER_FIELDS = (
    "queries_executed",
    "queries_successful",
    "queries_failed",
    "queries_skipped",
    "budget_refusals",
    "venues_discovered",
    "venues_updated",
    "venues_skipped",
    "venues_verified",
    "venues_flagged",
    "dishes_created",
    "dishes_updated",
    "chains_detected",
    "chains_queued",
    "pages_fetched",
    "pages_blocked",
)


@dataclass
class RunContext:
    """
    Counters and bookkeeping for one run.

    Every counter field is reported as a run stat. Deltas are pushed to
    the run tracker with take_delta() so progress is visible while the
    run is still going.
    """

    run_id: UUID
    max_queries: int = 50
    dry_run: bool = False

    queries_executed: int = 0
    queries_successful: int = 0
    queries_failed: int = 0
    queries_skipped: int = 0
    budget_refusals: int = 0
    venues_discovered: int = 0
    venues_updated: int = 0
    venues_skipped: int = 0
    venues_verified: int = 0
    venues_flagged: int = 0
    dishes_created: int = 0
    dishes_updated: int = 0
    chains_detected: int = 0
    chains_queued: int = 0
    pages_fetched: int = 0
    pages_blocked: int = 0

    cancelled: bool = False
    queries_reserved: int = field(default=0, repr=False)
    seen_urls: set[str] = field(default_factory=set, repr=False)
    seen_chains: set[str] = field(default_factory=set, repr=False)
    _reported: dict[str, int] = field(default_factory=dict, repr=False)

    def reserve_query(self) -> bool:
        """Take one slot of the query allowance. False once it is used up."""
        if self.queries_reserved >= self.max_queries:
            return False
        self.queries_reserved += 1
        return True

    def release_query(self) -> None:
        """Give back a slot that was reserved but not spent on a search."""
        self.queries_reserved = max(0, self.queries_reserved - 1)

    @property
    def queries_remaining(self) -> int:
        return max(0, self.max_queries - self.queries_reserved)

    def mark_chain(self, chain_name: str) -> bool:
        """Remember a detected chain. False if it was already seen in this run."""
        key = " ".join(chain_name.lower().split())
        if key in self.seen_chains:
            return False
        self.seen_chains.add(key)
        return True

    def as_stats(self) -> dict[str, int]:
        """All counters as a stats dict."""
        return {name: getattr(self, name) for name in COUNTER_FIELDS}

    def take_delta(self) -> dict[str, int]:
        """Counter increases since the previous call."""
        stats = self.as_stats()
        delta = {
            key: value - self._reported.get(key, 0)
            for key, value in stats.items()
            if value > self._reported.get(key, 0)
        }
        self._reported = stats
        return delta


async def gather_or_cancel(aws: Iterable[Awaitable[None]]) -> None:
    """
    Run awaitables concurrently and wait for all of them.

    The first exception cancels the tasks still running and is re-raised
    as is once they have unwound, so callers see the original error type.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    for task in tasks:
        if task in done and not task.cancelled() and task.exception() is not None:
            raise task.exception()

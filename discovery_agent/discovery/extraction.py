"""
Extraction Pipeline Module
==========================

Fetches the pages of staged venues and stages the product dishes found
on their menus.

Modes:
- enrich: stage dishes and merge products into the venue
- refresh: like enrich, re-reading venues that already have dishes
- verify: re-check that the product is still on the menu and flag
  venues where it is not
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from discovery_agent.config import AgentConfig, get_default_config
from discovery_agent.core.enums import EntityStatus, ExtractionMode, ExtractionTarget
from discovery_agent.core.exceptions import BotChallengeError, InvalidTransitionError, PersistenceError
from discovery_agent.core.schema import DiscoveredVenue, ExtractionStartRequest, ScraperRun
from discovery_agent.discovery.adapters import BasePlatformAdapter, get_adapter
from discovery_agent.discovery.context import RunContext, gather_or_cancel
from discovery_agent.discovery.fetcher import PageFetcher
from discovery_agent.services.run_tracker import RunTracker
from discovery_agent.services.staging_service import StagingService

logger = logging.getLogger(__name__)

# Statuses whose venues are still worth reading
EXTRACTABLE_STATUSES = (EntityStatus.NEEDS_REVIEW, EntityStatus.PENDING, EntityStatus.APPROVED)

NO_PRODUCTS_FLAG = "no_products_found"


class ExtractionPipeline:
    """Reads venue pages and stages the dishes found on them."""

    def __init__(
        self,
        session: Session,
        fetcher: PageFetcher,
        config: AgentConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session = session
        self.fetcher = fetcher
        self.config = config or get_default_config()
        self.tracker = RunTracker(session, clock=clock)
        self.staging = StagingService(session, clock=clock)
        self._adapters: dict[str, BasePlatformAdapter] = {}

    def _adapter(self, venue: DiscoveredVenue) -> BasePlatformAdapter | None:
        key = venue.platform.value
        if key not in self._adapters:
            adapter = get_adapter(venue.platform, self.config.products, self.config.confidence)
            if adapter is None:
                return None
            self._adapters[key] = adapter
        return self._adapters[key]

    # =========================================================================
    # Runs
    # =========================================================================

    async def run(self, run_id: UUID | str) -> ScraperRun:
        """
        Execute a pending extraction run.

        Raises:
            InvalidTransitionError: If the run is not pending.
            PersistenceError: If a store write fails; the run is marked failed.
        """
        run = self.tracker.start(run_id)
        self.session.commit()
        request = ExtractionStartRequest.model_validate(run.config)
        ctx = RunContext(run_id=run.id)

        try:
            venues = self.select_venues(request)
            self.tracker.log(run.id, f"Extracting {len(venues)} venues ({request.mode.value})")
            self.session.commit()
            await self.process_venues(ctx, venues, request.mode)
        except SQLAlchemyError as e:
            self.session.rollback()
            self.tracker.fail(run.id, f"Persistence failure: {e}")
            self.session.commit()
            raise PersistenceError(str(e)) from e
        except Exception as e:
            self.session.rollback()
            self.tracker.fail(run.id, str(e))
            self.session.commit()
            raise

        return self._finish(ctx)

    def select_venues(self, request: ExtractionStartRequest) -> list[DiscoveredVenue]:
        """Staged venues in scope of an extraction request."""
        if request.target == ExtractionTarget.VENUE:
            return [self.staging.get_venue(request.venue_id)]

        venues: list[DiscoveredVenue] = []
        for status in EXTRACTABLE_STATUSES:
            venues.extend(
                self.staging.venues.search(
                    status=status,
                    chain_name=request.chain_id if request.target == ExtractionTarget.CHAIN else None,
                    limit=request.max_venues,
                )
            )
        if request.mode == ExtractionMode.ENRICH:
            # Venues that already have dishes are left to refresh runs
            venues = [v for v in venues if not self.staging.get_dishes(v.id)] or venues
        return venues[: request.max_venues]

    async def process_venues(
        self,
        ctx: RunContext,
        venues: list[DiscoveredVenue],
        mode: ExtractionMode,
    ) -> None:
        """
        Extract venues concurrently, at most discovery.max_concurrency at a time.

        Each venue checks for cancellation before it starts. Everything
        after a page fetch is synchronous, so session writes from different
        venues never interleave.
        """
        semaphore = asyncio.Semaphore(max(1, self.config.discovery.max_concurrency))

        async def extract(venue: DiscoveredVenue) -> None:
            async with semaphore:
                if self._should_stop(ctx):
                    return
                await self.extract_venue(ctx, venue, mode)
                self._report(ctx)

        await gather_or_cancel(extract(venue) for venue in venues)

    def _should_stop(self, ctx: RunContext) -> bool:
        if ctx.cancelled:
            return True
        if self.tracker.should_stop(ctx.run_id):
            ctx.cancelled = True
            logger.info(f"Run {ctx.run_id} stop observed; skipping remaining venues")
            return True
        return False

    async def extract_venue(self, ctx: RunContext, venue: DiscoveredVenue, mode: ExtractionMode) -> None:
        """
        Fetch and read one venue page.

        Fetch and parse problems are recorded on the run and never raised.
        """
        adapter = self._adapter(venue)
        if adapter is None:
            self.tracker.add_error(ctx.run_id, f"No adapter for platform {venue.platform.value}")
            return

        try:
            result = await self.fetcher.fetch(venue.url)
        except BotChallengeError as e:
            ctx.pages_blocked += 1
            self.tracker.add_error(ctx.run_id, f"{venue.name}: {e}")
            return
        if not result.success:
            self.tracker.add_error(ctx.run_id, f"{venue.name}: fetch failed ({result.error})")
            return
        ctx.pages_fetched += 1

        page = adapter.parse_venue_page(result.content)
        for error in page.parse_errors:
            self.tracker.log(ctx.run_id, f"{venue.name}: {error}", level="warning")
        planted_items = adapter.find_planted_items(page.menu_items)

        if mode == ExtractionMode.VERIFY:
            self._verify(ctx, venue, bool(planted_items))
            return

        products: list[str] = []
        for dish in adapter.to_discovered_dishes(planted_items, venue.id, ctx.run_id):
            products.append(dish.product)
            _, created = self.staging.stage_dish(dish)
            if created:
                ctx.dishes_created += 1
            else:
                ctx.dishes_updated += 1

        self.staging.merge_venue_details(
            venue.id,
            products=products,
            address=page.address,
            city=page.city,
            flags=[] if planted_items else [NO_PRODUCTS_FLAG],
        )
        self.session.commit()
        logger.info(f"Extracted {len(planted_items)} dishes from {venue.name} ({page.extraction_method})")

    def _verify(self, ctx: RunContext, venue: DiscoveredVenue, has_products: bool) -> None:
        if has_products:
            ctx.venues_verified += 1
            return
        ctx.venues_flagged += 1
        try:
            self.staging.mark_needs_review(venue.id, NO_PRODUCTS_FLAG)
        except InvalidTransitionError as e:
            logger.info(f"Venue {venue.id} not flagged: {e}")
        self.session.commit()

    def _report(self, ctx: RunContext) -> None:
        delta = ctx.take_delta()
        if delta:
            self.tracker.update_stats(ctx.run_id, delta)
        self.session.commit()

    def _finish(self, ctx: RunContext) -> ScraperRun:
        self._report(ctx)
        current = self.tracker.get(ctx.run_id)
        if current.status.is_terminal:
            logger.info(f"Run {ctx.run_id} already {current.status.value}; leaving it as is")
            return current
        if ctx.cancelled:
            run = self.tracker.mark_cancelled(ctx.run_id)
        else:
            run = self.tracker.complete(ctx.run_id, ctx.as_stats())
        self.session.commit()
        return run

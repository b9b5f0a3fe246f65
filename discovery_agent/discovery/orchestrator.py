"""
Discovery Orchestrator Module
=============================

Drives a discovery run:

1. Select ranked strategies for each (platform, country) target
2. Skip queries the cache says were run recently
3. Refuse paid work while the budget governor throttles
4. Search, record the outcome in the cache, the ledger and the strategy
5. Interpret each result with the platform adapter, detect chains and
   stage the venue
6. Enumerate the locations of detected chains, bounded by depth and by
   the run's query allowance

Targets run concurrently; searches are bounded by a semaphore. A query
hash is executed by at most one worker at a time: an asyncio.Lock within
the process and a claim row in the database across processes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from discovery_agent.config import AgentConfig, get_default_config
from discovery_agent.core.enums import (
    ChainConfidence,
    Country,
    DiscoveryMode,
    EntityStatus,
    ExtractionMode,
    Platform,
)
from discovery_agent.core.exceptions import PersistenceError, SearchError, ValidationError
from discovery_agent.core.markets import (
    GENERIC_QUERY_TEMPLATES,
    find_verified_chain_products,
    get_cities,
    is_brand_misuse,
    platform_site,
)
from discovery_agent.core.schema import DiscoveredVenue, DiscoveryStartRequest, ScraperRun, Strategy
from discovery_agent.core.scoring import score_venue_confidence
from discovery_agent.discovery.adapters import BasePlatformAdapter, MenuItem, country_from_url, get_adapter
from discovery_agent.discovery.chains import ChainDetection, build_enumeration_queries, detect_chain
from discovery_agent.discovery.context import RunContext, gather_or_cancel
from discovery_agent.discovery.extraction import ExtractionPipeline
from discovery_agent.discovery.fetcher import PageFetcher
from discovery_agent.discovery.search import SearchBackend, SearchResult
from discovery_agent.services.budget import BudgetGovernor
from discovery_agent.services.query_cache import QueryCache, hash_query
from discovery_agent.services.run_tracker import RunTracker
from discovery_agent.services.staging_service import StagingService
from discovery_agent.services.strategy_store import StrategyStore, render_query, template_variables

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_FLAG = "low_confidence"
VERIFIED_CHAIN_FLAG = "verified_chain"

# Free-text product keywords, checked in order. Only text that names the
# brand itself ("planted", not "plant-based") is considered.
_PRODUCT_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("chicken_tenders", "chicken tenders"), "planted.chicken_tenders"),
    (("chicken_burger", "chicken burger"), "planted.chicken_burger"),
    (("chicken",), "planted.chicken"),
    (("kebab",), "planted.kebab"),
    (("schnitzel",), "planted.schnitzel"),
    (("pulled",), "planted.pulled"),
    (("steak",), "planted.steak"),
    (("pastrami",), "planted.pastrami"),
    (("duck",), "planted.duck"),
]


def extract_products(mentions: list[str]) -> list[str]:
    """
    Product SKUs named in free text.

    Text must contain the word "planted". Chicken variants are exclusive:
    tenders or burger take precedence over plain chicken, and a plain
    burger only counts when it is not a chicken burger.
    """
    products: list[str] = []
    for mention in mentions:
        lower = mention.lower()
        if "planted" not in lower:
            continue
        found: list[str] = []
        chicken_found = False
        for keywords, product in _PRODUCT_KEYWORDS:
            if product.startswith("planted.chicken"):
                if chicken_found:
                    continue
                if any(k in lower for k in keywords):
                    found.append(product)
                    chicken_found = True
            elif any(k in lower for k in keywords):
                found.append(product)
        if "burger" in lower and "chicken burger" not in lower and "chicken_burger" not in lower:
            found.append("planted.burger")
        for product in found:
            if product not in products:
                products.append(product)
    return products


@dataclass
class ResultOutcome:
    """What processing one result page produced."""

    staged: int = 0
    new_chains: list[str] = field(default_factory=list)


@dataclass
class QueryPlan:
    """One search to run for a target."""

    query: str
    platform: Platform
    country: Country
    strategy: Strategy | None = None
    city: str | None = None
    chain: str | None = None


class DiscoveryOrchestrator:
    """
    Runs discovery for a scraper run.

    Usage:
        orchestrator = DiscoveryOrchestrator(session, SerpApiSearchBackend(api_key))
        run = await orchestrator.run(run_id)
    """

    def __init__(
        self,
        session: Session,
        search: SearchBackend,
        config: AgentConfig | None = None,
        fetcher: PageFetcher | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            session: SQLAlchemy session; the orchestrator commits after each unit of work
            search: Web search backend
            config: Agent configuration (defaults to the global config)
            fetcher: Page fetcher for verify mode
            clock: Returns the current UTC time
        """
        self.session = session
        self.search = search
        self.config = config or get_default_config()
        self.fetcher = fetcher
        self.clock = clock
        self.strategies = StrategyStore(session, clock=clock)
        self.cache = QueryCache(session, clock=clock)
        self.budget = BudgetGovernor(session, self.config.budget, clock=clock)
        self.tracker = RunTracker(session, clock=clock)
        self.staging = StagingService(session, clock=clock)
        self._adapters: dict[Platform, BasePlatformAdapter] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._semaphore = asyncio.Semaphore(max(1, self.config.discovery.max_concurrency))

    # =========================================================================
    # Runs
    # =========================================================================

    async def run(self, run_id: UUID | str) -> ScraperRun:
        """
        Execute a pending discovery run to completion.

        The run is marked failed and the error re-raised on any unexpected
        exception. Progress committed before the failure is kept.

        Raises:
            InvalidTransitionError: If the run is not pending.
            PersistenceError: If a store write fails.
        """
        run = self.tracker.start(run_id)
        self.session.commit()

        try:
            request = DiscoveryStartRequest.model_validate(run.config)
            ctx = RunContext(run_id=run.id, max_queries=request.max_queries, dry_run=request.dry_run)
            removed = self.cache.cleanup_expired()
            self.tracker.log(
                run.id,
                f"Starting {request.mode.value} for {', '.join(c.value for c in request.countries)}"
                f" (max {request.max_queries} queries, {removed} expired cache entries removed)",
            )
            self.session.commit()

            if request.mode == DiscoveryMode.EXPLORE:
                await self.explore(ctx, request)
            elif request.mode == DiscoveryMode.ENUMERATE:
                await self.enumerate(ctx, request)
            else:
                await self.verify(ctx, request)
        except SQLAlchemyError as e:
            logger.exception(f"Discovery run {run.id} failed to persist")
            self.session.rollback()
            self.tracker.fail(run.id, f"Persistence failure: {e}")
            self.session.commit()
            raise PersistenceError(str(e)) from e
        except Exception as e:
            logger.exception(f"Discovery run {run.id} failed")
            self.session.rollback()
            self.tracker.fail(run.id, str(e))
            self.session.commit()
            raise

        return self._finish(ctx)

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
        logger.info(
            f"Run {ctx.run_id} {run.status.value}: {ctx.queries_executed} queries, "
            f"{ctx.queries_skipped} skipped, {ctx.venues_discovered} venues, "
            f"{ctx.chains_detected} chains"
        )
        return run

    def _report(self, ctx: RunContext) -> None:
        delta = ctx.take_delta()
        if delta:
            self.tracker.update_stats(ctx.run_id, delta)
        self.session.commit()

    def _should_stop(self, ctx: RunContext) -> bool:
        if ctx.cancelled:
            return True
        if self.tracker.should_stop(ctx.run_id):
            ctx.cancelled = True
            logger.info(f"Run {ctx.run_id} stop observed")
            return True
        return ctx.queries_remaining <= 0

    def adapter_for(self, platform: Platform) -> BasePlatformAdapter | None:
        if platform not in self._adapters:
            adapter = get_adapter(platform, self.config.products, self.config.confidence)
            if adapter is None:
                return None
            self._adapters[platform] = adapter
        return self._adapters[platform]

    def targets(self, request: DiscoveryStartRequest) -> list[tuple[Platform, Country]]:
        """(platform, country) pairs in scope, skipping disabled and unsupported platforms."""
        platforms = request.platforms or list(Platform)
        targets = []
        for country in request.countries:
            for platform in platforms:
                if platform.value in self.config.disabled_platforms:
                    continue
                adapter = self.adapter_for(platform)
                if adapter is not None and adapter.supports_country(country):
                    targets.append((platform, country))
        return targets

    # =========================================================================
    # Modes
    # =========================================================================

    async def explore(self, ctx: RunContext, request: DiscoveryStartRequest) -> None:
        """
        Run strategy queries for every target concurrently.

        A target that raises cancels the others before the error reaches
        the run loop, so nothing keeps searching for a failed run.
        """
        targets = self.targets(request)
        if not targets:
            raise ValidationError("No supported platform for the requested countries")
        await gather_or_cancel(self._run_target(ctx, platform, country) for platform, country in targets)

    async def enumerate(self, ctx: RunContext, request: DiscoveryStartRequest) -> None:
        """Find all locations of one chain."""
        if not request.chain_id:
            raise ValidationError("Enumerate mode requires a chain")
        targets = self.targets(request)
        ctx.mark_chain(request.chain_id)
        ctx.chains_queued += 1
        for country in request.countries:
            platforms = [p for p, c in targets if c == country]
            if not platforms:
                continue
            await self._enumerate_chain(ctx, request.chain_id, country, platforms, depth=1)

    async def verify(self, ctx: RunContext, request: DiscoveryStartRequest) -> None:
        """Re-check staged venues of the requested countries through the extraction pipeline."""
        fetcher = self.fetcher or PageFetcher(self.config.fetch)
        pipeline = ExtractionPipeline(self.session, fetcher, self.config, clock=self.clock)
        venues: list[DiscoveredVenue] = []
        for country in request.countries:
            for status in (EntityStatus.PENDING, EntityStatus.NEEDS_REVIEW, EntityStatus.APPROVED):
                venues.extend(
                    v
                    for v in self.staging.venues.search(status=status, country=country, limit=request.max_queries)
                    if not request.platforms or v.platform in request.platforms
                )
        try:
            await pipeline.process_venues(ctx, venues[: request.max_queries], ExtractionMode.VERIFY)
        finally:
            if self.fetcher is None:
                await fetcher.close()

    # =========================================================================
    # Query plans
    # =========================================================================

    def build_plans(self, platform: Platform, country: Country) -> list[QueryPlan]:
        """
        Queries for one target: top strategies times top cities.

        Chain templates are left to enumeration. With no usable strategy
        the built-in generic templates are used instead.
        """
        settings = self.config.discovery
        cities = get_cities(country, settings.cities_per_strategy)
        strategies = [
            s
            for s in self.strategies.get_active_strategies(
                platform, country, min_success_rate=settings.min_success_rate
            )
            if "chain" not in template_variables(s.query_template)
        ][: settings.strategies_per_target]

        plans: list[QueryPlan] = []
        if strategies:
            for strategy in strategies:
                if "city" in template_variables(strategy.query_template):
                    for city in cities:
                        query = self.strategies.render_query(strategy, {"city": city})
                        plans.append(QueryPlan(query, platform, country, strategy=strategy, city=city))
                else:
                    plans.append(QueryPlan(self.strategies.render_query(strategy), platform, country, strategy))
        else:
            site = platform_site(platform, country)
            for template in GENERIC_QUERY_TEMPLATES:
                for city in cities:
                    query = render_query(template, {"platform": site, "city": city, "country": country.value})
                    plans.append(QueryPlan(query, platform, country, city=city))

        unique: list[QueryPlan] = []
        seen: set[str] = set()
        for plan in plans:
            key = hash_query(plan.query)
            if key not in seen:
                seen.add(key)
                unique.append(plan)
        return unique

    async def _run_target(self, ctx: RunContext, platform: Platform, country: Country) -> None:
        plans = self.build_plans(platform, country)
        target = f"{platform.value}/{country.value}"
        if plans and not any(plan.strategy for plan in plans):
            self.tracker.log(ctx.run_id, f"No strategies for {target}; using generic queries")
        for plan in plans:
            if self._should_stop(ctx):
                return
            if not await self.execute_plan(ctx, plan, depth=0):
                self.tracker.log(ctx.run_id, f"Stopped {target}: budget throttled", level="warning")
                self.session.commit()
                return

    async def _enumerate_chain(
        self,
        ctx: RunContext,
        chain_name: str,
        country: Country,
        platforms: list[Platform],
        depth: int,
    ) -> None:
        plans: list[QueryPlan] = []
        for platform in platforms:
            for strategy in self.strategies.get_active_strategies(platform, country):
                placeholders = template_variables(strategy.query_template)
                if "chain" not in placeholders:
                    continue
                cities: list[str | None] = [None]
                if "city" in placeholders:
                    cities = list(get_cities(country, self.config.discovery.enumeration_cities))
                for city in cities:
                    variables = {"chain": chain_name}
                    if city:
                        variables["city"] = city
                    plans.append(
                        QueryPlan(
                            self.strategies.render_query(strategy, variables),
                            platform,
                            country,
                            strategy=strategy,
                            city=city,
                            chain=chain_name,
                        )
                    )
        for query in build_enumeration_queries(
            chain_name, country, platforms, city_limit=self.config.discovery.enumeration_cities
        ):
            plans.append(QueryPlan(query, platforms[0], country, chain=chain_name))

        logger.info(f"Enumerating chain '{chain_name}' in {country.value} with {len(plans)} queries (depth {depth})")
        for plan in plans:
            if self._should_stop(ctx):
                return
            if not await self.execute_plan(ctx, plan, depth=depth):
                return

    # =========================================================================
    # Query execution
    # =========================================================================

    async def execute_plan(self, ctx: RunContext, plan: QueryPlan, depth: int) -> bool:
        """
        Run one query end to end.

        Returns:
            False when the budget governor refused the query and the
            target should be abandoned; True otherwise.
        """
        if not ctx.reserve_query():
            return True

        query = plan.query
        lock = self._locks.setdefault(hash_query(query), asyncio.Lock())
        async with lock:
            if self.cache.should_skip_query(query) or not self.cache.try_claim(query, ctx.run_id):
                ctx.release_query()
                ctx.queries_skipped += 1
                self.session.commit()
                return True
            self.session.commit()

            check = self.budget.should_throttle()
            if check.throttle:
                self.cache.release_claim(query)
                ctx.release_query()
                ctx.budget_refusals += 1
                self.tracker.log(ctx.run_id, check.reason or "Budget throttled", level="warning")
                self.session.commit()
                return False

            try:
                async with self._semaphore:
                    results = await self.search.search(query)
            except SearchError as e:
                self.cache.release_claim(query)
                ctx.queries_executed += 1
                ctx.queries_failed += 1
                self.tracker.add_error(ctx.run_id, f"Search failed for '{query}': {e}")
                self._report(ctx)
                return True

            ctx.queries_executed += 1
            self.budget.record_scraper_costs(
                search_queries_free=0 if self.search.paid else 1,
                search_queries_paid=1 if self.search.paid else 0,
            )
            if ctx.dry_run:
                self.cache.release_claim(query)
            else:
                self.cache.record_query(query, len(results))
            self.session.commit()

        if results:
            ctx.queries_successful += 1
        else:
            ctx.queries_failed += 1

        outcome = self.process_results(ctx, plan, results)
        if plan.strategy is not None and not ctx.dry_run:
            self.strategies.record_usage(plan.strategy.id, success=outcome.staged > 0, run_id=ctx.run_id)
        self._report(ctx)

        if depth < self.config.discovery.max_chain_depth:
            for chain_name in outcome.new_chains:
                ctx.chains_queued += 1
                await self._enumerate_chain(ctx, chain_name, plan.country, [plan.platform], depth + 1)
        return True

    def process_results(self, ctx: RunContext, plan: QueryPlan, results: list[SearchResult]) -> ResultOutcome:
        """
        Stage the venues found in a result page and collect newly detected chains.

        During enumeration, venues whose name contains the chain name are
        recorded as locations of that chain; other venues are treated like
        explore results.
        """
        outcome = ResultOutcome()
        texts = [r.text for r in results]
        for result in results:
            adapter = self._adapter_for_url(result.url, plan.platform)
            if adapter is None:
                continue
            name = adapter.venue_name_from_title(result.title)
            if not name or result.url in ctx.seen_urls:
                continue
            ctx.seen_urls.add(result.url)

            if is_brand_misuse(name):
                ctx.venues_skipped += 1
                logger.info(f"Skipping brand misuse venue: {name}")
                continue

            related = [t for t in texts if name.lower() in t.lower()] or [result.text]
            detection = detect_chain(name, related)
            if plan.chain and plan.chain.lower() in name.lower():
                chain_name: str | None = plan.chain
            elif detection.is_chain:
                chain_name = detection.chain_name
                if ctx.mark_chain(chain_name):
                    ctx.chains_detected += 1
                    outcome.new_chains.append(chain_name)
            else:
                chain_name = None

            venue = self._build_venue(ctx, plan, result, adapter, name, detection, chain_name)
            if ctx.dry_run:
                ctx.venues_discovered += 1
                outcome.staged += 1
                continue
            _, created = self.staging.stage_venue(venue)
            if created:
                ctx.venues_discovered += 1
                outcome.staged += 1
            else:
                ctx.venues_updated += 1
        self.session.commit()
        return outcome

    def _adapter_for_url(self, url: str, preferred: Platform) -> BasePlatformAdapter | None:
        preferred_adapter = self.adapter_for(preferred)
        if preferred_adapter is not None and preferred_adapter.is_venue_url(url):
            return preferred_adapter
        for platform in Platform:
            if platform == preferred or platform.value in self.config.disabled_platforms:
                continue
            adapter = self.adapter_for(platform)
            if adapter is not None and adapter.is_venue_url(url):
                return adapter
        return None

    def _build_venue(
        self,
        ctx: RunContext,
        plan: QueryPlan,
        result: SearchResult,
        adapter: BasePlatformAdapter,
        name: str,
        detection: ChainDetection,
        chain_name: str | None,
    ) -> DiscoveredVenue:
        confidence = self.config.confidence
        known_products = find_verified_chain_products(name)
        matches = adapter.find_planted_items([MenuItem(name=result.title, description=result.snippet)])
        product_score = max((m.confidence for m in matches), default=0)
        city = plan.city or (detection.locations[0] if len(detection.locations) == 1 else "")

        chain_confidence = detection.confidence
        if known_products:
            chain_confidence = ChainConfidence.HIGH
        elif chain_name and chain_confidence == ChainConfidence.LOW:
            # Location of a chain that is being enumerated
            chain_confidence = ChainConfidence.MEDIUM

        score, factors = score_venue_confidence(
            confidence,
            product_score=product_score,
            strategy_success_rate=plan.strategy.success_rate if plan.strategy else None,
            chain_confidence=chain_confidence,
            url_matches_platform=adapter.PLATFORM == plan.platform,
        )
        flags: list[str] = []
        if known_products:
            products = list(known_products)
            score = confidence.verified_chain
            flags.append(VERIFIED_CHAIN_FLAG)
        else:
            products = extract_products([result.title, result.snippet])

        status = EntityStatus.PENDING
        if score < confidence.review_threshold:
            flags.append(LOW_CONFIDENCE_FLAG)
            status = EntityStatus.NEEDS_REVIEW

        return DiscoveredVenue(
            name=name,
            platform=adapter.PLATFORM,
            country=country_from_url(result.url) or plan.country,
            city=city,
            url=result.url,
            venue_id=adapter.extract_venue_id(result.url) or "",
            is_chain=chain_name is not None or known_products is not None,
            chain_name=chain_name or (name if known_products else None),
            chain_confidence=chain_confidence,
            products=products,
            confidence_score=score,
            confidence_factors=factors,
            flags=flags,
            status=status,
            discovered_by_strategy_id=plan.strategy.id if plan.strategy else None,
            discovered_by_query=plan.query,
            discovery_run_id=ctx.run_id,
        )

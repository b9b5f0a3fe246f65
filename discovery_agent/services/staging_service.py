"""Staging service for discovered venues and dishes.

Nothing found by discovery is published directly. Entities are staged
and move through review:

    pending -> needs_review | approved | rejected
    approved -> promoted

Promoted entities are final.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from discovery_agent.core.enums import EntityStatus
from discovery_agent.core.exceptions import EntityNotFoundError, InvalidTransitionError
from discovery_agent.core.schema import DiscoveredDish, DiscoveredVenue
from discovery_agent.db.repositories import DiscoveredDishRepository, DiscoveredVenueRepository

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[EntityStatus, set[EntityStatus]] = {
    EntityStatus.PENDING: {EntityStatus.NEEDS_REVIEW, EntityStatus.APPROVED, EntityStatus.REJECTED},
    EntityStatus.NEEDS_REVIEW: {
        EntityStatus.NEEDS_REVIEW,
        EntityStatus.APPROVED,
        EntityStatus.REJECTED,
    },
    EntityStatus.APPROVED: {EntityStatus.PROMOTED, EntityStatus.REJECTED, EntityStatus.NEEDS_REVIEW},
    EntityStatus.REJECTED: {EntityStatus.APPROVED, EntityStatus.NEEDS_REVIEW},
    EntityStatus.PROMOTED: set(),
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


def check_transition(current: EntityStatus, target: EntityStatus) -> None:
    """Raise InvalidTransitionError if a review move is not allowed."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot move from {current.value} to {target.value}")


class StagingService:
    """Service for staging discovered entities and reviewing them."""

    def __init__(self, session: Session, clock: Callable[[], datetime] | None = None):
        self.session = session
        self.clock = clock or _utc_now
        self.venues = DiscoveredVenueRepository(session)
        self.dishes = DiscoveredDishRepository(session)

    # =========================================================================
    # Staging
    # =========================================================================

    def stage_venue(self, venue: DiscoveredVenue) -> tuple[DiscoveredVenue, bool]:
        """
        Stage a venue unless its URL is already known.

        Returns:
            Tuple of (stored venue, created). An existing venue is returned
            unchanged apart from a raised confidence score.
        """
        existing = self.venues.get_by_url(venue.url)
        if existing is None:
            now = self.clock()
            return self.venues.create(venue.model_copy(update={"created_at": now, "updated_at": now})), True

        if venue.confidence_score > existing.confidence_score and existing.status != EntityStatus.PROMOTED:
            existing = self.venues.update(
                existing.model_copy(
                    update={
                        "confidence_score": venue.confidence_score,
                        "confidence_factors": venue.confidence_factors,
                        "products": sorted(set(existing.products) | set(venue.products)),
                    }
                )
            )
        return existing, False

    def stage_dish(self, dish: DiscoveredDish) -> tuple[DiscoveredDish, bool]:
        """Stage a dish, refreshing an existing dish of the same venue and name."""
        self.get_venue(dish.venue_id)
        existing = self.dishes.find(dish.venue_id, dish.name)
        if existing is None:
            now = self.clock()
            return self.dishes.create(dish.model_copy(update={"created_at": now, "updated_at": now})), True
        if existing.status == EntityStatus.PROMOTED:
            return existing, False
        updated = existing.model_copy(
            update={
                "description": dish.description or existing.description,
                "price": dish.price if dish.price is not None else existing.price,
                "currency": dish.currency or existing.currency,
                "product": dish.product,
                "is_vegan": dish.is_vegan,
                "confidence_score": dish.confidence_score,
                "flags": dish.flags,
                "extraction_run_id": dish.extraction_run_id,
            }
        )
        return self.dishes.update(updated), False

    def merge_venue_details(
        self,
        venue_id: UUID | str,
        products: list[str] | None = None,
        address: str = "",
        city: str = "",
        flags: list[str] | None = None,
    ) -> DiscoveredVenue:
        """
        Add data found on the venue page without touching the review status.

        Products and flags are merged; address and city only fill blanks.
        Promoted venues are returned unchanged.
        """
        venue = self.get_venue(venue_id)
        if venue.status == EntityStatus.PROMOTED:
            return venue
        merged_flags = list(venue.flags)
        for flag in flags or []:
            if flag not in merged_flags:
                merged_flags.append(flag)
        return self.venues.update(
            venue.model_copy(
                update={
                    "products": sorted(set(venue.products) | set(products or [])),
                    "address": venue.address or address,
                    "city": venue.city or city,
                    "flags": merged_flags,
                }
            )
        )

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_venue(self, venue_id: UUID | str) -> DiscoveredVenue:
        venue = self.venues.get_by_id(venue_id)
        if venue is None:
            raise EntityNotFoundError(f"Venue {venue_id} not found")
        return venue

    def get_dish(self, dish_id: UUID | str) -> DiscoveredDish:
        dish = self.dishes.get_by_id(dish_id)
        if dish is None:
            raise EntityNotFoundError(f"Dish {dish_id} not found")
        return dish

    def get_dishes(self, venue_id: UUID | str) -> list[DiscoveredDish]:
        return self.dishes.list_for_venue(venue_id)

    def get_review_queue(self, limit: int = 50) -> list[DiscoveredVenue]:
        """Venues awaiting a decision, flagged ones first, then by confidence."""
        flagged = self.venues.search(status=EntityStatus.NEEDS_REVIEW, limit=limit)
        pending = self.venues.search(status=EntityStatus.PENDING, limit=limit)
        return (flagged + pending)[:limit]

    # =========================================================================
    # Review decisions
    # =========================================================================

    def approve(self, venue_id: UUID | str) -> DiscoveredVenue:
        return self.set_venue_status(venue_id, EntityStatus.APPROVED)

    def reject(self, venue_id: UUID | str, reason: str) -> DiscoveredVenue:
        return self.set_venue_status(venue_id, EntityStatus.REJECTED, reason)

    def mark_needs_review(self, venue_id: UUID | str, reason: str) -> DiscoveredVenue:
        return self.set_venue_status(venue_id, EntityStatus.NEEDS_REVIEW, reason)

    def promote(self, venue_id: UUID | str) -> DiscoveredVenue:
        """Promote an approved venue and its approved dishes."""
        venue = self.set_venue_status(venue_id, EntityStatus.PROMOTED)
        for dish in self.dishes.list_for_venue(venue_id):
            if dish.status == EntityStatus.APPROVED:
                self.dishes.update(dish.model_copy(update={"status": EntityStatus.PROMOTED}))
        logger.info(f"Promoted venue {venue.name} ({venue.id})")
        return venue

    def set_venue_status(
        self,
        venue_id: UUID | str,
        status: EntityStatus,
        reason: str | None = None,
    ) -> DiscoveredVenue:
        """Apply a review decision to a venue."""
        venue = self.get_venue(venue_id)
        check_transition(venue.status, status)
        flags = list(venue.flags)
        if status == EntityStatus.NEEDS_REVIEW and reason and reason not in flags:
            flags.append(reason)
        return self.venues.update(
            venue.model_copy(
                update={
                    "status": status,
                    "flags": flags,
                    "rejection_reason": reason if status == EntityStatus.REJECTED else venue.rejection_reason,
                }
            )
        )

    def set_dish_status(
        self,
        dish_id: UUID | str,
        status: EntityStatus,
        reason: str | None = None,
    ) -> DiscoveredDish:
        """Apply a review decision to a dish."""
        dish = self.get_dish(dish_id)
        check_transition(dish.status, status)
        flags = list(dish.flags)
        if reason and reason not in flags:
            flags.append(reason)
        return self.dishes.update(dish.model_copy(update={"status": status, "flags": flags}))

"""Tests for staging and review of discovered entities."""

import tempfile
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from discovery_agent.core.enums import Country, EntityStatus, Platform
from discovery_agent.core.exceptions import EntityNotFoundError, InvalidTransitionError
from discovery_agent.core.schema import DiscoveredDish, DiscoveredVenue
from discovery_agent.db.models import Base
from discovery_agent.services.staging_service import StagingService, check_transition


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create a database session for testing."""
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def staging(session: Session) -> StagingService:
    return StagingService(session)


def make_venue(**overrides) -> DiscoveredVenue:
    data = {
        "name": "Birdie Birdie",
        "platform": Platform.UBER_EATS,
        "country": Country.CH,
        "city": "Zürich",
        "url": "https://www.ubereats.com/ch/store/birdie-birdie-zurich",
        "venue_id": "birdie-birdie-zurich",
        "products": ["planted.chicken_burger"],
        "confidence_score": 70,
    }
    data.update(overrides)
    return DiscoveredVenue(**data)


class TestTransitions:
    """Tests for the review state machine."""

    def test_allowed(self) -> None:
        """Test the normal review path."""
        check_transition(EntityStatus.PENDING, EntityStatus.APPROVED)
        check_transition(EntityStatus.APPROVED, EntityStatus.PROMOTED)
        check_transition(EntityStatus.REJECTED, EntityStatus.APPROVED)

    def test_pending_cannot_be_promoted(self) -> None:
        """Test promotion requires approval."""
        with pytest.raises(InvalidTransitionError):
            check_transition(EntityStatus.PENDING, EntityStatus.PROMOTED)

    def test_promoted_is_final(self) -> None:
        """Test nothing leaves promoted."""
        for status in EntityStatus:
            with pytest.raises(InvalidTransitionError):
                check_transition(EntityStatus.PROMOTED, status)


class TestStageVenue:
    """Tests for staging venues."""

    def test_create(self, staging: StagingService, session: Session) -> None:
        """Test a new URL creates a venue."""
        venue, created = staging.stage_venue(make_venue())
        session.commit()

        assert created is True
        stored = staging.get_venue(venue.id)
        assert stored.name == "Birdie Birdie"
        assert stored.status == EntityStatus.PENDING
        assert stored.products == ["planted.chicken_burger"]

    def test_same_url_not_duplicated(self, staging: StagingService) -> None:
        """Test a known URL returns the existing venue."""
        first, _ = staging.stage_venue(make_venue(confidence_score=70))
        second, created = staging.stage_venue(make_venue(confidence_score=50, name="Other name"))

        assert created is False
        assert second.id == first.id
        assert second.name == "Birdie Birdie"
        assert second.confidence_score == 70

    def test_higher_confidence_raises_score(self, staging: StagingService) -> None:
        """Test a better sighting raises the score and merges products."""
        first, _ = staging.stage_venue(make_venue(confidence_score=60))
        updated, created = staging.stage_venue(
            make_venue(confidence_score=90, products=["planted.chicken_tenders"])
        )

        assert created is False
        assert updated.id == first.id
        assert updated.confidence_score == 90
        assert updated.products == ["planted.chicken_burger", "planted.chicken_tenders"]


class TestStageDish:
    """Tests for staging dishes."""

    def test_requires_venue(self, staging: StagingService) -> None:
        """Test a dish for an unknown venue is refused."""
        with pytest.raises(EntityNotFoundError):
            staging.stage_dish(DiscoveredDish(venue_id=uuid4(), name="planted.chicken Bowl"))

    def test_create_then_refresh(self, staging: StagingService) -> None:
        """Test the same dish name updates instead of duplicating."""
        venue, _ = staging.stage_venue(make_venue())
        dish, created = staging.stage_dish(
            DiscoveredDish(venue_id=venue.id, name="Planted Tenders", price=14.5, currency="CHF")
        )
        assert created is True

        refreshed, created = staging.stage_dish(
            DiscoveredDish(venue_id=venue.id, name="Planted Tenders", price=15.9)
        )
        assert created is False
        assert refreshed.id == dish.id
        assert refreshed.price == 15.9
        assert refreshed.currency == "CHF"
        assert len(staging.get_dishes(venue.id)) == 1


class TestReview:
    """Tests for review decisions."""

    def test_approve_and_promote(self, staging: StagingService) -> None:
        """Test promotion carries approved dishes along."""
        venue, _ = staging.stage_venue(make_venue())
        approved_dish, _ = staging.stage_dish(DiscoveredDish(venue_id=venue.id, name="Planted Burger"))
        pending_dish, _ = staging.stage_dish(DiscoveredDish(venue_id=venue.id, name="Planted Wrap"))
        staging.set_dish_status(approved_dish.id, EntityStatus.APPROVED)

        staging.approve(venue.id)
        promoted = staging.promote(venue.id)

        assert promoted.status == EntityStatus.PROMOTED
        assert staging.get_dish(approved_dish.id).status == EntityStatus.PROMOTED
        assert staging.get_dish(pending_dish.id).status == EntityStatus.PENDING

    def test_promote_requires_approval(self, staging: StagingService) -> None:
        """Test a pending venue cannot be promoted."""
        venue, _ = staging.stage_venue(make_venue())
        with pytest.raises(InvalidTransitionError):
            staging.promote(venue.id)

    def test_reject_records_reason(self, staging: StagingService) -> None:
        """Test the rejection reason is stored."""
        venue, _ = staging.stage_venue(make_venue())
        rejected = staging.reject(venue.id, "closed permanently")

        assert rejected.status == EntityStatus.REJECTED
        assert rejected.rejection_reason == "closed permanently"

    def test_needs_review_adds_flag(self, staging: StagingService) -> None:
        """Test the review reason becomes a flag."""
        venue, _ = staging.stage_venue(make_venue())
        flagged = staging.mark_needs_review(venue.id, "no_products_found")

        assert flagged.status == EntityStatus.NEEDS_REVIEW
        assert "no_products_found" in flagged.flags

    def test_review_queue_order(self, staging: StagingService) -> None:
        """Test flagged venues come before pending ones."""
        pending, _ = staging.stage_venue(make_venue(url="https://www.ubereats.com/ch/store/a"))
        flagged, _ = staging.stage_venue(
            make_venue(url="https://www.ubereats.com/ch/store/b", status=EntityStatus.NEEDS_REVIEW)
        )
        approved, _ = staging.stage_venue(make_venue(url="https://www.ubereats.com/ch/store/c"))
        staging.approve(approved.id)

        assert [v.id for v in staging.get_review_queue()] == [flagged.id, pending.id]

    def test_merge_details_keeps_status(self, staging: StagingService) -> None:
        """Test page details fill blanks without changing the review status."""
        venue, _ = staging.stage_venue(make_venue(city="", address=""))
        staging.approve(venue.id)

        merged = staging.merge_venue_details(
            venue.id,
            products=["planted.chicken"],
            address="Langstrasse 1",
            city="Zürich",
            flags=["generic_match"],
        )
        assert merged.status == EntityStatus.APPROVED
        assert merged.address == "Langstrasse 1"
        assert merged.city == "Zürich"
        assert merged.products == ["planted.chicken", "planted.chicken_burger"]
        assert merged.flags == ["generic_match"]

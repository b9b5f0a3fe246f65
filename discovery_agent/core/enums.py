"""Enums for discovery, extraction and review fields."""

from enum import Enum


class Platform(str, Enum):
    """Delivery platform identifier."""

    UBER_EATS = "uber-eats"
    WOLT = "wolt"
    LIEFERANDO = "lieferando"
    JUST_EAT = "just-eat"
    SMOOD = "smood"


class Country(str, Enum):
    """Supported market (ISO 3166 alpha-2)."""

    CH = "CH"
    DE = "DE"
    AT = "AT"
    NL = "NL"
    UK = "UK"
    FR = "FR"
    ES = "ES"
    IT = "IT"
    BE = "BE"
    PL = "PL"


class StrategyOrigin(str, Enum):
    """How a strategy came to exist."""

    SEED = "seed"
    AGENT = "agent"
    MANUAL = "manual"
    EVOLVED = "evolved"


class StrategyTag(str, Enum):
    """Descriptive tags for query strategies."""

    CHAIN_DISCOVERY = "chain-discovery"
    SINGLE_VENUE = "single-venue"
    CITY_SPECIFIC = "city-specific"
    PRODUCT_SPECIFIC = "product-specific"
    HIGH_PRECISION = "high-precision"
    BROAD_SEARCH = "broad-search"
    VERIFICATION = "verification"


class StrategyTier(str, Enum):
    """Performance tier of a strategy."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNTESTED = "untested"


class RunKind(str, Enum):
    """Kind of scraper run."""

    DISCOVERY = "discovery"
    EXTRACTION = "extraction"


class RunStatus(str, Enum):
    """Lifecycle status of a scraper run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are allowed."""
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class DiscoveryMode(str, Enum):
    """Discovery run mode."""

    EXPLORE = "explore"
    ENUMERATE = "enumerate"
    VERIFY = "verify"


class ExtractionTarget(str, Enum):
    """Scope of an extraction run."""

    ALL = "all"
    CHAIN = "chain"
    VENUE = "venue"


class ExtractionMode(str, Enum):
    """Extraction run mode."""

    ENRICH = "enrich"
    REFRESH = "refresh"
    VERIFY = "verify"


class EntityStatus(str, Enum):
    """Review status of a staged venue or dish."""

    PENDING = "pending"
    NEEDS_REVIEW = "needs_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROMOTED = "promoted"


class EntityType(str, Enum):
    """Kinds of staged entities that can receive feedback."""

    VENUE = "venue"
    DISH = "dish"


class FeedbackResultType(str, Enum):
    """Outcome of a human review."""

    CORRECT = "correct"
    WRONG_PRODUCT = "wrong_product"
    WRONG_PRICE = "wrong_price"
    WRONG_NAME = "wrong_name"
    NOT_PLANTED = "not_planted"
    NOT_FOUND = "not_found"
    ERROR = "error"

    @property
    def is_false_positive(self) -> bool:
        """Whether the staged entity should not have been found at all."""
        return self in (FeedbackResultType.NOT_PLANTED, FeedbackResultType.WRONG_PRODUCT)


class ChainConfidence(str, Enum):
    """Confidence that a venue belongs to a multi-location chain."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PlantedProduct(str, Enum):
    """Product lines searched for on menus."""

    CHICKEN = "planted.chicken"
    KEBAB = "planted.kebab"
    SCHNITZEL = "planted.schnitzel"
    PULLED = "planted.pulled"
    BURGER = "planted.burger"
    STEAK = "planted.steak"
    DUCK = "planted.duck"
    GENERIC = "planted"

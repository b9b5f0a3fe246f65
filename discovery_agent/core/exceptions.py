"""Exception hierarchy for the discovery pipeline."""

from __future__ import annotations

from typing import Any


class DiscoveryError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(DiscoveryError):
    """Malformed input, rejected before any run is created."""


class BudgetExceededError(DiscoveryError):
    """Estimated cost of new work exceeds the remaining budget."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class ThrottledError(BudgetExceededError):
    """The budget governor is throttling new paid work."""


class FetchError(DiscoveryError):
    """A page or search request failed."""

    def __init__(self, message: str, url: str = "", transient: bool = True) -> None:
        super().__init__(message)
        self.url = url
        self.transient = transient


class BotChallengeError(FetchError):
    """The target answered with a bot-challenge interstitial."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message, url=url, transient=False)


class SearchError(FetchError):
    """The search backend failed."""


class ParseError(DiscoveryError):
    """Page content could not be fully interpreted."""


class PersistenceError(DiscoveryError):
    """A store write failed."""


class NotFoundError(DiscoveryError):
    """A referenced record does not exist."""


class StrategyNotFoundError(NotFoundError):
    """Unknown strategy id."""


class RunNotFoundError(NotFoundError):
    """Unknown scraper run id."""


class EntityNotFoundError(NotFoundError):
    """Unknown staged venue or dish id."""


class InvalidTransitionError(DiscoveryError):
    """A lifecycle transition is not allowed from the current state."""

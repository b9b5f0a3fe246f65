"""
Agent Configuration Module
==========================

Loads budget limits, confidence weights, fetch behaviour and product
patterns from a YAML file, with environment overrides for the values
operators change most often.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
]

DEFAULT_ACCEPT_LANGUAGES = ["de-CH,de;q=0.9,en;q=0.8", "de-DE,de;q=0.9,en;q=0.7", "en-GB,en;q=0.9"]


@dataclass
class BudgetConfig:
    """Spend limits and unit costs in USD."""

    daily_limit: float = 50.0
    monthly_limit: float = 1000.0
    throttle_threshold: float = 0.8
    search_query_free_cost: float = 0.0
    search_query_paid_cost: float = 0.005
    ai_call_costs: dict[str, float] = field(
        default_factory=lambda: {"gemini": 0.0001, "claude": 0.0003}
    )
    ai_tier_split: dict[str, float] = field(
        default_factory=lambda: {"gemini": 0.5, "claude": 0.5}
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BudgetConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        defaults = cls()
        costs = data.get("costs", {})
        return cls(
            daily_limit=float(data.get("daily_limit", defaults.daily_limit)),
            monthly_limit=float(data.get("monthly_limit", defaults.monthly_limit)),
            throttle_threshold=float(data.get("throttle_threshold", defaults.throttle_threshold)),
            search_query_free_cost=float(costs.get("search_query_free", defaults.search_query_free_cost)),
            search_query_paid_cost=float(costs.get("search_query_paid", defaults.search_query_paid_cost)),
            ai_call_costs={
                k: float(v) for k, v in costs.get("ai_calls", defaults.ai_call_costs).items()
            },
            ai_tier_split={
                k: float(v) for k, v in data.get("ai_tier_split", defaults.ai_tier_split).items()
            },
        )


@dataclass
class ConfidenceConfig:
    """Weights used when scoring staged venues and dishes."""

    specific_match: int = 90
    generic_match: int = 60
    verified_chain: int = 90
    default_strategy_prior: int = 50
    product_weight: float = 0.5
    strategy_weight: float = 0.3
    chain_weight: float = 0.1
    url_weight: float = 0.1
    review_threshold: int = 60

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ConfidenceConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        defaults = cls()
        weights = data.get("weights", {})
        return cls(
            specific_match=int(data.get("specific_match", defaults.specific_match)),
            generic_match=int(data.get("generic_match", defaults.generic_match)),
            verified_chain=int(data.get("verified_chain", defaults.verified_chain)),
            default_strategy_prior=int(
                data.get("default_strategy_prior", defaults.default_strategy_prior)
            ),
            product_weight=float(weights.get("product", defaults.product_weight)),
            strategy_weight=float(weights.get("strategy", defaults.strategy_weight)),
            chain_weight=float(weights.get("chain", defaults.chain_weight)),
            url_weight=float(weights.get("url", defaults.url_weight)),
            review_threshold=int(data.get("review_threshold", defaults.review_threshold)),
        )


@dataclass
class RateLimit:
    """Request pacing for one host: a steady rate plus an initial burst."""

    requests_per_second: float = 1.0
    burst_limit: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, defaults: RateLimit | None = None) -> RateLimit:
        defaults = defaults or cls()
        data = data or {}
        limit = cls(
            requests_per_second=float(data.get("requests_per_second", defaults.requests_per_second)),
            burst_limit=int(data.get("burst_limit", defaults.burst_limit)),
        )
        if limit.requests_per_second <= 0 or limit.burst_limit < 1:
            raise ValueError(f"Invalid rate limit: {data}")
        return limit


# Platforms throttle differently; Uber Eats challenges fastest.
DEFAULT_HOST_LIMITS = {
    "ubereats.com": RateLimit(requests_per_second=0.5, burst_limit=2),
    "wolt.com": RateLimit(requests_per_second=1.0, burst_limit=3),
    "lieferando.de": RateLimit(requests_per_second=1.0, burst_limit=3),
    "lieferando.at": RateLimit(requests_per_second=1.0, burst_limit=3),
    "just-eat.ch": RateLimit(requests_per_second=1.0, burst_limit=3),
}


@dataclass
class FetchConfig:
    """HTTP fetch behaviour for search and page requests."""

    timeout: float = 20.0
    max_retries: int = 3
    requests_per_second: float = 1.0
    burst_limit: int = 3
    host_limits: dict[str, RateLimit] = field(default_factory=lambda: dict(DEFAULT_HOST_LIMITS))
    min_delay: float = 0.5
    max_delay: float = 2.0
    user_agents: list[str] = field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    accept_languages: list[str] = field(default_factory=lambda: list(DEFAULT_ACCEPT_LANGUAGES))

    def limit_for(self, host: str) -> RateLimit:
        """
        Rate limit for a host.

        A configured domain covers its subdomains, so "ubereats.com" also
        paces "www.ubereats.com". Unlisted hosts get the default rate.
        """
        host = host.lower().split(":")[0]
        for domain, limit in self.host_limits.items():
            if host == domain or host.endswith(f".{domain}"):
                return limit
        return RateLimit(self.requests_per_second, self.burst_limit)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FetchConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        defaults = cls()
        default_limit = RateLimit.from_dict(data)
        host_limits = dict(defaults.host_limits)
        for domain, limit in (data.get("host_limits") or {}).items():
            host_limits[domain.lower()] = RateLimit.from_dict(limit, defaults=host_limits.get(domain.lower()))
        return cls(
            timeout=float(data.get("timeout", defaults.timeout)),
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            requests_per_second=default_limit.requests_per_second,
            burst_limit=default_limit.burst_limit,
            host_limits=host_limits,
            min_delay=float(data.get("min_delay", defaults.min_delay)),
            max_delay=float(data.get("max_delay", defaults.max_delay)),
            user_agents=data.get("user_agents") or defaults.user_agents,
            accept_languages=data.get("accept_languages") or defaults.accept_languages,
        )


@dataclass
class DiscoveryConfig:
    """Run-level limits for the orchestrator."""

    max_concurrency: int = 4
    max_queries: int = 50
    max_chain_depth: int = 2
    min_success_rate: int = 30
    strategies_per_target: int = 3
    cities_per_strategy: int = 5
    enumeration_cities: int = 5
    search_results_per_query: int = 10
    search_provider: str = "serpapi"
    search_api_key: str = ""
    use_free_tier: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DiscoveryConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        defaults = cls()
        return cls(
            max_concurrency=int(data.get("max_concurrency", defaults.max_concurrency)),
            max_queries=int(data.get("max_queries", defaults.max_queries)),
            max_chain_depth=int(data.get("max_chain_depth", defaults.max_chain_depth)),
            min_success_rate=int(data.get("min_success_rate", defaults.min_success_rate)),
            strategies_per_target=int(
                data.get("strategies_per_target", defaults.strategies_per_target)
            ),
            cities_per_strategy=int(data.get("cities_per_strategy", defaults.cities_per_strategy)),
            enumeration_cities=int(data.get("enumeration_cities", defaults.enumeration_cities)),
            search_results_per_query=int(
                data.get("search_results_per_query", defaults.search_results_per_query)
            ),
            search_provider=data.get("search_provider", defaults.search_provider),
            search_api_key=data.get("search_api_key", defaults.search_api_key),
            use_free_tier=bool(data.get("use_free_tier", defaults.use_free_tier)),
        )


@dataclass
class ProductPattern:
    """A regex that identifies one product line on a menu."""

    pattern: str
    product: str
    specific: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProductPattern:
        return cls(
            pattern=data["pattern"],
            product=data["product"],
            specific=bool(data.get("specific", True)),
        )


DEFAULT_PRODUCT_PATTERNS = [
    ProductPattern(r"planted\.?\s*chicken", "planted.chicken"),
    ProductPattern(r"planted\.?\s*kebab", "planted.kebab"),
    ProductPattern(r"planted\.?\s*schnitzel", "planted.schnitzel"),
    ProductPattern(r"planted\.?\s*pulled", "planted.pulled"),
    ProductPattern(r"planted\.?\s*burger", "planted.burger"),
    ProductPattern(r"planted\.?\s*steak", "planted.steak"),
    ProductPattern(r"planted\.?\s*duck", "planted.duck"),
    ProductPattern(r"planted\s+h[aä]hnchen", "planted.chicken"),
    ProductPattern(r"planted\s+h[uü]hn", "planted.chicken"),
    ProductPattern(r"\bplanted\b", "planted.chicken", specific=False),
]

DEFAULT_VEGAN_PATTERN = r"vegan|pflanzlich|plant.?based"


@dataclass
class ProductConfig:
    """Product-name patterns used by the platform adapters."""

    patterns: list[ProductPattern] = field(default_factory=lambda: list(DEFAULT_PRODUCT_PATTERNS))
    vegan_pattern: str = DEFAULT_VEGAN_PATTERN

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ProductConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        patterns_data = data.get("patterns")
        patterns = (
            [ProductPattern.from_dict(p) for p in patterns_data]
            if patterns_data
            else list(DEFAULT_PRODUCT_PATTERNS)
        )
        return cls(
            patterns=patterns,
            vegan_pattern=data.get("vegan_pattern", DEFAULT_VEGAN_PATTERN),
        )


@dataclass
class AgentConfig:
    """Top-level configuration for the discovery agent."""

    budget: BudgetConfig = field(default_factory=BudgetConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    products: ProductConfig = field(default_factory=ProductConfig)
    disabled_platforms: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AgentConfig:
        """Create from dictionary."""
        data = data or {}
        return cls(
            budget=BudgetConfig.from_dict(data.get("budget")),
            confidence=ConfidenceConfig.from_dict(data.get("confidence")),
            fetch=FetchConfig.from_dict(data.get("fetch")),
            discovery=DiscoveryConfig.from_dict(data.get("discovery")),
            products=ProductConfig.from_dict(data.get("products")),
            disabled_platforms=list(data.get("disabled_platforms", [])),
        )

    @classmethod
    def load(cls, config_path: Path | str) -> AgentConfig:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the discovery.yaml file

        Returns:
            Parsed configuration
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data)

    def apply_env_overrides(self) -> None:
        """Override selected values from environment variables."""
        env = os.environ
        if env.get("DAILY_BUDGET_LIMIT"):
            self.budget.daily_limit = float(env["DAILY_BUDGET_LIMIT"])
        if env.get("MONTHLY_BUDGET_LIMIT"):
            self.budget.monthly_limit = float(env["MONTHLY_BUDGET_LIMIT"])
        if env.get("BUDGET_THROTTLE_THRESHOLD"):
            self.budget.throttle_threshold = float(env["BUDGET_THROTTLE_THRESHOLD"])
        if env.get("SERPAPI_API_KEY"):
            self.discovery.search_api_key = env["SERPAPI_API_KEY"]
        if env.get("DISCOVERY_MAX_CONCURRENCY"):
            self.discovery.max_concurrency = int(env["DISCOVERY_MAX_CONCURRENCY"])


# Global config instance
_default_config: AgentConfig | None = None


def get_default_config() -> AgentConfig:
    """
    Get the default agent configuration.

    Loads configuration from the path specified in DISCOVERY_CONFIG_PATH
    environment variable, or falls back to config/discovery.yaml, then
    applies environment overrides.

    Returns:
        The global AgentConfig instance
    """
    global _default_config

    if _default_config is None:
        config_path = os.environ.get("DISCOVERY_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            project_root = Path(__file__).parent.parent
            path = project_root / "config" / "discovery.yaml"

        config = AgentConfig.load(path) if path.exists() else AgentConfig()
        config.apply_env_overrides()
        _default_config = config

    return _default_config


def reset_default_config() -> None:
    """Reset the default configuration (useful for testing)."""
    global _default_config
    _default_config = None

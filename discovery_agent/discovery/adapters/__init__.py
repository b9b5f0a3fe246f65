"""
Platform Adapter Registry
=========================

Central registry for delivery-platform adapters.
Provides factory functions for creating adapters by platform.
"""

from __future__ import annotations

from typing import Any

from discovery_agent.config import ConfidenceConfig, ProductConfig
from discovery_agent.core.enums import Country, Platform
from discovery_agent.discovery.adapters.base import (
    BasePlatformAdapter,
    MenuItem,
    PlantedMenuItem,
    PlatformSearchResult,
    VenuePageData,
    clean_text,
    country_from_url,
    extract_price,
)
from discovery_agent.discovery.adapters.just_eat import JustEatAdapter
from discovery_agent.discovery.adapters.lieferando import LieferandoAdapter
from discovery_agent.discovery.adapters.smood import SmoodAdapter
from discovery_agent.discovery.adapters.uber_eats import UberEatsAdapter
from discovery_agent.discovery.adapters.wolt import WoltAdapter

# Registry mapping platforms to their adapter classes
ADAPTER_REGISTRY: dict[Platform, type[BasePlatformAdapter]] = {
    Platform.UBER_EATS: UberEatsAdapter,
    Platform.WOLT: WoltAdapter,
    Platform.LIEFERANDO: LieferandoAdapter,
    Platform.JUST_EAT: JustEatAdapter,
    Platform.SMOOD: SmoodAdapter,
}


def get_adapter(
    platform: Platform | str,
    products: ProductConfig | None = None,
    confidence: ConfidenceConfig | None = None,
) -> BasePlatformAdapter | None:
    """
    Get an adapter instance for a platform.

    Args:
        platform: Platform enum or its value (e.g., "wolt")
        products: Optional product patterns
        confidence: Optional match scores

    Returns:
        Adapter instance, or None if the platform is unknown
    """
    try:
        adapter_class = ADAPTER_REGISTRY.get(Platform(platform))
    except ValueError:
        return None
    if adapter_class is None:
        return None
    return adapter_class(products, confidence)


def list_adapters() -> list[str]:
    """List registered platform names."""
    return [platform.value for platform in ADAPTER_REGISTRY]


def get_adapter_info(platform: Platform | str) -> dict[str, Any] | None:
    """Get information about a registered adapter."""
    adapter = get_adapter(platform)
    return adapter.get_info() if adapter else None


def get_adapters_for_country(
    country: Country | str,
    products: ProductConfig | None = None,
    confidence: ConfidenceConfig | None = None,
) -> list[BasePlatformAdapter]:
    """All adapters whose platform operates in a country."""
    return [
        adapter_class(products, confidence)
        for adapter_class in ADAPTER_REGISTRY.values()
        if Country(country) in adapter_class.SUPPORTED_COUNTRIES
    ]


__all__ = [
    "ADAPTER_REGISTRY",
    "BasePlatformAdapter",
    "JustEatAdapter",
    "LieferandoAdapter",
    "MenuItem",
    "PlantedMenuItem",
    "PlatformSearchResult",
    "SmoodAdapter",
    "UberEatsAdapter",
    "VenuePageData",
    "WoltAdapter",
    "clean_text",
    "country_from_url",
    "extract_price",
    "get_adapter",
    "get_adapter_info",
    "get_adapters_for_country",
    "list_adapters",
]

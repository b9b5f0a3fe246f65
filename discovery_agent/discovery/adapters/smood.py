"""
Smood Adapter
=============

URL format: https://www.smood.ch/{lang}/delivery/{city}/{slug}
Venue ids are "{city}/{slug}". Prices in embedded state are in Rappen.
"""

from __future__ import annotations

import re
from typing import Any

from discovery_agent.core.enums import Country, Platform
from discovery_agent.discovery.adapters.base import BasePlatformAdapter, VenuePageData

_VENUE_ID = re.compile(r"smood\.ch/(?:en|fr|de)/(?:delivery|livraison|lieferung)/([^?#]+?)/?(?:[?#]|$)")


class SmoodAdapter(BasePlatformAdapter):
    """Adapter for Smood (CH)."""

    PLATFORM = Platform.SMOOD
    SUPPORTED_COUNTRIES = (Country.CH,)
    BASE_URL = "https://www.smood.ch"
    DEFAULT_CURRENCY = "CHF"
    # City and venue slugs, e.g. "zurich/tibits"
    VENUE_ID_SEGMENTS = None

    MENU_ITEM_SELECTORS = ['[data-testid="menu-item"]', "div.product-card", "li.menu-item"]

    def build_venue_url(self, venue_id: str, country: Country | str = Country.CH) -> str:
        return f"{self.BASE_URL}/en/delivery/{self.check_venue_id(venue_id)}"

    def extract_venue_id(self, url: str) -> str | None:
        match = _VENUE_ID.search(url)
        return match.group(1) if match else None

    def extract_from_state(self, states: list[Any], data: VenuePageData) -> None:
        super().extract_from_state(states, data)
        if not data.menu_items:
            self._extract_page_props(
                states, data, venue_keys=("restaurant",), item_keys=("items", "products"), cents=True
            )

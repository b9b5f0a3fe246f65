"""
Wolt Adapter
============

URL format: https://wolt.com/{cc}/{city}/restaurant/{slug}
Venue ids are "{city}/{slug}". Pages embed __NEXT_DATA__ with prices in cents.
"""

from __future__ import annotations

import re
from typing import Any

from discovery_agent.core.enums import Country, Platform
from discovery_agent.discovery.adapters.base import BasePlatformAdapter, VenuePageData

_CITY_VENUE = re.compile(r"wolt\.com/\w{2}/(?:\w{3}/)?([^/?#]+)/restaurant/([^/?#]+)")
_PLAIN_VENUE = re.compile(r"wolt\.com/\w{2}/restaurant/([^/?#]+)")


class WoltAdapter(BasePlatformAdapter):
    """Adapter for Wolt (DE, AT)."""

    PLATFORM = Platform.WOLT
    SUPPORTED_COUNTRIES = (Country.DE, Country.AT)
    BASE_URL = "https://wolt.com"
    VENUE_ID_SEGMENTS = 2

    MENU_ITEM_SELECTORS = ['[data-test-id="MenuItem"]', '[data-test-id="horizontal-item-card"]']
    ITEM_NAME_SELECTORS = ['[data-test-id="horizontal-item-card-header"]', "h3"]

    def build_venue_url(self, venue_id: str, country: Country | str) -> str:
        cc = Country(country).value.lower()
        self.check_venue_id(venue_id)
        if "/" in venue_id:
            city, slug = venue_id.split("/", 1)
            return f"{self.BASE_URL}/{cc}/{city}/restaurant/{slug}"
        return f"{self.BASE_URL}/{cc}/restaurant/{venue_id}"

    def extract_venue_id(self, url: str) -> str | None:
        match = _CITY_VENUE.search(url)
        if match:
            return f"{match.group(1)}/{match.group(2)}"
        match = _PLAIN_VENUE.search(url)
        return match.group(1) if match else None

    def extract_from_state(self, states: list[Any], data: VenuePageData) -> None:
        super().extract_from_state(states, data)
        if not data.menu_items:
            self._extract_page_props(
                states, data, venue_keys=("venue",), price_keys=("baseprice", "price"), cents=True
            )

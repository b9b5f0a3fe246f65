"""
Lieferando Adapter
==================

URL format: https://www.lieferando.{de|at}/speisekarte/{slug}
Pages embed __NEXT_DATA__ with the restaurant and a menu priced in cents.
"""

from __future__ import annotations

import re
from typing import Any

from discovery_agent.core.enums import Country, Platform
from discovery_agent.discovery.adapters.base import BasePlatformAdapter, VenuePageData

_VENUE_ID = re.compile(r"lieferando\.(?:de|at)/(?:en/)?(?:speisekarte|menu)/([^/?#]+)")


class LieferandoAdapter(BasePlatformAdapter):
    """Adapter for Lieferando (DE, AT)."""

    PLATFORM = Platform.LIEFERANDO
    SUPPORTED_COUNTRIES = (Country.DE, Country.AT)
    BASE_URL = "https://www.lieferando.de"

    NAME_SELECTORS = ["h1.restaurant-name", '[data-qa="restaurant-info-name"]', "h1"]
    MENU_ITEM_SELECTORS = ['[data-qa="item-element"]', "article.product", "div.meal"]
    ITEM_NAME_SELECTORS = ['[data-qa="heading"]', "h3", ".meal-name"]
    ITEM_DESCRIPTION_SELECTORS = ['[class*="description"]', "p"]

    def base_url_for(self, country: Country | str) -> str:
        return "https://www.lieferando.at" if Country(country) == Country.AT else self.BASE_URL

    def build_venue_url(self, venue_id: str, country: Country | str) -> str:
        return f"{self.base_url_for(country)}/speisekarte/{self.check_venue_id(venue_id)}"

    def extract_venue_id(self, url: str) -> str | None:
        match = _VENUE_ID.search(url)
        return match.group(1) if match else None

    def extract_from_state(self, states: list[Any], data: VenuePageData) -> None:
        super().extract_from_state(states, data)
        if not data.menu_items:
            self._extract_page_props(
                states, data, venue_keys=("restaurant",), item_keys=("products", "items"), cents=True
            )

"""
Just Eat Adapter
================

URL format: https://www.just-eat.ch/en/menu/{slug}
Menu pages mostly expose schema.org JSON-LD; the base layers cover them.
"""

from __future__ import annotations

import re

from discovery_agent.core.enums import Country, Platform
from discovery_agent.discovery.adapters.base import BasePlatformAdapter

_VENUE_ID = re.compile(r"just-eat\.ch/(?:(?:en|de|fr)/)?menu/([^/?#]+)")


class JustEatAdapter(BasePlatformAdapter):
    """Adapter for Just Eat Switzerland."""

    PLATFORM = Platform.JUST_EAT
    SUPPORTED_COUNTRIES = (Country.CH,)
    BASE_URL = "https://www.just-eat.ch"
    DEFAULT_CURRENCY = "CHF"

    NAME_SELECTORS = ["h1.restaurant-name", '[data-qa="restaurant-info-name"]', "h1"]
    MENU_ITEM_SELECTORS = ['[data-qa="item-element"]', "div.meal", "li.menu-item"]
    ITEM_NAME_SELECTORS = ['[data-qa="heading"]', ".meal-name", "h3"]

    def build_venue_url(self, venue_id: str, country: Country | str = Country.CH) -> str:
        return f"{self.BASE_URL}/en/menu/{self.check_venue_id(venue_id)}"

    def extract_venue_id(self, url: str) -> str | None:
        match = _VENUE_ID.search(url)
        return match.group(1) if match else None

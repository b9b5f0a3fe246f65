"""
Uber Eats Adapter
=================

URL format: https://www.ubereats.com/{cc}/store/{store-slug}[/{store-uuid}]
Venue ids are "{store-slug}/{store-uuid}", or the bare slug when the URL has no uuid.
Store pages carry a Redux state blob and schema.org JSON-LD.
"""

from __future__ import annotations

import re
from typing import Any

from discovery_agent.core.enums import Country, Platform
from discovery_agent.discovery.adapters.base import (
    BasePlatformAdapter,
    MenuItem,
    VenuePageData,
    _to_price,
    clean_text,
)

_VENUE_ID = re.compile(r"ubereats\.com/\w{2}/store/([^/?#]+(?:/[^/?#]+)?)")


class UberEatsAdapter(BasePlatformAdapter):
    """Adapter for Uber Eats (CH, DE, AT)."""

    PLATFORM = Platform.UBER_EATS
    SUPPORTED_COUNTRIES = (Country.CH, Country.DE, Country.AT)
    BASE_URL = "https://www.ubereats.com"
    VENUE_ID_SEGMENTS = 2

    def build_venue_url(self, venue_id: str, country: Country | str) -> str:
        self.check_venue_id(venue_id)
        return f"{self.BASE_URL}/{Country(country).value.lower()}/store/{venue_id}"

    def extract_venue_id(self, url: str) -> str | None:
        match = _VENUE_ID.search(url)
        return match.group(1) if match else None

    def extract_from_state(self, states: list[Any], data: VenuePageData) -> None:
        super().extract_from_state(states, data)
        for state in states:
            if not isinstance(state, dict):
                continue
            store = state.get("storeInfo") or state.get("store")
            if isinstance(store, dict):
                data.name = data.name or clean_text(store.get("title") or store.get("name"))
                location = store.get("location") or {}
                data.address = data.address or clean_text(location.get("address"))
                data.city = data.city or clean_text(location.get("city"))
                rating = store.get("rating")
                if isinstance(rating, dict) and rating.get("ratingValue") is not None:
                    data.rating = float(rating["ratingValue"])
            if data.menu_items:
                continue
            for entry in state.get("menuItems") or []:
                name = clean_text(entry.get("title") or entry.get("name"))
                if not name:
                    continue
                data.menu_items.append(
                    MenuItem(
                        name=name,
                        description=clean_text(entry.get("itemDescription") or entry.get("description")),
                        # Uber Eats reports integer prices in cents
                        price=_to_price(entry.get("price") or entry.get("priceString"), cents=True),
                        currency=entry.get("currencyCode"),
                        category=clean_text(entry.get("sectionTitle") or entry.get("category")),
                    )
                )

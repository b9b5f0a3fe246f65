"""
Platform Adapter Base Module
============================

Defines the abstract base class for delivery-platform adapters.
Adapters are responsible for:
1. Building platform-scoped search queries and venue URLs
2. Interpreting search results and venue pages
3. Finding product mentions on menus

Venue pages are parsed in layers, each tried only when the previous one
produced nothing:
1. Embedded JSON (framework state blobs, JSON-LD)
2. Tag and attribute extraction with BeautifulSoup
3. Keyword scan of the visible text near product mentions

Parsing never raises. Problems are recorded in parse_errors.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin
from uuid import UUID

from bs4 import BeautifulSoup, Tag

from discovery_agent.config import ConfidenceConfig, ProductConfig, get_default_config
from discovery_agent.core.enums import Country, Platform
from discovery_agent.core.exceptions import ParseError, ValidationError
from discovery_agent.core.markets import platform_site
from discovery_agent.core.schema import DiscoveredDish

logger = logging.getLogger(__name__)


@dataclass
class MenuItem:
    """A dish as listed on a platform menu."""

    name: str
    description: str = ""
    price: float | None = None
    currency: str | None = None
    category: str = ""


@dataclass
class PlantedMenuItem(MenuItem):
    """A menu item that mentions a product."""

    product: str = ""
    is_vegan: bool = False
    confidence: int = 0


@dataclass
class VenuePageData:
    """Structured data extracted from a venue page."""

    name: str = ""
    address: str = ""
    city: str = ""
    rating: float | None = None
    cuisine_types: list[str] = field(default_factory=list)
    menu_items: list[MenuItem] = field(default_factory=list)
    extraction_method: str = "none"  # "embedded_json", "html", "keyword_scan", "none"
    parse_errors: list[str] = field(default_factory=list)


@dataclass
class PlatformSearchResult:
    """A venue link found in a search result or listing page."""

    name: str
    url: str
    venue_id: str
    city: str = ""
    snippet: str = ""


# ============================================================================
# Text helpers
# ============================================================================

_PRICE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(?:CHF|Fr\.?)\s*(\d+[.,]\d{2})", re.IGNORECASE), "CHF"),
    (re.compile(r"(\d+[.,]\d{2})\s*(?:CHF|Fr\.?)", re.IGNORECASE), "CHF"),
    (re.compile(r"€\s*(\d+[.,]\d{2})"), "EUR"),
    (re.compile(r"(\d+[.,]\d{2})\s*€"), "EUR"),
    (re.compile(r"(?:EUR)\s*(\d+[.,]\d{2})"), "EUR"),
    (re.compile(r"(\d+[.,]\d{2})\s*EUR"), "EUR"),
]

_STATE_PATTERNS = [
    re.compile(r"window\.__REDUX_STATE__\s*=\s*({.+?});?\s*</script>", re.DOTALL),
    re.compile(r"window\.__PRELOADED_STATE__\s*=\s*({.+?});?\s*</script>", re.DOTALL),
    re.compile(r"window\.__INITIAL_STATE__\s*=\s*({.+?});?\s*</script>", re.DOTALL),
]

_TITLE_SEPARATOR = re.compile(r"\s+[|\-–—]\s+")
_TITLE_PREFIX = re.compile(r"^(?:order|bestellen?|commander)\s+(?:from\s+|bei\s+|chez\s+)?", re.IGNORECASE)
_TITLE_SUFFIX = re.compile(
    r"\s+(?:delivery|lieferservice|lieferung|liefern|takeaway|livraison|menu|speisekarte)\b.*$",
    re.IGNORECASE,
)

KEYWORD = "planted"
KEYWORD_SCAN_DESCRIPTION = "Planted product detected"


def clean_text(text: str | None) -> str:
    """Collapse whitespace and trim."""
    if not text:
        return ""
    return " ".join(text.split())


def extract_price(text: str) -> tuple[float, str] | None:
    """
    Find a price in free text.

    Handles "CHF 12.90", "Fr. 12.90", "12,90 €", "€12.90" and the like.

    Returns:
        Tuple of (amount, ISO currency), or None if no price is present.
    """
    for pattern, currency in _PRICE_PATTERNS:
        match = pattern.search(text)
        if match:
            return float(match.group(1).replace(",", ".")), currency
    return None


def country_from_url(url: str) -> Country | None:
    """Guess the market from a platform URL path or top-level domain."""
    lower = url.lower()
    for country, markers in (
        (Country.CH, ("/ch/", ".ch/")),
        (Country.DE, ("/de/", ".de/")),
        (Country.AT, ("/at/", ".at/")),
    ):
        if any(marker in lower for marker in markers):
            return country
    if lower.endswith(".ch"):
        return Country.CH
    return None


def _to_price(value: Any, cents: bool = False) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return round(value / 100, 2) if cents else float(value)
    parsed = extract_price(str(value))
    if parsed:
        return parsed[0]
    try:
        return float(str(value).replace(",", "."))
    except ValueError:
        return None


# ============================================================================
# Adapter
# ============================================================================


class BasePlatformAdapter(ABC):
    """
    Abstract base class for delivery platform adapters.

    Subclasses must set PLATFORM, SUPPORTED_COUNTRIES and BASE_URL and
    implement build_venue_url and extract_venue_id. They may override
    extract_from_state for platform-specific embedded JSON and the CSS
    selector lists for the HTML layer.
    """

    PLATFORM: Platform
    SUPPORTED_COUNTRIES: tuple[Country, ...] = ()
    BASE_URL: str = ""
    DEFAULT_CURRENCY = "EUR"
    # Path segments a venue id may have; None allows any number
    VENUE_ID_SEGMENTS: int | None = 1

    NAME_SELECTORS = ['[data-testid="store-title"]', '[data-test-id="venue-name"]', "h1"]
    MENU_ITEM_SELECTORS = [
        '[data-testid="menu-item"]',
        '[data-test-id="MenuItem"]',
        '[data-qa="item-element"]',
        "li.menu-item",
        "article.product",
        "div.product",
    ]
    ITEM_NAME_SELECTORS = ['[data-qa="heading"]', "h3", "h4", '[class*="name"]', "span"]
    ITEM_DESCRIPTION_SELECTORS = ['[class*="description"]', "p"]
    ITEM_PRICE_SELECTORS = ['[class*="price"]', '[data-qa="price"]']

    def __init__(
        self,
        products: ProductConfig | None = None,
        confidence: ConfidenceConfig | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            products: Product-name patterns (defaults to the global config)
            confidence: Specific/generic match scores (defaults to the global config)
        """
        if products is None or confidence is None:
            config = get_default_config()
            products = products or config.products
            confidence = confidence or config.confidence
        self.products = products
        self.confidence = confidence
        self._patterns = [
            (re.compile(p.pattern, re.IGNORECASE), p) for p in products.patterns
        ]
        self._vegan_pattern = re.compile(products.vegan_pattern, re.IGNORECASE)

    # =========================================================================
    # URLs
    # =========================================================================

    def supports_country(self, country: Country | str) -> bool:
        return Country(country) in self.SUPPORTED_COUNTRIES

    def build_search_url(self, query: str, country: Country | str, city: str | None = None) -> str:
        """Build a search-engine query scoped to this platform's listings for a country."""
        parts = [f"site:{platform_site(self.PLATFORM, Country(country))}", query]
        if city:
            parts.append(city)
        return clean_text(" ".join(parts))

    @abstractmethod
    def build_venue_url(self, venue_id: str, country: Country | str) -> str:
        """
        Build the venue page URL from a venue id.

        extract_venue_id is its left inverse: extracting from the built URL
        returns the same id.

        Raises:
            ValidationError: If venue_id is not an id of this platform.
        """

    def check_venue_id(self, venue_id: str) -> str:
        """Reject empty ids, URL paths and ids with more segments than the platform uses."""
        segments = venue_id.split("/")
        too_many = self.VENUE_ID_SEGMENTS is not None and len(segments) > self.VENUE_ID_SEGMENTS
        if too_many or not all(segments) or any(c in venue_id for c in "?#"):
            raise ValidationError(f"Invalid {self.PLATFORM.value} venue id: {venue_id!r}")
        return venue_id

    @abstractmethod
    def extract_venue_id(self, url: str) -> str | None:
        """Extract the platform venue id from a URL, or None if it is not a venue URL."""

    def is_venue_url(self, url: str) -> bool:
        return self.extract_venue_id(url) is not None

    # =========================================================================
    # Search results
    # =========================================================================

    def parse_search_results(self, raw: str) -> list[PlatformSearchResult]:
        """
        Find venue links in a listing or search page.

        Results are deduplicated by venue id, first occurrence wins.
        """
        results: list[PlatformSearchResult] = []
        seen: set[str] = set()
        try:
            soup = BeautifulSoup(raw, "html.parser")
            for anchor in soup.find_all("a", href=True):
                url = urljoin(self.BASE_URL + "/", anchor["href"])
                venue_id = self.extract_venue_id(url)
                if not venue_id or venue_id in seen:
                    continue
                heading = anchor.select_one("h2, h3, h4, [class*='name']")
                name = clean_text(heading.get_text(" ") if heading else anchor.get_text(" "))
                if not name:
                    continue
                seen.add(venue_id)
                results.append(PlatformSearchResult(name=name, url=url, venue_id=venue_id))
        except Exception as e:
            logger.warning(f"{self.PLATFORM.value}: could not parse search results: {e}")
        return results

    def venue_name_from_title(self, title: str) -> str:
        """
        Derive the venue name from a search result title.

        "Order Birdie Birdie delivery in Zürich | Uber Eats" -> "Birdie Birdie"
        """
        name = _TITLE_SEPARATOR.split(clean_text(title))[0]
        name = _TITLE_PREFIX.sub("", name)
        name = _TITLE_SUFFIX.sub("", name)
        return clean_text(name)

    # =========================================================================
    # Venue pages
    # =========================================================================

    def parse_venue_page(self, raw: str) -> VenuePageData:
        """
        Extract venue data from a page. Never raises.

        Returns:
            VenuePageData; in the worst case name="" and menu_items=[].
        """
        data = VenuePageData()
        soup: BeautifulSoup | None = None

        try:
            skipped: list[str] = []
            states = self._find_embedded_states(raw, skipped)
            data.parse_errors.extend(f"embedded_json: {error}" for error in skipped)
            if states:
                self.extract_from_state(states, data)
                if data.menu_items:
                    data.extraction_method = "embedded_json"
        except Exception as e:
            data.parse_errors.append(f"embedded_json: unexpected state layout ({e})")

        try:
            soup = BeautifulSoup(raw, "html.parser")
            if not data.name:
                data.name = self._name_from_html(soup)
            if not data.menu_items:
                data.menu_items = self._menu_items_from_html(soup)
                if data.menu_items:
                    data.extraction_method = "html"
        except Exception as e:
            data.parse_errors.append(f"html: {e}")

        if not data.menu_items:
            try:
                text = soup.get_text("\n") if soup is not None else re.sub(r"<[^>]+>", "\n", raw)
                data.menu_items = self._keyword_scan(text)
                if data.menu_items:
                    data.extraction_method = "keyword_scan"
            except Exception as e:
                data.parse_errors.append(f"keyword_scan: {e}")

        for error in data.parse_errors:
            logger.debug(f"{self.PLATFORM.value} parse issue: {error}")
        return data

    def extract_from_state(self, states: list[Any], data: VenuePageData) -> None:
        """
        Fill data from embedded JSON documents.

        The default understands schema.org Restaurant / Menu JSON-LD.
        Platform adapters extend this for their framework state.
        """
        for state in states:
            for node in _iter_jsonld_nodes(state):
                node_type = node.get("@type")
                types = node_type if isinstance(node_type, list) else [node_type]
                if not {"Restaurant", "FoodEstablishment"} & set(types):
                    continue
                data.name = data.name or clean_text(node.get("name"))
                address = node.get("address")
                if isinstance(address, dict):
                    data.address = data.address or clean_text(address.get("streetAddress"))
                    data.city = data.city or clean_text(address.get("addressLocality"))
                cuisine = node.get("servesCuisine")
                if isinstance(cuisine, str):
                    data.cuisine_types = [cuisine]
                elif isinstance(cuisine, list):
                    data.cuisine_types = [str(c) for c in cuisine]
                data.menu_items.extend(self._items_from_jsonld_menu(node.get("hasMenu")))

    def _extract_page_props(
        self,
        states: list[Any],
        data: VenuePageData,
        venue_keys: tuple[str, ...],
        item_keys: tuple[str, ...] = ("items",),
        price_keys: tuple[str, ...] = ("price",),
        cents: bool = True,
    ) -> None:
        """
        Read the venue/menu layout shared by Next.js style storefronts.

        Looks for props.pageProps.<venue_key> (or a top-level <venue_key>)
        and a menu of categories holding items.
        """
        for state in states:
            if not isinstance(state, dict):
                continue
            page_props = state.get("props", {}).get("pageProps", {}) or {}
            venue = next(
                (
                    source.get(key)
                    for source in (page_props, state)
                    for key in venue_keys
                    if isinstance(source.get(key), dict)
                ),
                None,
            )
            if venue is None:
                continue
            data.name = data.name or clean_text(venue.get("name") or venue.get("title"))
            address = venue.get("address")
            if isinstance(address, dict):
                data.address = data.address or clean_text(
                    address.get("street") or address.get("line1") or address.get("streetAddress")
                )
                data.city = data.city or clean_text(address.get("city") or address.get("addressLocality"))
            elif isinstance(address, str):
                data.address = data.address or clean_text(address)
            rating = venue.get("rating")
            if isinstance(rating, (int, float)):
                data.rating = float(rating)
            elif isinstance(rating, dict):
                score = rating.get("score") or rating.get("average") or rating.get("ratingValue")
                data.rating = float(score) if score is not None else None

            menu = page_props.get("menu") or venue.get("menu") or {}
            categories = menu.get("categories") or menu.get("sections") or []
            for category in categories:
                entries = next((category.get(k) for k in item_keys if category.get(k)), []) or []
                for entry in entries:
                    name = clean_text(entry.get("name") or entry.get("title"))
                    if not name:
                        continue
                    raw_price = next((entry.get(k) for k in price_keys if entry.get(k) is not None), None)
                    data.menu_items.append(
                        MenuItem(
                            name=name,
                            description=clean_text(entry.get("description")),
                            price=_to_price(raw_price, cents=cents),
                            currency=self.DEFAULT_CURRENCY,
                            category=clean_text(category.get("name") or category.get("title")),
                        )
                    )
            return

    def _find_embedded_states(self, raw: str, errors: list[str]) -> list[Any]:
        """
        Parsed framework state blobs and JSON-LD documents on a page.

        A blob that is not valid JSON is skipped with its error added to
        errors; the other blobs on the page are still returned.
        """
        blobs: list[tuple[str, str]] = []
        soup = BeautifulSoup(raw, "html.parser")
        next_data = soup.find("script", id="__NEXT_DATA__")
        if next_data and next_data.string:
            blobs.append(("__NEXT_DATA__", next_data.string))
        for script in soup.find_all("script", type="application/ld+json"):
            if script.string:
                blobs.append(("JSON-LD", script.string))
        for pattern in _STATE_PATTERNS:
            match = pattern.search(raw)
            if match:
                blobs.append(("window state", re.sub(r"\bundefined\b", "null", match.group(1))))

        states: list[Any] = []
        for source, blob in blobs:
            try:
                states.append(_load_state(blob, source))
            except ParseError as e:
                logger.warning(f"{self.PLATFORM.value}: skipping {source}: {e}")
                errors.append(str(e))
        return states

    def _items_from_jsonld_menu(self, menu: Any) -> list[MenuItem]:
        items: list[MenuItem] = []
        if not isinstance(menu, dict):
            return items
        for section in menu.get("hasMenuSection", []) or []:
            category = clean_text(section.get("name"))
            for entry in section.get("hasMenuItem", []) or []:
                offers = entry.get("offers") or {}
                if isinstance(offers, list):
                    offers = offers[0] if offers else {}
                name = clean_text(entry.get("name"))
                if name:
                    items.append(
                        MenuItem(
                            name=name,
                            description=clean_text(entry.get("description")),
                            price=_to_price(offers.get("price")),
                            currency=offers.get("priceCurrency") or self.DEFAULT_CURRENCY,
                            category=category,
                        )
                    )
        return items

    def _name_from_html(self, soup: BeautifulSoup) -> str:
        for selector in self.NAME_SELECTORS:
            element = soup.select_one(selector)
            if element:
                name = clean_text(element.get_text(" "))
                if name:
                    return name
        og_title = soup.find("meta", property="og:title")
        if isinstance(og_title, Tag) and og_title.get("content"):
            return clean_text(str(og_title["content"]))
        return ""

    def _menu_items_from_html(self, soup: BeautifulSoup) -> list[MenuItem]:
        items: list[MenuItem] = []
        for selector in self.MENU_ITEM_SELECTORS:
            for element in soup.select(selector):
                item = self._menu_item_from_element(element)
                if item:
                    items.append(item)
            if items:
                break
        return items

    def _menu_item_from_element(self, element: Tag) -> MenuItem | None:
        name = _first_text(element, self.ITEM_NAME_SELECTORS)
        if not name:
            return None
        description = _first_text(element, self.ITEM_DESCRIPTION_SELECTORS)
        price_text = _first_text(element, self.ITEM_PRICE_SELECTORS) or element.get_text(" ")
        price = extract_price(price_text)
        return MenuItem(
            name=name,
            description=description if description != name else "",
            price=price[0] if price else None,
            currency=price[1] if price else None,
        )

    def _keyword_scan(self, text: str) -> list[MenuItem]:
        items: list[MenuItem] = []
        seen: set[str] = set()
        for line in text.splitlines():
            line = clean_text(line)
            if KEYWORD not in line.lower() or not 5 < len(line) < 200:
                continue
            if line.lower() in seen:
                continue
            seen.add(line.lower())
            price = extract_price(line)
            items.append(
                MenuItem(
                    name=line,
                    description=KEYWORD_SCAN_DESCRIPTION,
                    price=price[0] if price else None,
                    currency=price[1] if price else None,
                )
            )
        return items

    # =========================================================================
    # Products
    # =========================================================================

    def find_planted_items(self, items: list[MenuItem]) -> list[PlantedMenuItem]:
        """
        Find menu items that mention a product.

        The first matching pattern wins. Specific patterns score
        specific_match, the generic one generic_match.
        """
        found: list[PlantedMenuItem] = []
        for item in items:
            text = f"{item.name} {item.description}".lower()
            for pattern, product_pattern in self._patterns:
                if not pattern.search(text):
                    continue
                found.append(
                    PlantedMenuItem(
                        name=item.name,
                        description=item.description,
                        price=item.price,
                        currency=item.currency,
                        category=item.category,
                        product=product_pattern.product,
                        is_vegan=bool(self._vegan_pattern.search(text)),
                        confidence=(
                            self.confidence.specific_match
                            if product_pattern.specific
                            else self.confidence.generic_match
                        ),
                    )
                )
                break
        return found

    def to_discovered_dishes(
        self,
        items: list[PlantedMenuItem],
        venue_id: UUID,
        run_id: UUID | None = None,
    ) -> list[DiscoveredDish]:
        """Convert product matches into staged dishes."""
        dishes = []
        for item in items:
            flags = []
            if item.confidence < self.confidence.specific_match:
                flags.append("generic_match")
            if item.description == KEYWORD_SCAN_DESCRIPTION:
                flags.append("keyword_scan")
            dishes.append(
                DiscoveredDish(
                    venue_id=venue_id,
                    name=item.name[:255],
                    description=item.description,
                    price=item.price,
                    currency=item.currency,
                    product=item.product,
                    is_vegan=item.is_vegan,
                    confidence_score=item.confidence,
                    flags=flags,
                    extraction_run_id=run_id,
                )
            )
        return dishes

    def get_info(self) -> dict[str, Any]:
        """Get adapter information."""
        return {
            "platform": self.PLATFORM.value,
            "countries": [c.value for c in self.SUPPORTED_COUNTRIES],
            "base_url": self.BASE_URL,
            "class": self.__class__.__name__,
        }


def _first_text(element: Tag, selectors: list[str]) -> str:
    for selector in selectors:
        found = element.select_one(selector)
        if found:
            text = clean_text(found.get_text(" "))
            if text:
                return text
    return ""


def _load_state(blob: str, source: str) -> Any:
    try:
        return json.loads(blob)
    except json.JSONDecodeError as e:
        raise ParseError(f"{source} is not valid JSON: {e}") from e


def _iter_jsonld_nodes(state: Any):
    """Yield dict nodes from a JSON-LD document, following @graph and lists."""
    if isinstance(state, list):
        for entry in state:
            yield from _iter_jsonld_nodes(entry)
    elif isinstance(state, dict):
        if "@graph" in state:
            yield from _iter_jsonld_nodes(state["@graph"])
        if "@type" in state:
            yield state

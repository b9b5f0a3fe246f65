"""Tests for delivery-platform adapters."""

import json
from uuid import uuid4

import pytest

from discovery_agent.config import ConfidenceConfig, ProductConfig
from discovery_agent.core.enums import Country, Platform
from discovery_agent.core.exceptions import ValidationError
from discovery_agent.discovery.adapters import (
    JustEatAdapter,
    LieferandoAdapter,
    MenuItem,
    SmoodAdapter,
    UberEatsAdapter,
    WoltAdapter,
    country_from_url,
    extract_price,
    get_adapter,
    get_adapters_for_country,
)


def make(adapter_class):
    return adapter_class(ProductConfig(), ConfidenceConfig())


# ============================================================================
# Fixtures: captured page shapes
# ============================================================================

WOLT_NEXT_DATA = {
    "props": {
        "pageProps": {
            "venue": {
                "name": "Green Club",
                "address": {"street": "Torstraße 1", "city": "Berlin"},
                "rating": {"score": 9.2},
            },
            "menu": {
                "categories": [
                    {
                        "name": "Bowls",
                        "items": [
                            {"name": "planted.chicken Bowl", "description": "vegan, mit Reis", "baseprice": 1290},
                            {"name": "Falafel Wrap", "baseprice": 990},
                        ],
                    }
                ]
            },
        }
    }
}

WOLT_PAGE = f"""
<html><head>
<script id="__NEXT_DATA__" type="application/json">{json.dumps(WOLT_NEXT_DATA)}</script>
</head><body><h1>Green Club</h1></body></html>
"""

JUST_EAT_PAGE = """
<html><head>
<script type="application/ld+json">
{"@context": "https://schema.org", "@type": "Restaurant", "name": "Hiltl",
 "address": {"streetAddress": "Sihlstrasse 28", "addressLocality": "Zürich"},
 "servesCuisine": ["Vegetarian"],
 "hasMenu": {"@type": "Menu", "hasMenuSection": [
   {"name": "Mains", "hasMenuItem": [
     {"name": "Planted Schnitzel", "description": "mit Pommes",
      "offers": {"price": "24.50", "priceCurrency": "CHF"}}]}]}}
</script>
</head><body></body></html>
"""

LIEFERANDO_PAGE = """
<html><body>
<h1>Kebab Haus</h1>
<article class="product">
  <h3>Planted Kebab Teller</h3>
  <p class="description">mit Salat</p>
  <span class="price">12,90 €</span>
</article>
<article class="product">
  <h3>Pommes</h3>
  <span class="price">3,50 €</span>
</article>
</body></html>
"""

SMOOD_PAGE = """
<html><body>
<div>Unsere Spezialitäten</div>
<div>Planted Chicken Curry CHF 18.50</div>
<div>Dal</div>
</body></html>
"""

UBER_EATS_BROKEN_STATE = """
<html><head><script id="__NEXT_DATA__" type="application/json">{not json</script></head>
<body>
<div data-testid="menu-item"><h3>Planted Burger</h3><span class="price">CHF 21.00</span></div>
</body></html>
"""

JUST_EAT_MIXED_STATES = JUST_EAT_PAGE.replace(
    "<head>", '<head><script id="__NEXT_DATA__" type="application/json">{"props": </script>'
)


class TestPageParsing:
    """Tests for layered venue page parsing."""

    def test_embedded_json(self) -> None:
        """Test Next.js page props are read first."""
        page = make(WoltAdapter).parse_venue_page(WOLT_PAGE)

        assert page.extraction_method == "embedded_json"
        assert page.name == "Green Club"
        assert page.city == "Berlin"
        assert page.rating == 9.2
        assert [item.name for item in page.menu_items] == ["planted.chicken Bowl", "Falafel Wrap"]
        assert page.menu_items[0].price == 12.9
        assert page.menu_items[0].category == "Bowls"

    def test_json_ld(self) -> None:
        """Test schema.org menus are understood."""
        page = make(JustEatAdapter).parse_venue_page(JUST_EAT_PAGE)

        assert page.extraction_method == "embedded_json"
        assert page.name == "Hiltl"
        assert page.address == "Sihlstrasse 28"
        assert page.cuisine_types == ["Vegetarian"]
        (item,) = page.menu_items
        assert item.name == "Planted Schnitzel"
        assert item.price == 24.5
        assert item.currency == "CHF"

    def test_html_selectors(self) -> None:
        """Test tag extraction when no embedded JSON exists."""
        page = make(LieferandoAdapter).parse_venue_page(LIEFERANDO_PAGE)

        assert page.extraction_method == "html"
        assert page.name == "Kebab Haus"
        assert len(page.menu_items) == 2
        kebab = page.menu_items[0]
        assert kebab.name == "Planted Kebab Teller"
        assert kebab.description == "mit Salat"
        assert (kebab.price, kebab.currency) == (12.9, "EUR")

    def test_keyword_scan(self) -> None:
        """Test free text is scanned as a last resort."""
        page = make(SmoodAdapter).parse_venue_page(SMOOD_PAGE)

        assert page.extraction_method == "keyword_scan"
        (item,) = page.menu_items
        assert item.name == "Planted Chicken Curry CHF 18.50"
        assert (item.price, item.currency) == (18.5, "CHF")

    def test_broken_state_falls_through(self) -> None:
        """Test invalid embedded JSON is recorded and the HTML layer still runs."""
        page = make(UberEatsAdapter).parse_venue_page(UBER_EATS_BROKEN_STATE)

        assert page.extraction_method == "html"
        assert page.parse_errors and page.parse_errors[0].startswith("embedded_json")
        assert page.menu_items[0].name == "Planted Burger"
        assert page.menu_items[0].price == 21.0

    def test_bad_blob_keeps_other_states(self) -> None:
        """Test a malformed __NEXT_DATA__ is skipped while the JSON-LD menu on the page is still read."""
        page = make(JustEatAdapter).parse_venue_page(JUST_EAT_MIXED_STATES)

        assert page.extraction_method == "embedded_json"
        assert page.name == "Hiltl"
        assert [item.name for item in page.menu_items] == ["Planted Schnitzel"]
        (error,) = page.parse_errors
        assert error.startswith("embedded_json: __NEXT_DATA__")

    @pytest.mark.parametrize("raw", ["", "<<<>>>", "not html at all", "<script>window.__INITIAL_STATE__ = {"])
    def test_never_raises(self, raw: str) -> None:
        """Test garbage input yields an empty result."""
        page = make(UberEatsAdapter).parse_venue_page(raw)
        assert page.menu_items == []


class TestProductMatching:
    """Tests for product pattern matching."""

    def test_specific_match(self) -> None:
        """Test specific patterns score high and detect vegan items."""
        (match,) = make(WoltAdapter).find_planted_items(
            [MenuItem(name="planted.chicken Bowl", description="vegan, mit Reis"), MenuItem(name="Falafel")]
        )
        assert match.product == "planted.chicken"
        assert match.confidence == 90
        assert match.is_vegan is True

    def test_first_pattern_wins(self) -> None:
        """Test an item naming two products takes the first pattern."""
        (match,) = make(WoltAdapter).find_planted_items([MenuItem(name="Planted Chicken Kebab")])
        assert match.product == "planted.chicken"

    def test_generic_match(self) -> None:
        """Test the bare brand word scores lower."""
        (match,) = make(WoltAdapter).find_planted_items([MenuItem(name="Bowl with Planted")])
        assert match.confidence == 60

    def test_to_dishes_flags(self) -> None:
        """Test generic and keyword-scan matches are flagged."""
        adapter = make(SmoodAdapter)
        page = adapter.parse_venue_page(SMOOD_PAGE)
        venue_id = uuid4()
        generic = adapter.find_planted_items([MenuItem(name="Bowl with Planted")])

        (scanned,) = adapter.to_discovered_dishes(adapter.find_planted_items(page.menu_items), venue_id)
        (loose,) = adapter.to_discovered_dishes(generic, venue_id)

        assert scanned.flags == ["keyword_scan"]
        assert scanned.product == "planted.chicken"
        assert scanned.venue_id == venue_id
        assert loose.flags == ["generic_match"]


class TestUrls:
    """Tests for venue URL handling."""

    def test_uber_eats(self) -> None:
        """Test store URLs with and without a store uuid."""
        adapter = make(UberEatsAdapter)
        assert adapter.extract_venue_id("https://www.ubereats.com/ch/store/birdie-birdie-zurich/abc123") == (
            "birdie-birdie-zurich/abc123"
        )
        assert adapter.extract_venue_id("https://www.ubereats.com/ch/store/birdie-birdie-zurich?ps=1") == (
            "birdie-birdie-zurich"
        )
        assert adapter.is_venue_url("https://www.ubereats.com/ch/city/zurich") is False

    def test_search_query(self) -> None:
        adapter = make(UberEatsAdapter)
        assert adapter.build_search_url("planted", "CH", "Zürich") == "site:ubereats.com/ch planted Zürich"
        assert adapter.build_search_url("planted", Country.CH) == "site:ubereats.com/ch planted"

    def test_wolt_round_trip(self) -> None:
        """Test city/slug ids survive build and extract."""
        adapter = make(WoltAdapter)
        assert adapter.extract_venue_id("https://wolt.com/de/deu/berlin/restaurant/green-club") == (
            "berlin/green-club"
        )
        url = adapter.build_venue_url("berlin/green-club", Country.DE)
        assert url == "https://wolt.com/de/berlin/restaurant/green-club"
        assert adapter.extract_venue_id(url) == "berlin/green-club"

    def test_lieferando_austria(self) -> None:
        """Test Austrian venues use the .at domain."""
        adapter = make(LieferandoAdapter)
        url = adapter.build_venue_url("green-club", Country.AT)
        assert url == "https://www.lieferando.at/speisekarte/green-club"
        assert adapter.extract_venue_id(url) == "green-club"

    def test_just_eat(self) -> None:
        """Test menu URLs."""
        adapter = make(JustEatAdapter)
        assert adapter.extract_venue_id("https://www.just-eat.ch/en/menu/hiltl") == "hiltl"
        assert adapter.extract_venue_id(adapter.build_venue_url("hiltl")) == "hiltl"

    @pytest.mark.parametrize(
        ("adapter_class", "venue_id", "country"),
        [
            (UberEatsAdapter, "tibits-zurich", Country.CH),
            (UberEatsAdapter, "tibits-zurich/7c1f2a9e-83b4-4d1e-9a51-0f2e6b3c8d11", Country.CH),
            (WoltAdapter, "berlin/green-club", Country.DE),
            (WoltAdapter, "green-club", Country.AT),
            (LieferandoAdapter, "kebab-haus", Country.DE),
            (LieferandoAdapter, "kebab-haus", Country.AT),
            (JustEatAdapter, "hiltl", Country.CH),
            (SmoodAdapter, "zurich/tibits", Country.CH),
        ],
    )
    def test_extract_inverts_build(self, adapter_class, venue_id: str, country: Country) -> None:
        """Test every adapter recovers the id it built a URL from."""
        adapter = make(adapter_class)
        url = adapter.build_venue_url(venue_id, country)

        assert adapter.extract_venue_id(url) == venue_id
        assert country_from_url(url) == country

    @pytest.mark.parametrize(
        ("adapter_class", "venue_id"),
        [
            (UberEatsAdapter, "/ch/store/tibits-zurich"),
            (UberEatsAdapter, "tibits-zurich/abc/extra"),
            (WoltAdapter, "/de/berlin/restaurant/green"),
            (WoltAdapter, "berlin/"),
            (LieferandoAdapter, "speisekarte/kebab-haus"),
            (JustEatAdapter, ""),
            (SmoodAdapter, "zurich/tibits?lang=de"),
        ],
    )
    def test_path_shaped_ids_rejected(self, adapter_class, venue_id: str) -> None:
        """Test URL paths and malformed ids are refused instead of producing a URL that maps elsewhere."""
        adapter = make(adapter_class)
        country = adapter.SUPPORTED_COUNTRIES[0]

        with pytest.raises(ValidationError):
            adapter.build_venue_url(venue_id, country)

    def test_venue_name_from_title(self) -> None:
        """Test search titles are reduced to the venue name."""
        adapter = make(UberEatsAdapter)
        assert adapter.venue_name_from_title("Order Birdie Birdie delivery in Zürich | Uber Eats") == "Birdie Birdie"
        assert (
            make(LieferandoAdapter).venue_name_from_title("Green Club Berlin - Speisekarte | Lieferando")
            == "Green Club Berlin"
        )

    def test_parse_search_results(self) -> None:
        """Test listing pages yield unique venue links."""
        listing = """
        <a href="/ch/store/tibits-zurich"><h3>Tibits Zürich</h3></a>
        <a href="/ch/store/tibits-zurich">Tibits again</a>
        <a href="/ch/feed">Feed</a>
        """
        (result,) = make(UberEatsAdapter).parse_search_results(listing)
        assert result.name == "Tibits Zürich"
        assert result.url == "https://www.ubereats.com/ch/store/tibits-zurich"
        assert result.venue_id == "tibits-zurich"


class TestHelpers:
    """Tests for text helpers and the registry."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("CHF 12.90", (12.9, "CHF")),
            ("Fr. 9.50", (9.5, "CHF")),
            ("12,90 €", (12.9, "EUR")),
            ("€12.90", (12.9, "EUR")),
            ("ab 7.00 EUR", (7.0, "EUR")),
            ("no price here", None),
        ],
    )
    def test_extract_price(self, text: str, expected) -> None:
        """Test price formats."""
        assert extract_price(text) == expected

    def test_country_from_url(self) -> None:
        """Test market detection from URLs."""
        assert country_from_url("https://wolt.com/at/aut/wien/restaurant/x") == Country.AT
        assert country_from_url("https://www.just-eat.ch/en/menu/x") == Country.CH
        assert country_from_url("https://example.com/x") is None

    def test_registry(self) -> None:
        """Test adapters are found by platform."""
        assert isinstance(get_adapter("wolt", ProductConfig(), ConfidenceConfig()), WoltAdapter)
        assert get_adapter("unknown-platform") is None
        platforms = {
            a.PLATFORM for a in get_adapters_for_country(Country.CH, ProductConfig(), ConfidenceConfig())
        }
        assert platforms == {Platform.UBER_EATS, Platform.JUST_EAT, Platform.SMOOD}

"""Tests for chain detection and enumeration queries."""

from discovery_agent.core.enums import ChainConfidence, Country, Platform
from discovery_agent.core.markets import (
    find_verified_chain_products,
    get_cities,
    is_brand_misuse,
    platform_site,
)
from discovery_agent.discovery.chains import (
    build_enumeration_queries,
    detect_chain,
    find_locations,
    match_name_patterns,
)


class TestNamePatterns:
    """Tests for chain-style venue names."""

    def test_repeated_word(self) -> None:
        """Test 'Birdie Birdie' looks like a brand."""
        assert "repeated word" in match_name_patterns("Birdie Birdie")

    def test_ampersand_brand(self) -> None:
        """Test 'dean&david' looks like a brand."""
        assert "ampersand brand" in match_name_patterns("dean&david")

    def test_suffix(self) -> None:
        """Test a chain-style suffix."""
        assert match_name_patterns("Hiltl Kitchen") == ["chain-style suffix"]

    def test_plain_name(self) -> None:
        """Test an ordinary restaurant name matches nothing."""
        assert match_name_patterns("Zum Goldenen Hirschen") == []


class TestFindLocations:
    """Tests for city mentions."""

    def test_aliases_and_order(self) -> None:
        """Test English spellings map to the canonical city, in order of mention."""
        texts = ["Now in Munich", "Berlin opening soon", "Also Zurich and Munich"]
        assert find_locations(texts) == ["München", "Berlin", "Zürich"]

    def test_whole_words_only(self) -> None:
        """Test city names inside other words are ignored."""
        assert find_locations(["Bernhard's Bistro"]) == []


class TestDetectChain:
    """Tests for chain classification."""

    def test_single_result_is_independent(self) -> None:
        """Test one sighting in one city is low confidence."""
        detection = detect_chain("Zum Goldenen Hirschen", ["Zum Goldenen Hirschen - Zürich | Uber Eats"])

        assert detection.is_chain is False
        assert detection.confidence == ChainConfidence.LOW
        assert detection.locations == ["Zürich"]

    def test_name_pattern_is_medium(self) -> None:
        """Test a brand-like name alone gives medium confidence."""
        detection = detect_chain("Birdie Birdie", ["Birdie Birdie Zürich"])

        assert detection.is_chain is True
        assert detection.confidence == ChainConfidence.MEDIUM
        assert detection.chain_name == "Birdie Birdie"

    def test_two_cities_is_medium(self) -> None:
        """Test two distinct locations give medium confidence."""
        detection = detect_chain("Tibits", ["Tibits Zürich", "Tibits Basel"])
        assert detection.confidence == ChainConfidence.MEDIUM
        assert detection.locations == ["Zürich", "Basel"]

    def test_three_cities_is_high(self) -> None:
        """Test three distinct locations give high confidence."""
        detection = detect_chain("Tibits", ["Tibits Zürich", "Tibits Basel", "Tibits Bern"])

        assert detection.confidence == ChainConfidence.HIGH
        assert "locations: 3" in detection.signals

    def test_locator_keyword_is_high(self) -> None:
        """Test a store-locator keyword gives high confidence."""
        detection = detect_chain("Tibits", ["Tibits - alle Standorte"])
        assert detection.confidence == ChainConfidence.HIGH
        assert "keyword: standorte" in detection.signals


class TestEnumerationQueries:
    """Tests for chain enumeration queries."""

    def test_query_order(self) -> None:
        """Test site searches come first and store-locator searches last."""
        queries = build_enumeration_queries("Birdie Birdie", Country.CH, [Platform.UBER_EATS], city_limit=2)

        assert queries == [
            'site:ubereats.com/ch "Birdie Birdie"',
            '"Birdie Birdie" all locations CH',
            '"Birdie Birdie" Standorte CH',
            '"Birdie Birdie" Zürich delivery',
            '"Birdie Birdie" Basel delivery',
            '"Birdie Birdie" store locator',
            '"Birdie Birdie" find restaurant',
        ]

    def test_limit(self) -> None:
        """Test the list is cut at the limit."""
        queries = build_enumeration_queries(
            "dean&david", "DE", [Platform.WOLT, Platform.LIEFERANDO], limit=3
        )
        assert queries == [
            'site:wolt.com/de "dean&david"',
            'site:lieferando.de "dean&david"',
            '"dean&david" all locations DE',
        ]


class TestMarkets:
    """Tests for static market data."""

    def test_cities_largest_first(self) -> None:
        """Test city lists are ordered and limited."""
        assert get_cities(Country.DE, 2) == ["Berlin", "München"]
        assert get_cities("AT")[0] == "Wien"

    def test_platform_site(self) -> None:
        """Test site prefixes per market."""
        assert platform_site(Platform.UBER_EATS, Country.DE) == "ubereats.com/de"
        assert platform_site(Platform.LIEFERANDO, Country.AT) == "lieferando.at"
        assert platform_site(Platform.JUST_EAT, Country.CH) == "just-eat.ch"

    def test_verified_chain(self) -> None:
        """Test partner chains are recognized inside longer names."""
        assert find_verified_chain_products("Birdie Birdie Zürich HB") == [
            "planted.chicken_burger",
            "planted.chicken_tenders",
        ]
        assert find_verified_chain_products("Zum Goldenen Hirschen") is None

    def test_brand_misuse(self) -> None:
        """Test known brand misusers are recognized."""
        assert is_brand_misuse("Goldies Smashburger Basel") is True
        assert is_brand_misuse("Birdie Birdie") is False

"""Static market data: platform domains, cities, seed strategies and known chains."""

from __future__ import annotations

from typing import Any

from discovery_agent.core.enums import Country, Platform, StrategyOrigin, StrategyTag

PLATFORM_DOMAINS: dict[Platform, str] = {
    Platform.UBER_EATS: "ubereats.com",
    Platform.WOLT: "wolt.com",
    Platform.LIEFERANDO: "lieferando.de",
    Platform.JUST_EAT: "just-eat.ch",
    Platform.SMOOD: "smood.ch",
}

# Cities ordered by market size; the first entries are queried first.
COUNTRY_CITIES: dict[Country, list[str]] = {
    Country.CH: ["Zürich", "Basel", "Bern", "Genf", "Lausanne", "Luzern", "St. Gallen", "Zug"],
    Country.DE: [
        "Berlin",
        "München",
        "Hamburg",
        "Frankfurt",
        "Köln",
        "Stuttgart",
        "Düsseldorf",
        "Leipzig",
        "Nürnberg",
    ],
    Country.AT: ["Wien", "Graz", "Salzburg", "Linz", "Innsbruck"],
    Country.NL: ["Amsterdam", "Rotterdam", "Utrecht", "Den Haag"],
    Country.UK: ["London", "Manchester", "Birmingham", "Edinburgh"],
    Country.FR: ["Paris", "Lyon", "Marseille"],
    Country.ES: ["Madrid", "Barcelona", "Valencia"],
    Country.IT: ["Milano", "Roma", "Torino"],
    Country.BE: ["Bruxelles", "Antwerpen", "Gent"],
    Country.PL: ["Warszawa", "Kraków"],
}

# English and local spellings that appear in listing text.
CITY_ALIASES: dict[str, list[str]] = {
    "Zürich": ["zurich", "zuerich"],
    "Genf": ["geneva", "genève", "geneve"],
    "München": ["munich", "muenchen"],
    "Köln": ["cologne", "koeln"],
    "Wien": ["vienna"],
    "Düsseldorf": ["duesseldorf"],
    "Nürnberg": ["nuremberg", "nuernberg"],
    "Luzern": ["lucerne"],
}

# Chains that advertise "planted" without using the product.
BRAND_MISUSE_CHAINS: list[str] = [
    "goldies",
    "goldies smashburger",
    "goldies chicken",
]

# Partner chains with confirmed product lines.
VERIFIED_CHAIN_PRODUCTS: dict[str, list[str]] = {
    "birdie birdie": ["planted.chicken_burger", "planted.chicken_tenders"],
    "dean&david": ["planted.chicken", "planted.duck"],
    "deanddavid": ["planted.chicken", "planted.duck"],
    "dean david": ["planted.chicken", "planted.duck"],
    "beets&roots": ["planted.chicken", "planted.steak"],
    "beetsandroots": ["planted.chicken", "planted.steak"],
    "beets and roots": ["planted.chicken", "planted.steak"],
    "green club": ["planted.chicken", "planted.kebab", "planted.pastrami"],
    "nooch": ["planted.chicken"],
    "rice up": ["planted.chicken"],
    "smash bro": ["planted.chicken"],
    "doen doen": ["planted.kebab", "planted.chicken"],
}

# Used when a (platform, country) target has no stored strategies yet.
GENERIC_QUERY_TEMPLATES: list[str] = [
    'site:{platform} "planted" {city}',
    "site:{platform} planted chicken {city}",
]


def _seed(
    platform: Platform,
    country: Country,
    template: str,
    rate: int,
    tags: list[StrategyTag],
) -> dict[str, Any]:
    return {
        "platform": platform,
        "country": country,
        "query_template": template,
        "success_rate": rate,
        "tags": [t.value for t in tags],
        "origin": StrategyOrigin.SEED,
    }


_CITY = StrategyTag.CITY_SPECIFIC
_PRODUCT = StrategyTag.PRODUCT_SPECIFIC
_PRECISE = StrategyTag.HIGH_PRECISION
_BROAD = StrategyTag.BROAD_SEARCH
_CHAIN = StrategyTag.CHAIN_DISCOVERY

SEED_STRATEGIES: list[dict[str, Any]] = [
    # Switzerland
    _seed(Platform.JUST_EAT, Country.CH, "site:just-eat.ch planted chicken {city}", 70, [_CITY, _PRODUCT]),
    _seed(Platform.JUST_EAT, Country.CH, 'site:just-eat.ch "planted.chicken" {city}', 80, [_CITY, _PRECISE]),
    _seed(Platform.JUST_EAT, Country.CH, 'site:just-eat.ch "{chain}" alle standorte', 75, [_CHAIN]),
    _seed(Platform.UBER_EATS, Country.CH, "site:ubereats.com/ch planted chicken {city}", 70, [_CITY, _PRODUCT]),
    _seed(Platform.SMOOD, Country.CH, "site:smood.ch planted {city}", 65, [_CITY, _BROAD]),
    _seed(Platform.UBER_EATS, Country.CH, '"{chain}" ubereats.com standorte filialen', 60, [_CHAIN]),
    # Germany
    _seed(Platform.UBER_EATS, Country.DE, "site:ubereats.com/de planted chicken {city}", 70, [_CITY, _PRODUCT]),
    _seed(Platform.UBER_EATS, Country.DE, 'site:ubereats.com/de "planted.chicken" {city}', 80, [_CITY, _PRECISE]),
    _seed(Platform.LIEFERANDO, Country.DE, "site:lieferando.de planted chicken {city}", 70, [_CITY, _PRODUCT]),
    _seed(Platform.LIEFERANDO, Country.DE, 'site:lieferando.de "planted.chicken" {city}', 80, [_CITY, _PRECISE]),
    _seed(Platform.LIEFERANDO, Country.DE, "site:lieferando.de planted kebab vegan {city}", 65, [_CITY, _PRODUCT]),
    _seed(Platform.LIEFERANDO, Country.DE, '"{chain}" lieferando alle restaurants', 60, [_CHAIN]),
    _seed(Platform.WOLT, Country.DE, "site:wolt.com/de planted chicken {city}", 70, [_CITY, _PRODUCT]),
    _seed(Platform.WOLT, Country.DE, 'site:wolt.com/de "planted.chicken" {city}', 80, [_CITY, _PRECISE]),
    # Austria
    _seed(Platform.UBER_EATS, Country.AT, "site:ubereats.com/at planted chicken {city}", 70, [_CITY, _PRODUCT]),
    _seed(Platform.LIEFERANDO, Country.AT, "site:lieferando.at planted chicken {city}", 70, [_CITY, _PRODUCT]),
    _seed(Platform.LIEFERANDO, Country.AT, 'site:lieferando.at "planted.chicken" {city}', 80, [_CITY, _PRECISE]),
    _seed(Platform.WOLT, Country.AT, "site:wolt.com/at planted chicken {city}", 70, [_CITY, _PRODUCT]),
]


def get_cities(country: Country | str, limit: int | None = None) -> list[str]:
    """Return the known cities for a country, largest first."""
    cities = COUNTRY_CITIES.get(Country(country), [])
    return cities[:limit] if limit is not None else list(cities)


def find_verified_chain_products(venue_name: str) -> list[str] | None:
    """Return known products if the venue belongs to a verified partner chain."""
    lower = venue_name.lower()
    for chain_pattern, products in VERIFIED_CHAIN_PRODUCTS.items():
        if chain_pattern in lower:
            return products
    return None


def is_brand_misuse(venue_name: str) -> bool:
    """Check if a venue name matches a chain known to misuse the brand name."""
    lower = venue_name.lower()
    return any(chain in lower for chain in BRAND_MISUSE_CHAINS)


def platform_site(platform: Platform, country: Country | str) -> str:
    """Return the site: prefix a platform uses for a country's listings."""
    cc = Country(country).value.lower()
    if platform in (Platform.UBER_EATS, Platform.WOLT):
        return f"{PLATFORM_DOMAINS[platform]}/{cc}"
    if platform == Platform.LIEFERANDO and cc == "at":
        return "lieferando.at"
    return PLATFORM_DOMAINS[platform]

"""
Chain Detection Module
======================

Decides whether a venue belongs to a multi-location chain from its name
and the search results it was found in, and builds the queries used to
enumerate the other locations of a detected chain.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from discovery_agent.core.enums import ChainConfidence, Country, Platform
from discovery_agent.core.markets import CITY_ALIASES, COUNTRY_CITIES, get_cities, platform_site

CHAIN_NAME_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^(\w+)\s+\1$", re.IGNORECASE), "repeated word"),
    (re.compile(r"^\w+&\w+$", re.IGNORECASE), "ampersand brand"),
    (re.compile(r"^[A-Z]{4,}$"), "all-caps brand"),
    (
        re.compile(r"(grill|kitchen|burger|chicken|kebab|bowl|bar|cafe|coffee)$", re.IGNORECASE),
        "chain-style suffix",
    ),
]

LOCATOR_KEYWORDS = [
    "store locator",
    "standorte",
    "filialen",
    "locations",
    "franchise",
    "all restaurants",
    "find us",
    "in your area",
]

HIGH_CONFIDENCE_LOCATIONS = 3
MEDIUM_CONFIDENCE_LOCATIONS = 2


@dataclass
class ChainDetection:
    """Outcome of chain detection for one venue."""

    is_chain: bool
    chain_name: str
    confidence: ChainConfidence
    locations: list[str] = field(default_factory=list)
    signals: list[str] = field(default_factory=list)


def _city_patterns() -> list[tuple[str, re.Pattern[str]]]:
    patterns = []
    for cities in COUNTRY_CITIES.values():
        for city in cities:
            spellings = [city, *CITY_ALIASES.get(city, [])]
            alternation = "|".join(re.escape(s) for s in spellings)
            patterns.append((city, re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)))
    return patterns


_CITY_PATTERNS = _city_patterns()


def find_locations(texts: list[str]) -> list[str]:
    """Distinct known cities mentioned in the texts, in order of first mention."""
    found: list[str] = []
    for text in texts:
        for city, pattern in _CITY_PATTERNS:
            if city not in found and pattern.search(text):
                found.append(city)
    return found


def match_name_patterns(name: str) -> list[str]:
    """Names of the chain-style naming rules the venue name matches."""
    name = name.strip()
    return [label for pattern, label in CHAIN_NAME_PATTERNS if pattern.search(name)]


def detect_chain(name: str, result_texts: list[str]) -> ChainDetection:
    """
    Classify a venue as chain or independent.

    Args:
        name: Venue name as listed on the platform
        result_texts: Titles and snippets of the search results mentioning it

    Returns:
        ChainDetection. Confidence is high with 3+ distinct locations or a
        store-locator keyword, medium with exactly 2 locations or a
        chain-style name, low otherwise.
    """
    signals: list[str] = []

    name_matches = match_name_patterns(name)
    signals.extend(f"name: {label}" for label in name_matches)

    keywords: list[str] = []
    for text in result_texts:
        lower = text.lower()
        for keyword in LOCATOR_KEYWORDS:
            if keyword in lower and keyword not in keywords:
                keywords.append(keyword)
    signals.extend(f"keyword: {keyword}" for keyword in keywords)

    locations = find_locations(result_texts)
    if len(locations) >= MEDIUM_CONFIDENCE_LOCATIONS:
        signals.append(f"locations: {len(locations)}")

    if len(locations) >= HIGH_CONFIDENCE_LOCATIONS or keywords:
        confidence = ChainConfidence.HIGH
    elif len(locations) == MEDIUM_CONFIDENCE_LOCATIONS or name_matches:
        confidence = ChainConfidence.MEDIUM
    else:
        confidence = ChainConfidence.LOW

    return ChainDetection(
        is_chain=confidence != ChainConfidence.LOW,
        chain_name=" ".join(name.split()),
        confidence=confidence,
        locations=locations,
        signals=signals,
    )


def build_enumeration_queries(
    chain_name: str,
    country: Country | str,
    platforms: list[Platform],
    city_limit: int = 5,
    limit: int | None = None,
) -> list[str]:
    """
    Queries that look for other locations of a chain in one country.

    Order: platform site searches, country-wide location searches, per-city
    delivery searches for the largest cities, then store-locator searches.
    Duplicates are dropped and the list is cut at limit.
    """
    country = Country(country)
    quoted = f'"{chain_name}"'
    candidates = [f"site:{platform_site(platform, country)} {quoted}" for platform in platforms]
    candidates.append(f"{quoted} all locations {country.value}")
    candidates.append(f"{quoted} Standorte {country.value}")
    candidates.extend(f"{quoted} {city} delivery" for city in get_cities(country, city_limit))
    candidates.append(f"{quoted} store locator")
    candidates.append(f"{quoted} find restaurant")

    queries: list[str] = []
    seen: set[str] = set()
    for query in candidates:
        key = query.lower()
        if key in seen:
            continue
        seen.add(key)
        queries.append(query)
    return queries[:limit] if limit is not None else queries

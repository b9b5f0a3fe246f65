"""
Search Backend Module
=====================

Web search used by the orchestrator to find venue pages. The backend is
an external collaborator behind a small interface so runs can be tested
with a fake.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from discovery_agent.config import DiscoveryConfig
from discovery_agent.core.exceptions import SearchError

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """One organic search result."""

    title: str
    url: str
    snippet: str = ""

    @property
    def text(self) -> str:
        return f"{self.title} {self.snippet}".strip()


class SearchBackend(ABC):
    """Abstract web search."""

    #: Whether queries are billed per request
    paid: bool = False

    @abstractmethod
    async def search(self, query: str) -> list[SearchResult]:
        """
        Run a query.

        Raises:
            SearchError: On any backend failure.
        """

    async def close(self) -> None:
        """Release backend resources."""


class SerpApiSearchBackend(SearchBackend):
    """Google organic search through SerpAPI."""

    BASE_URL = "https://serpapi.com/search"

    def __init__(
        self,
        api_key: str,
        num_results: int = 10,
        timeout: float = 30.0,
        paid: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("SERPAPI_API_KEY not configured")
        self.api_key = api_key
        self.num_results = num_results
        self.timeout = timeout
        self.paid = paid
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def search(self, query: str) -> list[SearchResult]:
        params = {
            "engine": "google",
            "q": query,
            "num": self.num_results,
            "api_key": self.api_key,
        }
        try:
            response = await asyncio.wait_for(
                self._client.get(self.BASE_URL, params=params), timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except Exception as e:
            logger.error(f"SerpAPI request failed for '{query}': {e}")
            raise SearchError(f"Search failed: {e}", url=self.BASE_URL) from e

        if payload.get("error"):
            # SerpAPI reports "no results" as an error message
            if "hasn't returned any results" in str(payload["error"]):
                return []
            raise SearchError(f"Search failed: {payload['error']}", url=self.BASE_URL)
        return parse_organic_results(payload)

    async def close(self) -> None:
        await self._client.aclose()


def parse_organic_results(payload: dict[str, Any]) -> list[SearchResult]:
    """Convert a SerpAPI response into SearchResults, skipping entries without a link."""
    results = []
    for entry in payload.get("organic_results", []) or []:
        url = entry.get("link")
        if not url:
            continue
        results.append(
            SearchResult(
                title=entry.get("title", "") or "",
                url=url,
                snippet=entry.get("snippet", "") or "",
            )
        )
    return results


def create_search_backend(config: DiscoveryConfig) -> SearchBackend:
    """
    Build the configured search backend.

    Raises:
        ValueError: If the provider is unknown or its API key is missing.
    """
    if config.search_provider != "serpapi":
        raise ValueError(f"Unknown search provider: {config.search_provider}")
    return SerpApiSearchBackend(
        config.search_api_key,
        num_results=config.search_results_per_query,
        paid=not config.use_free_tier,
    )

"""Tests for the search backend."""

import httpx
import pytest

from discovery_agent.config import DiscoveryConfig
from discovery_agent.core.exceptions import SearchError
from discovery_agent.discovery.search import (
    SerpApiSearchBackend,
    create_search_backend,
    parse_organic_results,
)


def make_backend(handler) -> SerpApiSearchBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SerpApiSearchBackend("test-key", num_results=5, client=client)


class TestParseOrganicResults:
    """Tests for result parsing."""

    def test_skips_entries_without_link(self) -> None:
        payload = {
            "organic_results": [
                {"title": "Birdie Birdie | Uber Eats", "link": "https://www.ubereats.com/ch/store/birdie", "snippet": "Zürich"},
                {"title": "No link"},
                {"title": None, "link": "https://wolt.com/de/berlin/restaurant/x", "snippet": None},
            ]
        }
        results = parse_organic_results(payload)

        assert [r.url for r in results] == [
            "https://www.ubereats.com/ch/store/birdie",
            "https://wolt.com/de/berlin/restaurant/x",
        ]
        assert results[0].text == "Birdie Birdie | Uber Eats Zürich"
        assert results[1].title == ""

    def test_missing_results(self) -> None:
        assert parse_organic_results({}) == []


class TestSerpApiSearchBackend:
    """Tests for SerpApiSearchBackend."""

    @pytest.mark.asyncio
    async def test_search(self) -> None:
        """Test the query and key are sent and results parsed."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={"organic_results": [{"title": "Tibits", "link": "https://www.just-eat.ch/en/menu/tibits"}]},
            )

        backend = make_backend(handler)
        results = await backend.search('site:just-eat.ch "planted"')
        await backend.close()

        assert len(results) == 1
        params = requests[0].url.params
        assert params["q"] == 'site:just-eat.ch "planted"'
        assert params["api_key"] == "test-key"
        assert params["num"] == "5"

    @pytest.mark.asyncio
    async def test_no_results_is_empty(self) -> None:
        """Test the 'no results' error message is not a failure."""
        backend = make_backend(
            lambda request: httpx.Response(
                200, json={"error": "Google hasn't returned any results for this query."}
            )
        )
        assert await backend.search("nothing here") == []

    @pytest.mark.asyncio
    async def test_api_error(self) -> None:
        """Test other API errors raise SearchError."""
        backend = make_backend(lambda request: httpx.Response(200, json={"error": "Invalid API key."}))
        with pytest.raises(SearchError):
            await backend.search("planted")

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        """Test HTTP failures raise SearchError."""
        backend = make_backend(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(SearchError):
            await backend.search("planted")

    def test_requires_api_key(self) -> None:
        with pytest.raises(ValueError):
            SerpApiSearchBackend("")


class TestCreateSearchBackend:
    """Tests for the backend factory."""

    def test_free_tier_is_not_paid(self) -> None:
        backend = create_search_backend(DiscoveryConfig(search_api_key="k", use_free_tier=True))
        assert isinstance(backend, SerpApiSearchBackend)
        assert backend.paid is False

    def test_paid_tier(self) -> None:
        backend = create_search_backend(DiscoveryConfig(search_api_key="k", use_free_tier=False))
        assert backend.paid is True

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError):
            create_search_backend(DiscoveryConfig(search_provider="bing", search_api_key="k"))

    def test_missing_key(self) -> None:
        with pytest.raises(ValueError):
            create_search_backend(DiscoveryConfig(search_api_key=""))

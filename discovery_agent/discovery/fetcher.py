"""
Page Fetcher Module
===================

Fetches delivery-platform pages with per-host rate limiting, rotating
browser headers, randomized pacing and bot-challenge detection.

A host that answers with a bot challenge is not contacted again for the
lifetime of the fetcher (one fetcher is used per run).
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlparse

import httpx

from discovery_agent.config import FetchConfig, RateLimit
from discovery_agent.core.exceptions import BotChallengeError

logger = logging.getLogger(__name__)

CHALLENGE_MARKERS = [
    "captcha",
    "cf-challenge",
    "challenge-platform",
    "are you a robot",
    "verify you are human",
    "access denied",
]

CHALLENGE_STATUS_CODES = {403, 429}


@dataclass
class FetchResult:
    """Result of fetching a URL."""

    url: str
    content: str
    status_code: int
    fetched_at: datetime
    final_url: str = ""
    error: str | None = None

    @property
    def success(self) -> bool:
        """Check if fetch was successful."""
        return self.error is None and 200 <= self.status_code < 300


class TokenBucket:
    """
    Paces requests to one host.

    Up to burst_limit requests go out at once; after that they are spaced
    at requests_per_second. A caller takes its token before sleeping, so
    concurrent callers queue up behind each other instead of all waking
    at the same moment. Tokens may go negative to record that debt.
    """

    def __init__(
        self,
        limit: RateLimit,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.limit = limit
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(limit.burst_limit)
        self._updated = clock()

    def reserve(self) -> float:
        """Take a token and return the seconds to wait before using it."""
        now = self._clock()
        rate = self.limit.requests_per_second
        self._tokens = min(float(self.limit.burst_limit), self._tokens + (now - self._updated) * rate)
        self._updated = now
        self._tokens -= 1.0
        return 0.0 if self._tokens >= 0 else -self._tokens / rate

    async def acquire(self) -> None:
        """Wait until this caller's turn."""
        wait = self.reserve()
        if wait > 0:
            await self._sleep(wait)


def is_bot_challenge(status_code: int, body: str) -> bool:
    """Whether a response is a bot-challenge interstitial rather than content."""
    if status_code in CHALLENGE_STATUS_CODES:
        return True
    lower = body[:20000].lower()
    return any(marker in lower for marker in CHALLENGE_MARKERS)


class PageFetcher:
    """
    HTTP page fetcher for venue pages.

    Features:
    - Per-host token bucket rate limiting, paced by fetch.host_limits
    - Rotating user-agent and Accept-Language headers
    - Randomized delay between requests
    - Per-fetch timeout and bounded retry with exponential backoff
    - Bot-challenge detection; challenged hosts are skipped afterwards
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        client: httpx.AsyncClient | None = None,
        backoff_base: float = 1.0,
    ) -> None:
        self.config = config or FetchConfig()
        self.backoff_base = backoff_base
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._rate_limiters: dict[str, TokenBucket] = {}
        self._blocked_hosts: set[str] = set()

    @property
    def blocked_hosts(self) -> set[str]:
        return set(self._blocked_hosts)

    def _get_rate_limiter(self, host: str) -> TokenBucket:
        if host not in self._rate_limiters:
            self._rate_limiters[host] = TokenBucket(self.config.limit_for(host))
        return self._rate_limiters[host]

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": random.choice(self.config.user_agents),
            "Accept-Language": random.choice(self.config.accept_languages),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a URL.

        Args:
            url: Page to fetch

        Returns:
            FetchResult with content, or with error set after the last retry

        Raises:
            BotChallengeError: If the host answered (now or earlier in
                this run) with a bot challenge. Never retried.
        """
        host = urlparse(url).netloc.lower()
        if host in self._blocked_hosts:
            raise BotChallengeError(f"Host {host} is blocked for this run", url=url)

        await self._get_rate_limiter(host).acquire()
        if self.config.max_delay > 0:
            await asyncio.sleep(random.uniform(self.config.min_delay, self.config.max_delay))

        last_error: str | None = None
        status_code = 0
        for attempt in range(self.config.max_retries):
            try:
                response = await asyncio.wait_for(
                    self._client.get(url, headers=self._headers()),
                    timeout=self.config.timeout,
                )
                body = response.text
                status_code = response.status_code

                if is_bot_challenge(status_code, body):
                    self._blocked_hosts.add(host)
                    logger.warning(f"Bot challenge from {host} ({status_code}); skipping host")
                    raise BotChallengeError(f"Bot challenge at {url}", url=url)

                if status_code < 500:
                    return FetchResult(
                        url=url,
                        content=body,
                        status_code=status_code,
                        fetched_at=datetime.now(UTC),
                        final_url=str(response.url),
                        error=None if status_code < 400 else f"HTTP {status_code}",
                    )
                last_error = f"HTTP {status_code}"
                logger.warning(
                    f"Server error fetching {url}: {status_code} "
                    f"(attempt {attempt + 1}/{self.config.max_retries})"
                )

            except BotChallengeError:
                raise
            except (asyncio.TimeoutError, httpx.TimeoutException):
                last_error = f"Timeout after {self.config.timeout}s"
                logger.warning(f"Timeout fetching {url} (attempt {attempt + 1}/{self.config.max_retries})")
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.warning(f"HTTP error fetching {url}: {e} (attempt {attempt + 1}/{self.config.max_retries})")

            # Wait before retry with exponential backoff
            if attempt < self.config.max_retries - 1:
                await asyncio.sleep(self.backoff_base * 2**attempt)

        return FetchResult(
            url=url,
            content="",
            status_code=status_code,
            fetched_at=datetime.now(UTC),
            error=last_error or "Unknown error",
        )

    async def close(self) -> None:
        await self._client.aclose()

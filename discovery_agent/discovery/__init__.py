"""
Discovery Agent Runtime
=======================

This package finds venues on delivery platforms and reads their menus.

Pipeline Stages:
1. Plan - Ranked strategies are rendered into search queries per target
2. Gate - Recently run queries are skipped, paid work is throttled
3. Search - Queries go to the web search backend
4. Interpret - Platform adapters turn results into staged venues
5. Enumerate - Detected chains are searched location by location
6. Extract - Venue pages are fetched and product dishes are staged
"""

from discovery_agent.discovery.chains import ChainDetection, build_enumeration_queries, detect_chain
from discovery_agent.discovery.context import RunContext
from discovery_agent.discovery.extraction import ExtractionPipeline
from discovery_agent.discovery.fetcher import FetchResult, PageFetcher, TokenBucket
from discovery_agent.discovery.orchestrator import DiscoveryOrchestrator, QueryPlan, extract_products
from discovery_agent.discovery.search import (
    SearchBackend,
    SearchResult,
    SerpApiSearchBackend,
    create_search_backend,
)

__all__ = [
    # Chains
    "ChainDetection",
    "build_enumeration_queries",
    "detect_chain",
    # Runs
    "RunContext",
    "DiscoveryOrchestrator",
    "QueryPlan",
    "ExtractionPipeline",
    "extract_products",
    # Fetching
    "FetchResult",
    "PageFetcher",
    "TokenBucket",
    # Search
    "SearchBackend",
    "SearchResult",
    "SerpApiSearchBackend",
    "create_search_backend",
]

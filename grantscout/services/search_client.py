"""
Web Search Clients

Phase 1 of discovery: turn a query string into candidate URLs.
Exa is the default provider; Firecrawl search is available behind the same
interface. Rate limits are retried with exponential backoff, anything else
surfaces as UpstreamUnavailable so the discovery job fails with a message.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from exa_py import Exa
from firecrawl import Firecrawl

from grantscout.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

# Configuration
SEARCH_PROVIDER = os.environ.get('SEARCH_PROVIDER', 'exa').lower()
EXA_MAX_CHARACTERS = 500
MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds


@dataclass
class SearchResult:
    """One candidate page returned by a search."""
    url: str
    title: str = ''
    snippet: str = ''


class SearchClient(Protocol):
    def search(self, query: str, limit: int) -> list[SearchResult]:
        ...


def _is_rate_limit(error: Exception) -> bool:
    error_str = str(error).lower()
    return '429' in error_str or 'rate limit' in error_str


def _with_retries(service: str, query: str, call):
    """Run call() retrying rate limits with exponential backoff."""
    for attempt in range(MAX_RETRIES):
        try:
            return call()
        except Exception as e:
            if _is_rate_limit(e) and attempt < MAX_RETRIES - 1:
                delay = RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(f"{service} rate limit hit, waiting {delay}s (attempt {attempt + 1}/{MAX_RETRIES})")
                time.sleep(delay)
                continue
            logger.error(f"{service} search error for '{query[:50]}...' (attempt {attempt + 1}/{MAX_RETRIES}): {e}")
            raise UpstreamUnavailable(service, str(e)) from e
    raise UpstreamUnavailable(service, "rate limit retries exhausted")


class ExaSearchClient:
    """Neural web search via the Exa API."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[Exa] = None):
        if client is None:
            api_key = api_key or os.environ.get('EXA_API_KEY')
            if not api_key:
                raise ValueError("EXA_API_KEY environment variable not set")
            client = Exa(api_key=api_key)
        self.client = client

    def search(self, query: str, limit: int) -> list[SearchResult]:
        response = _with_retries('exa', query, lambda: self.client.search_and_contents(
            query=query,
            num_results=limit,
            type="auto",
            text={"max_characters": EXA_MAX_CHARACTERS},
        ))

        results = []
        for item in response.results:
            result = _parse_exa_result(item)
            if result:
                results.append(result)

        logger.info(f"Exa search '{query[:50]}...': {len(results)} results")
        return results[:limit]


def _parse_exa_result(item) -> Optional[SearchResult]:
    """
    Parse an Exa result into a SearchResult.

    Returns:
        SearchResult or None if the result has no URL
    """
    url = (getattr(item, 'url', '') or '').strip()
    if not url:
        return None
    return SearchResult(
        url=url,
        title=(getattr(item, 'title', '') or '').strip(),
        snippet=(getattr(item, 'text', '') or '').strip(),
    )


class FirecrawlSearchClient:
    """Web search via the Firecrawl search endpoint."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[Firecrawl] = None):
        if client is None:
            api_key = api_key or os.environ.get('FIRECRAWL_API_KEY')
            if not api_key:
                raise ValueError("FIRECRAWL_API_KEY environment variable not set")
            client = Firecrawl(api_key=api_key)
        self.client = client

    def search(self, query: str, limit: int) -> list[SearchResult]:
        response = _with_retries('firecrawl', query, lambda: self.client.search(query, limit=limit))

        # SDK returns an object with .web; raw API payloads nest it under data
        web = getattr(response, 'web', None)
        if web is None and isinstance(response, dict):
            data = response.get('data', response)
            web = data.get('web', []) if isinstance(data, dict) else data
        results = []
        for item in web or []:
            get = item.get if isinstance(item, dict) else (lambda key, _item=item: getattr(_item, key, None))
            url = (get('url') or '').strip()
            if url:
                results.append(SearchResult(
                    url=url,
                    title=(get('title') or '').strip(),
                    snippet=(get('description') or '').strip(),
                ))

        logger.info(f"Firecrawl search '{query[:50]}...': {len(results)} results")
        return results[:limit]


def get_search_client() -> SearchClient:
    """Build the configured search client."""
    if SEARCH_PROVIDER == 'firecrawl':
        return FirecrawlSearchClient()
    return ExaSearchClient()

"""SearXNG client used to suggest competitor sites.

Environment variables are read at call time (inside ``search_async``) so
that tests can monkeypatch them freely and late ``.env`` loading works.

Public API::

    from siteaudit.search import search_async, SearchResult, SearchError

    result = await search_async("plumbing services denver")
    for item in result.results:
        print(item.domain, item.url)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import httpx

from .errors import SearchError
from .urls import _normalize_host, _registrable_domain

LOGGER = logging.getLogger(__name__)

DEFAULT_SEARXNG_URL = "http://localhost:8888"
MAX_RESULTS = 50

__all__ = ["SearchError", "SearchResult", "SearchResultItem", "search_async"]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SearchResultItem:
    """A single organic result."""

    title: str
    url: str
    content: str = ""
    engine: str = ""
    score: float = 0.0

    @property
    def domain(self) -> Optional[str]:
        """Registrable domain of the result URL."""
        host = _normalize_host(urlsplit(self.url).hostname)
        return _registrable_domain(host) if host else None


@dataclass(slots=True)
class SearchResult:
    """Structured response from a SearXNG query."""

    query: str
    results: List[SearchResultItem] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @property
    def number_of_results(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "number_of_results": self.number_of_results,
            "results": [
                {
                    "title": item.title,
                    "url": item.url,
                    "content": item.content,
                    "engine": item.engine,
                    "score": item.score,
                }
                for item in self.results
            ],
            "suggestions": list(self.suggestions),
        }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _get_searxng_client(
    base_url: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create an httpx async client for SearXNG with optional basic auth.

    Parameters fall back to environment variables when *None*.
    """
    url = base_url or os.getenv("SEARXNG_URL", DEFAULT_SEARXNG_URL)
    user = username or os.getenv("SEARXNG_USERNAME")
    pw = password or os.getenv("SEARXNG_PASSWORD")

    auth = None
    if user and pw:
        auth = httpx.BasicAuth(user, pw)

    return httpx.AsyncClient(
        base_url=url,
        auth=auth,
        headers={"Accept": "application/json"},
        timeout=30.0,
        transport=transport,
    )


def _raw_to_item(raw: Dict[str, Any]) -> Optional[SearchResultItem]:
    url = raw.get("url")
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        return None
    try:
        score = float(raw.get("score") or 0.0)
    except (TypeError, ValueError):
        score = 0.0
    return SearchResultItem(
        title=str(raw.get("title") or ""),
        url=url,
        content=str(raw.get("content") or ""),
        engine=str(raw.get("engine") or ""),
        score=score,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def search_async(
    query: str,
    *,
    language: str = "en",
    safesearch: int = 1,
    max_results: int = 10,
    searxng_url: Optional[str] = None,
    searxng_username: Optional[str] = None,
    searxng_password: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SearchResult:
    """Run one SearXNG web search.

    Args:
        query: Search query string.
        language: Language code (default: ``'en'``).
        safesearch: 0=off, 1=moderate, 2=strict.
        max_results: Maximum results, 1-50.
        searxng_url: Override ``SEARXNG_URL``.
        searxng_username: Override ``SEARXNG_USERNAME``.
        searxng_password: Override ``SEARXNG_PASSWORD``.
        transport: Optional httpx transport (used by tests).

    Raises:
        SearchError: On authentication failure, HTTP error, network error or
            a response that is not JSON.
    """
    params: Dict[str, Any] = {
        "q": query,
        "format": "json",
        "language": language,
        "safesearch": safesearch,
        "categories": "general",
    }

    try:
        async with _get_searxng_client(
            base_url=searxng_url,
            username=searxng_username,
            password=searxng_password,
            transport=transport,
        ) as client:
            response = await client.get("/search", params=params)
            response.raise_for_status()
            data = response.json()

    except httpx.HTTPStatusError as exc:
        if exc.response.status_code == 401:
            raise SearchError(
                "Authentication failed. Check SEARXNG_USERNAME and SEARXNG_PASSWORD.",
                query=query,
            ) from exc
        raise SearchError(
            f"SearXNG API error: {exc.response.status_code}",
            query=query,
        ) from exc

    except httpx.RequestError as exc:
        raise SearchError(f"Request failed: {exc}", query=query) from exc

    except ValueError as exc:
        raise SearchError(f"Invalid JSON from SearXNG: {exc}", query=query) from exc

    limit = min(max(1, max_results), MAX_RESULTS)
    items = [item for item in map(_raw_to_item, data.get("results", [])) if item][:limit]
    LOGGER.debug("SearXNG returned %d result(s) for %r", len(items), query)

    return SearchResult(
        query=data.get("query", query),
        results=items,
        suggestions=list(data.get("suggestions", [])),
    )

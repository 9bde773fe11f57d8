"""SEO site audit: crawl, render, analyze and score a website.

This package crawls a target site with a headless browser, extracts
per-page SEO signals, consolidates them into site-wide issues and scores,
and compares the site's keywords against competitors. It supports:

- Bounded breadth-first site crawling with robots.txt and sitemap handling
- JavaScript rendering with session health checks and partial fallbacks
- Issue consolidation and deterministic 0-100 category scores
- Competitor keyword gaps, with SearXNG or taxonomy-based discovery
- Optional PageSpeed Insights metrics for the primary URL

Example usage:

    from siteaudit import run_audit, run_audit_async, AuditConfig, get_tier

    # Synchronous
    result = run_audit("https://example.com")
    print(result.status, result.scores.overall if result.scores else None)

    # Async, with a tier and known competitors
    config = AuditConfig(tier=get_tier("starter"), competitors=["https://rival.com"])
    result = await run_audit_async("https://example.com", config=config)
    for issue in result.issues:
        print(issue.severity.value, issue.message)
"""

from __future__ import annotations

from .audit import run_audit, run_audit_async
from .config import TIERS, AuditConfig, ServiceTier, get_tier
from .document import (
    AuditResult,
    CanonicalURL,
    CompetitorDiff,
    CompetitorReport,
    CrawlOutcome,
    Issue,
    IssueCategory,
    IssueType,
    PageRecord,
    PerformanceReport,
    ScoreReport,
    Severity,
)
from .errors import (
    AuditError,
    CompetitorUnavailable,
    ConfirmedDisconnect,
    CrawlFailed,
    MalformedURL,
    MetricOutOfRange,
    PerformanceServiceError,
    RenderTimeout,
    SearchError,
)
from .search import SearchResult, SearchResultItem, search_async
from .site import SiteCrawlOptions, SiteCrawlResult, crawl_site, crawl_site_async

__all__ = [
    # Audit
    "run_audit",
    "run_audit_async",
    # Result types
    "AuditResult",
    "CanonicalURL",
    "CompetitorDiff",
    "CompetitorReport",
    "CrawlOutcome",
    "Issue",
    "IssueCategory",
    "IssueType",
    "PageRecord",
    "PerformanceReport",
    "ScoreReport",
    "Severity",
    # Errors
    "AuditError",
    "CompetitorUnavailable",
    "ConfirmedDisconnect",
    "CrawlFailed",
    "MalformedURL",
    "MetricOutOfRange",
    "PerformanceServiceError",
    "RenderTimeout",
    "SearchError",
    # Config
    "AuditConfig",
    "ServiceTier",
    "TIERS",
    "get_tier",
    # Site crawl
    "SiteCrawlOptions",
    "SiteCrawlResult",
    "crawl_site",
    "crawl_site_async",
    # Search
    "SearchResult",
    "SearchResultItem",
    "search_async",
    # MCP Server
    "mcp",
]


def get_mcp_server():
    """Get the MCP server instance (lazy import to avoid dependency if not needed)."""
    from .mcp_server import mcp

    return mcp


# Lazy import for mcp to avoid requiring fastmcp if not used
def __getattr__(name):
    if name == "mcp":
        from .mcp_server import mcp

        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

"""Audit pipeline: crawl, aggregate, issues, scores, competitors and performance.

Public API::

    from siteaudit.audit import run_audit, run_audit_async

    result = run_audit("https://example.com")
    print(result.status, result.scores.overall if result.scores else None)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

import httpx

from .aggregator import aggregate, build_outcome
from .competitors import (
    CompetitorCrawler,
    IndustryClassifier,
    Searcher,
    analyze_competitors_async,
    make_competitor_crawler,
)
from .config import AuditConfig
from .document import (
    AuditResult,
    CompetitorReport,
    CrawlOutcome,
    PageRecord,
    PerformanceReport,
    SiteFacts,
)
from .errors import CrawlFailed, MalformedURL
from .fingerprint import PlatformClassifier
from .issues import build_issues
from .keywords import build_site_keywords
from .pagespeed import run_pagespeed_async
from .render import RenderDriver
from .scoring import ScoreMetrics, score
from .search import search_async
from .site import SiteCrawlOptions, SiteCrawlResult, crawl_site_async
from .urls import canonicalize

LOGGER = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _primary_page(crawl: SiteCrawlResult, valid: List[PageRecord]) -> Optional[PageRecord]:
    """The page for the seed URL, or the first valid page when the seed failed."""
    if not valid:
        return None
    try:
        seed = canonicalize(crawl.url, crawl.context)
    except MalformedURL:
        return valid[0]
    return next((page for page in valid if page.url == seed), valid[0])


def _failed_result(
    url: str,
    config: AuditConfig,
    reasons: List[str],
    error_pages: Optional[List[PageRecord]] = None,
    facts: Optional[SiteFacts] = None,
) -> AuditResult:
    error_pages = error_pages or []
    LOGGER.error("Audit of %s failed: %s", url, "; ".join(reasons))
    return AuditResult(
        url=url,
        tier=config.tier.name,
        outcome=CrawlOutcome("failed", [], error_pages, reasons),
        facts=facts or SiteFacts(),
        issues=build_issues([], error_pages),
        scores=None,
        generated_at=_now(),
    )


async def _no_competitors() -> Optional[CompetitorReport]:
    return None


async def _no_performance() -> Optional[PerformanceReport]:
    return None


async def run_audit_async(
    url: str,
    *,
    config: Optional[AuditConfig] = None,
    driver: Optional[RenderDriver] = None,
    client: Optional[httpx.AsyncClient] = None,
    options: Optional[SiteCrawlOptions] = None,
    platform_classifier: Optional[PlatformClassifier] = None,
    industry_classifier: Optional[IndustryClassifier] = None,
    competitor_crawler: Optional[CompetitorCrawler] = None,
    searcher: Searcher = search_async,
    pagespeed_client: Optional[httpx.AsyncClient] = None,
) -> AuditResult:
    """Audit the site at ``url`` and return a single consolidated result.

    Run-level failures (malformed seed, no valid page after the fallbacks)
    produce an ``AuditResult`` whose outcome is ``failed`` and whose scores
    are None. Competitor and performance failures are recorded in their
    reports and never fail the run.

    Args:
        url: Seed URL of the site to audit.
        config: Audit settings; defaults to ``AuditConfig()``.
        driver: Render driver shared by the target and competitor crawls.
        client: httpx client for redirect resolution and robots/sitemap.
        options: Crawl limit overrides for the target crawl.
        platform_classifier: Replaces the static platform fingerprinting.
        industry_classifier: Replaces the static industry taxonomy.
        competitor_crawler: Replaces the reduced-budget competitor crawl.
        searcher: SearXNG search function used for competitor discovery.
        pagespeed_client: httpx client for PageSpeed Insights.
    """
    config = config or AuditConfig()
    LOGGER.info("Starting audit of %s (tier=%s)", url, config.tier.name)

    try:
        crawl = await crawl_site_async(
            url, config=config, options=options, driver=driver, client=client
        )
    except MalformedURL as exc:
        return _failed_result(url, config, [str(exc)])

    valid, errors, facts = aggregate(
        crawl.records,
        crawl.directives.report,
        classifier=platform_classifier,
        disallowed=crawl.disallowed,
        malformed=crawl.malformed,
        offsite_redirects=crawl.offsite_redirects,
        stats=crawl.stats,
    )

    try:
        crawl.raise_for_failure()
    except CrawlFailed as exc:
        return _failed_result(url, config, list(exc.reasons), errors, facts)

    outcome = build_outcome(valid, errors, timed_out=crawl.timed_out)
    target_keywords = build_site_keywords(valid)
    primary = _primary_page(crawl, valid)
    primary_url = str(primary.url) if primary else crawl.context.root_url

    if config.pagespeed:
        performance_task = run_pagespeed_async(
            primary_url, strategy=config.pagespeed_strategy, client=pagespeed_client
        )
    else:
        performance_task = _no_performance()

    if config.competitors or config.discover_competitors:
        competitor_task = analyze_competitors_async(
            crawl.context.root_url,
            valid,
            target_keywords,
            config=config,
            crawler=competitor_crawler or make_competitor_crawler(config, driver, client),
            searcher=searcher,
            classifier=industry_classifier,
        )
    else:
        competitor_task = _no_competitors()

    performance, competitors = await asyncio.gather(performance_task, competitor_task)

    issues = build_issues(valid, errors, facts)
    performance_timing = (
        performance.timing if performance is not None and performance.status == "available" else None
    )
    metrics = ScoreMetrics.from_pages(
        valid, performance_timing=performance_timing, primary_url=primary_url
    )
    scores = score(issues, metrics, config.tier.weights)

    LOGGER.info(
        "Audit of %s finished: %s, %d issue(s), overall score %d",
        url,
        outcome.status,
        len(issues),
        scores.overall,
    )
    return AuditResult(
        url=url,
        tier=config.tier.name,
        outcome=outcome,
        facts=facts,
        issues=issues,
        scores=scores,
        competitors=competitors,
        performance=performance,
        generated_at=_now(),
    )


def run_audit(url: str, **kwargs: Any) -> AuditResult:
    """Synchronous wrapper for run_audit_async."""
    return asyncio.run(run_audit_async(url, **kwargs))

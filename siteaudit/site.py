"""Multi-page crawl: a worker pool draining the shared frontier under a deadline."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .config import AuditConfig
from .directives import SiteDirectives, fetch_directives_async
from .document import PageRecord
from .errors import CrawlFailed
from .extractor import extract
from .frontier import CrawlFrontier, FrontierEntry, fallback_candidates
from .render import RenderDriver, RenderSessionManager
from .urls import CrawlContext, build_crawl_context_async, parse_url

LOGGER = logging.getLogger(__name__)


@dataclass
class SiteCrawlOptions:
    """Limits for one site crawl; unset values come from the service tier."""

    max_depth: Optional[int] = None
    max_pages: Optional[int] = None
    workers: Optional[int] = None
    deadline: Optional[float] = None
    fetch_directives: bool = True
    allow_fallbacks: bool = True


@dataclass
class SiteCrawlResult:
    """Raw records of a site crawl plus what the frontier filtered out."""

    url: str
    context: CrawlContext
    records: List[PageRecord] = field(default_factory=list)
    directives: SiteDirectives = field(default_factory=SiteDirectives)
    malformed: List[str] = field(default_factory=list)
    disallowed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    fallbacks: List[str] = field(default_factory=list)
    offsite_redirects: List[str] = field(default_factory=list)
    timed_out: bool = False
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_valid_page(self) -> bool:
        return any(record.is_valid for record in self.records)

    def raise_for_failure(self) -> None:
        """Raise CrawlFailed when neither the root nor any fallback produced a valid page."""
        if self.has_valid_page:
            return
        reasons = sorted(
            {
                record.error or f"HTTP {record.status_code}"
                for record in self.records
            }
        )
        if self.timed_out:
            reasons.append("run deadline reached")
        raise CrawlFailed(
            self.url,
            attempted=sorted(record.request_url for record in self.records),
            reasons=reasons or ["no page could be fetched"],
        )


@dataclass
class _RunState:
    records: List[PageRecord] = field(default_factory=list)
    offsite_redirects: List[str] = field(default_factory=list)
    fallback_triggered: bool = False


def _error_record(entry: FrontierEntry, exc: BaseException) -> PageRecord:
    url = str(entry.url)
    return PageRecord(
        url=entry.url,
        request_url=url,
        final_url=url,
        status_code=0,
        error=str(exc) or type(exc).__name__,
    )


async def _crawl_entry(
    entry: FrontierEntry,
    manager: RenderSessionManager,
    context: CrawlContext,
    budget: float,
) -> Optional[PageRecord]:
    """Render and extract one entry; None when it redirected off the site."""
    result = await manager.render(str(entry.url), budget)
    if 200 <= result.status_code < 400 and result.final_url != result.request_url:
        if not context.is_internal(result.final_url):
            LOGGER.info("%s redirects off-site to %s", entry.url, result.final_url)
            return None
        context.record_redirect(result.request_url, result.final_url)
    record = extract(result, context)
    if not record.is_valid and not record.error:
        record.error = f"HTTP {record.status_code}" if record.status_code else "unreachable"
    return record


async def _worker(
    worker_id: int,
    frontier: CrawlFrontier,
    manager: RenderSessionManager,
    state: _RunState,
    directives: SiteDirectives,
    budget: float,
    allow_fallbacks: bool,
) -> None:
    context = frontier.context
    while True:
        entry = await frontier.get()
        if entry is None:
            LOGGER.debug("Worker %d finished", worker_id)
            return
        try:
            try:
                record = await _crawl_entry(entry, manager, context, budget)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.warning("Failed to crawl %s: %s", entry.url, exc)
                record = _error_record(entry, exc)

            if record is None:
                state.offsite_redirects.append(str(entry.url))
                continue

            state.records.append(record)
            LOGGER.debug(
                "Crawled %s -> %s (%d/%d)",
                entry.url,
                record.status_code,
                len(state.records),
                frontier.max_pages,
            )

            if record.is_valid:
                if entry.depth < frontier.max_depth:
                    await frontier.add_many(record.internal_links, entry.depth + 1, str(record.url))
            elif entry.source is None and not state.fallback_triggered and allow_fallbacks:
                state.fallback_triggered = True
                candidates = fallback_candidates(context, directives.report.sitemap_urls)
                LOGGER.warning("Root %s failed (%s); trying fallbacks", entry.url, record.error)
                await frontier.add_fallbacks(candidates)
        finally:
            await frontier.done(entry)


async def crawl_site_async(
    url: str,
    *,
    config: Optional[AuditConfig] = None,
    options: Optional[SiteCrawlOptions] = None,
    driver: Optional[RenderDriver] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> SiteCrawlResult:
    """Crawl a website breadth-first from ``url``.

    Redirects of the seed are resolved once to fix the preferred host and
    scheme, robots.txt and the sitemap are fetched, then ``workers`` tasks
    render pages until the frontier is exhausted, the page limit is
    reached or the run deadline expires.

    Raises:
        MalformedURL: If ``url`` is not a crawlable http(s) URL.
    """
    parse_url(url)
    config = config or AuditConfig()
    options = options or SiteCrawlOptions()
    tier = config.tier
    max_depth = tier.max_depth if options.max_depth is None else options.max_depth
    max_pages = tier.max_pages if options.max_pages is None else options.max_pages
    workers = options.workers or tier.workers
    deadline = options.deadline or tier.run_deadline

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            headers={"User-Agent": config.user_agent},
            timeout=config.request_timeout,
        )

    try:
        context = await build_crawl_context_async(url, client)
        if options.fetch_directives:
            directives = await fetch_directives_async(
                context.root_url, client, user_agent=config.user_agent
            )
        else:
            directives = SiteDirectives(user_agent=config.user_agent)
    finally:
        if owns_client:
            await client.aclose()

    frontier = CrawlFrontier(
        context,
        max_depth=max_depth,
        max_pages=max_pages,
        robots=directives,
        user_agent=config.user_agent,
    )
    await frontier.seed(url)

    state = _RunState()
    timed_out = False
    LOGGER.info(
        "Crawling %s (tier=%s, max_pages=%d, max_depth=%d, workers=%d)",
        context.root_url,
        tier.name,
        max_pages,
        max_depth,
        workers,
    )

    manager = RenderSessionManager(driver, config=config, pool_size=workers)
    async with manager:
        tasks = [
            asyncio.create_task(
                _worker(
                    index,
                    frontier,
                    manager,
                    state,
                    directives,
                    config.render_budget,
                    options.allow_fallbacks,
                )
            )
            for index in range(workers)
        ]
        try:
            await asyncio.wait_for(asyncio.gather(*tasks), timeout=deadline)
        except asyncio.TimeoutError:
            timed_out = True
            LOGGER.warning(
                "Run deadline of %.0fs reached for %s; keeping %d page(s)",
                deadline,
                context.root_url,
                len(state.records),
            )

    stats = {
        "pages_crawled": len(state.records),
        "timed_out": timed_out,
        "malformed_urls": len(frontier.malformed),
        "disallowed_urls": len(frontier.disallowed),
        "skipped_urls": len(frontier.skipped),
        "offsite_redirects": len(state.offsite_redirects),
        **{f"render_{key}": value for key, value in sorted(manager.stats.items())},
    }
    LOGGER.info("Crawl of %s finished: %d record(s)", context.root_url, len(state.records))

    return SiteCrawlResult(
        url=url,
        context=context,
        records=list(state.records),
        directives=directives,
        malformed=sorted(frontier.malformed),
        disallowed=sorted(frontier.disallowed),
        skipped=sorted(frontier.skipped),
        fallbacks=list(frontier.fallbacks),
        offsite_redirects=sorted(state.offsite_redirects),
        timed_out=timed_out,
        stats=stats,
    )


def crawl_site(url: str, **kwargs: Any) -> SiteCrawlResult:
    """Synchronous wrapper for crawl_site_async."""
    return asyncio.run(crawl_site_async(url, **kwargs))

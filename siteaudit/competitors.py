"""Competitor keyword comparison and competitor discovery.

Competitors are crawled with the same render/extract pipeline as the
target, at a reduced page budget. A competitor that cannot be crawled is
reported as unavailable; keyword data is never invented for it.

When no competitor is supplied, candidates come from the SearXNG suggestion
service, and failing that from a static industry taxonomy.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from .aggregator import aggregate
from .config import AuditConfig
from .document import CompetitorDiff, CompetitorReport, PageRecord
from .errors import CompetitorUnavailable, CrawlFailed, MalformedURL, SearchError
from .keywords import build_site_keywords, diff_keywords, has_similar
from .render import RenderDriver
from .search import SearchResult, search_async
from .site import SiteCrawlOptions, crawl_site_async
from .urls import _normalize_host, _registrable_domain, is_same_site, parse_url

LOGGER = logging.getLogger(__name__)

CompetitorCrawler = Callable[[str], Awaitable[List[PageRecord]]]
Searcher = Callable[..., Awaitable[SearchResult]]

DISCOVERY_QUERIES = 3
MIN_INDUSTRY_SCORE = 2
TITLE_MATCH_BONUS = 5

# Domains that rank for everything and are never useful competitors.
GENERIC_DOMAINS = frozenset(
    {
        "amazon.com",
        "apple.com",
        "facebook.com",
        "github.com",
        "google.com",
        "instagram.com",
        "linkedin.com",
        "medium.com",
        "pinterest.com",
        "quora.com",
        "reddit.com",
        "tiktok.com",
        "twitter.com",
        "wikipedia.org",
        "x.com",
        "yelp.com",
        "youtube.com",
    }
)


# ---------------------------------------------------------------------------
# Industry taxonomy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndustryDefinition:
    id: str
    name: str
    keywords: Tuple[str, ...]
    competitors: Tuple[str, ...]


@dataclass(slots=True)
class IndustryClassification:
    industry: str
    name: str
    score: int
    confidence: float
    competitors: List[str] = field(default_factory=list)


INDUSTRY_DATA: Dict[str, IndustryDefinition] = {
    definition.id: definition
    for definition in (
        IndustryDefinition(
            "saas_marketing",
            "Marketing SaaS",
            ("marketing", "automation", "email", "crm", "campaign", "newsletter", "analytics", "growth", "sales"),
            ("https://hubspot.com", "https://mailchimp.com", "https://activecampaign.com", "https://convertkit.com"),
        ),
        IndustryDefinition(
            "saas_dev",
            "Developer Tools",
            ("api", "sdk", "documentation", "deployment", "cloud", "serverless", "database", "hosting", "frontend", "backend"),
            ("https://vercel.com", "https://netlify.com", "https://heroku.com", "https://digitalocean.com"),
        ),
        IndustryDefinition(
            "saas_productivity",
            "Productivity Software",
            ("project management", "task", "collaboration", "team", "workflow", "kanban", "scrum", "remote work"),
            ("https://asana.com", "https://trello.com", "https://monday.com", "https://notion.so"),
        ),
        IndustryDefinition(
            "ecommerce_fashion",
            "Fashion & Apparel",
            ("clothing", "apparel", "wear", "fashion", "style", "shop", "store", "mens", "womens", "accessories"),
            ("https://asos.com", "https://zara.com", "https://hm.com", "https://uniqlo.com"),
        ),
        IndustryDefinition(
            "ecommerce_electronics",
            "Consumer Electronics",
            ("electronics", "gadgets", "phone", "laptop", "computer", "tech", "device", "audio", "camera"),
            ("https://bestbuy.com", "https://newegg.com", "https://bhphotovideo.com", "https://crutchfield.com"),
        ),
        IndustryDefinition(
            "ecommerce_home",
            "Home & Garden",
            ("furniture", "decor", "home", "living", "garden", "kitchen", "interior", "design"),
            ("https://wayfair.com", "https://ikea.com", "https://westelm.com", "https://crateandbarrel.com"),
        ),
        IndustryDefinition(
            "agency_seo",
            "SEO & Marketing Agency",
            ("seo", "search engine", "ranking", "audit", "digital marketing", "agency", "consulting"),
            ("https://moz.com", "https://ahrefs.com", "https://semrush.com", "https://searchengineland.com"),
        ),
        IndustryDefinition(
            "finance",
            "Finance & Fintech",
            ("finance", "banking", "investing", "money", "credit", "loan", "crypto", "wealth", "trading"),
            ("https://nerdwallet.com", "https://investopedia.com", "https://robinhood.com", "https://coinbase.com"),
        ),
        IndustryDefinition(
            "health",
            "Health & Wellness",
            ("health", "wellness", "medical", "fitness", "diet", "nutrition", "workout", "mental health"),
            ("https://healthline.com", "https://webmd.com", "https://mayoclinic.org", "https://menshealth.com"),
        ),
        IndustryDefinition(
            "travel",
            "Travel & Tourism",
            ("travel", "trip", "vacation", "hotel", "flight", "booking", "destination", "tourism", "guide"),
            ("https://tripadvisor.com", "https://expedia.com", "https://lonelyplanet.com", "https://booking.com"),
        ),
        IndustryDefinition(
            "education",
            "Education & Learning",
            ("course", "learn", "tutorial", "education", "university", "school", "training", "certification", "bootcamp"),
            ("https://coursera.org", "https://udemy.com", "https://edx.org", "https://khanacademy.org"),
        ),
        IndustryDefinition(
            "news",
            "News & Media",
            ("news", "magazine", "blog", "article", "report", "journalism", "daily", "times", "post"),
            ("https://nytimes.com", "https://cnn.com", "https://bbc.com", "https://theverge.com"),
        ),
    )
}


class IndustryClassifier:
    """Interface for classifying a site into an industry with known competitors."""

    def classify(self, title: str, text: str) -> Optional[IndustryClassification]:
        raise NotImplementedError


class IndustryTaxonomy(IndustryClassifier):
    """Whole-word keyword matching against :data:`INDUSTRY_DATA`.

    Each keyword occurrence scores 1 and each keyword found in the title
    scores another 5. The best industry is used only when it scores more
    than :data:`MIN_INDUSTRY_SCORE`; ties go to the first definition.
    """

    def __init__(self, data: Optional[Dict[str, IndustryDefinition]] = None):
        self.data = data or INDUSTRY_DATA

    def _score(self, definition: IndustryDefinition, title: str, text: str) -> int:
        score = 0
        for keyword in definition.keywords:
            score += len(re.findall(rf"\b{re.escape(keyword)}\b", text))
            if keyword in title:
                score += TITLE_MATCH_BONUS
        return score

    def classify(self, title: str, text: str) -> Optional[IndustryClassification]:
        title = (title or "").lower()
        text = f"{title} {(text or '').lower()}"
        best: Optional[IndustryDefinition] = None
        best_score = 0
        for definition in self.data.values():
            score = self._score(definition, title, text)
            if score > best_score:
                best, best_score = definition, score
        if best is None or best_score <= MIN_INDUSTRY_SCORE:
            return None
        return IndustryClassification(
            industry=best.id,
            name=best.name,
            score=best_score,
            confidence=round(min(best_score / 20, 1.0), 2),
            competitors=list(best.competitors),
        )


def classification_text(pages: Sequence[PageRecord]) -> Tuple[str, str]:
    """(title, text) describing the site, built from its page records."""
    title = next((page.title for page in pages if page.title), "")
    parts: List[str] = []
    for page in pages:
        parts.extend(filter(None, [page.title, page.meta_description]))
        for texts in page.headings.values():
            parts.extend(texts)
        parts.extend(page.keywords)
    return title, " ".join(parts)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DiscoveryResult:
    urls: List[str] = field(default_factory=list)
    source: str = "discovered"
    reason: Optional[str] = None


def _domain_of(url: str) -> Optional[str]:
    try:
        host = _normalize_host(parse_url(url).hostname)
    except MalformedURL:
        return None
    return _registrable_domain(host)


async def _discover_via_search(
    target_keywords: Sequence[str],
    own_domain: Optional[str],
    limit: int,
    searcher: Searcher,
) -> List[str]:
    votes: Counter = Counter()
    first_seen: Dict[str, int] = {}
    for query in list(target_keywords)[:DISCOVERY_QUERIES]:
        result = await searcher(query, max_results=10)
        for item in result.results:
            domain = item.domain
            if not domain or domain == own_domain or domain in GENERIC_DOMAINS:
                continue
            votes[domain] += 1
            first_seen.setdefault(domain, len(first_seen))
    ranked = sorted(votes, key=lambda domain: (-votes[domain], first_seen[domain]))
    return [f"https://{domain}/" for domain in ranked[:limit]]


async def discover_competitors_async(
    target_url: str,
    pages: Sequence[PageRecord],
    target_keywords: Sequence[str],
    *,
    limit: int = 3,
    searcher: Searcher = search_async,
    classifier: Optional[IndustryClassifier] = None,
) -> DiscoveryResult:
    """Suggest competitor URLs from search results, then from the industry taxonomy."""
    own_domain = _domain_of(target_url)
    if target_keywords:
        try:
            urls = await _discover_via_search(target_keywords, own_domain, limit, searcher)
        except SearchError as exc:
            LOGGER.warning("Competitor search failed for %r: %s", exc.query, exc)
            urls = []
        if urls:
            LOGGER.info("Discovered %d competitor(s) via search", len(urls))
            return DiscoveryResult(urls=urls, source="discovered")

    classifier = classifier or IndustryTaxonomy()
    title, text = classification_text(pages)
    classification = classifier.classify(title, text)
    if classification is not None:
        urls = [url for url in classification.competitors if _domain_of(url) != own_domain][:limit]
        if urls:
            LOGGER.info(
                "Using %s competitors from the industry taxonomy (score %d)",
                classification.name,
                classification.score,
            )
            return DiscoveryResult(urls=urls, source="taxonomy")

    return DiscoveryResult(source="discovered", reason="no competitors discovered")


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


def make_competitor_crawler(
    config: Optional[AuditConfig] = None,
    driver: Optional[RenderDriver] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> CompetitorCrawler:
    """A crawler that fetches a competitor's valid pages at the reduced budget."""
    config = config or AuditConfig()
    options = SiteCrawlOptions(
        max_pages=config.tier.competitor_pages,
        max_depth=1,
        fetch_directives=False,
        allow_fallbacks=False,
    )

    async def crawl(url: str) -> List[PageRecord]:
        try:
            result = await crawl_site_async(
                url, config=config, options=options, driver=driver, client=client
            )
            result.raise_for_failure()
        except (CrawlFailed, MalformedURL) as exc:
            raise CompetitorUnavailable(url, str(exc)) from exc
        valid, _, _ = aggregate(result.records)
        return valid

    return crawl


async def _diff_one(
    url: str, target_keywords: Sequence[str], crawler: CompetitorCrawler
) -> Tuple[CompetitorDiff, List[str]]:
    try:
        pages = await crawler(url)
        if not pages:
            raise CompetitorUnavailable(url, "no pages could be crawled")
        keywords = build_site_keywords(pages)
        if not keywords:
            raise CompetitorUnavailable(url, "no keywords found")
    except CompetitorUnavailable as exc:
        LOGGER.warning("%s", exc)
        return CompetitorDiff(competitor_url=url, status="unavailable", reason=exc.reason), []

    shared, gaps, target_only = diff_keywords(target_keywords, keywords)
    diff = CompetitorDiff(
        competitor_url=url,
        shared_keywords=shared,
        keyword_gaps=gaps,
        target_only_keywords=target_only,
        pages_analyzed=len(pages),
    )
    return diff, keywords


async def compare_competitors_async(
    target_keywords: Sequence[str],
    competitor_urls: Sequence[str],
    crawler: CompetitorCrawler,
    *,
    source: str = "supplied",
) -> CompetitorReport:
    """Diff the target's keywords against each competitor.

    The report is ``available`` when at least one competitor produced
    keywords; its lists are computed from those competitors only.
    """
    diffs: List[CompetitorDiff] = []
    competitor_keywords: List[str] = []
    for url in competitor_urls:
        diff, keywords = await _diff_one(url, target_keywords, crawler)
        diffs.append(diff)
        competitor_keywords.extend(keywords)

    available = [diff for diff in diffs if diff.status == "available"]
    if not available:
        reasons = "; ".join(f"{diff.competitor_url}: {diff.reason}" for diff in diffs)
        return CompetitorReport(
            status="unavailable",
            source=source,
            reason=f"all competitors failed ({reasons})" if diffs else "no competitors supplied",
            competitors=diffs,
            target_keywords=list(target_keywords),
        )

    return CompetitorReport(
        status="available",
        source=source,
        competitors=diffs,
        shared_keywords=sorted({kw for diff in available for kw in diff.shared_keywords}),
        keyword_gaps=sorted({kw for diff in available for kw in diff.keyword_gaps}),
        target_only_keywords=sorted(
            kw for kw in set(target_keywords) if not has_similar(kw, competitor_keywords)
        ),
        target_keywords=list(target_keywords),
    )


async def analyze_competitors_async(
    target_url: str,
    pages: Sequence[PageRecord],
    target_keywords: Sequence[str],
    *,
    config: Optional[AuditConfig] = None,
    crawler: Optional[CompetitorCrawler] = None,
    searcher: Searcher = search_async,
    classifier: Optional[IndustryClassifier] = None,
) -> Optional[CompetitorReport]:
    """Compare against supplied competitors, or discovered ones when none are given.

    Returns None when no competitors were supplied and discovery is disabled.
    """
    config = config or AuditConfig()
    crawler = crawler or make_competitor_crawler(config)
    limit = config.tier.max_competitors

    supplied = [url for url in config.competitors if not is_same_site(url, target_url)]
    if supplied:
        return await compare_competitors_async(target_keywords, supplied[:limit], crawler)
    if not config.discover_competitors:
        return None

    discovery = await discover_competitors_async(
        target_url,
        pages,
        target_keywords,
        limit=limit,
        searcher=searcher,
        classifier=classifier,
    )
    if not discovery.urls:
        return CompetitorReport(
            status="unavailable",
            source=discovery.source,
            reason=discovery.reason or "no competitors discovered",
            target_keywords=list(target_keywords),
        )
    return await compare_competitors_async(
        target_keywords, discovery.urls, crawler, source=discovery.source
    )

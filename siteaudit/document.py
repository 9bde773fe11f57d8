"""Data structures shared by the crawl, analysis and scoring stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    """Issue severity, ordered low < medium < high."""

    low = "low"
    medium = "medium"
    high = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.low: 1, Severity.medium: 2, Severity.high: 3}


class IssueCategory(str, Enum):
    """Score category an issue counts against."""

    technical = "technical"
    on_page = "on_page"
    content = "content"
    accessibility = "accessibility"
    performance = "performance"


class IssueType(str, Enum):
    """Closed set of normalized issue types."""

    # On-page
    title_missing = "title-missing"
    title_too_short = "title-too-short"
    title_too_long = "title-too-long"
    title_duplicate = "title-duplicate"
    meta_missing = "meta-missing"
    meta_too_short = "meta-too-short"
    meta_too_long = "meta-too-long"
    meta_duplicate = "meta-duplicate"
    h1_missing = "h1-missing"
    h1_multiple = "h1-multiple"
    heading_hierarchy = "heading-hierarchy"
    open_graph_missing = "open-graph-missing"
    twitter_card_missing = "twitter-card-missing"
    internal_links_missing = "internal-links-missing"
    internal_links_few = "internal-links-few"
    url_too_long = "url-too-long"
    # Content
    content_thin = "content-thin"
    readability_poor = "readability-poor"
    sentences_long = "sentences-long"
    js_dependent = "js-dependent-content"
    # Technical
    viewport_missing = "viewport-missing"
    noindex = "noindex"
    nofollow = "nofollow"
    canonical_missing = "canonical-missing"
    canonical_mismatch = "canonical-mismatch"
    mixed_content = "mixed-content"
    schema_missing = "schema-missing"
    schema_invalid = "schema-invalid"
    schema_incomplete = "schema-incomplete"
    identity_schema_missing = "identity-schema-missing"
    robots_missing = "robots-missing"
    robots_unreachable = "robots-unreachable"
    robots_blocked = "robots-blocked"
    sitemap_missing = "sitemap-missing"
    sitemap_unreachable = "sitemap-unreachable"
    nap_inconsistent = "nap-inconsistent"
    broken_pages = "broken-pages"
    https_missing = "https-missing"
    hsts_missing = "hsts-missing"
    x_frame_options_missing = "x-frame-options-missing"
    csp_missing = "csp-missing"
    cache_control_missing = "cache-control-missing"
    compression_missing = "compression-missing"
    # Accessibility
    alt_missing = "alt-missing"
    # Performance
    lcp_slow = "lcp-slow"
    fcp_slow = "fcp-slow"
    cls_high = "cls-high"
    ttfb_slow = "ttfb-slow"
    tbt_high = "tbt-high"
    metric_unreliable = "metric-unreliable"


# ---------------------------------------------------------------------------
# URLs and render output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True, order=True)
class CanonicalURL:
    """Normalized, redirect-resolved identity of a crawl target."""

    scheme: str
    host: str
    path: str = "/"
    query: str = ""

    def __str__(self) -> str:
        url = f"{self.scheme}://{self.host}{self.path}"
        if self.query:
            url = f"{url}?{self.query}"
        return url


@dataclass(slots=True)
class MetricFlag:
    """Record of a timing metric that was capped or dropped during validation."""

    metric: str
    raw: Optional[float]
    accepted: Optional[float]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "raw": self.raw,
            "accepted": self.accepted,
            "reason": self.reason,
        }


@dataclass(slots=True)
class TimingSignals:
    """Paint, layout-shift and navigation timings in milliseconds."""

    ttfb: Optional[float] = None
    first_paint: Optional[float] = None
    largest_contentful_paint: Optional[float] = None
    layout_shift: Optional[float] = None
    total_blocking_time: Optional[float] = None
    source: str = "render"
    flags: List[MetricFlag] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return any(
            value is not None
            for value in (
                self.ttfb,
                self.first_paint,
                self.largest_contentful_paint,
                self.layout_shift,
            )
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ttfb": self.ttfb,
            "first_paint": self.first_paint,
            "largest_contentful_paint": self.largest_contentful_paint,
            "layout_shift": self.layout_shift,
            "total_blocking_time": self.total_blocking_time,
            "source": self.source,
            "flags": [flag.to_dict() for flag in self.flags],
        }


@dataclass(slots=True)
class RenderDelta:
    """Difference between the pre-render and rendered markup of a page."""

    initial_bytes: int = 0
    rendered_bytes: int = 0
    initial_words: int = 0
    rendered_words: int = 0
    similarity: float = 1.0
    rendering_percentage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial_bytes": self.initial_bytes,
            "rendered_bytes": self.rendered_bytes,
            "initial_words": self.initial_words,
            "rendered_words": self.rendered_words,
            "similarity": self.similarity,
            "rendering_percentage": self.rendering_percentage,
        }


@dataclass(slots=True)
class RenderResult:
    """Output of one render: both markups plus whatever timings were captured."""

    request_url: str
    final_url: str
    status_code: int
    initial_markup: str = ""
    rendered_markup: str = ""
    timing: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, Any] = field(default_factory=dict)
    partial: bool = False
    error: Optional[str] = None
    elapsed: float = 0.0


# ---------------------------------------------------------------------------
# Page-level records
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ImageRef:
    """An ``<img>`` element and its alt attribute."""

    src: str
    alt: Optional[str]
    has_alt: bool


@dataclass(slots=True)
class SchemaReport:
    """Structured data found on a page, merged by declared type."""

    types: List[str] = field(default_factory=list)
    merged: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    missing_fields: Dict[str, List[str]] = field(default_factory=dict)
    invalid_blocks: int = 0
    jsonld_blocks: int = 0
    microdata_items: int = 0
    identity_types: List[str] = field(default_factory=list)

    @property
    def has_schema(self) -> bool:
        return bool(self.types)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": list(self.types),
            "missing_fields": {k: list(v) for k, v in sorted(self.missing_fields.items())},
            "invalid_blocks": self.invalid_blocks,
            "jsonld_blocks": self.jsonld_blocks,
            "microdata_items": self.microdata_items,
            "identity_types": list(self.identity_types),
        }


@dataclass(slots=True)
class SocialTags:
    """Open Graph and Twitter Card properties plus the favicon location."""

    open_graph: Dict[str, str] = field(default_factory=dict)
    twitter: Dict[str, str] = field(default_factory=dict)
    favicon: Optional[str] = None
    favicon_declared: bool = False

    @property
    def has_open_graph(self) -> bool:
        return bool(self.open_graph)

    @property
    def has_twitter_card(self) -> bool:
        return bool(self.twitter)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "open_graph": dict(sorted(self.open_graph.items())),
            "twitter": dict(sorted(self.twitter.items())),
            "favicon": self.favicon,
            "favicon_declared": self.favicon_declared,
        }


@dataclass(slots=True)
class HeaderSignals:
    """Security and caching facts read from the page's response headers.

    ``captured`` is False when the renderer exposed no headers; header
    checks are skipped for such pages.
    """

    captured: bool = False
    https: bool = False
    hsts: bool = False
    x_frame_options: bool = False
    content_security_policy: bool = False
    cache_control: Optional[str] = None
    content_encoding: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "captured": self.captured,
            "https": self.https,
            "hsts": self.hsts,
            "x_frame_options": self.x_frame_options,
            "content_security_policy": self.content_security_policy,
            "cache_control": self.cache_control,
            "content_encoding": self.content_encoding,
        }


@dataclass(slots=True)
class ContactSignals:
    """Name/address/phone candidates found on a page."""

    names: List[str] = field(default_factory=list)
    addresses: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.names or self.addresses or self.phones)


@dataclass(slots=True)
class PageRecord:
    """Structured signals extracted from one rendered page."""

    url: CanonicalURL
    request_url: str
    final_url: str
    status_code: int
    title: Optional[str] = None
    title_length: int = 0
    meta_description: Optional[str] = None
    meta_description_length: int = 0
    canonical: Optional[str] = None
    headings: Dict[str, List[str]] = field(default_factory=dict)
    heading_order: List[int] = field(default_factory=list)
    word_count: int = 0
    sentence_count: int = 0
    readability: Optional[float] = None
    avg_sentence_length: float = 0.0
    internal_links: List[str] = field(default_factory=list)
    external_links: List[str] = field(default_factory=list)
    images: List[ImageRef] = field(default_factory=list)
    schema: SchemaReport = field(default_factory=SchemaReport)
    timing: TimingSignals = field(default_factory=TimingSignals)
    render_delta: RenderDelta = field(default_factory=RenderDelta)
    has_viewport: bool = False
    noindex: bool = False
    nofollow: bool = False
    lang: Optional[str] = None
    mixed_content: List[str] = field(default_factory=list)
    social: SocialTags = field(default_factory=SocialTags)
    header_signals: HeaderSignals = field(default_factory=HeaderSignals)
    contact: ContactSignals = field(default_factory=ContactSignals)
    platform_hints: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    partial: bool = False
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return 200 <= self.status_code < 400

    @property
    def h1(self) -> List[str]:
        return self.headings.get("h1", [])

    @property
    def images_missing_alt(self) -> List[ImageRef]:
        return [image for image in self.images if not image.has_alt]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": str(self.url),
            "request_url": self.request_url,
            "final_url": self.final_url,
            "status_code": self.status_code,
            "title": self.title,
            "title_length": self.title_length,
            "meta_description": self.meta_description,
            "meta_description_length": self.meta_description_length,
            "canonical": self.canonical,
            "headings": {k: list(v) for k, v in sorted(self.headings.items())},
            "heading_order": list(self.heading_order),
            "word_count": self.word_count,
            "readability": self.readability,
            "avg_sentence_length": self.avg_sentence_length,
            "internal_links": len(self.internal_links),
            "external_links": len(self.external_links),
            "images": len(self.images),
            "images_missing_alt": len(self.images_missing_alt),
            "schema": self.schema.to_dict(),
            "timing": self.timing.to_dict(),
            "render_delta": self.render_delta.to_dict(),
            "has_viewport": self.has_viewport,
            "noindex": self.noindex,
            "nofollow": self.nofollow,
            "lang": self.lang,
            "mixed_content": list(self.mixed_content),
            "social": self.social.to_dict(),
            "header_signals": self.header_signals.to_dict(),
            "keywords": list(self.keywords),
            "partial": self.partial,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Site-wide facts and outcome
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DirectivesReport:
    """Presence and reachability of robots.txt and the sitemap."""

    robots_present: bool = False
    robots_reachable: bool = False
    robots_status: Optional[int] = None
    sitemap_present: bool = False
    sitemap_reachable: bool = False
    sitemap_status: Optional[int] = None
    sitemap_locations: List[str] = field(default_factory=list)
    sitemap_urls: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "robots_present": self.robots_present,
            "robots_reachable": self.robots_reachable,
            "robots_status": self.robots_status,
            "sitemap_present": self.sitemap_present,
            "sitemap_reachable": self.sitemap_reachable,
            "sitemap_status": self.sitemap_status,
            "sitemap_locations": list(self.sitemap_locations),
            "sitemap_url_count": len(self.sitemap_urls),
        }


@dataclass(slots=True)
class NapReport:
    """Cross-page consistency of name/address/phone data."""

    consistent: bool = True
    score: int = 0
    names: List[str] = field(default_factory=list)
    addresses: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    pages_with_nap: List[str] = field(default_factory=list)
    inconsistent_pages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consistent": self.consistent,
            "score": self.score,
            "names": list(self.names),
            "addresses": list(self.addresses),
            "phones": list(self.phones),
            "pages_with_nap": list(self.pages_with_nap),
            "inconsistent_pages": list(self.inconsistent_pages),
        }


@dataclass(slots=True)
class PlatformFingerprint:
    """Best guess of the CMS or site builder behind the site."""

    name: str = "unknown"
    confidence: float = 0.0
    evidence: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "confidence": self.confidence,
            "evidence": list(self.evidence),
        }


@dataclass(slots=True)
class SiteFacts:
    """Cross-page facts computed once all pages have been fetched."""

    duplicate_titles: Dict[str, List[str]] = field(default_factory=dict)
    duplicate_meta_descriptions: Dict[str, List[str]] = field(default_factory=dict)
    nap: NapReport = field(default_factory=NapReport)
    platform: PlatformFingerprint = field(default_factory=PlatformFingerprint)
    directives: DirectivesReport = field(default_factory=DirectivesReport)
    identity_schema_present: bool = False
    disallowed_urls: List[str] = field(default_factory=list)
    malformed_urls: List[str] = field(default_factory=list)
    offsite_redirects: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duplicate_titles": {k: list(v) for k, v in sorted(self.duplicate_titles.items())},
            "duplicate_meta_descriptions": {
                k: list(v) for k, v in sorted(self.duplicate_meta_descriptions.items())
            },
            "nap": self.nap.to_dict(),
            "platform": self.platform.to_dict(),
            "directives": self.directives.to_dict(),
            "identity_schema_present": self.identity_schema_present,
            "disallowed_urls": list(self.disallowed_urls),
            "malformed_urls": list(self.malformed_urls),
            "offsite_redirects": list(self.offsite_redirects),
            "stats": dict(sorted(self.stats.items())),
        }


@dataclass(slots=True)
class CrawlOutcome:
    """Partition of crawled pages plus the run status."""

    status: str  # success, partial, failed
    valid_pages: List[PageRecord] = field(default_factory=list)
    error_pages: List[PageRecord] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    @property
    def is_failed(self) -> bool:
        return self.status == "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "reasons": list(self.reasons),
            "valid_pages": [page.to_dict() for page in self.valid_pages],
            "error_pages": [
                {
                    "url": str(page.url),
                    "status_code": page.status_code,
                    "error": page.error,
                }
                for page in self.error_pages
            ],
        }


# ---------------------------------------------------------------------------
# Findings and scores
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Issue:
    """A consolidated finding, keyed by category and normalized type."""

    category: IssueCategory
    severity: Severity
    issue_type: IssueType
    message: str
    affected_pages: List[str] = field(default_factory=list)
    fixes: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return (self.category, self.issue_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "type": self.issue_type.value,
            "message": self.message,
            "affected_pages": list(self.affected_pages),
            "fixes": list(self.fixes),
            "details": dict(sorted(self.details.items())),
        }


@dataclass(slots=True)
class ScoreReport:
    """Category scores and the weighted overall score, each in [0, 100]."""

    overall: int
    technical: int
    on_page: int
    content: int
    accessibility: int
    performance: int
    weights: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall,
            "technical": self.technical,
            "on_page": self.on_page,
            "content": self.content,
            "accessibility": self.accessibility,
            "performance": self.performance,
            "weights": dict(self.weights),
        }


@dataclass(slots=True)
class CompetitorDiff:
    """Keyword comparison between the target site and one competitor."""

    competitor_url: str
    status: str = "available"  # available, unavailable
    reason: Optional[str] = None
    shared_keywords: List[str] = field(default_factory=list)
    keyword_gaps: List[str] = field(default_factory=list)
    target_only_keywords: List[str] = field(default_factory=list)
    pages_analyzed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "competitor_url": self.competitor_url,
            "status": self.status,
            "reason": self.reason,
            "shared_keywords": list(self.shared_keywords),
            "keyword_gaps": list(self.keyword_gaps),
            "target_only_keywords": list(self.target_only_keywords),
            "pages_analyzed": self.pages_analyzed,
        }


@dataclass(slots=True)
class CompetitorReport:
    """Aggregated competitor comparison, or an explicit unavailable state."""

    status: str  # available, unavailable
    source: str = "supplied"  # supplied, discovered, taxonomy
    reason: Optional[str] = None
    competitors: List[CompetitorDiff] = field(default_factory=list)
    shared_keywords: List[str] = field(default_factory=list)
    keyword_gaps: List[str] = field(default_factory=list)
    target_only_keywords: List[str] = field(default_factory=list)
    target_keywords: List[str] = field(default_factory=list)

    @property
    def is_available(self) -> bool:
        return self.status == "available"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "source": self.source,
            "reason": self.reason,
            "competitors": [diff.to_dict() for diff in self.competitors],
            "shared_keywords": list(self.shared_keywords),
            "keyword_gaps": list(self.keyword_gaps),
            "target_only_keywords": list(self.target_only_keywords),
            "target_keywords": list(self.target_keywords),
        }


@dataclass(slots=True)
class PerformanceReport:
    """Sanitized result of the external performance-metrics service."""

    url: str
    status: str = "available"  # available, unavailable
    strategy: str = "mobile"
    score: Optional[int] = None
    timing: TimingSignals = field(default_factory=TimingSignals)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "status": self.status,
            "strategy": self.strategy,
            "score": self.score,
            "timing": self.timing.to_dict(),
            "error": self.error,
        }


@dataclass(slots=True)
class AuditResult:
    """The single, already-consolidated output of an audit run."""

    url: str
    tier: str
    outcome: CrawlOutcome
    facts: SiteFacts = field(default_factory=SiteFacts)
    issues: List[Issue] = field(default_factory=list)
    scores: Optional[ScoreReport] = None
    competitors: Optional[CompetitorReport] = None
    performance: Optional[PerformanceReport] = None
    generated_at: Optional[str] = None

    @property
    def status(self) -> str:
        return self.outcome.status

    def to_dict(self, include_timestamp: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "url": self.url,
            "tier": self.tier,
            "status": self.outcome.status,
            "outcome": self.outcome.to_dict(),
            "facts": self.facts.to_dict(),
            "issues": [issue.to_dict() for issue in self.issues],
            "scores": self.scores.to_dict() if self.scores else None,
            "competitors": self.competitors.to_dict() if self.competitors else None,
            "performance": self.performance.to_dict() if self.performance else None,
        }
        if include_timestamp:
            data["generated_at"] = self.generated_at
        return data

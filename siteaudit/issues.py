"""Issue engine: page and site checks reduced to one consolidated list.

Every issue is created from a human-readable message that is normalized to
a member of the closed :class:`IssueType` set. Variants of the same finding
("Title tag too short", "Page title too short") therefore collapse onto one
type and are merged by :func:`consolidate`.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from .document import (
    Issue,
    IssueCategory,
    IssueType,
    PageRecord,
    Severity,
    SiteFacts,
)
from .errors import MalformedURL
from .urls import canonicalize

LOGGER = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 60
META_MIN_LENGTH = 120
META_MAX_LENGTH = 160
THIN_CONTENT_WORDS = 300
READABILITY_MEDIUM = 50.0
READABILITY_HIGH = 30.0
LONG_SENTENCE_WORDS = 25.0
ALT_HIGH_RATIO = 0.5
MIN_INTERNAL_LINKS = 3
URL_MAX_LENGTH = 100
COMPRESSION_ENCODINGS = ("gzip", "br", "deflate", "zstd")

# (low, medium, high) rendering-percentage thresholds
JS_DEPENDENCY_THRESHOLDS = (50.0, 100.0, 150.0)

# metric -> (medium, high)
TIMING_THRESHOLDS: Dict[str, Tuple[float, float]] = {
    "largest_contentful_paint": (2500.0, 4000.0),
    "first_paint": (1800.0, 3000.0),
    "layout_shift": (0.1, 0.25),
    "ttfb": (800.0, 1800.0),
    "total_blocking_time": (200.0, 600.0),
}

_TIMING_MESSAGES = {
    "largest_contentful_paint": "Slow Largest Contentful Paint",
    "first_paint": "Slow First Contentful Paint",
    "layout_shift": "High Cumulative Layout Shift",
    "ttfb": "Slow Time to First Byte",
    "total_blocking_time": "High Total Blocking Time (TBT)",
}

# ---------------------------------------------------------------------------
# Message normalization
# ---------------------------------------------------------------------------

_REWRITES: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"\b(?:page title|title tag|title element)s?\b"), "title"),
    (re.compile(r"\bmeta descriptions?\b"), "meta"),
    (re.compile(r"\bh1 (?:tags?|headings?|elements?)\b"), "h1"),
    (re.compile(r"^(?:no|not found:?|lacks?)\s+"), "missing "),
    (re.compile(r"\s+"), " "),
)

# Order matters: more specific patterns come first.
ISSUE_PATTERNS: Tuple[Tuple[Pattern[str], IssueType], ...] = tuple(
    (re.compile(pattern), issue_type)
    for pattern, issue_type in (
        (r"\bunreliable\b.*\bmetrics?\b", IssueType.metric_unreliable),
        (r"\bbroken pages?\b|\bpages? (?:returned|returning) errors?\b", IssueType.broken_pages),
        (r"\bduplicate titles?\b", IssueType.title_duplicate),
        (r"\bduplicate meta\b", IssueType.meta_duplicate),
        (r"\bmissing title\b|\btitle (?:is )?missing\b", IssueType.title_missing),
        (r"\btitle (?:is )?too short\b", IssueType.title_too_short),
        (r"\btitle (?:is )?too long\b", IssueType.title_too_long),
        (r"\bmissing meta\b|\bmeta (?:is )?missing\b", IssueType.meta_missing),
        (r"\bmeta (?:is )?too short\b", IssueType.meta_too_short),
        (r"\bmeta (?:is )?too long\b", IssueType.meta_too_long),
        (r"\bmissing h1\b|\bh1 (?:is )?missing\b", IssueType.h1_missing),
        (r"\bmultiple h1\b", IssueType.h1_multiple),
        (r"\bheading hierarchy\b|\bheading levels?\b.*\bskipped\b", IssueType.heading_hierarchy),
        (r"\bopen graph\b", IssueType.open_graph_missing),
        (r"\btwitter card\b", IssueType.twitter_card_missing),
        (r"\bmissing internal links\b", IssueType.internal_links_missing),
        (r"\bfew internal links\b", IssueType.internal_links_few),
        (r"\burl (?:is )?too long\b", IssueType.url_too_long),
        (r"\balt (?:text|attributes?)\b", IssueType.alt_missing),
        (r"\bthin content\b|\blow word count\b", IssueType.content_thin),
        (r"\b(?:poor|low|difficult) readability\b|\bhard to read\b", IssueType.readability_poor),
        (r"\blong sentences\b", IssueType.sentences_long),
        (r"\bjavascript[- ]dependent\b|\brelies on javascript\b", IssueType.js_dependent),
        (r"\bviewport\b", IssueType.viewport_missing),
        (r"\bnoindex\b", IssueType.noindex),
        (r"\bnofollow\b", IssueType.nofollow),
        (r"\bcanonical\b.*\b(?:mismatch|different url)\b", IssueType.canonical_mismatch),
        (r"\bmissing canonical\b|\bcanonical (?:tag |url )?(?:is )?missing\b", IssueType.canonical_missing),
        (r"\bmixed content\b", IssueType.mixed_content),
        (r"\bnot (?:using|served over) https\b|\bhttps (?:is )?missing\b", IssueType.https_missing),
        (r"\bhsts\b|\bstrict-transport-security\b", IssueType.hsts_missing),
        (r"\bx-frame-options\b", IssueType.x_frame_options_missing),
        (r"\bcontent-security-policy\b", IssueType.csp_missing),
        (r"\bcache-control\b", IssueType.cache_control_missing),
        (r"\bcompression\b", IssueType.compression_missing),
        (r"\b(?:identity|organization|localbusiness) schema\b", IssueType.identity_schema_missing),
        (r"\binvalid (?:json-ld|structured data|schema)\b", IssueType.schema_invalid),
        (r"\b(?:schema|structured data)\b.*\b(?:incomplete|required fields?)\b", IssueType.schema_incomplete),
        (r"\bmissing (?:structured data|schema)\b", IssueType.schema_missing),
        (r"\bblocked by robots\b", IssueType.robots_blocked),
        (r"\brobots\.txt\b.*\bunreachable\b", IssueType.robots_unreachable),
        (r"\bmissing robots\.txt\b|\brobots\.txt (?:is )?missing\b", IssueType.robots_missing),
        (r"\bsitemap\b.*\bunreachable\b", IssueType.sitemap_unreachable),
        (r"\bmissing (?:xml )?sitemap\b|\bsitemap (?:is )?missing\b", IssueType.sitemap_missing),
        (r"\binconsistent (?:nap|business|contact)\b|\bnap\b.*\binconsistent\b", IssueType.nap_inconsistent),
        (r"\btotal blocking time\b|\btbt\b", IssueType.tbt_high),
        (r"\blargest contentful paint\b|\blcp\b", IssueType.lcp_slow),
        (r"\bfirst (?:contentful )?paint\b|\bfcp\b", IssueType.fcp_slow),
        (r"\blayout shift\b|\bcls\b", IssueType.cls_high),
        (r"\btime to first byte\b|\bttfb\b|\bserver response\b", IssueType.ttfb_slow),
    )
)

ISSUE_CATEGORIES: Dict[IssueType, IssueCategory] = {
    IssueType.title_missing: IssueCategory.on_page,
    IssueType.title_too_short: IssueCategory.on_page,
    IssueType.title_too_long: IssueCategory.on_page,
    IssueType.title_duplicate: IssueCategory.on_page,
    IssueType.meta_missing: IssueCategory.on_page,
    IssueType.meta_too_short: IssueCategory.on_page,
    IssueType.meta_too_long: IssueCategory.on_page,
    IssueType.meta_duplicate: IssueCategory.on_page,
    IssueType.h1_missing: IssueCategory.on_page,
    IssueType.h1_multiple: IssueCategory.on_page,
    IssueType.heading_hierarchy: IssueCategory.on_page,
    IssueType.open_graph_missing: IssueCategory.on_page,
    IssueType.twitter_card_missing: IssueCategory.on_page,
    IssueType.internal_links_missing: IssueCategory.on_page,
    IssueType.internal_links_few: IssueCategory.on_page,
    IssueType.url_too_long: IssueCategory.on_page,
    IssueType.content_thin: IssueCategory.content,
    IssueType.readability_poor: IssueCategory.content,
    IssueType.sentences_long: IssueCategory.content,
    IssueType.js_dependent: IssueCategory.content,
    IssueType.viewport_missing: IssueCategory.technical,
    IssueType.noindex: IssueCategory.technical,
    IssueType.nofollow: IssueCategory.technical,
    IssueType.canonical_missing: IssueCategory.technical,
    IssueType.canonical_mismatch: IssueCategory.technical,
    IssueType.mixed_content: IssueCategory.technical,
    IssueType.schema_missing: IssueCategory.technical,
    IssueType.schema_invalid: IssueCategory.technical,
    IssueType.schema_incomplete: IssueCategory.technical,
    IssueType.identity_schema_missing: IssueCategory.technical,
    IssueType.robots_missing: IssueCategory.technical,
    IssueType.robots_unreachable: IssueCategory.technical,
    IssueType.robots_blocked: IssueCategory.technical,
    IssueType.sitemap_missing: IssueCategory.technical,
    IssueType.sitemap_unreachable: IssueCategory.technical,
    IssueType.nap_inconsistent: IssueCategory.technical,
    IssueType.broken_pages: IssueCategory.technical,
    IssueType.https_missing: IssueCategory.technical,
    IssueType.hsts_missing: IssueCategory.technical,
    IssueType.x_frame_options_missing: IssueCategory.technical,
    IssueType.csp_missing: IssueCategory.technical,
    IssueType.cache_control_missing: IssueCategory.technical,
    IssueType.compression_missing: IssueCategory.technical,
    IssueType.alt_missing: IssueCategory.accessibility,
    IssueType.lcp_slow: IssueCategory.performance,
    IssueType.fcp_slow: IssueCategory.performance,
    IssueType.cls_high: IssueCategory.performance,
    IssueType.ttfb_slow: IssueCategory.performance,
    IssueType.tbt_high: IssueCategory.performance,
    IssueType.metric_unreliable: IssueCategory.performance,
}

FIXES: Dict[IssueType, List[str]] = {
    IssueType.title_missing: ["Add a unique, descriptive <title> element to every page."],
    IssueType.title_too_short: ["Expand the title to 50-60 characters including the primary keyword."],
    IssueType.title_too_long: ["Shorten the title to at most 60 characters so it is not truncated."],
    IssueType.title_duplicate: ["Give every page a title that describes its own content."],
    IssueType.meta_missing: ["Add a meta description summarizing the page in 120-160 characters."],
    IssueType.meta_too_short: ["Expand the meta description to 120-160 characters."],
    IssueType.meta_too_long: ["Trim the meta description to at most 160 characters."],
    IssueType.meta_duplicate: ["Write a distinct meta description for each page."],
    IssueType.h1_missing: ["Add exactly one <h1> heading stating the page topic."],
    IssueType.h1_multiple: ["Keep a single <h1> and demote the others to <h2>."],
    IssueType.heading_hierarchy: ["Nest headings without skipping levels: H1, then H2, then H3."],
    IssueType.open_graph_missing: ["Add og:title, og:description and og:image meta tags."],
    IssueType.twitter_card_missing: ["Add twitter:card, twitter:title and twitter:description meta tags."],
    IssueType.internal_links_missing: ["Link to related pages from the page body."],
    IssueType.internal_links_few: ["Add 3-5 contextual links to related pages."],
    IssueType.url_too_long: ["Keep URLs under 100 characters with short, descriptive slugs."],
    IssueType.content_thin: ["Expand the page to at least 300 words of useful content."],
    IssueType.readability_poor: ["Use shorter sentences and simpler words."],
    IssueType.sentences_long: ["Split sentences longer than 25 words."],
    IssueType.js_dependent: ["Server-render the main content so it is present without JavaScript."],
    IssueType.viewport_missing: ['Add <meta name="viewport" content="width=device-width, initial-scale=1">.'],
    IssueType.noindex: ["Remove the noindex directive from pages that should appear in search."],
    IssueType.nofollow: ["Remove the nofollow directive so internal links pass authority."],
    IssueType.canonical_missing: ['Add a self-referencing <link rel="canonical"> to each page.'],
    IssueType.canonical_mismatch: ["Point the canonical link at the page's own preferred URL."],
    IssueType.mixed_content: ["Load every subresource over HTTPS."],
    IssueType.schema_missing: ["Add JSON-LD structured data describing the page."],
    IssueType.schema_invalid: ["Fix the JSON syntax of the structured-data blocks."],
    IssueType.schema_incomplete: ["Fill in the required properties of each structured-data type."],
    IssueType.identity_schema_missing: ["Publish Organization, LocalBusiness or Person schema on the home page."],
    IssueType.robots_missing: ["Publish a robots.txt file at the site root."],
    IssueType.robots_unreachable: ["Make robots.txt return 200 or 404 instead of an error."],
    IssueType.robots_blocked: ["Check that robots.txt does not block pages meant to be indexed."],
    IssueType.sitemap_missing: ["Publish an XML sitemap and reference it from robots.txt."],
    IssueType.sitemap_unreachable: ["Make the XML sitemap return 200."],
    IssueType.nap_inconsistent: ["Use one spelling of the business name, address and phone on every page."],
    IssueType.broken_pages: ["Fix or redirect URLs that return errors."],
    IssueType.https_missing: ["Serve every page over HTTPS and redirect HTTP to it."],
    IssueType.hsts_missing: ["Send a Strict-Transport-Security header on HTTPS responses."],
    IssueType.x_frame_options_missing: ["Send X-Frame-Options: SAMEORIGIN (or DENY)."],
    IssueType.csp_missing: ["Define a Content-Security-Policy header."],
    IssueType.cache_control_missing: ["Send Cache-Control headers so returning visitors reuse responses."],
    IssueType.compression_missing: ["Enable gzip or Brotli compression for HTML responses."],
    IssueType.alt_missing: ["Add alt text to informative images (empty alt for decorative ones)."],
    IssueType.lcp_slow: ["Optimize the largest above-the-fold element and its loading priority."],
    IssueType.fcp_slow: ["Reduce render-blocking CSS and JavaScript."],
    IssueType.cls_high: ["Reserve space for images, embeds and late-loading content."],
    IssueType.ttfb_slow: ["Improve server response time with caching or a CDN."],
    IssueType.tbt_high: ["Split long JavaScript tasks and defer third-party scripts."],
    IssueType.metric_unreliable: ["Re-measure performance; the recorded values were out of range."],
}


def _normalize_message(message: str) -> str:
    text = (message or "").strip().lower()
    for pattern, replacement in _REWRITES:
        text = pattern.sub(replacement, text)
    return text.strip()


def normalize_issue_type(message: str) -> IssueType:
    """Map a finding message to its IssueType.

    Raises:
        ValueError: If the message matches no known issue type.
    """
    text = _normalize_message(message)
    for pattern, issue_type in ISSUE_PATTERNS:
        if pattern.search(text):
            return issue_type
    raise ValueError(f"Unrecognized issue message: {message!r}")


def make_issue(
    message: str,
    severity: Severity,
    affected_pages: Iterable[str] = (),
    *,
    details: Optional[Dict[str, Any]] = None,
    fixes: Optional[Sequence[str]] = None,
) -> Issue:
    """Create an Issue whose type and category are derived from ``message``."""
    issue_type = normalize_issue_type(message)
    return Issue(
        category=ISSUE_CATEGORIES[issue_type],
        severity=severity,
        issue_type=issue_type,
        message=message,
        affected_pages=sorted(set(affected_pages)),
        fixes=list(fixes if fixes is not None else FIXES.get(issue_type, [])),
        details=dict(details or {}),
    )


def _sort_key(issue: Issue) -> tuple:
    return (-issue.severity.rank, issue.category.value, issue.issue_type.value)


def consolidate(issues: Iterable[Issue]) -> List[Issue]:
    """Merge issues sharing (category, issue_type).

    Severity is the maximum, affected pages the sorted union, fixes are
    de-duplicated in first-seen order and detail keys keep their first
    value. The message follows the most severe variant. Applying this to
    its own output returns an equal list.
    """
    merged: Dict[tuple, Issue] = {}
    for issue in issues:
        existing = merged.get(issue.key)
        if existing is None:
            merged[issue.key] = Issue(
                category=issue.category,
                severity=issue.severity,
                issue_type=issue.issue_type,
                message=issue.message,
                affected_pages=sorted(set(issue.affected_pages)),
                fixes=list(dict.fromkeys(issue.fixes)),
                details=dict(issue.details),
            )
            continue
        if issue.severity.rank > existing.severity.rank:
            existing.severity = issue.severity
            existing.message = issue.message
        existing.affected_pages = sorted(set(existing.affected_pages) | set(issue.affected_pages))
        existing.fixes = list(dict.fromkeys([*existing.fixes, *issue.fixes]))
        for key, value in issue.details.items():
            existing.details.setdefault(key, value)
    return sorted(merged.values(), key=_sort_key)


# ---------------------------------------------------------------------------
# Page checks
# ---------------------------------------------------------------------------


def _canonical_target(url: str) -> Optional[tuple]:
    try:
        canonical = canonicalize(url)
    except MalformedURL:
        return None
    host = canonical.host[4:] if canonical.host.startswith("www.") else canonical.host
    return (host, canonical.path, canonical.query)


def _on_page_issues(page: PageRecord, url: str) -> List[Issue]:
    issues = []
    if not page.title:
        issues.append(make_issue("Page title missing", Severity.high, [url]))
    elif page.title_length < TITLE_MIN_LENGTH:
        issues.append(
            make_issue(
                f"Page title too short (under {TITLE_MIN_LENGTH} characters)",
                Severity.medium,
                [url],
                details={"min_length": TITLE_MIN_LENGTH},
            )
        )
    elif page.title_length > TITLE_MAX_LENGTH:
        issues.append(
            make_issue(
                f"Page title too long (over {TITLE_MAX_LENGTH} characters)",
                Severity.low,
                [url],
                details={"max_length": TITLE_MAX_LENGTH},
            )
        )

    if not page.meta_description:
        issues.append(make_issue("Meta description missing", Severity.high, [url]))
    elif page.meta_description_length < META_MIN_LENGTH:
        issues.append(
            make_issue(
                f"Meta description too short (under {META_MIN_LENGTH} characters)",
                Severity.medium,
                [url],
                details={"min_length": META_MIN_LENGTH},
            )
        )
    elif page.meta_description_length > META_MAX_LENGTH:
        issues.append(
            make_issue(
                f"Meta description too long (over {META_MAX_LENGTH} characters)",
                Severity.low,
                [url],
                details={"max_length": META_MAX_LENGTH},
            )
        )

    if not page.h1:
        issues.append(make_issue("Missing H1 heading", Severity.high, [url]))
    elif len(page.h1) > 1:
        issues.append(make_issue("Multiple H1 headings", Severity.medium, [url]))
    if _skips_heading_level(page.heading_order):
        issues.append(
            make_issue(
                "Improper heading hierarchy (levels skipped)",
                Severity.medium,
                [url],
                details={"heading_order": list(page.heading_order)},
            )
        )

    if not page.social.has_open_graph:
        issues.append(make_issue("Missing Open Graph tags", Severity.low, [url]))
    if not page.social.has_twitter_card:
        issues.append(make_issue("Missing Twitter Card tags", Severity.low, [url]))

    link_count = len(page.internal_links)
    if link_count == 0:
        issues.append(make_issue("No internal links found", Severity.medium, [url]))
    elif link_count < MIN_INTERNAL_LINKS:
        issues.append(
            make_issue(
                f"Few internal links (under {MIN_INTERNAL_LINKS})",
                Severity.low,
                [url],
                details={"min_internal_links": MIN_INTERNAL_LINKS},
            )
        )

    if len(url) > URL_MAX_LENGTH:
        issues.append(
            make_issue(
                f"URL too long (over {URL_MAX_LENGTH} characters)",
                Severity.low,
                [url],
                details={"max_length": URL_MAX_LENGTH},
            )
        )
    return issues


def _skips_heading_level(levels: Sequence[int]) -> bool:
    """True when a heading is more than one level deeper than the one before it."""
    if len(levels) < 2:
        return False
    previous = 0
    for level in levels:
        if level > previous + 1:
            return True
        previous = level
    return False


def _content_issues(page: PageRecord, url: str) -> List[Issue]:
    issues = []
    if page.word_count < THIN_CONTENT_WORDS:
        issues.append(
            make_issue(
                f"Thin content (under {THIN_CONTENT_WORDS} words)",
                Severity.medium,
                [url],
                details={"min_words": THIN_CONTENT_WORDS},
            )
        )
    if page.readability is not None and page.readability < READABILITY_MEDIUM:
        severity = Severity.high if page.readability < READABILITY_HIGH else Severity.medium
        issues.append(
            make_issue(
                "Poor readability (Flesch reading ease below 50)",
                severity,
                [url],
                details={"flesch_threshold": READABILITY_MEDIUM},
            )
        )
    if page.avg_sentence_length > LONG_SENTENCE_WORDS:
        issues.append(
            make_issue(
                f"Long sentences (average over {LONG_SENTENCE_WORDS:g} words)",
                Severity.low,
                [url],
            )
        )

    delta = page.render_delta
    low, medium, high = JS_DEPENDENCY_THRESHOLDS
    if delta.initial_bytes > 0 and delta.rendering_percentage > low:
        if delta.rendering_percentage > high:
            severity = Severity.high
        elif delta.rendering_percentage > medium:
            severity = Severity.medium
        else:
            severity = Severity.low
        issues.append(
            make_issue(
                "JavaScript-dependent content (most text appears only after rendering)",
                severity,
                [url],
            )
        )
    return issues


def _technical_issues(page: PageRecord, url: str) -> List[Issue]:
    issues = []
    if not page.has_viewport:
        issues.append(make_issue("Viewport meta tag missing", Severity.high, [url]))
    if page.noindex:
        issues.append(make_issue("Page is excluded with noindex", Severity.high, [url]))
    if page.nofollow:
        issues.append(make_issue("Page links are marked nofollow", Severity.medium, [url]))

    if not page.canonical:
        issues.append(make_issue("Canonical tag missing", Severity.medium, [url]))
    elif _canonical_target(page.canonical) != _canonical_target(page.final_url):
        issues.append(
            make_issue(
                "Canonical URL mismatch (points to a different URL)",
                Severity.low,
                [url],
            )
        )

    if page.mixed_content:
        issues.append(
            make_issue(
                "Mixed content: insecure resources on an HTTPS page",
                Severity.high,
                [url],
            )
        )

    schema = page.schema
    if not schema.has_schema:
        issues.append(make_issue("Missing structured data", Severity.medium, [url]))
    if schema.invalid_blocks:
        issues.append(make_issue("Invalid JSON-LD block", Severity.low, [url]))
    if schema.missing_fields:
        issues.append(
            make_issue(
                "Structured data missing required fields",
                Severity.medium,
                [url],
                details={"missing_fields": {k: list(v) for k, v in sorted(schema.missing_fields.items())}},
            )
        )
    issues.extend(_header_issues(page, url))
    return issues


def _header_issues(page: PageRecord, url: str) -> List[Issue]:
    signals = page.header_signals
    issues = []
    if not page.final_url.lower().startswith("https://"):
        issues.append(make_issue("Site not using HTTPS", Severity.high, [url]))
    if not signals.captured:
        return issues

    if signals.https and not signals.hsts:
        issues.append(make_issue("Missing HSTS header", Severity.medium, [url]))
    if not signals.x_frame_options:
        issues.append(make_issue("Missing X-Frame-Options header", Severity.low, [url]))
    if not signals.content_security_policy:
        issues.append(make_issue("Missing Content-Security-Policy header", Severity.low, [url]))
    if not signals.cache_control:
        issues.append(make_issue("Missing Cache-Control header", Severity.medium, [url]))
    encoding = (signals.content_encoding or "").lower()
    if not any(name in encoding for name in COMPRESSION_ENCODINGS):
        issues.append(
            make_issue(
                "No compression enabled",
                Severity.medium,
                [url],
                details={"content_encoding": signals.content_encoding},
            )
        )
    return issues


def _accessibility_issues(page: PageRecord, url: str) -> List[Issue]:
    missing = len(page.images_missing_alt)
    if not missing:
        return []
    ratio = missing / len(page.images)
    severity = Severity.high if ratio >= ALT_HIGH_RATIO else Severity.medium
    return [make_issue("Images missing alt text", severity, [url])]


def _performance_issues(page: PageRecord, url: str) -> List[Issue]:
    issues = []
    timing = page.timing
    for metric, (medium, high) in TIMING_THRESHOLDS.items():
        value = getattr(timing, metric)
        if value is None or value <= medium:
            continue
        severity = Severity.high if value > high else Severity.medium
        issues.append(
            make_issue(
                _TIMING_MESSAGES[metric],
                severity,
                [url],
                details={f"{metric}_threshold": medium},
            )
        )
    if timing.flags:
        issues.append(
            make_issue(
                "Unreliable performance metric values",
                Severity.low,
                [url],
                details={"flagged_metrics": sorted({flag.metric for flag in timing.flags})},
            )
        )
    return issues


def page_issues(page: PageRecord) -> List[Issue]:
    """Every per-page finding for one valid page."""
    url = str(page.url)
    return [
        *_on_page_issues(page, url),
        *_content_issues(page, url),
        *_technical_issues(page, url),
        *_accessibility_issues(page, url),
        *_performance_issues(page, url),
    ]


# ---------------------------------------------------------------------------
# Site checks
# ---------------------------------------------------------------------------


def site_issues(valid_pages: Sequence[PageRecord], facts: SiteFacts) -> List[Issue]:
    issues = []
    for _, urls in sorted(facts.duplicate_titles.items()):
        issues.append(
            make_issue("Duplicate title tags across pages", Severity.medium, urls)
        )
    for _, urls in sorted(facts.duplicate_meta_descriptions.items()):
        issues.append(
            make_issue("Duplicate meta descriptions across pages", Severity.medium, urls)
        )
    if not facts.nap.consistent:
        issues.append(
            make_issue(
                "Inconsistent NAP (name, address, phone) across pages",
                Severity.medium,
                facts.nap.inconsistent_pages,
                details={"nap_score": facts.nap.score},
            )
        )
    if valid_pages and not facts.identity_schema_present:
        issues.append(
            make_issue(
                "Identity schema missing (Organization, LocalBusiness or Person)",
                Severity.medium,
            )
        )

    directives = facts.directives
    if not directives.robots_reachable:
        issues.append(
            make_issue(
                "robots.txt unreachable",
                Severity.medium,
                details={"robots_status": directives.robots_status},
            )
        )
    elif not directives.robots_present:
        issues.append(make_issue("Missing robots.txt", Severity.low))

    if directives.sitemap_present:
        LOGGER.debug("Sitemap lists %d URL(s)", len(directives.sitemap_urls))
    elif directives.sitemap_reachable:
        issues.append(make_issue("Missing XML sitemap", Severity.medium))
    else:
        issues.append(
            make_issue(
                "XML sitemap unreachable",
                Severity.medium,
                details={"sitemap_status": directives.sitemap_status},
            )
        )

    if facts.disallowed_urls:
        issues.append(
            make_issue(
                "Pages blocked by robots.txt",
                Severity.low,
                facts.disallowed_urls,
                details={"blocked_count": len(facts.disallowed_urls)},
            )
        )
    return issues


def broken_pages_issue(error_pages: Sequence[PageRecord]) -> Optional[Issue]:
    """The single issue listing every error page, or None when there are none."""
    if not error_pages:
        return None
    return make_issue(
        "Broken pages returned errors",
        Severity.high,
        [str(page.url) for page in error_pages],
        details={"status_codes": {str(page.url): page.status_code for page in error_pages}},
    )


def build_issues(
    valid_pages: Sequence[PageRecord],
    error_pages: Sequence[PageRecord],
    facts: Optional[SiteFacts] = None,
) -> List[Issue]:
    """Run every check and return the consolidated, sorted issue list.

    Content checks only ever see ``valid_pages``; error pages contribute
    exactly one ``broken-pages`` issue.
    """
    issues: List[Issue] = []
    for page in valid_pages:
        issues.extend(page_issues(page))
    if facts is not None:
        issues.extend(site_issues(valid_pages, facts))
    broken = broken_pages_issue(error_pages)
    if broken is not None:
        issues.append(broken)
    consolidated = consolidate(issues)
    LOGGER.info(
        "Consolidated %d finding(s) into %d issue(s)", len(issues), len(consolidated)
    )
    return consolidated

"""Site-wide reduction of page records: dedup, partition and cross-page facts."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .document import CrawlOutcome, DirectivesReport, PageRecord, SiteFacts
from .fingerprint import PlatformClassifier, StaticPlatformClassifier
from .nap import analyze_consistency

LOGGER = logging.getLogger(__name__)

# More than this share of error pages makes the crawl partial.
ERROR_RATIO_PARTIAL = 0.5


def _status_rank(page: PageRecord) -> int:
    if page.is_valid:
        return 2
    if page.status_code:
        return 1
    return 0


def _preference(page: PageRecord) -> tuple:
    return (-_status_rank(page), page.partial, -page.word_count, page.request_url)


def deduplicate_pages(records: Iterable[PageRecord]) -> List[PageRecord]:
    """Keep one record per CanonicalURL, sorted by URL.

    The kept record is the one with the best status (valid, then HTTP error,
    then unreachable), then complete over partial, then the most words, then
    the smallest request URL, so arrival order never matters.
    """
    best: Dict[Any, PageRecord] = {}
    for record in records:
        current = best.get(record.url)
        if current is None or _preference(record) < _preference(current):
            best[record.url] = record
    return [best[url] for url in sorted(best)]


def partition_pages(records: Sequence[PageRecord]) -> Tuple[List[PageRecord], List[PageRecord]]:
    """Split records by status: 200-399 are valid, everything else is an error."""
    valid = [record for record in records if record.is_valid]
    errors = [record for record in records if not record.is_valid]
    return valid, errors


def find_duplicates(pages: Sequence[PageRecord], field_name: str) -> Dict[str, List[str]]:
    """Group pages sharing the same title or meta description (case-insensitive)."""
    groups: Dict[str, List[str]] = {}
    labels: Dict[str, str] = {}
    for page in pages:
        value = getattr(page, field_name)
        if not value:
            continue
        key = " ".join(value.lower().split())
        labels.setdefault(key, value)
        groups.setdefault(key, []).append(str(page.url))
    return {
        labels[key]: sorted(urls)
        for key, urls in sorted(groups.items())
        if len(urls) > 1
    }


def build_outcome(
    valid: List[PageRecord],
    errors: List[PageRecord],
    *,
    timed_out: bool = False,
    reasons: Iterable[str] = (),
) -> CrawlOutcome:
    """Classify a crawl as success, partial or failed."""
    reasons = list(reasons)
    total = len(valid) + len(errors)
    if not valid:
        if not reasons:
            reasons.append("no page returned a successful status")
        return CrawlOutcome("failed", valid, errors, reasons)

    status = "success"
    if timed_out:
        status = "partial"
        reasons.append("run deadline reached before the crawl finished")
    if total and len(errors) / total > ERROR_RATIO_PARTIAL:
        status = "partial"
        reasons.append(f"{len(errors)} of {total} pages returned errors")
    return CrawlOutcome(status, valid, errors, reasons)


def aggregate(
    records: Iterable[PageRecord],
    directives: Optional[DirectivesReport] = None,
    *,
    classifier: Optional[PlatformClassifier] = None,
    disallowed: Iterable[str] = (),
    malformed: Iterable[str] = (),
    offsite_redirects: Iterable[str] = (),
    stats: Optional[Dict[str, Any]] = None,
) -> Tuple[List[PageRecord], List[PageRecord], SiteFacts]:
    """Deduplicate and partition the records, then compute site-wide facts.

    Returns ``(valid_pages, error_pages, facts)``.
    """
    records = list(records)
    pages = deduplicate_pages(records)
    valid, errors = partition_pages(pages)
    classifier = classifier or StaticPlatformClassifier()

    facts = SiteFacts(
        duplicate_titles=find_duplicates(valid, "title"),
        duplicate_meta_descriptions=find_duplicates(valid, "meta_description"),
        nap=analyze_consistency(valid),
        platform=classifier.classify(valid),
        directives=directives or DirectivesReport(),
        identity_schema_present=any(page.schema.identity_types for page in valid),
        disallowed_urls=sorted(set(disallowed)),
        malformed_urls=sorted(set(malformed)),
        offsite_redirects=sorted(set(offsite_redirects)),
    )
    facts.stats = dict(stats or {})
    facts.stats.update(
        {
            "records": len(records),
            "unique_pages": len(pages),
            "duplicates_removed": len(records) - len(pages),
            "valid_pages": len(valid),
            "error_pages": len(errors),
            "partial_renders": sum(1 for page in pages if page.partial),
        }
    )
    LOGGER.info(
        "Aggregated %d record(s) into %d page(s): %d valid, %d error",
        len(records),
        len(pages),
        len(valid),
        len(errors),
    )
    return valid, errors, facts

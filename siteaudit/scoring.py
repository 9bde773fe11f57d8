"""Category and overall scores from consolidated issues plus continuous metrics.

Scoring is a pure function of its inputs: issues are visited in sorted order
and no clock or randomness is involved, so identical inputs always produce
identical scores.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from .config import DEFAULT_WEIGHTS
from .document import Issue, IssueCategory, PageRecord, ScoreReport, Severity, TimingSignals

LOGGER = logging.getLogger(__name__)

SEVERITY_PENALTY: Dict[Severity, float] = {
    Severity.high: 12.0,
    Severity.medium: 6.0,
    Severity.low: 2.0,
}

# Each affected page beyond the first adds 25% to a penalty, up to 4 pages.
SPREAD_STEP = 0.25
SPREAD_MAX_EXTRA_PAGES = 4

CATEGORY_FIELDS: Dict[IssueCategory, str] = {
    IssueCategory.technical: "technical",
    IssueCategory.on_page: "on_page",
    IssueCategory.content: "content",
    IssueCategory.accessibility: "accessibility",
    IssueCategory.performance: "performance",
}

NEUTRAL_PERFORMANCE = 70.0

READABILITY_TARGET = 60.0
READABILITY_FACTOR = 0.5
READABILITY_MAX_PENALTY = 30.0
WORD_COUNT_TARGET = 300.0
WORD_COUNT_MAX_PENALTY = 20.0
ALT_MAX_PENALTY = 20.0

# metric -> ((threshold, penalty), ...) with the harshest band first
PERFORMANCE_BANDS: Dict[str, tuple] = {
    "largest_contentful_paint": ((4000.0, 30.0), (2500.0, 15.0)),
    "first_paint": ((3000.0, 20.0), (1800.0, 10.0)),
    "layout_shift": ((0.25, 10.0), (0.1, 5.0)),
    "ttfb": ((1800.0, 10.0), (800.0, 5.0)),
}

_TIMING_FIELDS = (
    "ttfb",
    "first_paint",
    "largest_contentful_paint",
    "layout_shift",
    "total_blocking_time",
)


def _mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def average_timings(timings: Sequence[TimingSignals]) -> TimingSignals:
    """Per-metric mean over the timings that carry a value."""
    merged = TimingSignals(source="average")
    for name in _TIMING_FIELDS:
        values = [getattr(t, name) for t in timings if getattr(t, name) is not None]
        mean = _mean(values)
        if mean is not None:
            setattr(merged, name, round(mean, 3 if name == "layout_shift" else 1))
    return merged


@dataclass(slots=True)
class ScoreMetrics:
    """Site-level continuous metrics that adjust category scores."""

    readability: Optional[float] = None
    avg_word_count: Optional[float] = None
    alt_coverage: Optional[float] = None
    timing: Optional[TimingSignals] = None

    @classmethod
    def from_pages(
        cls,
        pages: Sequence[PageRecord],
        *,
        performance_timing: Optional[TimingSignals] = None,
        primary_url: Optional[str] = None,
    ) -> "ScoreMetrics":
        """Summarize valid pages.

        ``performance_timing`` (from the performance service) replaces the
        render timings of ``primary_url`` when it carries data.
        """
        readability = _mean([p.readability for p in pages if p.readability is not None])
        avg_words = _mean([float(p.word_count) for p in pages])
        total_images = sum(len(p.images) for p in pages)
        alt_coverage = None
        if total_images:
            with_alt = sum(len(p.images) - len(p.images_missing_alt) for p in pages)
            alt_coverage = with_alt / total_images

        timings: Dict[str, TimingSignals] = {str(p.url): p.timing for p in pages}
        if performance_timing is not None and performance_timing.has_data:
            timings[primary_url or "__performance__"] = performance_timing
        timing = average_timings([timings[key] for key in sorted(timings)])

        return cls(
            readability=readability,
            avg_word_count=avg_words,
            alt_coverage=alt_coverage,
            timing=timing if timing.has_data else None,
        )


def issue_penalty(issue: Issue) -> float:
    extra_pages = max(0, min(len(issue.affected_pages) - 1, SPREAD_MAX_EXTRA_PAGES))
    return SEVERITY_PENALTY[issue.severity] * (1 + SPREAD_STEP * extra_pages)


def category_field(category: IssueCategory) -> str:
    """Score field for ``category``.

    Raises:
        KeyError: If the category has no score field.
    """
    try:
        return CATEGORY_FIELDS[category]
    except KeyError:
        raise KeyError(f"No score field for issue category {category!r}") from None


def content_penalty(metrics: ScoreMetrics) -> float:
    penalty = 0.0
    if metrics.readability is not None and metrics.readability < READABILITY_TARGET:
        penalty += min(
            (READABILITY_TARGET - metrics.readability) * READABILITY_FACTOR,
            READABILITY_MAX_PENALTY,
        )
    if metrics.avg_word_count is not None and metrics.avg_word_count < WORD_COUNT_TARGET:
        penalty += (WORD_COUNT_TARGET - metrics.avg_word_count) / WORD_COUNT_TARGET * WORD_COUNT_MAX_PENALTY
    return penalty


def performance_penalty(timing: TimingSignals) -> float:
    penalty = 0.0
    for metric, bands in PERFORMANCE_BANDS.items():
        value = getattr(timing, metric)
        if value is None:
            continue
        for threshold, points in bands:
            if value > threshold:
                penalty += points
                break
    return penalty


def accessibility_penalty(metrics: ScoreMetrics) -> float:
    if metrics.alt_coverage is None or metrics.alt_coverage >= 1.0:
        return 0.0
    return (1.0 - metrics.alt_coverage) * ALT_MAX_PENALTY


def _clamp_round(value: float) -> int:
    clamped = max(0.0, min(100.0, value))
    return int(math.floor(clamped + 0.5))


def _validate_weights(weights: Mapping[str, float]) -> Dict[str, float]:
    expected = set(CATEGORY_FIELDS.values())
    if set(weights) != expected:
        raise ValueError(f"Weights must cover exactly {sorted(expected)}")
    if abs(sum(weights.values()) - 1.0) > 1e-6:
        raise ValueError("Weights must sum to 1.0")
    return {name: float(weights[name]) for name in sorted(weights)}


def score(
    issues: Sequence[Issue],
    metrics: Optional[ScoreMetrics] = None,
    weights: Optional[Mapping[str, float]] = None,
) -> ScoreReport:
    """Compute category scores and the weighted overall score, each in [0, 100]."""
    metrics = metrics or ScoreMetrics()
    weights = _validate_weights(weights or DEFAULT_WEIGHTS)

    raw: Dict[str, float] = {field: 100.0 for field in CATEGORY_FIELDS.values()}
    if metrics.timing is None or not metrics.timing.has_data:
        raw["performance"] = NEUTRAL_PERFORMANCE
    else:
        raw["performance"] -= performance_penalty(metrics.timing)

    ordered: List[Issue] = sorted(
        issues,
        key=lambda i: (-i.severity.rank, i.category.value, i.issue_type.value),
    )
    for issue in ordered:
        raw[category_field(issue.category)] -= issue_penalty(issue)

    raw["content"] -= content_penalty(metrics)
    raw["accessibility"] -= accessibility_penalty(metrics)

    categories = {name: _clamp_round(value) for name, value in raw.items()}
    overall = _clamp_round(sum(categories[name] * weights[name] for name in weights))
    LOGGER.debug("Scores: overall=%d %s", overall, categories)
    return ScoreReport(overall=overall, weights=weights, **categories)

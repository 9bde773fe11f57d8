"""Validation of paint, layout-shift and navigation timings.

Raw timings come from two places, the render session's PerformanceObserver
snippet and the external PageSpeed service. Neither is trusted as-is. Every
value goes through :func:`validate_timings`, which:

- drops negative, NaN and infinite values,
- caps values above a sanity ceiling,
- enforces ``ttfb <= first_paint <= largest_contentful_paint``.

Each adjustment is recorded as a :class:`MetricFlag`, so downstream code can
tell a measured value from a corrected one.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .document import MetricFlag, TimingSignals
from .errors import MetricOutOfRange

LOGGER = logging.getLogger(__name__)

# metric -> (ceiling, value used when the ceiling is exceeded)
CEILINGS: Dict[str, Tuple[float, float]] = {
    "ttfb": (10_000.0, 5_000.0),
    "first_paint": (15_000.0, 10_000.0),
    "largest_contentful_paint": (30_000.0, 15_000.0),
    "layout_shift": (5.0, 2.0),
    "total_blocking_time": (30_000.0, 30_000.0),
}

# Metrics that must not decrease, in load order.
_ORDERED = ("ttfb", "first_paint", "largest_contentful_paint")

# Metrics where a negative reading means "no shift/blocking" rather than garbage.
_ZERO_FLOOR = frozenset({"layout_shift", "total_blocking_time"})

# Accepted aliases for raw keys (render snippet, PageSpeed audits).
_ALIASES: Dict[str, str] = {
    "ttfb": "ttfb",
    "time_to_first_byte": "ttfb",
    "server-response-time": "ttfb",
    "fcp": "first_paint",
    "first_paint": "first_paint",
    "first-contentful-paint": "first_paint",
    "lcp": "largest_contentful_paint",
    "largest_contentful_paint": "largest_contentful_paint",
    "largest-contentful-paint": "largest_contentful_paint",
    "cls": "layout_shift",
    "layout_shift": "layout_shift",
    "cumulative-layout-shift": "layout_shift",
    "tbt": "total_blocking_time",
    "total_blocking_time": "total_blocking_time",
    "total-blocking-time": "total_blocking_time",
}


def _coerce(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _check_range(metric: str, value: float) -> float:
    """Return ``value`` if sane, otherwise raise with the value to use instead."""
    if math.isnan(value) or math.isinf(value):
        raise MetricOutOfRange(metric, value, None, "not a finite number")
    if value < 0:
        if metric in _ZERO_FLOOR:
            raise MetricOutOfRange(metric, value, 0.0, "negative value")
        raise MetricOutOfRange(metric, value, None, "negative value")
    ceiling, capped = CEILINGS[metric]
    if value > ceiling:
        raise MetricOutOfRange(metric, value, capped, f"exceeds ceiling {ceiling:g}")
    return value


def _check_order(
    metric: str, value: Optional[float], floor_metric: str, floor: Optional[float]
) -> Optional[float]:
    if value is None or floor is None or value >= floor:
        return value
    raise MetricOutOfRange(metric, value, floor, f"earlier than {floor_metric}")


def normalize_raw_timings(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Map alias keys onto TimingSignals field names, ignoring unknown keys."""
    normalized: Dict[str, Any] = {}
    for key, value in (raw or {}).items():
        field_name = _ALIASES.get(str(key).strip().lower())
        if field_name and field_name not in normalized:
            normalized[field_name] = value
    return normalized


def validate_timings(
    raw: Optional[Mapping[str, Any]], *, source: str = "render"
) -> TimingSignals:
    """Build a TimingSignals from raw readings, capping and flagging bad values."""
    values = normalize_raw_timings(raw)
    flags: List[MetricFlag] = []
    accepted: Dict[str, Optional[float]] = {}

    for metric in CEILINGS:
        value = _coerce(values.get(metric))
        if value is None:
            if values.get(metric) is not None:
                flags.append(
                    MetricFlag(metric, None, None, f"unparseable value {values[metric]!r}")
                )
            accepted[metric] = None
            continue
        try:
            accepted[metric] = _check_range(metric, value)
        except MetricOutOfRange as exc:
            flags.append(MetricFlag(exc.metric, exc.raw, exc.accepted, exc.reason))
            accepted[metric] = exc.accepted

    # Each metric is checked against the latest earlier metric that is present,
    # so a missing first_paint still orders ttfb against the LCP.
    floor_metric: Optional[str] = None
    for metric in _ORDERED:
        if floor_metric is not None:
            try:
                accepted[metric] = _check_order(
                    metric, accepted[metric], floor_metric, accepted[floor_metric]
                )
            except MetricOutOfRange as exc:
                flags.append(MetricFlag(exc.metric, exc.raw, exc.accepted, exc.reason))
                accepted[metric] = exc.accepted
        if accepted[metric] is not None:
            floor_metric = metric

    if flags:
        LOGGER.debug(
            "Adjusted %d %s timing value(s): %s",
            len(flags),
            source,
            ", ".join(flag.metric for flag in flags),
        )

    return TimingSignals(
        ttfb=_round(accepted["ttfb"]),
        first_paint=_round(accepted["first_paint"]),
        largest_contentful_paint=_round(accepted["largest_contentful_paint"]),
        layout_shift=_round(accepted["layout_shift"], digits=3),
        total_blocking_time=_round(accepted["total_blocking_time"]),
        source=source,
        flags=flags,
    )


def _round(value: Optional[float], digits: int = 1) -> Optional[float]:
    if value is None:
        return None
    return round(value, digits)

"""Tests for siteaudit.timing module."""

from __future__ import annotations

import math

import pytest

from siteaudit.timing import CEILINGS, normalize_raw_timings, validate_timings


class TestNormalizeRawTimings:
    def test_aliases(self):
        raw = {"TTFB": 120, "fcp": 800, "largest-contentful-paint": 1500, "cls": 0.1}
        assert normalize_raw_timings(raw) == {
            "ttfb": 120,
            "first_paint": 800,
            "largest_contentful_paint": 1500,
            "layout_shift": 0.1,
        }

    def test_unknown_keys_ignored(self):
        assert normalize_raw_timings({"dom_nodes": 900}) == {}

    def test_none(self):
        assert normalize_raw_timings(None) == {}


class TestValidateTimings:
    def test_clean_values_pass_through(self):
        signals = validate_timings(
            {"ttfb": 200, "fcp": 800, "lcp": 1500, "cls": 0.05, "tbt": 120}
        )
        assert signals.ttfb == 200.0
        assert signals.first_paint == 800.0
        assert signals.largest_contentful_paint == 1500.0
        assert signals.layout_shift == 0.05
        assert signals.total_blocking_time == 120.0
        assert signals.flags == []
        assert signals.has_data

    def test_empty_has_no_data(self):
        signals = validate_timings({})
        assert not signals.has_data
        assert signals.flags == []

    def test_value_above_ceiling_is_capped(self):
        signals = validate_timings({"lcp": 50_000})
        assert signals.largest_contentful_paint == CEILINGS["largest_contentful_paint"][1]
        [flag] = signals.flags
        assert flag.metric == "largest_contentful_paint"
        assert flag.raw == 50_000
        assert flag.accepted == 15_000.0
        assert "ceiling" in flag.reason

    def test_negative_paint_is_dropped(self):
        signals = validate_timings({"ttfb": -5})
        assert signals.ttfb is None
        assert signals.flags[0].reason == "negative value"

    def test_negative_layout_shift_floors_at_zero(self):
        signals = validate_timings({"cls": -0.2})
        assert signals.layout_shift == 0.0

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_dropped(self, bad):
        signals = validate_timings({"fcp": bad})
        assert signals.first_paint is None
        assert signals.flags[0].reason == "not a finite number"

    def test_unparseable_value_flagged(self):
        signals = validate_timings({"ttfb": "fast"})
        assert signals.ttfb is None
        assert signals.flags[0].raw is None
        assert "unparseable" in signals.flags[0].reason

    def test_paint_order_enforced(self):
        signals = validate_timings({"ttfb": 500, "fcp": 300, "lcp": 200})
        assert signals.ttfb == 500.0
        assert signals.first_paint == 500.0
        assert signals.largest_contentful_paint == 500.0
        assert [flag.metric for flag in signals.flags] == [
            "first_paint",
            "largest_contentful_paint",
        ]

    def test_lcp_ordered_against_ttfb_without_first_paint(self):
        signals = validate_timings({"ttfb": 900, "lcp": 500})
        assert signals.first_paint is None
        assert signals.ttfb <= signals.largest_contentful_paint
        assert signals.largest_contentful_paint == 900.0
        assert signals.flags[0].metric == "largest_contentful_paint"
        assert signals.flags[0].reason == "earlier than ttfb"

    def test_ordering_holds_for_any_present_subset(self):
        for raw in (
            {"ttfb": 700, "fcp": 100, "lcp": 50},
            {"fcp": 400, "lcp": 100},
            {"ttfb": 300, "lcp": 900},
            {"ttfb": 20000, "lcp": 1000},
        ):
            signals = validate_timings(raw)
            present = [
                value
                for value in (signals.ttfb, signals.first_paint, signals.largest_contentful_paint)
                if value is not None
            ]
            assert present == sorted(present)

    def test_every_value_within_ceiling(self):
        raw = {"ttfb": 1e9, "fcp": 1e9, "lcp": 1e9, "cls": 1e9, "tbt": 1e9}
        signals = validate_timings(raw)
        for metric, (ceiling, _capped) in CEILINGS.items():
            value = getattr(signals, metric)
            assert value is not None and 0 <= value <= ceiling

    def test_source_recorded(self):
        signals = validate_timings({"ttfb": 10}, source="pagespeed")
        assert signals.source == "pagespeed"
        assert signals.to_dict()["source"] == "pagespeed"

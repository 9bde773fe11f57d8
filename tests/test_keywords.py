"""Tests for siteaudit.keywords module."""

from __future__ import annotations

import pytest

from siteaudit.document import CanonicalURL, PageRecord
from siteaudit.keywords import (
    build_site_keywords,
    clean_keyword,
    deduplicate_keywords,
    diff_keywords,
    extract_phrases,
    has_similar,
    is_valid_keyword,
    keyword_similarity,
    page_keywords,
)


def _page(path: str, keywords) -> PageRecord:
    url = CanonicalURL("https", "example.com", path)
    return PageRecord(
        url=url,
        request_url=str(url),
        final_url=str(url),
        status_code=200,
        keywords=list(keywords),
    )


class TestCleanKeyword:
    def test_entities_and_punctuation(self):
        assert clean_keyword("  Oak &amp; Tables!! ") == "oak tables"

    def test_hyphens(self):
        assert clean_keyword("Hand - Made") == "hand-made"


class TestIsValidKeyword:
    @pytest.mark.parametrize("keyword", ["oak tables", "kitchen table sets", "hand-made"])
    def test_valid(self, keyword):
        assert is_valid_keyword(keyword)

    @pytest.mark.parametrize(
        "keyword",
        [
            "oak",
            "a b",
            "the and",
            "click here now",
            "oak 12345",
            "oak oak oak",
            "loading oak tables",
            "supercalifragilistic oak",
        ],
    )
    def test_invalid(self, keyword):
        assert not is_valid_keyword(keyword)


class TestExtractPhrases:
    def test_phrases_do_not_span_separators(self):
        phrases = extract_phrases("Handmade oak furniture | Kitchen tables")
        assert phrases == [
            "handmade oak",
            "oak furniture",
            "handmade oak furniture",
            "kitchen tables",
        ]

    def test_empty(self):
        assert extract_phrases("") == []


class TestSimilarity:
    def test_jaccard(self):
        assert keyword_similarity("oak dining tables", "oak tables") == pytest.approx(2 / 3)
        assert keyword_similarity("oak chairs", "kitchen tables") == 0.0

    def test_has_similar_threshold(self):
        assert has_similar("oak tables", ["oak dining tables"])
        assert not has_similar("oak tables", ["pine dining chairs"])

    def test_deduplicate_keeps_first_of_group(self):
        assert deduplicate_keywords(["oak dining tables", "oak tables", "walnut chairs"]) == [
            "oak dining tables",
            "walnut chairs",
        ]


class TestPageKeywords:
    def test_weighted_by_source(self):
        keywords = page_keywords(
            [("title", "Oak Dining Tables"), ("paragraph", "Walnut chairs for sale")]
        )
        assert keywords == ["dining tables", "oak dining", "chairs sale", "walnut chairs"]

    def test_limit(self):
        assert len(page_keywords([("title", "Oak Dining Tables")], limit=1)) == 1


class TestBuildSiteKeywords:
    def test_ranked_across_pages(self):
        pages = [
            _page("/", ["oak tables", "walnut chairs"]),
            _page("/shop", ["oak tables"]),
        ]
        assert build_site_keywords(pages) == ["oak tables", "walnut chairs"]

    def test_page_order_irrelevant(self):
        pages = [
            _page("/", ["oak tables", "walnut chairs", "pine beds"]),
            _page("/shop", ["pine beds", "oak tables"]),
            _page("/blog", ["walnut chairs"]),
        ]
        assert build_site_keywords(pages) == build_site_keywords(list(reversed(pages)))

    def test_no_pages(self):
        assert build_site_keywords([]) == []


class TestDiffKeywords:
    def test_split(self):
        shared, gaps, target_only = diff_keywords(
            ["oak tables", "walnut chairs"], ["oak dining tables", "pine beds"]
        )
        assert shared == ["oak dining tables"]
        assert gaps == ["pine beds"]
        assert target_only == ["walnut chairs"]

    def test_empty_competitor(self):
        shared, gaps, target_only = diff_keywords(["oak tables"], [])
        assert shared == [] and gaps == []
        assert target_only == ["oak tables"]

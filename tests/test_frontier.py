"""Tests for siteaudit.frontier module."""

from __future__ import annotations

import asyncio

import pytest

from siteaudit.directives import parse_robots
from siteaudit.document import CanonicalURL
from siteaudit.errors import MalformedURL
from siteaudit.frontier import CrawlFrontier, fallback_candidates, should_skip
from siteaudit.urls import CrawlContext

ROOT = "https://example.com/"


def _frontier(**kwargs) -> CrawlFrontier:
    kwargs.setdefault("max_depth", 3)
    kwargs.setdefault("max_pages", 50)
    return CrawlFrontier(CrawlContext.from_url(ROOT), **kwargs)


class TestShouldSkip:
    @pytest.mark.parametrize(
        "path, query",
        [
            ("/wp-admin/options.php", ""),
            ("/files/brochure.pdf", ""),
            ("/blog/feed", ""),
            ("/sitemap.xml", ""),
            ("/post", "replytocom=12"),
        ],
    )
    def test_skipped(self, path, query):
        assert should_skip(CanonicalURL("https", "example.com", path, query))

    def test_content_page(self):
        assert not should_skip(CanonicalURL("https", "example.com", "/about", "page=2"))


class TestFallbackCandidates:
    def test_sitemap_urls_first(self):
        context = CrawlContext.from_url(ROOT)
        assert fallback_candidates(context, ["https://example.com/shop"]) == [
            "https://example.com/shop",
            "https://example.com/index.html",
            "https://example.com/home",
            "https://example.com/index.php",
        ]


class TestAdmission:
    @pytest.mark.asyncio
    async def test_seed_bypasses_robots_and_filters(self):
        frontier = _frontier(robots=parse_robots("User-agent: *\nDisallow: /"))
        canonical = await frontier.seed("https://example.com/wp-admin/")
        assert str(canonical) == "https://example.com/wp-admin"
        entry = await frontier.get()
        assert entry.url == canonical
        assert entry.depth == 0

    @pytest.mark.asyncio
    async def test_seed_rejects_malformed(self):
        frontier = _frontier()
        with pytest.raises(MalformedURL):
            await frontier.seed("example.com")

    @pytest.mark.asyncio
    async def test_equivalent_urls_enqueued_once(self):
        frontier = _frontier()
        await frontier.seed(ROOT)
        assert await frontier.add("https://example.com/about", 1)
        assert not await frontier.add("https://www.example.com/about/", 1)
        assert not await frontier.add("http://example.com/about#team", 1)
        assert not await frontier.add("https://example.com", 1)
        assert frontier.pending == 2

    @pytest.mark.asyncio
    async def test_rejections(self):
        frontier = _frontier(
            max_depth=1,
            robots=parse_robots("User-agent: *\nDisallow: /private"),
        )
        assert not await frontier.add("https://other.org/page", 1)
        assert not await frontier.add("https://example.com/deep", 2)
        assert not await frontier.add("https://example.com/file.pdf", 1)
        assert not await frontier.add("https://example.com/private/report", 1)
        assert not await frontier.add("ftp://example.com/x", 1)

        assert frontier.skipped == ["https://example.com/file.pdf"]
        assert frontier.disallowed == ["https://example.com/private/report"]
        assert frontier.malformed == ["ftp://example.com/x"]
        assert frontier.pending == 0

    @pytest.mark.asyncio
    async def test_page_limit(self):
        frontier = _frontier(max_pages=3)
        await frontier.seed(ROOT)
        added = await frontier.add_many(
            [f"https://example.com/p{i}" for i in range(5)], depth=1
        )
        assert added == 2

        entries = []
        while True:
            entry = await frontier.get()
            if entry is None:
                break
            entries.append(entry)
            await frontier.done(entry)
        assert len(entries) == 3
        assert frontier.dispatched == 3


class TestDispatch:
    @pytest.mark.asyncio
    async def test_fallbacks_dispatch_first_and_bypass_limit(self):
        frontier = _frontier(max_pages=2)
        await frontier.seed(ROOT)
        await frontier.add("https://example.com/about", 1)

        root = await frontier.get()
        added = await frontier.add_fallbacks(
            [
                "https://other.org/index.html",
                "https://blog.example.com/",
                "https://example.com/index.html",
                "https://example.com/home",
                "https://example.com/index.php",
            ]
        )
        assert added == 2
        await frontier.done(root)

        order = []
        while True:
            entry = await frontier.get()
            if entry is None:
                break
            order.append((str(entry.url), entry.fallback))
            await frontier.done(entry)

        assert order == [
            ("https://example.com/index.html", True),
            ("https://example.com/home", True),
            ("https://example.com/about", False),
        ]
        assert frontier.fallbacks == ["https://example.com/index.html", "https://example.com/home"]
        assert frontier.dispatched == 2

    @pytest.mark.asyncio
    async def test_concurrent_workers_never_duplicate(self):
        frontier = _frontier(max_pages=20)
        pages = [f"https://example.com/p{i}" for i in range(10)]
        dispatched = []

        async def worker():
            while True:
                entry = await frontier.get()
                if entry is None:
                    return
                dispatched.append(str(entry.url))
                await asyncio.sleep(0)
                await frontier.add_many(pages + [ROOT], entry.depth + 1)
                await frontier.done(entry)

        await frontier.seed(ROOT)
        await asyncio.gather(*(worker() for _ in range(5)))

        assert len(dispatched) == len(set(dispatched)) == 11
        assert sorted(dispatched) == sorted(pages + [ROOT])
        assert frontier.in_flight == 0

    @pytest.mark.asyncio
    async def test_get_returns_none_when_idle(self):
        frontier = _frontier()
        assert await frontier.get() is None

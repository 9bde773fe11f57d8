"""End-to-end tests for siteaudit.audit with a scripted render driver."""

from __future__ import annotations

import json

import httpx
import pytest

from siteaudit.audit import run_audit_async
from siteaudit.config import AuditConfig, get_tier
from siteaudit.document import CanonicalURL, IssueType, PageRecord
from siteaudit.errors import CompetitorUnavailable
from siteaudit.site import SiteCrawlOptions

ROOT = "https://example.com/"

PARAGRAPH = (
    "Our workshop builds solid oak dining tables by hand. Every table is finished "
    "with natural oils. We deliver across the region within two weeks. "
)


def _shop(make_html, count: int):
    """A root page linking ``count`` product pages."""
    links = [f"/products/table-{index:02d}" for index in range(count)]
    pages = {
        ROOT: make_html(
            description="Handmade oak dining tables and walnut chairs, built to order in our workshop.",
            paragraphs=[PARAGRAPH * 3],
            links=links,
        )
    }
    for index, link in enumerate(links):
        pages[f"https://example.com{link}"] = make_html(
            title=f"Oak Dining Table Model {index:02d} | Oakline Studio Workshop",
            h1=[f"Oak dining table {index:02d}"],
            paragraphs=[PARAGRAPH * 2],
        )
    return pages


def _config(**kwargs) -> AuditConfig:
    kwargs.setdefault("tier", get_tier("standard"))
    kwargs.setdefault("discover_competitors", False)
    return AuditConfig(**kwargs)


class TestSuccessfulAudit:
    @pytest.mark.asyncio
    async def test_standard_tier_crawl(self, fake_driver, make_client, make_html):
        driver = fake_driver(_shop(make_html, 25))
        async with make_client() as client:
            result = await run_audit_async(ROOT, config=_config(), driver=driver, client=client)

        assert result.status == "success"
        assert result.tier == "standard"
        assert len(result.outcome.valid_pages) == 20
        assert result.outcome.error_pages == []
        assert result.scores is not None
        for value in (
            result.scores.overall,
            result.scores.technical,
            result.scores.on_page,
            result.scores.content,
            result.scores.accessibility,
            result.scores.performance,
        ):
            assert 0 <= value <= 100
        assert result.competitors is None
        assert result.performance is None
        assert result.generated_at
        assert all(issue.issue_type != IssueType.broken_pages for issue in result.issues)

    @pytest.mark.asyncio
    async def test_issues_are_consolidated(self, fake_driver, make_client, make_html):
        pages = {
            ROOT: make_html(title="Home", links=["/a", "/b"]),
            "https://example.com/a": make_html(title="Home"),
            "https://example.com/b": make_html(title="Home"),
        }
        async with make_client() as client:
            result = await run_audit_async(
                ROOT, config=_config(), driver=fake_driver(pages), client=client
            )

        keys = [(issue.category, issue.issue_type) for issue in result.issues]
        assert len(keys) == len(set(keys))
        short = next(issue for issue in result.issues if issue.issue_type == IssueType.title_too_short)
        assert short.affected_pages == [
            "https://example.com/",
            "https://example.com/a",
            "https://example.com/b",
        ]
        assert any(issue.issue_type == IssueType.title_duplicate for issue in result.issues)

    @pytest.mark.asyncio
    async def test_response_headers_checked(self, fake_driver, fake_page, make_client, make_html):
        pages = {
            ROOT: fake_page(
                html=make_html(links=["/a"]),
                headers={"Content-Type": "text/html", "Content-Encoding": "gzip"},
            ),
            "https://example.com/a": make_html(title="About"),
        }
        async with make_client() as client:
            result = await run_audit_async(
                ROOT, config=_config(), driver=fake_driver(pages), client=client
            )

        issues = {issue.issue_type: issue for issue in result.issues}
        # Pages served without headers are not judged on them.
        assert issues[IssueType.hsts_missing].affected_pages == [ROOT]
        assert issues[IssueType.cache_control_missing].affected_pages == [ROOT]
        assert IssueType.compression_missing not in issues
        assert IssueType.https_missing not in issues
        assert ROOT in issues[IssueType.open_graph_missing].affected_pages

    @pytest.mark.asyncio
    async def test_deterministic(self, fake_driver, make_client, make_html):
        async def run():
            async with make_client() as client:
                result = await run_audit_async(
                    ROOT,
                    config=_config(),
                    driver=fake_driver(_shop(make_html, 12)),
                    client=client,
                )
            return json.dumps(result.to_dict(include_timestamp=False), sort_keys=True)

        assert await run() == await run()


class TestFailedAudit:
    @pytest.mark.asyncio
    async def test_root_and_fallbacks_unreachable(self, fake_driver, make_client):
        driver = fake_driver({})
        async with make_client() as client:
            result = await run_audit_async(ROOT, config=_config(), driver=driver, client=client)

        assert result.status == "failed"
        assert result.scores is None
        assert result.outcome.valid_pages == []
        assert result.outcome.reasons == ["HTTP 404"]
        assert [issue.issue_type for issue in result.issues] == [IssueType.broken_pages]
        assert result.issues[0].affected_pages == [
            "https://example.com/",
            "https://example.com/home",
            "https://example.com/index.html",
        ]
        assert result.competitors is None

    @pytest.mark.asyncio
    async def test_malformed_seed(self, fake_driver):
        result = await run_audit_async("example.com/page", config=_config(), driver=fake_driver({}))
        assert result.status == "failed"
        assert result.scores is None
        assert result.issues == []
        assert result.outcome.reasons

    @pytest.mark.asyncio
    async def test_failed_result_serializes(self, fake_driver, make_client):
        async with make_client() as client:
            result = await run_audit_async(
                ROOT, config=_config(), driver=fake_driver({}), client=client
            )
        data = result.to_dict()
        assert data["status"] == "failed"
        assert data["scores"] is None
        assert "generated_at" in data


class TestPartialAudit:
    @pytest.mark.asyncio
    async def test_mostly_broken_site_is_partial(self, fake_driver, make_client, make_html):
        driver = fake_driver({ROOT: make_html(links=["/gone-1", "/gone-2", "/gone-3"])})
        async with make_client() as client:
            result = await run_audit_async(ROOT, config=_config(), driver=driver, client=client)

        assert result.status == "partial"
        assert result.outcome.reasons == ["3 of 4 pages returned errors"]
        assert result.scores is not None
        broken = [issue for issue in result.issues if issue.issue_type == IssueType.broken_pages]
        assert len(broken) == 1
        assert broken[0].affected_pages == [
            "https://example.com/gone-1",
            "https://example.com/gone-2",
            "https://example.com/gone-3",
        ]

    @pytest.mark.asyncio
    async def test_deadline_gives_partial_with_root(
        self, fake_driver, fake_page, make_client, make_html
    ):
        pages = {
            ROOT: make_html(links=["/slow"]),
            "https://example.com/slow": fake_page(html=make_html(title="Slow"), delays=[5.0]),
        }
        driver = fake_driver(pages)
        async with make_client() as client:
            result = await run_audit_async(
                ROOT,
                config=_config(),
                driver=driver,
                client=client,
                options=SiteCrawlOptions(deadline=0.5),
            )

        assert result.status == "partial"
        assert result.outcome.reasons == ["run deadline reached before the crawl finished"]
        assert [str(page.url) for page in result.outcome.valid_pages] == [ROOT]
        assert result.scores is not None
        assert driver.shutdowns == 1

    @pytest.mark.asyncio
    async def test_offsite_redirect_not_scored(self, fake_driver, fake_page, make_client, make_html):
        pages = _shop(make_html, 2)
        pages[ROOT] = make_html(links=["/products/table-00", "/products/table-01", "/go"])
        pages["https://example.com/go"] = fake_page(
            html=make_html(title="Partner"), final_url="https://partner.org/landing"
        )
        driver = fake_driver(pages)
        async with make_client() as client:
            result = await run_audit_async(ROOT, config=_config(), driver=driver, client=client)

        valid = [str(page.url) for page in result.outcome.valid_pages]
        assert "https://partner.org/landing" not in valid
        assert len(valid) == 3
        assert result.facts.offsite_redirects == ["https://example.com/go"]


class TestCompetitorsInAudit:
    @pytest.mark.asyncio
    async def test_supplied_competitors(self, fake_driver, make_client, make_html):
        crawled = []

        async def crawler(url: str):
            crawled.append(url)
            if url == "https://down.example.org/":
                raise CompetitorUnavailable(url, "unreachable")
            page_url = CanonicalURL("https", "rival.com", "/")
            return [
                PageRecord(
                    url=page_url,
                    request_url=str(page_url),
                    final_url=str(page_url),
                    status_code=200,
                    keywords=["oak dining tables", "garden benches"],
                )
            ]

        config = _config(competitors=["https://rival.com/", "https://down.example.org/"])
        async with make_client() as client:
            result = await run_audit_async(
                ROOT,
                config=config,
                driver=fake_driver(_shop(make_html, 3)),
                client=client,
                competitor_crawler=crawler,
            )

        assert crawled == ["https://rival.com/", "https://down.example.org/"]
        assert result.status == "success"
        report = result.competitors
        assert report.status == "available"
        assert report.source == "supplied"
        assert [diff.status for diff in report.competitors] == ["available", "unavailable"]
        assert "garden benches" in report.keyword_gaps

    @pytest.mark.asyncio
    async def test_competitor_failures_never_fail_the_run(self, fake_driver, make_client, make_html):
        async def crawler(url: str):
            raise CompetitorUnavailable(url, "unreachable")

        config = _config(competitors=["https://rival.com/"])
        async with make_client() as client:
            result = await run_audit_async(
                ROOT,
                config=config,
                driver=fake_driver(_shop(make_html, 2)),
                client=client,
                competitor_crawler=crawler,
            )
        assert result.status == "success"
        assert result.competitors.status == "unavailable"
        assert result.scores is not None


class TestPerformanceInAudit:
    @staticmethod
    def _pagespeed_client(status: int, payload=None):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if payload is None:
                return httpx.Response(status)
            return httpx.Response(status, json=payload)

        return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests

    @pytest.mark.asyncio
    async def test_pagespeed_for_primary_url(self, fake_driver, make_client, make_html):
        payload = {
            "lighthouseResult": {
                "categories": {"performance": {"score": 0.42}},
                "audits": {
                    "largest-contentful-paint": {"numericValue": 4800.0},
                    "first-contentful-paint": {"numericValue": 2100.0},
                },
            }
        }
        psi_client, requests = self._pagespeed_client(200, payload)
        async with make_client() as client, psi_client:
            result = await run_audit_async(
                ROOT,
                config=_config(pagespeed=True),
                driver=fake_driver(_shop(make_html, 2)),
                client=client,
                pagespeed_client=psi_client,
            )

        assert len(requests) == 1
        assert requests[0].url.params["url"] == ROOT
        assert requests[0].url.params["strategy"] == "mobile"
        assert result.performance.status == "available"
        assert result.performance.score == 42
        assert result.performance.timing.largest_contentful_paint == 4800.0

    @pytest.mark.asyncio
    async def test_pagespeed_failure_is_reported(self, fake_driver, make_client, make_html):
        psi_client, _ = self._pagespeed_client(403)
        async with make_client() as client, psi_client:
            result = await run_audit_async(
                ROOT,
                config=_config(pagespeed=True),
                driver=fake_driver(_shop(make_html, 2)),
                client=client,
                pagespeed_client=psi_client,
            )
        assert result.status == "success"
        assert result.performance.status == "unavailable"
        assert "403" in result.performance.error
        assert result.scores is not None

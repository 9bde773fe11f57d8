"""Tests for siteaudit.urls module."""

from __future__ import annotations

import httpx
import pytest

from siteaudit.document import CanonicalURL
from siteaudit.errors import MalformedURL
from siteaudit.urls import (
    CrawlContext,
    _normalize_host,
    _registrable_domain,
    build_crawl_context_async,
    canonicalize,
    is_same_site,
    parse_url,
    resolve_link,
    resolve_redirects_async,
)


class TestNormalizeHost:
    def test_basic(self):
        assert _normalize_host("Example.COM") == "example.com"

    def test_with_port(self):
        assert _normalize_host("Example.COM:8080") == "example.com"

    def test_trailing_dot(self):
        assert _normalize_host("example.com.") == "example.com"

    def test_none(self):
        assert _normalize_host(None) == ""


class TestRegistrableDomain:
    def test_subdomain(self):
        assert _registrable_domain("www.example.com") == "example.com"

    def test_multi_part_suffix(self):
        assert _registrable_domain("shop.example.co.uk") == "example.co.uk"

    def test_empty(self):
        assert _registrable_domain("") is None


class TestParseUrl:
    @pytest.mark.parametrize(
        "raw",
        ["", "   ", "example.com/page", "ftp://example.com/", "mailto:a@b.com", "http://", "http://exa mple.com/"],
    )
    def test_rejects(self, raw):
        with pytest.raises(MalformedURL):
            parse_url(raw)

    def test_invalid_port(self):
        with pytest.raises(MalformedURL) as excinfo:
            parse_url("http://example.com:99999/")
        assert excinfo.value.reason == "invalid port"

    def test_accepts_http_and_https(self):
        assert parse_url("HTTP://Example.com/a").hostname == "example.com"
        assert parse_url("https://example.com").scheme == "https"


class TestCanonicalize:
    def test_equivalent_forms_collapse(self):
        context = CrawlContext.from_url("https://example.com/")
        variants = [
            "https://example.com/about",
            "https://example.com/about/",
            "https://EXAMPLE.com/about#team",
            "http://example.com/about",
            "https://www.example.com/about",
            "https://example.com:443/about",
            "https://example.com//about",
        ]
        canonical = {canonicalize(url, context) for url in variants}
        assert canonical == {CanonicalURL("https", "example.com", "/about")}

    def test_root_keeps_slash(self):
        assert str(canonicalize("https://example.com")) == "https://example.com/"

    def test_query_sorted(self):
        a = canonicalize("https://example.com/s?b=2&a=1")
        b = canonicalize("https://example.com/s?a=1&b=2")
        assert a == b
        assert a.query == "a=1&b=2"

    def test_non_default_port_kept(self):
        assert canonicalize("http://example.com:8080/x").host == "example.com:8080"

    def test_external_forms_collapse(self):
        context = CrawlContext.from_url("https://example.com/")
        variants = [
            "http://other.com/x/",
            "https://www.other.com/x",
            "HTTP://WWW.Other.com:80/x#top",
        ]
        canonical = {canonicalize(url, context) for url in variants}
        assert canonical == {CanonicalURL("https", "other.com", "/x")}

    def test_forms_collapse_without_context(self):
        assert canonicalize("http://www.other.com/x") == canonicalize("https://other.com/x/")

    def test_external_subdomain_kept(self):
        context = CrawlContext.from_url("https://example.com/")
        assert canonicalize("http://blog.other.com/a", context).host == "blog.other.com"

    def test_external_non_default_port_keeps_scheme(self):
        context = CrawlContext.from_url("https://example.com/")
        canonical = canonicalize("http://www.other.com:8080/a", context)
        assert canonical.scheme == "http"
        assert canonical.host == "www.other.com:8080"

    def test_recorded_redirect_is_followed(self):
        context = CrawlContext.from_url("https://example.com/")
        context.record_redirect("https://example.com/old", "https://example.com/new")
        assert canonicalize("https://example.com/old/", context) == canonicalize(
            "https://example.com/new", context
        )

    def test_redirect_cycle_ignored(self):
        context = CrawlContext.from_url("https://example.com/")
        context.record_redirect("https://example.com/a", "https://example.com/b")
        context.record_redirect("https://example.com/b", "https://example.com/a")
        assert str(canonicalize("https://example.com/b", context)) == "https://example.com/b"

    def test_canonical_url_is_ordered_and_hashable(self):
        urls = {canonicalize("https://example.com/b"), canonicalize("https://example.com/a")}
        assert [str(u) for u in sorted(urls)] == ["https://example.com/a", "https://example.com/b"]


class TestSameSite:
    def test_www_irrelevant(self):
        assert is_same_site("https://www.example.com/", "http://example.com/x")

    def test_subdomain_same_site(self):
        context = CrawlContext.from_url("https://example.com/")
        assert context.is_internal("https://blog.example.com/post")

    def test_other_domain(self):
        assert not is_same_site("https://example.com/", "https://example.org/")


class TestResolveLink:
    def test_relative(self):
        assert resolve_link("../b", "https://example.com/a/c") == "https://example.com/b"

    def test_fragment_stripped(self):
        assert resolve_link("/x#top", "https://example.com/") == "https://example.com/x"

    @pytest.mark.parametrize("href", ["", "#top", "mailto:a@b.com", "tel:123", "javascript:void(0)"])
    def test_non_navigational(self, href):
        assert resolve_link(href, "https://example.com/") is None


class TestResolveRedirects:
    @pytest.mark.asyncio
    async def test_follows_hops(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "example.com":
                return httpx.Response(301, headers={"location": "https://www.example.com/"})
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            chain = await resolve_redirects_async("http://example.com/", client)
        assert chain.final_url == "https://www.example.com/"
        assert chain.hops == ["https://www.example.com/"]

    @pytest.mark.asyncio
    async def test_loop_falls_back_to_original(self):
        def handler(request: httpx.Request) -> httpx.Response:
            target = "/b" if request.url.path == "/a" else "/a"
            return httpx.Response(302, headers={"location": target})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            chain = await resolve_redirects_async("https://example.com/a", client)
        assert chain.loop_detected
        assert chain.final_url == "https://example.com/a"

    @pytest.mark.asyncio
    async def test_network_error_falls_back(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("dns failure", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            chain = await resolve_redirects_async("https://example.com/", client)
        assert chain.final_url == "https://example.com/"
        assert chain.error

    @pytest.mark.asyncio
    async def test_context_uses_redirect_target(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "example.com":
                return httpx.Response(301, headers={"location": "https://www.example.com/"})
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            context = await build_crawl_context_async("http://example.com/", client)
        assert context.preferred_scheme == "https"
        assert context.preferred_host == "www.example.com"
        assert str(canonicalize("http://example.com/about", context)) == "https://www.example.com/about"

    @pytest.mark.asyncio
    async def test_context_rejects_malformed_seed(self):
        with pytest.raises(MalformedURL):
            await build_crawl_context_async("not a url")

"""Global pytest hooks for strict test-accounting guardrails, plus shared fakes."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
import pytest

from siteaudit.render import InitialFetch, NavigationInfo, RenderDriver


@dataclass
class _TestAccounting:
    deselected: int = 0
    skipped: int = 0
    xfailed: int = 0
    xpassed: int = 0


_ACCOUNTING = _TestAccounting()


def pytest_deselected(items):  # pragma: no cover - pytest hook
    _ACCOUNTING.deselected += len(items)


def pytest_runtest_logreport(report):  # pragma: no cover - pytest hook
    if report.when not in {"setup", "call"}:
        return

    is_xfail = bool(getattr(report, "wasxfail", False))
    if is_xfail:
        if report.outcome == "skipped":
            _ACCOUNTING.xfailed += 1
        elif report.outcome == "passed":
            _ACCOUNTING.xpassed += 1
        return

    if report.outcome == "skipped":
        _ACCOUNTING.skipped += 1


def pytest_sessionfinish(session, exitstatus):  # pragma: no cover - pytest hook
    violations = []
    if _ACCOUNTING.deselected:
        violations.append(f"deselected={_ACCOUNTING.deselected}")
    if _ACCOUNTING.skipped:
        violations.append(f"skipped={_ACCOUNTING.skipped}")
    if _ACCOUNTING.xfailed:
        violations.append(f"xfailed={_ACCOUNTING.xfailed}")
    if _ACCOUNTING.xpassed:
        violations.append(f"xpassed={_ACCOUNTING.xpassed}")

    if not violations:
        return

    reporter = session.config.pluginmanager.get_plugin("terminalreporter")
    if reporter:
        reporter.write_sep(
            "=",
            "Strict guard failed: test accounting violations detected "
            f"({', '.join(violations)})",
        )
        reporter.write_line(
            "Hard guard requires zero skipped/deselected/xfail/xpass tests."
        )

    session.exitstatus = 1


# ---------------------------------------------------------------------------
# Scripted render driver
# ---------------------------------------------------------------------------


@dataclass
class FakePage:
    """One scripted page served by FakeDriver."""

    html: str = ""
    status: int = 200
    initial_html: Optional[str] = None
    final_url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    timing: Dict[str, Any] = field(default_factory=dict)
    delays: List[float] = field(default_factory=list)
    navigate_errors: List[BaseException] = field(default_factory=list)


class FakeDriver(RenderDriver):
    """In-memory RenderDriver: no browser, no network.

    Unknown URLs render as 404. ``probe_results`` is consumed one value per
    probe; once empty, probes succeed.
    """

    def __init__(
        self,
        pages: Optional[Dict[str, Any]] = None,
        *,
        probe_results: Iterable[bool] = (),
    ):
        self.pages: Dict[str, FakePage] = {
            url: page if isinstance(page, FakePage) else FakePage(html=page)
            for url, page in (pages or {}).items()
        }
        self.probe_results = deque(probe_results)
        self.opened = 0
        self.closed = 0
        self.shutdowns = 0
        self.probes = 0
        self.navigations: List[str] = []
        self.active = 0
        self.max_active = 0

    async def open(self) -> Dict[str, Any]:
        self.opened += 1
        return {"id": self.opened, "page": None}

    async def close(self, handle: Dict[str, Any]) -> None:
        self.closed += 1

    async def probe(self, handle: Dict[str, Any]) -> bool:
        self.probes += 1
        if self.probe_results:
            return self.probe_results.popleft()
        return True

    async def navigate(self, handle: Dict[str, Any], url: str, timeout: float) -> NavigationInfo:
        self.navigations.append(url)
        page = self.pages.get(url)
        if page is None:
            handle["page"] = FakePage(html="<html><body><p>Not found</p></body></html>", status=404)
            return NavigationInfo(final_url=url, status_code=404)
        if page.navigate_errors:
            raise page.navigate_errors.pop(0)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            delay = page.delays.pop(0) if page.delays else 0.0
            await asyncio.sleep(delay)
        finally:
            self.active -= 1
        handle["page"] = page
        return NavigationInfo(
            final_url=page.final_url or url,
            status_code=page.status,
            headers=dict(page.headers),
        )

    async def content(self, handle: Dict[str, Any]) -> str:
        page = handle.get("page")
        return page.html if page is not None else ""

    async def timing(self, handle: Dict[str, Any]) -> Dict[str, Any]:
        page = handle.get("page")
        return dict(page.timing) if page is not None else {}

    async def fetch_initial(self, url: str, timeout: float) -> InitialFetch:
        page = self.pages.get(url)
        if page is None:
            return InitialFetch(url=url, final_url=url, status_code=404)
        markup = page.initial_html if page.initial_html is not None else page.html
        return InitialFetch(
            url=url,
            final_url=page.final_url or url,
            status_code=page.status,
            markup=markup,
            headers=dict(page.headers),
        )

    async def shutdown(self) -> None:
        self.shutdowns += 1


def build_html(
    *,
    title: Optional[str] = "Handmade Oak Furniture and Kitchen Tables | Oakline Studio",
    description: Optional[str] = None,
    h1: Iterable[str] = ("Handmade oak furniture",),
    paragraphs: Iterable[str] = (),
    links: Iterable[str] = (),
    head_extra: str = "",
    body_extra: str = "",
    viewport: bool = True,
) -> str:
    """A small but complete HTML page."""
    head = []
    if title is not None:
        head.append(f"<title>{title}</title>")
    if description is not None:
        head.append(f'<meta name="description" content="{description}">')
    if viewport:
        head.append('<meta name="viewport" content="width=device-width, initial-scale=1">')
    head.append(head_extra)
    body = [f"<h1>{text}</h1>" for text in h1]
    body.extend(f"<p>{text}</p>" for text in paragraphs)
    body.extend(f'<a href="{href}">{href}</a>' for href in links)
    body.append(body_extra)
    return (
        '<html lang="en"><head>'
        + "".join(head)
        + "</head><body>"
        + "".join(body)
        + "</body></html>"
    )


def _default_handler(request: httpx.Request) -> httpx.Response:
    """Site HTTP surface: every page answers HEAD, robots and sitemap are missing."""
    if request.url.path in ("/robots.txt", "/sitemap.xml"):
        return httpx.Response(404, text="not found")
    return httpx.Response(200, text="")


@pytest.fixture
def fake_driver() -> Callable[..., FakeDriver]:
    return FakeDriver


@pytest.fixture
def fake_page() -> Callable[..., FakePage]:
    return FakePage


@pytest.fixture
def make_html() -> Callable[..., str]:
    return build_html


@pytest.fixture
def make_client() -> Callable[..., httpx.AsyncClient]:
    """Factory for an httpx client backed by MockTransport."""

    def factory(handler: Optional[Callable[[httpx.Request], httpx.Response]] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler or _default_handler))

    return factory

"""Fetching and parsing of robots.txt and sitemap.xml.

Both documents are optional inputs: a missing or unreachable file is
recorded as a site-wide fact and never stops the crawl.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urljoin
from urllib.robotparser import RobotFileParser

import httpx
from lxml import etree

from .config import DEFAULT_USER_AGENT
from .document import DirectivesReport

LOGGER = logging.getLogger(__name__)

MAX_SITEMAP_CANDIDATES = 3
MAX_CHILD_SITEMAPS = 5
MAX_SITEMAP_URLS = 500

_MISSING_STATUSES = frozenset({404, 410})
# An access-restricted robots.txt means the whole site is off limits.
_DENIED_STATUSES = frozenset({401, 403})


@dataclass
class SiteDirectives:
    """Parsed robots rules plus the presence/reachability report."""

    report: DirectivesReport = field(default_factory=DirectivesReport)
    robots: Optional[RobotFileParser] = None
    user_agent: str = DEFAULT_USER_AGENT

    def allows(self, url: str) -> bool:
        if self.robots is None:
            return True
        return self.robots.can_fetch(self.user_agent, url)


def parse_robots(text: str) -> RobotFileParser:
    parser = RobotFileParser()
    parser.parse(text.splitlines())
    return parser


def robots_sitemaps(text: str) -> List[str]:
    """``Sitemap:`` locations declared in a robots.txt body."""
    locations = []
    for line in text.splitlines():
        key, _, value = line.split("#", 1)[0].partition(":")
        if key.strip().lower() == "sitemap" and value.strip():
            locations.append(value.strip())
    return locations


def parse_sitemap(xml_content: str) -> Tuple[List[str], bool]:
    """Return the ``<loc>`` URLs of a sitemap and whether it is a sitemap index."""
    if not xml_content or not xml_content.strip():
        return [], False
    parser = etree.XMLParser(
        ns_clean=True, recover=True, resolve_entities=False, no_network=True
    )
    try:
        root = etree.fromstring(xml_content.encode("utf-8"), parser=parser)
    except etree.XMLSyntaxError as exc:
        LOGGER.debug("Unparseable sitemap: %s", exc)
        return [], False
    if root is None:
        return [], False
    is_index = etree.QName(root).localname.lower() == "sitemapindex"
    locs = root.findall(".//{*}loc")
    return [loc.text.strip() for loc in locs if loc.text and loc.text.strip()], is_index


async def _get(client: httpx.AsyncClient, url: str) -> Optional[httpx.Response]:
    try:
        return await client.get(url, follow_redirects=True)
    except httpx.HTTPError as exc:
        LOGGER.info("Could not fetch %s: %s", url, exc)
        return None


async def _fetch_robots(
    client: httpx.AsyncClient, root_url: str, report: DirectivesReport
) -> Optional[str]:
    response = await _get(client, urljoin(root_url, "/robots.txt"))
    if response is None:
        return None
    report.robots_status = response.status_code
    if response.status_code == 200:
        report.robots_present = True
        report.robots_reachable = True
        return response.text
    if response.status_code in _MISSING_STATUSES:
        report.robots_reachable = True
    return None


async def _fetch_sitemaps(
    client: httpx.AsyncClient,
    candidates: List[str],
    report: DirectivesReport,
) -> None:
    urls: List[str] = []
    for index, location in enumerate(candidates[:MAX_SITEMAP_CANDIDATES]):
        response = await _get(client, location)
        if index == 0:
            report.sitemap_status = response.status_code if response is not None else None
        if response is None:
            continue
        if response.status_code in _MISSING_STATUSES:
            report.sitemap_reachable = True
            continue
        if response.status_code != 200:
            continue

        report.sitemap_reachable = True
        locs, is_index = parse_sitemap(response.text)
        if not locs and not is_index:
            LOGGER.info("Sitemap %s contains no URLs", location)
            continue
        report.sitemap_present = True
        report.sitemap_locations.append(location)
        if not is_index:
            urls.extend(locs)
            continue
        for child in locs[:MAX_CHILD_SITEMAPS]:
            child_response = await _get(client, child)
            if child_response is None or child_response.status_code != 200:
                continue
            child_locs, _ = parse_sitemap(child_response.text)
            urls.extend(child_locs)

    seen = set()
    for url in urls:
        if url not in seen and len(seen) < MAX_SITEMAP_URLS:
            seen.add(url)
            report.sitemap_urls.append(url)


async def fetch_directives_async(
    root_url: str,
    client: Optional[httpx.AsyncClient] = None,
    *,
    user_agent: str = DEFAULT_USER_AGENT,
    timeout: float = 10.0,
) -> SiteDirectives:
    """Fetch robots.txt and the sitemap(s) for the site rooted at ``root_url``."""
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(headers={"User-Agent": user_agent}, timeout=timeout)

    report = DirectivesReport()
    robots: Optional[RobotFileParser] = None
    try:
        robots_text = await _fetch_robots(client, root_url, report)
        candidates: List[str] = []
        if robots_text is not None:
            robots = parse_robots(robots_text)
            candidates = robots_sitemaps(robots_text)
        elif report.robots_status in _DENIED_STATUSES:
            LOGGER.info(
                "robots.txt for %s returned %d; treating as disallow-all",
                root_url,
                report.robots_status,
            )
            robots = RobotFileParser()
            robots.disallow_all = True
        if not candidates:
            candidates = [urljoin(root_url, "/sitemap.xml")]
        await _fetch_sitemaps(client, candidates, report)
    finally:
        if owns_client:
            await client.aclose()

    LOGGER.info(
        "Directives for %s: robots=%s sitemap=%s (%d URLs)",
        root_url,
        "present" if report.robots_present else "missing",
        "present" if report.sitemap_present else "missing",
        len(report.sitemap_urls),
    )
    return SiteDirectives(report=report, robots=robots, user_agent=user_agent)

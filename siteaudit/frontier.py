"""Shared crawl frontier: canonical visited set plus a breadth-first queue.

One :class:`CrawlFrontier` is created per run and handed to every worker.
All state changes happen under a single ``asyncio.Condition``, so a URL is
canonicalized, checked against the visited set and enqueued in one step.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, List, Optional, Set
from urllib.parse import parse_qsl, urljoin
from urllib.robotparser import RobotFileParser

from .config import DEFAULT_USER_AGENT
from .directives import SiteDirectives
from .document import CanonicalURL
from .errors import MalformedURL
from .urls import CrawlContext, canonicalize

LOGGER = logging.getLogger(__name__)

# URL path prefixes to skip (common on WordPress and other CMSes)
_SKIP_PATH_PREFIXES = (
    "/wp-admin",
    "/wp-login",
    "/wp-json",
    "/wp-content",
    "/wp-includes",
)

_SKIP_PATH_SUFFIXES = (
    ".xml",
    ".rss",
    ".atom",
    "xmlrpc.php",
    "/feed",
    "/feeds",
)

_SKIP_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico",
    ".zip", ".tar", ".gz", ".mp4", ".mp3", ".avi", ".mov",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".css", ".js", ".json", ".woff", ".woff2", ".ttf",
)

# Query parameters that indicate non-content pages
_SKIP_QUERY_PARAMS = {"feed", "preview", "replytocom"}

# Tried, after any sitemap URLs, when the root page itself is an error.
FALLBACK_PATHS = ("/index.html", "/home", "/index.php")
MAX_FALLBACKS = 2


@dataclass(slots=True)
class FrontierEntry:
    """A canonical URL waiting to be rendered."""

    url: CanonicalURL
    depth: int
    source: Optional[str] = None
    fallback: bool = False


def should_skip(url: CanonicalURL) -> bool:
    """Return True for URLs that are unlikely to be content pages."""
    path = url.path.lower()
    if any(path.startswith(prefix) for prefix in _SKIP_PATH_PREFIXES):
        return True
    stripped = path.rstrip("/")
    if any(stripped.endswith(suffix) for suffix in _SKIP_PATH_SUFFIXES):
        return True
    if stripped.endswith(_SKIP_EXTENSIONS):
        return True
    params = {key.lower() for key, _ in parse_qsl(url.query, keep_blank_values=True)}
    return bool(params & _SKIP_QUERY_PARAMS)


def fallback_candidates(context: CrawlContext, sitemap_urls: Iterable[str] = ()) -> List[str]:
    """Sitemap URLs first, then the common root paths."""
    candidates = list(sitemap_urls)
    candidates.extend(urljoin(context.root_url, path) for path in FALLBACK_PATHS)
    return candidates


class CrawlFrontier:
    """Bounded breadth-first work queue shared by all crawl workers."""

    def __init__(
        self,
        context: CrawlContext,
        *,
        max_depth: int,
        max_pages: int,
        robots: Optional[object] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.context = context
        self.max_depth = max_depth
        self.max_pages = max_pages
        self.robots = robots
        self.user_agent = user_agent

        self.malformed: List[str] = []
        self.disallowed: List[str] = []
        self.skipped: List[str] = []
        self.fallbacks: List[str] = []

        self._condition = asyncio.Condition()
        self._queue: Deque[FrontierEntry] = deque()
        self._fallbacks: Deque[FrontierEntry] = deque()
        self._seen: Set[CanonicalURL] = set()
        self._enqueued = 0
        self._dispatched = 0
        self._in_flight = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def dispatched(self) -> int:
        return self._dispatched

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def pending(self) -> int:
        return len(self._queue) + len(self._fallbacks)

    @property
    def visited(self) -> List[CanonicalURL]:
        return sorted(self._seen)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _allowed(self, url: CanonicalURL) -> bool:
        if self.robots is None:
            return True
        if isinstance(self.robots, RobotFileParser):
            return self.robots.can_fetch(self.user_agent, str(url))
        if isinstance(self.robots, SiteDirectives):
            return self.robots.allows(str(url))
        raise TypeError(f"Unsupported robots rules: {type(self.robots).__name__}")

    def _admit(self, raw_url: str, depth: int) -> Optional[CanonicalURL]:
        try:
            canonical = canonicalize(raw_url, self.context)
        except MalformedURL as exc:
            LOGGER.warning("Skipping malformed URL %r: %s", raw_url, exc.reason)
            self.malformed.append(str(raw_url))
            return None
        if not self.context.is_internal(canonical):
            return None
        if depth > self.max_depth:
            return None
        if canonical in self._seen:
            return None
        if should_skip(canonical):
            LOGGER.debug("Skipping non-content URL %s", canonical)
            self._seen.add(canonical)
            self.skipped.append(str(canonical))
            return None
        if not self._allowed(canonical):
            LOGGER.debug("Disallowed by robots.txt: %s", canonical)
            self._seen.add(canonical)
            self.disallowed.append(str(canonical))
            return None
        return canonical

    async def seed(self, raw_url: str) -> CanonicalURL:
        """Enqueue the start URL at depth 0, bypassing robots rules and page filters.

        Raises:
            MalformedURL: If the start URL cannot be canonicalized.
        """
        canonical = canonicalize(raw_url, self.context)
        async with self._condition:
            if canonical not in self._seen:
                self._seen.add(canonical)
                self._queue.append(FrontierEntry(canonical, 0))
                self._enqueued += 1
                self._condition.notify()
        return canonical

    async def add(self, raw_url: str, depth: int, source: Optional[str] = None) -> bool:
        """Enqueue ``raw_url`` unless it is malformed, external, too deep,
        filtered, disallowed, already seen or beyond the page limit."""
        async with self._condition:
            if self._enqueued >= self.max_pages:
                return False
            canonical = self._admit(raw_url, depth)
            if canonical is None:
                return False
            self._seen.add(canonical)
            self._queue.append(FrontierEntry(canonical, depth, source))
            self._enqueued += 1
            self._condition.notify()
            return True

    async def add_many(self, raw_urls: Iterable[str], depth: int, source: Optional[str] = None) -> int:
        added = 0
        for raw_url in raw_urls:
            if await self.add(raw_url, depth, source):
                added += 1
        return added

    async def add_fallbacks(self, candidates: Iterable[str], limit: int = MAX_FALLBACKS) -> int:
        """Enqueue up to ``limit`` same-host URLs at depth 0 after a failed root.

        Fallback entries are dispatched ahead of the regular queue and do not
        count against the page limit.
        """
        added = 0
        async with self._condition:
            for candidate in candidates:
                if added >= limit:
                    break
                canonical = self._admit(candidate, 0)
                if canonical is None or canonical.host != self.context.preferred_host:
                    continue
                self._seen.add(canonical)
                self._fallbacks.append(FrontierEntry(canonical, 0, "fallback", fallback=True))
                self.fallbacks.append(str(canonical))
                added += 1
            if added:
                LOGGER.info("Queued %d fallback URL(s) for %s", added, self.context.root_url)
                self._condition.notify_all()
        return added

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def get(self) -> Optional[FrontierEntry]:
        """Wait for the next entry; None once the crawl has nothing left to do."""
        async with self._condition:
            while True:
                if self._fallbacks:
                    entry = self._fallbacks.popleft()
                    self._in_flight += 1
                    return entry
                if self._queue and self._dispatched < self.max_pages:
                    entry = self._queue.popleft()
                    self._dispatched += 1
                    self._in_flight += 1
                    return entry
                if self._in_flight == 0:
                    self._condition.notify_all()
                    return None
                await self._condition.wait()

    async def done(self, entry: FrontierEntry) -> None:
        """Mark ``entry`` as finished and wake waiting workers."""
        async with self._condition:
            self._in_flight = max(0, self._in_flight - 1)
            LOGGER.debug("Finished %s (depth %d)", entry.url, entry.depth)
            self._condition.notify_all()

"""URL canonicalization, redirect resolution and same-site checks."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional, Union
from urllib.parse import SplitResult, parse_qsl, quote, urlencode, urljoin, urlsplit

import httpx
import tldextract

from .document import CanonicalURL
from .errors import MalformedURL

LOGGER = logging.getLogger(__name__)

MAX_REDIRECTS = 5
REDIRECT_TIMEOUT = 5.0

_DEFAULT_PORTS = {"http": 80, "https": 443}
_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"

URLLike = Union[str, CanonicalURL]


def _normalize_host(host: Optional[str]) -> str:
    """Normalize hostname by removing port, trailing dot and lowercasing."""
    if not host:
        return ""
    return host.split(":")[0].rstrip(".").lower()


@lru_cache(maxsize=256)
def _registrable_domain(host: str) -> Optional[str]:
    """Extract the registrable domain from a hostname."""
    if not host:
        return None
    extracted = tldextract.extract(host)
    if not extracted.domain or not extracted.suffix:
        return host
    domain = ".".join(part for part in (extracted.domain, extracted.suffix) if part)
    return domain or host


def _strip_www(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def _host_of(url: URLLike) -> str:
    if isinstance(url, CanonicalURL):
        return _normalize_host(url.host)
    try:
        return _normalize_host(urlsplit(url.strip()).hostname)
    except ValueError:
        return ""


# ---------------------------------------------------------------------------
# Crawl context
# ---------------------------------------------------------------------------


@dataclass
class CrawlContext:
    """Per-run canonicalization state, fixed once redirects are resolved."""

    seed_url: str
    preferred_scheme: str
    preferred_host: str
    redirects: Dict[str, CanonicalURL] = field(default_factory=dict)

    @property
    def registrable_domain(self) -> Optional[str]:
        return _registrable_domain(_normalize_host(self.preferred_host))

    @property
    def root_url(self) -> str:
        return f"{self.preferred_scheme}://{self.preferred_host}/"

    @classmethod
    def from_url(cls, url: str) -> "CrawlContext":
        """Build a context from a URL without any network access."""
        parts = parse_url(url)
        return cls(
            seed_url=url,
            preferred_scheme=parts.scheme.lower(),
            preferred_host=_netloc(parts.scheme.lower(), parts),
        )

    def is_internal(self, url: URLLike) -> bool:
        host = _host_of(url)
        if not host:
            return False
        return _registrable_domain(host) == self.registrable_domain

    def record_redirect(self, request_url: str, final_url: str) -> None:
        """Remember that ``request_url`` resolves to ``final_url`` for this run."""
        try:
            source = _canonicalize_parts(parse_url(request_url), self)
            target = canonicalize(final_url, self)
        except MalformedURL as exc:
            LOGGER.debug("Ignoring redirect %s -> %s: %s", request_url, final_url, exc)
            return
        if source == target or not self.is_internal(target):
            return
        if self.redirects.get(str(target)) == source:
            LOGGER.debug("Ignoring redirect cycle %s <-> %s", source, target)
            return
        self.redirects[str(source)] = target


@dataclass
class RedirectChain:
    """Result of following redirects for one URL."""

    original_url: str
    final_url: str
    hops: List[str] = field(default_factory=list)
    loop_detected: bool = False
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Parsing and canonicalization
# ---------------------------------------------------------------------------


def parse_url(raw: str) -> SplitResult:
    """Split ``raw`` into components, rejecting anything that is not crawlable http(s).

    Raises:
        MalformedURL: If the URL is empty, has no host, uses another scheme
            or carries an invalid port.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedURL(str(raw), "empty URL")
    candidate = raw.strip()
    try:
        parts = urlsplit(candidate)
    except ValueError as exc:
        raise MalformedURL(candidate, str(exc)) from exc

    scheme = parts.scheme.lower()
    if not scheme:
        raise MalformedURL(candidate, "missing scheme")
    if scheme not in _DEFAULT_PORTS:
        raise MalformedURL(candidate, f"unsupported scheme {parts.scheme!r}")
    if not parts.hostname:
        raise MalformedURL(candidate, "missing host")
    if any(char.isspace() for char in parts.netloc):
        raise MalformedURL(candidate, "whitespace in host")
    try:
        parts.port
    except ValueError as exc:
        raise MalformedURL(candidate, "invalid port") from exc
    return parts


def _netloc(scheme: str, parts: SplitResult) -> str:
    host = _normalize_host(parts.hostname)
    port = parts.port
    if port and port != _DEFAULT_PORTS.get(scheme):
        return f"{host}:{port}"
    return host


def _canonicalize_parts(parts: SplitResult, context: Optional[CrawlContext]) -> CanonicalURL:
    scheme = parts.scheme.lower()
    netloc = _netloc(scheme, parts)
    host = _normalize_host(netloc)

    if context is not None and context.is_internal(host):
        preferred = _normalize_host(context.preferred_host)
        if _strip_www(host) == _strip_www(preferred) and netloc == host:
            netloc = context.preferred_host
        scheme = context.preferred_scheme
    elif netloc == host:
        # Other hosts have no preferred form; collapse onto https without www.
        netloc = _strip_www(host)
        scheme = "https"

    path = re.sub(r"/{2,}", "/", parts.path or "/")
    path = quote(path, safe=_PATH_SAFE) or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    query = ""
    if parts.query:
        pairs = sorted(parse_qsl(parts.query, keep_blank_values=True))
        query = urlencode(pairs)

    return CanonicalURL(scheme=scheme, host=netloc, path=path, query=query)


def canonicalize(raw: URLLike, context: Optional[CrawlContext] = None) -> CanonicalURL:
    """Map ``raw`` to its CanonicalURL within ``context``.

    Fragments and default ports are dropped, hosts lowercased, trailing
    slashes stripped (except for the root path) and query parameters sorted.
    Inside a context, ``www.`` variants of the preferred host collapse onto
    it, same-site URLs use the preferred scheme, and recorded redirects are
    followed to their target. Every other host drops ``www.`` and is keyed
    under https unless it carries a non-default port.

    Raises:
        MalformedURL: If ``raw`` is not a crawlable http(s) URL.
    """
    if isinstance(raw, CanonicalURL):
        raw = str(raw)
    canonical = _canonicalize_parts(parse_url(raw), context)
    if context is not None:
        canonical = context.redirects.get(str(canonical), canonical)
    return canonical


def is_same_site(url_a: URLLike, url_b: URLLike) -> bool:
    """True when both URLs share a registrable domain (``www.`` is irrelevant)."""
    host_a = _host_of(url_a)
    host_b = _host_of(url_b)
    if not host_a or not host_b:
        return False
    return _registrable_domain(host_a) == _registrable_domain(host_b)


def resolve_link(href: str, base_url: str) -> Optional[str]:
    """Resolve ``href`` against ``base_url``; None for non-navigational links."""
    href = (href or "").strip()
    if not href or href.startswith("#"):
        return None
    lowered = href.lower()
    if lowered.startswith(("mailto:", "tel:", "javascript:", "data:", "sms:")):
        return None
    try:
        absolute = urljoin(base_url, href)
    except ValueError:
        return None
    return absolute.split("#", 1)[0]


# ---------------------------------------------------------------------------
# Redirect resolution
# ---------------------------------------------------------------------------


async def resolve_redirects_async(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    *,
    max_redirects: int = MAX_REDIRECTS,
    timeout: float = REDIRECT_TIMEOUT,
) -> RedirectChain:
    """Follow up to ``max_redirects`` redirects manually.

    A redirect loop, or any network error, falls back to the original URL.
    """
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout)

    chain = RedirectChain(original_url=url, final_url=url)
    seen = {url}
    current = url
    try:
        for _ in range(max_redirects):
            response = await client.head(current, follow_redirects=False, timeout=timeout)
            if response.status_code in (405, 501):
                response = await client.get(current, follow_redirects=False, timeout=timeout)
            if response.status_code not in _REDIRECT_STATUSES:
                break
            location = response.headers.get("location")
            if not location:
                break
            target = urljoin(current, location)
            if target in seen:
                LOGGER.warning("Redirect loop detected for %s at %s", url, target)
                chain.loop_detected = True
                chain.final_url = url
                return chain
            seen.add(target)
            chain.hops.append(target)
            current = target
        else:
            LOGGER.info("Stopped following redirects for %s after %d hops", url, max_redirects)
        chain.final_url = current
    except httpx.HTTPError as exc:
        LOGGER.warning("Redirect resolution failed for %s: %s", url, exc)
        chain.error = str(exc)
        chain.final_url = url
    finally:
        if owns_client:
            await client.aclose()
    return chain


async def build_crawl_context_async(
    seed_url: str,
    client: Optional[httpx.AsyncClient] = None,
) -> CrawlContext:
    """Resolve the seed's redirects once and fix the run's preferred host and scheme.

    Raises:
        MalformedURL: If the seed URL itself is malformed.
    """
    parse_url(seed_url)
    chain = await resolve_redirects_async(seed_url, client)
    try:
        context = CrawlContext.from_url(chain.final_url)
    except MalformedURL:
        LOGGER.warning("Redirect target %s is malformed; using seed host", chain.final_url)
        context = CrawlContext.from_url(seed_url)
    context.seed_url = seed_url
    if chain.final_url != seed_url:
        context.record_redirect(seed_url, chain.final_url)
    LOGGER.debug(
        "Crawl context for %s: %s://%s",
        seed_url,
        context.preferred_scheme,
        context.preferred_host,
    )
    return context

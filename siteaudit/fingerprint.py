"""Platform fingerprinting from markup, headers and URLs.

Detection is a pure data-driven lookup: :data:`SIGNATURES` maps a platform to
regular expressions over the page markup. :class:`StaticPlatformClassifier`
turns per-page hints into a site-wide :class:`PlatformFingerprint`. Any object
implementing :class:`PlatformClassifier` can replace it, e.g. a client for an
external technology-detection service.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from .document import PageRecord, PlatformFingerprint

SIGNATURES: Dict[str, Tuple[Pattern[str], ...]] = {
    "wix": (
        re.compile(r"static\.wixstatic\.com|wix\.com|wixpress\.com|_wixCIDX", re.I),
    ),
    "wordpress": (
        re.compile(r"/wp-content/|/wp-includes/", re.I),
        re.compile(r'rel=["\']https://api\.w\.org/', re.I),
        re.compile(
            r'<meta[^>]+name=["\']generator["\'][^>]+content=["\']WordPress', re.I
        ),
    ),
    "squarespace": (
        re.compile(r"squarespace-cdn\.com|static1\.squarespace\.com|Squarespace", re.I),
    ),
    "shopify": (
        re.compile(r"cdn\.shopify\.com|myshopify\.com|Shopify\.theme", re.I),
    ),
    "webflow": (
        re.compile(r"assets\.website-files\.com|data-wf-site|Webflow", re.I),
    ),
}

# Hostname suffixes that identify hosted builders without looking at markup.
HOST_SIGNATURES: Dict[str, Tuple[str, ...]] = {
    "wix": (".wixsite.com",),
    "squarespace": (".squarespace.com",),
    "shopify": (".myshopify.com",),
    "webflow": (".webflow.io",),
}

HEADER_SIGNATURES: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "wix": (("x-wix-request-id", ""),),
    "shopify": (("x-shopid", ""), ("x-shopify-stage", "")),
    "wordpress": (("link", "api.w.org"), ("x-powered-by", "wp engine")),
    "squarespace": (("server", "squarespace"),),
}


def detect_platform_hints(
    html: str,
    headers: Optional[Mapping[str, str]] = None,
    url: str = "",
) -> List[str]:
    """Return the platforms whose signatures appear in one page's markup, headers or host."""
    hints = []
    host = url.split("//", 1)[-1].split("/", 1)[0].lower()
    lowered_headers = {str(k).lower(): str(v).lower() for k, v in (headers or {}).items()}

    for platform, patterns in SIGNATURES.items():
        if any(host.endswith(suffix) for suffix in HOST_SIGNATURES.get(platform, ())):
            hints.append(platform)
            continue
        if any(
            name in lowered_headers and needle in lowered_headers[name]
            for name, needle in HEADER_SIGNATURES.get(platform, ())
        ):
            hints.append(platform)
            continue
        if html and any(pattern.search(html) for pattern in patterns):
            hints.append(platform)
    return hints


class PlatformClassifier:
    """Interface for site-wide platform classification."""

    def classify(self, pages: Sequence[PageRecord]) -> PlatformFingerprint:
        raise NotImplementedError


class StaticPlatformClassifier(PlatformClassifier):
    """Majority vote over per-page hints; ``custom`` when pages show no signature."""

    def classify(self, pages: Sequence[PageRecord]) -> PlatformFingerprint:
        if not pages:
            return PlatformFingerprint(name="unknown", confidence=0.0)

        votes: Counter = Counter()
        evidence: Dict[str, List[str]] = {}
        for page in pages:
            for hint in page.platform_hints:
                votes[hint] += 1
                evidence.setdefault(hint, []).append(str(page.url))

        if not votes:
            return PlatformFingerprint(name="custom", confidence=0.5)

        name, count = sorted(votes.items(), key=lambda item: (-item[1], item[0]))[0]
        return PlatformFingerprint(
            name=name,
            confidence=round(count / len(pages), 2),
            evidence=sorted(evidence[name])[:5],
        )

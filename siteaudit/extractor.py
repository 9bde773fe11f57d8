"""Turn a RenderResult into a PageRecord.

Content metrics are always computed on the rendered markup; the initial
(pre-JavaScript) markup is only used for the render delta.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .document import (
    CanonicalURL,
    HeaderSignals,
    ImageRef,
    PageRecord,
    RenderDelta,
    RenderResult,
    SocialTags,
)
from .errors import MalformedURL
from .fingerprint import detect_platform_hints
from .keywords import page_keywords
from .nap import extract_contact_signals
from .readability import analyze_text, tokenize_words
from .schema import analyze_schema
from .timing import validate_timings
from .urls import CrawlContext, canonicalize, is_same_site, resolve_link

LOGGER = logging.getLogger(__name__)

NON_CONTENT_TAGS = ("script", "style", "noscript", "template", "svg")
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
MAX_RENDERING_PERCENTAGE = 10000.0
KEYWORD_PARAGRAPHS = 5

_SUBRESOURCE_ATTRS = (
    ("img", "src"),
    ("script", "src"),
    ("iframe", "src"),
    ("source", "src"),
    ("video", "src"),
    ("audio", "src"),
    ("embed", "src"),
    ("link", "href"),
)


def _collapse(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def _parse(markup: str) -> BeautifulSoup:
    return BeautifulSoup(markup or "", "lxml")


def _meta_content(soup: BeautifulSoup, name: str) -> Optional[str]:
    """Content of the last ``<meta name=...>`` with that name (case-insensitive)."""
    pattern = re.compile(rf"^{re.escape(name)}$", re.IGNORECASE)
    tags = soup.find_all("meta", attrs={"name": pattern})
    if not tags:
        return None
    return _collapse(tags[-1].get("content"))


def _rel_values(tag: Tag) -> List[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [value.lower() for value in rel]


def visible_text(soup: BeautifulSoup) -> str:
    """Whitespace-collapsed text with script/style/template/svg content removed.

    Mutates ``soup``.
    """
    for tag in soup.find_all(NON_CONTENT_TAGS):
        tag.decompose()
    root = soup.body or soup
    return _collapse(root.get_text(" "))


def markup_text(markup: str) -> str:
    return visible_text(_parse(markup))


# ---------------------------------------------------------------------------
# Individual signals
# ---------------------------------------------------------------------------


def extract_title(soup: BeautifulSoup) -> Optional[str]:
    """The last non-empty ``<title>`` outside of inline SVG.

    Client-side frameworks often leave a placeholder title in the template
    and append the hydrated one, so the last title is the one users see.
    """
    titles = [
        _collapse(tag.get_text())
        for tag in soup.find_all("title")
        if tag.find_parent("svg") is None
    ]
    titles = [title for title in titles if title]
    return titles[-1] if titles else None


def extract_canonical(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    links = [tag for tag in soup.find_all("link") if "canonical" in _rel_values(tag)]
    if not links:
        return None
    return resolve_link(links[-1].get("href") or "", base_url)


def extract_headings(soup: BeautifulSoup) -> Dict[str, List[str]]:
    headings: Dict[str, List[str]] = {}
    for level in HEADING_TAGS:
        texts = [_collapse(tag.get_text(" ")) for tag in soup.find_all(level)]
        texts = [text for text in texts if text]
        if texts:
            headings[level] = texts
    return headings


def extract_heading_order(soup: BeautifulSoup) -> List[int]:
    """Levels of the non-empty headings in document order."""
    return [
        int(tag.name[1])
        for tag in soup.find_all(HEADING_TAGS)
        if _collapse(tag.get_text(" "))
    ]


def extract_links(
    soup: BeautifulSoup,
    base_url: str,
    context: Optional[CrawlContext] = None,
) -> Tuple[List[str], List[str]]:
    """Split anchors into (internal, external), deduplicated by canonical form."""
    internal: Dict[CanonicalURL, str] = {}
    external: Dict[CanonicalURL, str] = {}
    for anchor in soup.find_all("a", href=True):
        absolute = resolve_link(anchor["href"], base_url)
        if absolute is None:
            continue
        try:
            canonical = canonicalize(absolute, context)
        except MalformedURL:
            LOGGER.debug("Ignoring malformed link %r on %s", anchor["href"], base_url)
            continue
        internal_link = (
            context.is_internal(canonical) if context is not None else is_same_site(canonical, base_url)
        )
        target = internal if internal_link else external
        target.setdefault(canonical, absolute)
    return (
        [str(url) for url in sorted(internal)],
        [str(url) for url in sorted(external)],
    )


def extract_images(soup: BeautifulSoup, base_url: str) -> List[ImageRef]:
    images = []
    for tag in soup.find_all("img"):
        src = resolve_link(tag.get("src") or tag.get("data-src") or "", base_url) or ""
        alt = tag.get("alt")
        images.append(ImageRef(src=src, alt=alt, has_alt=alt is not None))
    return images


def extract_robots_directives(soup: BeautifulSoup, headers: Dict[str, str]) -> Tuple[bool, bool]:
    """(noindex, nofollow) from robots meta tags and the X-Robots-Tag header."""
    values = []
    for name in ("robots", "googlebot"):
        content = _meta_content(soup, name)
        if content:
            values.append(content.lower())
    for key, value in headers.items():
        if str(key).lower() == "x-robots-tag":
            values.append(str(value).lower())
    directives = {part.strip() for value in values for part in value.split(",")}
    noindex = "noindex" in directives or "none" in directives
    nofollow = "nofollow" in directives or "none" in directives
    return noindex, nofollow


def extract_social_tags(soup: BeautifulSoup, base_url: str) -> SocialTags:
    """Open Graph and Twitter Card properties, plus the favicon.

    Pages without an icon link fall back to the conventional
    ``/favicon.ico`` location.
    """
    social = SocialTags()
    for tag in soup.find_all("meta"):
        key = (tag.get("property") or tag.get("name") or "").strip().lower()
        content = _collapse(tag.get("content"))
        if not content:
            continue
        if key.startswith("og:"):
            social.open_graph.setdefault(key, content)
        elif key.startswith("twitter:"):
            social.twitter.setdefault(key, content)

    for tag in soup.find_all("link", href=True):
        if not {"icon", "apple-touch-icon"} & set(_rel_values(tag)):
            continue
        favicon = resolve_link(tag["href"], base_url)
        if favicon:
            social.favicon = favicon
            social.favicon_declared = True
            break
    else:
        social.favicon = urljoin(base_url, "/favicon.ico")
    return social


def extract_header_signals(headers: Dict[str, Any], page_url: str) -> HeaderSignals:
    lowered = {str(key).lower(): str(value) for key, value in (headers or {}).items()}
    return HeaderSignals(
        captured=bool(lowered),
        https=page_url.lower().startswith("https://"),
        hsts="strict-transport-security" in lowered,
        x_frame_options="x-frame-options" in lowered,
        content_security_policy="content-security-policy" in lowered,
        cache_control=lowered.get("cache-control"),
        content_encoding=lowered.get("content-encoding"),
    )


def find_mixed_content(soup: BeautifulSoup, page_url: str) -> List[str]:
    """``http://`` subresources referenced from an ``https://`` page."""
    if not page_url.lower().startswith("https://"):
        return []
    found = set()
    for tag_name, attr in _SUBRESOURCE_ATTRS:
        for tag in soup.find_all(tag_name):
            if tag_name == "link" and not {"stylesheet", "icon", "preload"} & set(_rel_values(tag)):
                continue
            value = (tag.get(attr) or "").strip()
            if value.lower().startswith("http://"):
                found.add(value)
    return sorted(found)


def compute_render_delta(initial_markup: str, rendered_markup: str) -> RenderDelta:
    """Compare the pre-render and rendered markup of a page."""
    initial_words = tokenize_words(markup_text(initial_markup))
    rendered_words = tokenize_words(markup_text(rendered_markup))

    initial_set = {word.lower() for word in initial_words}
    rendered_set = {word.lower() for word in rendered_words}
    union = initial_set | rendered_set
    similarity = len(initial_set & rendered_set) / len(union) if union else 1.0

    if initial_words:
        percentage = (len(rendered_words) - len(initial_words)) / len(initial_words) * 100
        percentage = min(percentage, MAX_RENDERING_PERCENTAGE)
    elif rendered_words:
        percentage = MAX_RENDERING_PERCENTAGE
    else:
        percentage = 0.0

    return RenderDelta(
        initial_bytes=len((initial_markup or "").encode("utf-8")),
        rendered_bytes=len((rendered_markup or "").encode("utf-8")),
        initial_words=len(initial_words),
        rendered_words=len(rendered_words),
        similarity=round(similarity, 3),
        rendering_percentage=round(percentage, 1),
    )


# ---------------------------------------------------------------------------
# Page record
# ---------------------------------------------------------------------------


def _page_url(result: RenderResult, context: Optional[CrawlContext]) -> CanonicalURL:
    try:
        return canonicalize(result.final_url or result.request_url, context)
    except MalformedURL:
        LOGGER.debug("Final URL %r is malformed; using request URL", result.final_url)
        return canonicalize(result.request_url, context)


def extract(result: RenderResult, context: Optional[CrawlContext] = None) -> PageRecord:
    """Build the PageRecord for one rendered page."""
    base_url = result.final_url or result.request_url
    markup = result.rendered_markup or ""
    soup = _parse(markup)

    schema = analyze_schema(soup)
    title = extract_title(soup)
    meta_description = _meta_content(soup, "description") or None
    headings = extract_headings(soup)
    internal_links, external_links = extract_links(soup, base_url, context)
    noindex, nofollow = extract_robots_directives(soup, result.headers or {})
    html_tag = soup.find("html")
    lang = (_collapse(html_tag.get("lang")) or None) if html_tag is not None else None
    tel_links = [
        anchor["href"][4:]
        for anchor in soup.find_all("a", href=True)
        if anchor["href"].lower().startswith("tel:")
    ]
    paragraphs = [_collapse(tag.get_text(" ")) for tag in soup.find_all("p")[:KEYWORD_PARAGRAPHS]]

    record = PageRecord(
        url=_page_url(result, context),
        request_url=result.request_url,
        final_url=base_url,
        status_code=result.status_code,
        title=title,
        title_length=len(title) if title else 0,
        meta_description=meta_description,
        meta_description_length=len(meta_description) if meta_description else 0,
        canonical=extract_canonical(soup, base_url),
        headings=headings,
        heading_order=extract_heading_order(soup),
        internal_links=internal_links,
        external_links=external_links,
        images=extract_images(soup, base_url),
        schema=schema,
        has_viewport=_meta_content(soup, "viewport") is not None,
        noindex=noindex,
        nofollow=nofollow,
        lang=lang,
        mixed_content=find_mixed_content(soup, base_url),
        social=extract_social_tags(soup, base_url),
        header_signals=extract_header_signals(result.headers, base_url),
        platform_hints=detect_platform_hints(markup, result.headers, base_url),
        partial=result.partial,
        error=result.error,
    )

    text = visible_text(soup)
    stats = analyze_text(text)
    record.word_count = stats.words
    record.sentence_count = stats.sentences
    record.readability = stats.flesch
    record.avg_sentence_length = stats.avg_sentence_length
    record.contact = extract_contact_signals(text, schema.merged, tel_links)

    sources = [("title", title or ""), ("meta", meta_description or "")]
    sources.extend(("h1", heading) for heading in headings.get("h1", []))
    sources.extend(("h2", heading) for heading in headings.get("h2", []))
    sources.extend(("paragraph", paragraph) for paragraph in paragraphs)
    record.keywords = page_keywords(sources)

    record.timing = validate_timings(result.timing, source="render")
    record.render_delta = compute_render_delta(result.initial_markup, markup)

    LOGGER.debug(
        "Extracted %s: status=%s words=%d links=%d/%d",
        record.url,
        record.status_code,
        record.word_count,
        len(internal_links),
        len(external_links),
    )
    return record

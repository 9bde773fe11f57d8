"""Frequency-based keyword phrase extraction and comparison.

Keywords are 2- and 3-word phrases taken from titles, meta descriptions,
headings and the opening paragraphs of each page. Phrases are cleaned,
filtered against stop-word, generic-word and nonsense lists, then ranked by
how prominent they are across the site.

Two phrases are considered the same keyword when the Jaccard index of their
word sets is at least :data:`SIMILARITY_THRESHOLD`.
"""

from __future__ import annotations

import html
import re
from collections import Counter
from typing import Dict, Iterable, List, Sequence, Tuple

from .document import PageRecord

SIMILARITY_THRESHOLD = 0.5
MAX_PAGE_KEYWORDS = 50
MAX_SITE_KEYWORDS = 50

STOP_WORDS = frozenset(
    """
    this that these those with from your their have been will would could
    should the a an and or but in on at to for of as is was are were be by it
    its they them we us you he she his her our my me i am has had do does did
    can may might must shall about into through over under again then once
    here there when where why how all each every both few more most other some
    such no nor not only own same so than too very just now what which who
    """.split()
)

GENERIC_WORDS = frozenset(
    """
    free online best new top get use make find see more here page site web www
    com org net gov edu html http https click learn read view home main menu
    search contact about privacy terms copyright reserved rights inc llc ltd
    corp company
    """.split()
)

NONSENSE_PATTERNS = (
    re.compile(r"^[a-z]\s[a-z]$"),
    re.compile(r"^(click|tap|press|swipe)\s+(here|now|button)"),
    re.compile(r"^(loading|please|wait|error|success|failed)\b"),
    re.compile(r"^(yes|no|ok|cancel|submit|close|open)\b"),
    re.compile(r"\d{4,}"),
    re.compile(r"^[^a-z]*$"),
)

# Weight of a phrase depending on where it was found on the page.
SOURCE_WEIGHTS: Dict[str, int] = {
    "title": 3,
    "h1": 2,
    "meta": 2,
    "h2": 1,
    "paragraph": 1,
}

_SEGMENT_SPLIT_RE = re.compile(r"[|,;:.!?()\[\]{}\"/–—]+")
_NON_WORD_RE = re.compile(r"[^\w\s-]")


def clean_keyword(keyword: str) -> str:
    """Decode entities, lowercase, collapse whitespace and normalize hyphens."""
    text = html.unescape(keyword or "").lower()
    text = _NON_WORD_RE.sub("", text)
    text = " ".join(text.split())
    text = re.sub(r"\s*-\s*", "-", text)
    return text.strip("-")


def _words(keyword: str) -> List[str]:
    return [word for word in re.split(r"[\s-]+", keyword) if word]


def is_valid_keyword(keyword: str) -> bool:
    cleaned = clean_keyword(keyword)
    words = _words(cleaned)
    if len(words) < 2 and "-" not in cleaned:
        return False
    if not 6 <= len(cleaned) <= 60:
        return False
    if any(len(word) > 15 for word in words):
        return False
    meaningful = [w for w in words if w not in STOP_WORDS and w not in GENERIC_WORDS]
    if not meaningful:
        return False
    if any(pattern.search(cleaned) for pattern in NONSENSE_PATTERNS):
        return False
    if len(set(words)) < len(words) * 0.7:
        return False
    return True


def extract_phrases(text: str) -> List[str]:
    """2- and 3-word phrases, never spanning punctuation, stop words dropped."""
    phrases: List[str] = []
    for segment in _SEGMENT_SPLIT_RE.split(html.unescape(text or "").lower()):
        words = [
            word
            for word in _NON_WORD_RE.sub(" ", segment).split()
            if len(word) > 2 and word not in STOP_WORDS
        ]
        for size in (2, 3):
            for index in range(len(words) - size + 1):
                phrase = " ".join(words[index : index + size])
                if is_valid_keyword(phrase):
                    phrases.append(phrase)
    return phrases


def keyword_similarity(a: str, b: str) -> float:
    """Jaccard index of the two phrases' word sets."""
    words_a = set(_words(clean_keyword(a)))
    words_b = set(_words(clean_keyword(b)))
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def has_similar(keyword: str, candidates: Iterable[str], threshold: float = SIMILARITY_THRESHOLD) -> bool:
    return any(keyword_similarity(keyword, other) >= threshold for other in candidates)


def deduplicate_keywords(
    keywords: Sequence[str], threshold: float = SIMILARITY_THRESHOLD
) -> List[str]:
    """Drop keywords that are near-duplicates of a higher-ranked one.

    ``keywords`` must already be in rank order; the first of each group of
    similar phrases is kept.
    """
    kept: List[str] = []
    for keyword in keywords:
        cleaned = clean_keyword(keyword)
        if not cleaned or not is_valid_keyword(cleaned):
            continue
        if any(
            cleaned == existing
            or cleaned in existing
            or existing in cleaned
            or keyword_similarity(cleaned, existing) >= threshold
            for existing in kept
        ):
            continue
        kept.append(cleaned)
    return kept


def _ranked(counter: Counter) -> List[str]:
    return [phrase for phrase, _ in sorted(counter.items(), key=lambda item: (-item[1], item[0]))]


def page_keywords(
    sources: Iterable[Tuple[str, str]], limit: int = MAX_PAGE_KEYWORDS
) -> List[str]:
    """Rank phrases from ``(source, text)`` pairs, e.g. ``("title", "...")``."""
    counter: Counter = Counter()
    for source, text in sources:
        weight = SOURCE_WEIGHTS.get(source, 1)
        for phrase in extract_phrases(text):
            counter[phrase] += weight
    return deduplicate_keywords(_ranked(counter))[:limit]


def build_site_keywords(
    pages: Sequence[PageRecord], limit: int = MAX_SITE_KEYWORDS
) -> List[str]:
    """Merge per-page keyword lists into one site-level ranking.

    A phrase scores by the number of pages it appears on, weighted by its
    rank within each page.
    """
    counter: Counter = Counter()
    for page in pages:
        total = len(page.keywords)
        for position, keyword in enumerate(page.keywords):
            counter[keyword] += total - position
    return deduplicate_keywords(_ranked(counter))[:limit]


def diff_keywords(
    target: Sequence[str],
    competitor: Sequence[str],
    threshold: float = SIMILARITY_THRESHOLD,
) -> Tuple[List[str], List[str], List[str]]:
    """Split keywords into (shared, gaps, target_only).

    ``shared`` are competitor phrases with a similar target phrase, ``gaps``
    are competitor phrases with none, and ``target_only`` are target phrases
    with no similar competitor phrase.
    """
    shared = sorted({kw for kw in competitor if has_similar(kw, target, threshold)})
    gaps = sorted({kw for kw in competitor if not has_similar(kw, target, threshold)})
    target_only = sorted({kw for kw in target if not has_similar(kw, competitor, threshold)})
    return shared, gaps, target_only

"""Text statistics: words, sentences, syllables and Flesch reading ease."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

_WORD_RE = re.compile(r"[^\W_]+(?:['’-][^\W_]+)*", re.UNICODE)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+(?:\s+|$)")
_SILENT_SUFFIX_RE = re.compile(r"(?:[^laeiouy]es|ed|[^laeiouy]e)$")
_VOWEL_GROUP_RE = re.compile(r"[aeiouy]{1,2}")

MAX_SENTENCE_LENGTH = 50.0
MAX_SYLLABLES_PER_WORD = 3.0


@dataclass(slots=True)
class TextStats:
    words: int = 0
    sentences: int = 0
    syllables: int = 0
    flesch: Optional[float] = None

    @property
    def avg_sentence_length(self) -> float:
        if not self.sentences:
            return 0.0
        return round(self.words / self.sentences, 2)


def tokenize_words(text: str) -> List[str]:
    return _WORD_RE.findall(text or "")


def count_words(text: str) -> int:
    return len(tokenize_words(text))


def split_sentences(text: str) -> List[str]:
    return [part for part in _SENTENCE_SPLIT_RE.split(text or "") if part.strip()]


def count_syllables(word: str) -> int:
    """Heuristic English syllable count (minimum 1)."""
    word = word.lower()
    if len(word) <= 3:
        return 1
    word = _SILENT_SUFFIX_RE.sub("", word)
    word = re.sub(r"^y", "", word)
    return max(1, len(_VOWEL_GROUP_RE.findall(word)))


def flesch_reading_ease(words: int, sentences: int, syllables: int) -> Optional[float]:
    """206.835 - 1.015 * ASL - 84.6 * ASW, clamped to [0, 100].

    Average sentence length is capped at 50 words and syllables per word at 3
    so that unpunctuated text does not produce absurd scores.
    """
    if words <= 0:
        return None
    sentence_length = min(words / max(sentences, 1), MAX_SENTENCE_LENGTH)
    if sentences <= 0:
        sentence_length = min(words, 20)
    syllables_per_word = min(syllables / words, MAX_SYLLABLES_PER_WORD)
    score = 206.835 - 1.015 * sentence_length - 84.6 * syllables_per_word
    return round(max(0.0, min(100.0, score)), 1)


def analyze_text(text: str) -> TextStats:
    words = tokenize_words(text)
    if not words:
        return TextStats()
    sentences = len(split_sentences(text))
    syllables = sum(count_syllables(word) for word in words)
    return TextStats(
        words=len(words),
        sentences=sentences,
        syllables=syllables,
        flesch=flesch_reading_ease(len(words), sentences, syllables),
    )

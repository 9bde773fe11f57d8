"""Tests for siteaudit.readability module."""

from __future__ import annotations

from siteaudit.readability import (
    analyze_text,
    count_syllables,
    count_words,
    flesch_reading_ease,
    split_sentences,
    tokenize_words,
)


class TestTokenize:
    def test_contractions_and_hyphens(self):
        assert tokenize_words("Don't stop-believing, ok?") == ["Don't", "stop-believing", "ok"]

    def test_count_words_empty(self):
        assert count_words("") == 0
        assert count_words(None) == 0

    def test_split_sentences(self):
        assert split_sentences("One. Two! Three?") == ["One", "Two", "Three"]


class TestSyllables:
    def test_short_words(self):
        assert count_syllables("cat") == 1
        assert count_syllables("a") == 1

    def test_longer_word(self):
        assert count_syllables("reading") == 2

    def test_minimum_one(self):
        assert count_syllables("rhythm") >= 1


class TestFlesch:
    def test_no_words(self):
        assert flesch_reading_ease(0, 0, 0) is None

    def test_clamped_high(self):
        assert flesch_reading_ease(6, 2, 6) == 100.0

    def test_clamped_low(self):
        assert flesch_reading_ease(100, 1, 300) == 0.0


class TestAnalyzeText:
    def test_empty(self):
        stats = analyze_text("")
        assert stats.words == 0
        assert stats.flesch is None
        assert stats.avg_sentence_length == 0.0

    def test_simple_text(self):
        stats = analyze_text("The cat sat. The dog ran.")
        assert stats.words == 6
        assert stats.sentences == 2
        assert stats.avg_sentence_length == 3.0
        assert stats.flesch == 100.0

    def test_dense_text_scores_lower(self):
        easy = analyze_text("We make tables. We sell them. You can buy one today.")
        hard = analyze_text(
            "Comprehensive organizational considerations necessitate sophisticated "
            "institutional methodologies, particularly regarding interdisciplinary "
            "collaboration and administrative accountability."
        )
        assert 0 <= hard.flesch < easy.flesch <= 100

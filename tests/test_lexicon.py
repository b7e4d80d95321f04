"""
Lexical classifier tests: keyword extraction and topic categorization.
"""

import pytest

from taqwa_gate.guard.lexicon import Lexicon
from taqwa_gate.guard.models import LexiconData, TopicRule


class TestKeywordExtraction:
    """Keyword extraction."""

    def test_extract_keywords_drops_stop_words_and_short_tokens(self, lexicon):
        assert lexicon.extract_keywords("What does the Quran say about patience?") == ["patience"]

    def test_extract_keywords_strips_punctuation_and_dedupes(self, lexicon):
        keywords = lexicon.extract_keywords("Mercy, mercy! Kindness... and mercy?")
        assert keywords == ["mercy", "kindness"]

    def test_extract_keywords_empty_text(self, lexicon):
        assert lexicon.extract_keywords("") == []
        assert lexicon.extract_keywords("   ?! ") == []


class TestTopicCategorization:
    """Topic categorization."""

    def test_categorize_topic_is_substring_match(self, lexicon):
        # "pray" is a prayer trigger and matches inside "praying"
        assert lexicon.categorize_topic("Is praying at night recommended") == "prayer"

    def test_categorize_topic_case_insensitive(self, lexicon):
        assert lexicon.categorize_topic("When does RAMADAN start") == "fasting"

    def test_categorize_topic_none(self, lexicon):
        assert lexicon.categorize_topic("Tell me about mercy and kindness") is None

    @pytest.mark.parametrize(
        "text",
        [
            "prayer and charity",
            "charity and prayer",
            "Should I give charity before the prayer?",
        ],
    )
    def test_categorize_topic_tie_break_prefers_earlier_topic(self, lexicon, text):
        assert lexicon.categorize_topic(text) == "prayer"

    def test_tie_break_follows_table_order(self):
        data = LexiconData(
            topics=[
                TopicRule(topic="charity", triggers=["charity"]),
                TopicRule(topic="prayer", triggers=["prayer"]),
            ]
        )
        assert Lexicon(data).categorize_topic("prayer and charity") == "charity"


class TestSearchTerms:
    """Provider search terms per topic."""

    def test_search_terms_fall_back_to_topic(self, lexicon):
        assert lexicon.verse_search_terms("prayer") == ["salat", "prayer", "worship", "prostrate"]
        assert lexicon.verse_search_terms("character") == ["character"]
        assert lexicon.narration_search_terms("unknown-topic") == ["unknown-topic"]

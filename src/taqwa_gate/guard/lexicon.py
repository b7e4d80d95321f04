"""
Lexical Classifier

Stop-word filtering, keyword extraction and static topic categorization of
free-text questions. Pure functions over text; no I/O after the lexicon data
has been loaded.
"""

from __future__ import annotations

import re
from typing import List, Optional

from .models import LexiconData, get_lexicon_data


_PUNCTUATION = re.compile(r"[^\w\s]")
_MIN_KEYWORD_LENGTH = 3


class Lexicon:
    """
    Keyword extractor and topic categorizer backed by a `LexiconData` table.
    """

    def __init__(self, data: LexiconData) -> None:
        self._data = data
        self._stop_words = frozenset(word.lower() for word in data.stop_words)
        # (topic, lowercase triggers) in declaration order
        self._topics = [
            (rule.topic, [t.lower() for t in rule.triggers]) for rule in data.topics
        ]

    @property
    def data(self) -> LexiconData:
        return self._data

    def extract_keywords(self, text: str) -> List[str]:
        """
        Return the distinct content words of `text`.

        Lowercases, strips punctuation, splits on whitespace and drops tokens
        of length <= 2 or in the stop-word set. First-seen order is kept.
        """
        words = _PUNCTUATION.sub("", text.lower()).split()
        seen = set()
        keywords: List[str] = []
        for word in words:
            if len(word) < _MIN_KEYWORD_LENGTH or word in self._stop_words:
                continue
            if word not in seen:
                seen.add(word)
                keywords.append(word)
        return keywords

    def categorize_topic(self, text: str) -> Optional[str]:
        """
        Return the first declared topic with a trigger substring in `text`.

        Matching is case-insensitive substring matching, not token matching,
        so "pray" matches "prayers". Returns None when nothing matches.
        """
        lowered = text.lower()
        for topic, triggers in self._topics:
            if any(trigger in lowered for trigger in triggers):
                return topic
        return None

    def verse_search_terms(self, topic: str) -> List[str]:
        return list(self._data.verse_search_terms.get(topic.lower(), [topic]))

    def narration_search_terms(self, topic: str) -> List[str]:
        return list(self._data.narration_search_terms.get(topic.lower(), [topic]))


_default_lexicon: Optional[Lexicon] = None


def get_lexicon() -> Lexicon:
    global _default_lexicon
    if _default_lexicon is None:
        _default_lexicon = Lexicon(get_lexicon_data())
    return _default_lexicon


def extract_keywords(text: str) -> List[str]:
    return get_lexicon().extract_keywords(text)


def categorize_topic(text: str) -> Optional[str]:
    return get_lexicon().categorize_topic(text)

"""
Guard Models

This module defines the pydantic models shared by the lexical classifier and
the safety validator:

- `ValidationVerdict`: immutable outcome of screening a prompt or a response
- `GuardPolicy`: blocklist, regex patterns, messages and honorific rules
- `LexiconData`: stop words, the ordered topic-trigger table and provider
  search terms

Policy and lexicon data ship as JSON next to this module and can be replaced
from a file path in settings, or built directly in tests.
"""

from __future__ import annotations

import re
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import settings


_DATA_DIR = Path(__file__).resolve().parent
DEFAULT_POLICY_PATH = _DATA_DIR / "policy.json"
DEFAULT_LEXICON_PATH = _DATA_DIR / "lexicon.json"


# ---------------------------------------------------------------------
# Verdicts
# ---------------------------------------------------------------------

class ReasonCode(str, Enum):
    OK = "ok"
    BLOCKED_TOPIC = "blocked_topic"
    WARNING_PATTERN = "warning_pattern"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    RESPONSE_BLOCKED_TOPIC = "response_blocked_topic"
    RESPONSE_WARNING_PATTERN = "response_warning_pattern"
    UNVERIFIED_SOURCE = "unverified_source"


class ValidationVerdict(BaseModel):
    """
    Result of screening a piece of text.

    `warning=True` is only ever set together with `valid=True`: the content is
    delivered, but flagged.
    """
    valid: bool
    reason_code: ReasonCode = ReasonCode.OK
    user_message: str = ""
    matched_term: Optional[str] = None
    warning: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def accept(cls) -> "ValidationVerdict":
        return cls(valid=True)


# ---------------------------------------------------------------------
# Policy Data
# ---------------------------------------------------------------------

class HonorificRule(BaseModel):
    """A name that must be followed by an honorific parenthetical."""
    name: str = Field(..., min_length=1)
    suffix: str = Field(..., min_length=1)
    markers: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")


class GuardPolicy(BaseModel):
    """
    Screening data for the safety validator.
    """
    blocked_topics: List[str] = Field(default_factory=list)
    warning_patterns: List[str] = Field(default_factory=list)
    fabrication_patterns: List[str] = Field(default_factory=list)
    domain_keywords: List[str] = Field(default_factory=list)
    min_prompt_length: int = Field(default=3, ge=0)
    max_prompt_length: int = Field(default=2000, ge=1)
    messages: Dict[str, str] = Field(default_factory=dict)
    fallbacks: Dict[str, str] = Field(default_factory=dict)
    honorifics: List[HonorificRule] = Field(default_factory=list)
    caution_prefix: str = "⚠️"

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("blocked_topics", "domain_keywords")
    @classmethod
    def _lowercase_terms(cls, v: List[str]) -> List[str]:
        return [term.lower() for term in v if term.strip()]

    @field_validator("warning_patterns", "fabrication_patterns")
    @classmethod
    def _patterns_compile(cls, v: List[str]) -> List[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid pattern {pattern!r}: {exc}") from exc
        return v

    def message(self, key: str) -> str:
        return self.messages.get(key) or self.fallback("general")

    def fallback(self, reason: str = "general") -> str:
        """Canned user-facing text for a rejection or failure reason."""
        return self.fallbacks.get(reason) or self.fallbacks.get("general", "")


class TopicRule(BaseModel):
    topic: str = Field(..., min_length=1)
    triggers: List[str] = Field(..., min_length=1)

    model_config = ConfigDict(frozen=True, extra="forbid")


class LexiconData(BaseModel):
    """
    Vocabulary for keyword extraction and topic categorization.

    `topics` is ordered; the first matching topic wins.
    """
    stop_words: List[str] = Field(default_factory=list)
    topics: List[TopicRule] = Field(default_factory=list)
    verse_search_terms: Dict[str, List[str]] = Field(default_factory=dict)
    narration_search_terms: Dict[str, List[str]] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------

def load_policy(path: Optional[str | Path] = None) -> GuardPolicy:
    """Load and validate a GuardPolicy JSON file."""
    source = Path(path) if path else DEFAULT_POLICY_PATH
    return GuardPolicy.model_validate_json(source.read_text(encoding="utf-8"))


def load_lexicon(path: Optional[str | Path] = None) -> LexiconData:
    """Load and validate a LexiconData JSON file."""
    source = Path(path) if path else DEFAULT_LEXICON_PATH
    return LexiconData.model_validate_json(source.read_text(encoding="utf-8"))


@lru_cache
def get_policy() -> GuardPolicy:
    return load_policy(settings.guard_policy_path)


@lru_cache
def get_lexicon_data() -> LexiconData:
    return load_lexicon(settings.lexicon_path)

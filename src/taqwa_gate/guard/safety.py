"""
Safety Validator

Screens inbound prompts and outbound model responses, and normalizes honorific
phrasing in accepted responses.

Severity model
--------------
- Blocklist and harm-intent pattern hits are hard failures for both prompts
  and responses. A blocked response is replaced wholesale, never trimmed.
- Fabrication indicators (an authoritative quote hedged about its source)
  only produce a soft warning: the response is still delivered, with a
  visible caution appended by the caller.

All checks are pure functions over text and never raise for string input.
"""

from __future__ import annotations

import re
from typing import List, Optional, Pattern, Tuple

from .models import GuardPolicy, ReasonCode, ValidationVerdict, get_policy


class SafetyValidator:
    """
    Prompt/response screening and response normalization for one policy.
    """

    def __init__(self, policy: GuardPolicy) -> None:
        self._policy = policy
        self._warning_patterns = _compile_all(policy.warning_patterns)
        self._fabrication_patterns = _compile_all(policy.fabrication_patterns)
        self._honorifics = [
            (_honorific_pattern(rule.name, rule.suffix, rule.markers), rule.suffix)
            for rule in policy.honorifics
        ]

    @property
    def policy(self) -> GuardPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Screening
    # ------------------------------------------------------------------

    def validate_prompt(self, text: str) -> ValidationVerdict:
        """
        Screen a user question.

        Checks run in order and stop at the first hit: blocklist, warning
        patterns, minimum trimmed length, maximum length.
        """
        term = self._find_blocked_topic(text)
        if term is not None:
            return ValidationVerdict(
                valid=False,
                reason_code=ReasonCode.BLOCKED_TOPIC,
                user_message=self._policy.message("blocked_topic"),
                matched_term=term,
            )

        pattern = _first_match(self._warning_patterns, text)
        if pattern is not None:
            return ValidationVerdict(
                valid=False,
                reason_code=ReasonCode.WARNING_PATTERN,
                user_message=self._policy.message("warning_pattern"),
                matched_term=pattern,
            )

        if len(text.strip()) < self._policy.min_prompt_length:
            return ValidationVerdict(
                valid=False,
                reason_code=ReasonCode.TOO_SHORT,
                user_message=self._policy.message("too_short"),
            )

        if len(text) > self._policy.max_prompt_length:
            return ValidationVerdict(
                valid=False,
                reason_code=ReasonCode.TOO_LONG,
                user_message=self._policy.message("too_long"),
            )

        return ValidationVerdict.accept()

    def validate_response(self, text: str) -> ValidationVerdict:
        """
        Screen generated output before it reaches the user.

        Blocklist and warning-pattern hits are hard failures. A fabrication
        indicator yields `valid=True, warning=True`.
        """
        term = self._find_blocked_topic(text)
        if term is not None:
            return ValidationVerdict(
                valid=False,
                reason_code=ReasonCode.RESPONSE_BLOCKED_TOPIC,
                user_message=self._policy.message("response_blocked"),
                matched_term=term,
            )

        pattern = _first_match(self._warning_patterns, text)
        if pattern is not None:
            return ValidationVerdict(
                valid=False,
                reason_code=ReasonCode.RESPONSE_WARNING_PATTERN,
                user_message=self._policy.message("response_blocked"),
                matched_term=pattern,
            )

        pattern = _first_match(self._fabrication_patterns, text)
        if pattern is not None:
            return ValidationVerdict(
                valid=True,
                reason_code=ReasonCode.UNVERIFIED_SOURCE,
                user_message=self._policy.message("unverified_source"),
                matched_term=pattern,
                warning=True,
            )

        return ValidationVerdict.accept()

    def is_domain_query(self, text: str) -> bool:
        """True if the text mentions any domain keyword."""
        lowered = text.lower()
        return any(keyword in lowered for keyword in self._policy.domain_keywords)

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize(self, text: str) -> str:
        """
        Append the honorific parenthetical after each bare mention of a
        configured name.

        Idempotent: a mention already followed by one of its markers (or by
        its own suffix) is left untouched.
        """
        normalized = text
        for pattern, suffix in self._honorifics:
            normalized = pattern.sub(lambda m, s=suffix: f"{m.group(0)} {s}", normalized)
        return normalized

    def with_caution(self, answer: str, verdict: ValidationVerdict) -> str:
        """Append the visible caution line for a soft-warning verdict."""
        if not verdict.warning:
            return answer
        return f"{answer}\n\n{self._policy.caution_prefix} {verdict.user_message}"

    def fallback(self, reason: str = "general") -> str:
        return self._policy.fallback(reason)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _find_blocked_topic(self, text: str) -> Optional[str]:
        lowered = text.lower()
        for topic in self._policy.blocked_topics:
            if topic in lowered:
                return topic
        return None


def _compile_all(patterns: List[str]) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def _first_match(patterns: List[Pattern[str]], text: str) -> Optional[str]:
    for pattern in patterns:
        if pattern.search(text):
            return pattern.pattern
    return None


def _honorific_pattern(name: str, suffix: str, markers: List[str]) -> Pattern[str]:
    guards: Tuple[str, ...] = tuple(
        r"\s*" + re.escape(marker) for marker in [*markers, suffix] if marker
    )
    return re.compile(
        r"\b" + re.escape(name) + r"\b(?!" + "|".join(guards) + ")",
        re.IGNORECASE,
    )


_default_validator: Optional[SafetyValidator] = None


def get_validator() -> SafetyValidator:
    global _default_validator
    if _default_validator is None:
        _default_validator = SafetyValidator(get_policy())
    return _default_validator


def validate_prompt(text: str) -> ValidationVerdict:
    return get_validator().validate_prompt(text)


def validate_response(text: str) -> ValidationVerdict:
    return get_validator().validate_response(text)


def normalize(text: str) -> str:
    return get_validator().normalize(text)

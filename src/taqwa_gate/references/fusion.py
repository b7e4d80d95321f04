"""
Reference Fusion

Gathers candidate verses and narrations for a question from the two reference
providers. Enrichment is best-effort: every provider call is wrapped in a
`ProviderResult`, and a failed result is explicitly discarded into an empty
default, so `gather_references` always returns a shape-complete bundle and
never raises.

Algorithm
---------
1. Extract keywords and the topic of the question.
2. Topic known: query verses and narrations by topic, concurrently.
3. No topic, or the topic search answered with no verse: try the first
   keywords in order against verse free-text search; the first keyword with a
   match supplies the verses and the loop stops. A failed topic search is not
   followed by keyword calls. Narrations are only topic-keyed.
4. Deduplicate and truncate to the configured bounds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..config import settings
from ..guard.lexicon import Lexicon, get_lexicon
from .models import NarrationRef, ReferenceBundle, VerseRef
from .providers import NarrationProvider, VerseProvider

logger = logging.getLogger("taqwa.fusion")

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    """Outcome of one provider call: a value or the error that replaced it."""
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        if self.error is not None or self.value is None:
            return default
        return self.value


async def guarded(
    label: str,
    call: Callable[[], Awaitable[T]],
    timeout: float,
) -> ProviderResult[T]:
    """
    Await a provider call under a timeout and capture any failure.

    Timeouts, transport errors, not-found and malformed payloads all become an
    error result; cancellation still propagates.
    """
    try:
        return ProviderResult(value=await asyncio.wait_for(call(), timeout))
    except asyncio.TimeoutError as exc:
        logger.warning("Reference provider call %s timed out after %.1fs", label, timeout)
        return ProviderResult(error=exc)
    except Exception as exc:
        logger.warning("Reference provider call %s failed (%s): %s", label, type(exc).__name__, exc)
        return ProviderResult(error=exc)


class ReferenceFusion:
    """
    Combines a verse provider and a narration provider into one bundle.
    """

    def __init__(
        self,
        verse_provider: VerseProvider,
        narration_provider: NarrationProvider,
        lexicon: Optional[Lexicon] = None,
        max_topic_verses: Optional[int] = None,
        max_topic_narrations: Optional[int] = None,
        max_keyword_verses: Optional[int] = None,
        max_keyword_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._verses = verse_provider
        self._narrations = narration_provider
        self._lexicon = lexicon or get_lexicon()
        self.max_topic_verses = max_topic_verses or settings.max_topic_verses
        self.max_topic_narrations = max_topic_narrations or settings.max_topic_narrations
        self.max_keyword_verses = max_keyword_verses or settings.max_keyword_verses
        self.max_keyword_attempts = max_keyword_attempts or settings.max_keyword_attempts
        self.timeout = timeout if timeout is not None else settings.provider_timeout

    async def gather_references(self, question: str) -> ReferenceBundle:
        keywords = self._lexicon.extract_keywords(question)
        topic = self._lexicon.categorize_topic(question)

        verses: List[VerseRef] = []
        narrations: List[NarrationRef] = []
        verse_provider_failed = False

        if topic is not None:
            verse_result, narration_result = await asyncio.gather(
                guarded(
                    f"verses.topic[{topic}]",
                    lambda: self._verses.search_by_topic(topic, self.max_topic_verses),
                    self.timeout,
                ),
                guarded(
                    f"narrations.topic[{topic}]",
                    lambda: self._narrations.search_by_topic(topic, self.max_topic_narrations),
                    self.timeout,
                ),
            )
            verses = _dedupe(_coerce(verse_result.unwrap_or([]), VerseRef))[: self.max_topic_verses]
            verse_provider_failed = not verse_result.ok
            narrations = _dedupe(_coerce(narration_result.unwrap_or([]), NarrationRef))[: self.max_topic_narrations]

        if not verses and keywords and not verse_provider_failed:
            verses = await self._verses_by_keyword(keywords)

        logger.debug(
            "Gathered %d verse(s) and %d narration(s) for topic=%s keywords=%s",
            len(verses),
            len(narrations),
            topic,
            keywords[: self.max_keyword_attempts],
        )
        return ReferenceBundle(verses=verses, narrations=narrations)

    async def _verses_by_keyword(self, keywords: List[str]) -> List[VerseRef]:
        for keyword in keywords[: self.max_keyword_attempts]:
            result = await guarded(
                f"verses.keyword[{keyword}]",
                lambda: self._verses.search_by_keyword(keyword),
                self.timeout,
            )
            matches = _matches_of(result.unwrap_or(None))
            if matches:
                return _dedupe(matches)[: self.max_keyword_verses]
        return []


def _matches_of(search: Any) -> List[VerseRef]:
    if search is None:
        return []
    if isinstance(search, dict):
        return _coerce(search.get("matches") or [], VerseRef)
    return _coerce(getattr(search, "matches", None) or [], VerseRef)


def _coerce(items: Iterable[Any], model: Type[M]) -> List[M]:
    """Accept model instances or plain dicts; skip entries that do not validate."""
    refs: List[M] = []
    for item in items:
        if isinstance(item, model):
            refs.append(item)
            continue
        try:
            refs.append(model.model_validate(item))
        except ValidationError:
            logger.warning("Discarding malformed %s: %r", model.__name__, item)
    return refs


def _dedupe(refs: List[T]) -> List[T]:
    seen = set()
    unique: List[T] = []
    for ref in refs:
        key = getattr(ref, "key", None)
        if key in seen:
            continue
        seen.add(key)
        unique.append(ref)
    return unique

"""
Request-Admission Orchestrator

Composes the safety validator, reference fusion, the admission controller and
the generator into the guarded pipeline:

    Received -> PromptValidated -> ReferencesGathered -> Generated
             -> ResponseValidated -> Normalized -> Delivered

with two early exits, RejectedByPromptGuard and RejectedByResponseGuard.

Failure Policy
--------------
- Validator and admission decisions are terminal for the request.
- Reference provider failures are absorbed by fusion and never reach here.
- Generator failures are classified by the client and translated into the
  matching canned message; nothing is retried within a request.
- Every operation returns a `GenerationResult`; no exception escapes for
  well-formed input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import settings
from ..core.errors import (
    BlockedByPolicy,
    ErrorKind,
    InvalidReference,
    MalformedInput,
    QuotaExceeded,
    ReferenceNotFound,
    TaqwaGateError,
)
from ..db.rate_limiter import QuotaStatus, RateLimiter
from ..guard.models import ReasonCode
from ..guard.prompts import (
    Message,
    build_contextual_messages,
    build_messages,
    narration_explanation_question,
    verse_explanation_question,
)
from ..guard.safety import SafetyValidator
from ..llm.client import GeneratorClient
from ..references.fusion import ReferenceFusion
from ..references.hadith_client import HadithClient
from ..references.models import ReferenceBundle, VerseDetail, VerseRef
from ..references.quran_client import QuranClient
from .models import (
    SOURCE_AI,
    SOURCE_HADITH,
    SOURCE_QURAN,
    GenerationResult,
    PipelineState,
    UsageInfo,
)

logger = logging.getLogger("taqwa.pipeline")

ACTION_ASK = "ask"
ACTION_ASK_QUICK = "ask_quick"
ACTION_EXPLAIN = "explain"

_MALFORMED_REASONS = {ReasonCode.TOO_SHORT, ReasonCode.TOO_LONG}


@dataclass
class _Run:
    """Mutable progress of one pipeline run."""
    state: PipelineState = PipelineState.RECEIVED
    references: ReferenceBundle = field(default_factory=ReferenceBundle)

    def advance(self, state: PipelineState) -> None:
        logger.debug("Pipeline %s -> %s", self.state.value, state.value)
        self.state = state


class Orchestrator:
    """
    Entry point for every generator-backed operation.
    """

    def __init__(
        self,
        validator: SafetyValidator,
        fusion: ReferenceFusion,
        generator: GeneratorClient,
        rate_limiter: RateLimiter,
        verse_client: Optional[QuranClient] = None,
        narration_client: Optional[HadithClient] = None,
    ) -> None:
        self._validator = validator
        self._fusion = fusion
        self._generator = generator
        self._rate_limiter = rate_limiter
        self._verse_client = verse_client
        self._narration_client = narration_client

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def ask(self, question: str, identity: str) -> GenerationResult:
        """
        The full guarded pipeline: prompt guard, reference fusion, quota
        gate, generation, response guard and normalization.
        """
        run = _Run()
        try:
            self._screen_prompt(question, run)

            run.references = await self._fusion.gather_references(question)
            run.advance(PipelineState.REFERENCES_GATHERED)

            await self._admit(identity, ACTION_ASK)

            return await self._generate_and_deliver(
                build_contextual_messages(question, run.references),
                run,
            )
        except TaqwaGateError as exc:
            return self._failed(exc, run)
        except Exception:
            logger.exception("Unexpected failure in ask pipeline")
            return self._unexpected(run)

    async def quick_ask(self, question: str) -> GenerationResult:
        """
        Prompt guard, generation, response guard and normalization only.

        No reference fusion and no quota gate; callers that need one run
        `check_quota` first.
        """
        run = _Run()
        try:
            self._screen_prompt(question, run)
            return await self._generate_and_deliver(
                build_messages(question),
                run,
                max_tokens=settings.quick_max_tokens,
            )
        except TaqwaGateError as exc:
            return self._failed(exc, run)
        except Exception:
            logger.exception("Unexpected failure in quick ask pipeline")
            return self._unexpected(run)

    async def check_quota(self, identity: str, action: str = "default") -> QuotaStatus:
        """Run one admission check, recording the request when allowed."""
        return await self._rate_limiter.check_limit(identity, action)

    async def explain_verse(self, surah: int, ayah: int, identity: str) -> GenerationResult:
        """Fetch one verse and ask the generator to explain it."""
        run = _Run()
        try:
            if self._verse_client is None:
                raise ReferenceNotFound("Quran lookups are not available.")

            await self._admit(identity, ACTION_EXPLAIN)

            try:
                verse = await self._verse_client.get_ayah(surah, ayah)
            except ValueError as exc:
                raise InvalidReference(str(exc)) from exc
            if verse is None:
                raise ReferenceNotFound("Verse not found.")

            run.advance(PipelineState.PROMPT_VALIDATED)
            run.references = ReferenceBundle(verses=[_verse_ref(verse)])
            run.advance(PipelineState.REFERENCES_GATHERED)

            result = await self._generate_and_deliver(
                build_messages(verse_explanation_question(verse)),
                run,
                max_tokens=settings.quick_max_tokens,
            )
            return result.model_copy(update={"verse": verse})
        except TaqwaGateError as exc:
            return self._failed(exc, run)
        except Exception:
            logger.exception("Unexpected failure explaining verse %s:%s", surah, ayah)
            return self._unexpected(run)

    async def explain_narration(
        self,
        collection: str,
        number: str,
        identity: str,
    ) -> GenerationResult:
        """Fetch one narration and ask the generator to explain it."""
        run = _Run()
        try:
            if self._narration_client is None:
                raise ReferenceNotFound("Hadith lookups are not available.")

            await self._admit(identity, ACTION_EXPLAIN)

            narration = await self._narration_client.get_hadith(collection, number)
            if narration is None:
                raise ReferenceNotFound("Hadith not found.")

            run.advance(PipelineState.PROMPT_VALIDATED)
            run.references = ReferenceBundle(narrations=[narration.to_ref()])
            run.advance(PipelineState.REFERENCES_GATHERED)

            result = await self._generate_and_deliver(
                build_messages(narration_explanation_question(narration)),
                run,
                max_tokens=settings.quick_max_tokens,
            )
            return result.model_copy(update={"narration": narration})
        except TaqwaGateError as exc:
            return self._failed(exc, run)
        except Exception:
            logger.exception("Unexpected failure explaining hadith %s %s", collection, number)
            return self._unexpected(run)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _screen_prompt(self, question: str, run: _Run) -> None:
        verdict = self._validator.validate_prompt(question)
        if not verdict.valid:
            run.advance(PipelineState.REJECTED_BY_PROMPT_GUARD)
            logger.info("Prompt rejected: %s", verdict.reason_code.value)
            if verdict.reason_code in _MALFORMED_REASONS:
                raise MalformedInput(verdict)
            raise BlockedByPolicy(verdict)
        run.advance(PipelineState.PROMPT_VALIDATED)

    async def _admit(self, identity: str, action: str) -> None:
        status = await self._rate_limiter.check_limit(identity, action)
        if status.error:
            logger.warning("Admission for %s:%s failed open: %s", identity, action, status.error)
        if not status.allowed:
            raise QuotaExceeded(status)

    async def _generate_and_deliver(
        self,
        messages: List[Message],
        run: _Run,
        max_tokens: Optional[int] = None,
    ) -> GenerationResult:
        completion = await self._generator.complete(messages, max_tokens=max_tokens)
        run.advance(PipelineState.GENERATED)

        verdict = self._validator.validate_response(completion.text)
        if not verdict.valid:
            # The raw output is discarded entirely.
            run.advance(PipelineState.REJECTED_BY_RESPONSE_GUARD)
            logger.warning("Response rejected: %s", verdict.reason_code.value)
            raise BlockedByPolicy(verdict)
        run.advance(PipelineState.RESPONSE_VALIDATED)

        answer = self._validator.with_caution(
            self._validator.normalize(completion.text),
            verdict,
        )
        run.advance(PipelineState.NORMALIZED)

        run.advance(PipelineState.DELIVERED)
        return GenerationResult(
            success=True,
            answer=answer,
            sources=_sources(run.references),
            references=run.references,
            reason_code=verdict.reason_code if verdict.warning else None,
            warning=verdict.warning,
            usage=UsageInfo(**completion.usage._asdict()),
            state=run.state,
        )

    # ------------------------------------------------------------------
    # Failure translation
    # ------------------------------------------------------------------

    def _failed(self, exc: TaqwaGateError, run: _Run) -> GenerationResult:
        reason_code: Optional[ReasonCode] = None
        retry_after: Optional[int] = None
        quota: Optional[QuotaStatus] = None

        if isinstance(exc, (BlockedByPolicy, MalformedInput)):
            reason_code = exc.verdict.reason_code
        elif isinstance(exc, QuotaExceeded):
            retry_after = exc.status.retry_after
            quota = exc.status
        else:
            logger.warning("Pipeline failed at %s: %s", run.state.value, type(exc).__name__)

        return GenerationResult(
            success=False,
            answer=exc.user_message,
            error_kind=exc.kind,
            reason_code=reason_code,
            retry_after=retry_after,
            quota=quota,
            state=run.state,
        )

    def _unexpected(self, run: _Run) -> GenerationResult:
        return GenerationResult(
            success=False,
            answer=self._validator.fallback("error"),
            error_kind=ErrorKind.GENERATOR_UNAVAILABLE,
            state=run.state,
        )


def _sources(references: ReferenceBundle) -> List[str]:
    """Contributing sources in fixed order, generator always last."""
    sources: List[str] = []
    if references.verses:
        sources.append(SOURCE_QURAN)
    if references.narrations:
        sources.append(SOURCE_HADITH)
    sources.append(SOURCE_AI)
    return sources


def _verse_ref(verse: VerseDetail) -> VerseRef:
    return VerseRef(
        surah=verse.surah,
        surah_name=verse.surah_name,
        ayah=verse.ayah,
        text=verse.text_translation,
    )

"""
End-to-end pipeline tests with fake providers and a fake generator.
"""

from unittest.mock import AsyncMock

import pytest

from taqwa_gate.config import settings
from taqwa_gate.core.errors import (
    ErrorKind,
    GeneratorMisconfigured,
    GeneratorRateLimited,
    GeneratorUnavailable,
    StoreError,
)
from taqwa_gate.db.kv_store import InMemoryKeyValueStore
from taqwa_gate.db.rate_limiter import RateLimiter
from taqwa_gate.guard.models import ReasonCode
from taqwa_gate.llm.client import Completion, TokenUsage
from taqwa_gate.pipeline.models import PipelineState
from taqwa_gate.pipeline.orchestrator import Orchestrator
from taqwa_gate.references.fusion import ReferenceFusion
from taqwa_gate.references.models import NarrationDetail, VerseDetail, VerseRef, VerseSearchResult


PATIENCE_VERSE = VerseRef(
    surah=2,
    surah_name="Al-Baqarah",
    ayah=153,
    text="O you who have believed, seek help through patience and prayer.",
)


def _completion(text):
    return Completion(text=text, usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15))


@pytest.fixture
def verse_provider():
    provider = AsyncMock()
    provider.search_by_topic.return_value = []
    provider.search_by_keyword.return_value = VerseSearchResult()
    return provider


@pytest.fixture
def narration_provider():
    provider = AsyncMock()
    provider.search_by_topic.return_value = []
    return provider


@pytest.fixture
def generator():
    gen = AsyncMock()
    gen.complete.return_value = _completion("Allah is with those who are patient.")
    return gen


@pytest.fixture
def limiter(clock):
    return RateLimiter(
        InMemoryKeyValueStore(),
        window_seconds=60,
        max_requests=5,
        action_limits={"ask": 5, "explain": 5},
        clock=clock,
    )


@pytest.fixture
def orchestrator(validator, lexicon, verse_provider, narration_provider, generator, limiter):
    return Orchestrator(
        validator=validator,
        fusion=ReferenceFusion(verse_provider, narration_provider, lexicon=lexicon, timeout=1.0),
        generator=generator,
        rate_limiter=limiter,
        verse_client=AsyncMock(),
        narration_client=AsyncMock(),
    )


class TestAsk:
    """Tests for the full ask pipeline."""

    @pytest.mark.asyncio
    async def test_patience_question_is_delivered_with_verse_source(self, orchestrator, verse_provider, generator):
        verse_provider.search_by_keyword.return_value = VerseSearchResult(count=1, matches=[PATIENCE_VERSE])

        result = await orchestrator.ask("What does the Quran say about patience?", "user-1")

        assert result.success is True
        assert result.state == PipelineState.DELIVERED
        assert result.sources == ["Quran", "AI"]
        assert result.sources.index("Quran") < result.sources.index("AI")
        assert result.references.verses == [PATIENCE_VERSE]
        assert result.answer == "Allah (Subhanahu wa ta'ala) is with those who are patient."
        assert result.usage.total_tokens == 15
        assert result.error_kind is None

        messages = generator.complete.await_args.args[0]
        assert [m["role"] for m in messages] == ["system", "system", "user"]
        assert "[Surah 2:153]" in messages[1]["content"]
        assert messages[-1]["content"] == "What does the Quran say about patience?"

    @pytest.mark.asyncio
    async def test_no_references_means_single_system_block(self, orchestrator, generator):
        result = await orchestrator.ask("Tell me about mercy and kindness", "user-1")

        assert result.success is True
        assert result.sources == ["AI"]
        messages = generator.complete.await_args.args[0]
        assert [m["role"] for m in messages] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_narration_source_between_quran_and_ai(self, orchestrator, verse_provider, narration_provider):
        verse_provider.search_by_topic.return_value = [VerseRef(surah=2, ayah=43, text="Establish prayer")]
        narration_provider.search_by_topic.return_value = [
            {"collection": "Sahih al-Bukhari", "number": "8", "text": "Islam is built on five", "grade": "Sahih"},
        ]

        result = await orchestrator.ask("How important is prayer?", "user-1")

        assert result.sources == ["Quran", "Hadith", "AI"]

    @pytest.mark.asyncio
    async def test_warning_pattern_rejected_before_any_call(
        self, orchestrator, verse_provider, narration_provider, generator
    ):
        result = await orchestrator.ask("ways to deceive my spouse", "user-1")

        assert result.success is False
        assert result.state == PipelineState.REJECTED_BY_PROMPT_GUARD
        assert result.reason_code == ReasonCode.WARNING_PATTERN
        assert result.error_kind == ErrorKind.BLOCKED_BY_POLICY
        assert result.references.is_empty
        verse_provider.search_by_topic.assert_not_awaited()
        verse_provider.search_by_keyword.assert_not_awaited()
        narration_provider.search_by_topic.assert_not_awaited()
        generator.complete.assert_not_awaited()

    @pytest.mark.parametrize(
        "question, reason",
        [("hi", ReasonCode.TOO_SHORT), ("x" * 2001, ReasonCode.TOO_LONG)],
    )
    @pytest.mark.asyncio
    async def test_malformed_input(self, orchestrator, generator, question, reason):
        result = await orchestrator.ask(question, "user-1")

        assert result.success is False
        assert result.error_kind == ErrorKind.MALFORMED_INPUT
        assert result.reason_code == reason
        generator.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quota_exceeded_short_circuits(self, orchestrator, generator, limiter):
        limiter.action_limits["ask"] = 1

        first = await orchestrator.ask("Tell me about mercy and kindness", "user-1")
        second = await orchestrator.ask("Tell me about mercy and kindness", "user-1")

        assert first.success is True
        assert second.success is False
        assert second.error_kind == ErrorKind.QUOTA_EXCEEDED
        assert second.retry_after == 60
        assert second.quota.remaining == 0
        assert second.state == PipelineState.REFERENCES_GATHERED
        assert generator.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_blocked_response_is_never_leaked(self, orchestrator, generator, policy, verse_provider):
        verse_provider.search_by_keyword.return_value = VerseSearchResult(count=1, matches=[PATIENCE_VERSE])
        generator.complete.return_value = _completion("Check your horoscope for the answer.")

        result = await orchestrator.ask("What does the Quran say about patience?", "user-1")

        assert result.success is False
        assert result.state == PipelineState.REJECTED_BY_RESPONSE_GUARD
        assert result.answer == policy.messages["response_blocked"]
        assert "horoscope" not in result.answer
        assert result.references.is_empty
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_fabrication_warning_appends_caution(self, orchestrator, generator, policy):
        generator.complete.return_value = _completion(
            'The hadith says: "Smile, it is charity", reference unknown.'
        )

        result = await orchestrator.ask("Tell me about mercy and kindness", "user-1")

        assert result.success is True
        assert result.warning is True
        assert result.reason_code == ReasonCode.UNVERIFIED_SOURCE
        assert result.answer.endswith(policy.messages["unverified_source"])
        assert policy.caution_prefix in result.answer

    @pytest.mark.parametrize(
        "exc, kind, fragment",
        [
            (GeneratorRateLimited("429"), ErrorKind.GENERATOR_RATE_LIMITED, "high demand"),
            (GeneratorMisconfigured("401"), ErrorKind.GENERATOR_MISCONFIGURED, "configuration error"),
            (GeneratorUnavailable("timeout"), ErrorKind.GENERATOR_UNAVAILABLE, "unable to process"),
        ],
    )
    @pytest.mark.asyncio
    async def test_generator_errors_are_classified(self, orchestrator, generator, exc, kind, fragment):
        generator.complete.side_effect = exc

        result = await orchestrator.ask("Tell me about mercy and kindness", "user-1")

        assert result.success is False
        assert result.error_kind == kind
        assert fragment in result.answer
        assert str(exc) not in result.answer

    @pytest.mark.asyncio
    async def test_unexpected_error_gets_fallback(self, orchestrator, generator, policy):
        generator.complete.side_effect = RuntimeError("socket exploded")

        result = await orchestrator.ask("Tell me about mercy and kindness", "user-1")

        assert result.success is False
        assert result.answer == policy.fallbacks["error"]
        assert "socket" not in result.answer

    @pytest.mark.asyncio
    async def test_admission_store_failure_fails_open(
        self, validator, lexicon, verse_provider, narration_provider, generator, clock
    ):
        store = AsyncMock()
        store.transaction.side_effect = StoreError("down")
        orchestrator = Orchestrator(
            validator=validator,
            fusion=ReferenceFusion(verse_provider, narration_provider, lexicon=lexicon),
            generator=generator,
            rate_limiter=RateLimiter(store, window_seconds=60, max_requests=1, action_limits={}, clock=clock),
        )

        result = await orchestrator.ask("Tell me about mercy and kindness", "user-1")

        assert result.success is True


class TestQuickAskAndQuota:
    """Tests for quick ask and quota lookups."""

    @pytest.mark.asyncio
    async def test_quick_ask_skips_fusion_and_quota(self, orchestrator, verse_provider, generator, limiter):
        limiter.action_limits["ask"] = 0

        result = await orchestrator.quick_ask("What does the Quran say about patience?")

        assert result.success is True
        assert result.sources == ["AI"]
        verse_provider.search_by_topic.assert_not_awaited()
        verse_provider.search_by_keyword.assert_not_awaited()
        assert generator.complete.await_args.kwargs["max_tokens"] == settings.quick_max_tokens

    @pytest.mark.asyncio
    async def test_quick_ask_still_guards_prompt(self, orchestrator, generator):
        result = await orchestrator.quick_ask("Which sect is right?")

        assert result.success is False
        assert result.reason_code == ReasonCode.BLOCKED_TOPIC
        generator.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_check_quota_exposes_limiter(self, orchestrator):
        status = await orchestrator.check_quota("user-1", "ask")
        assert status.allowed is True
        assert status.remaining == 4


class TestExplanations:
    """Tests for verse and narration explanations."""

    @pytest.mark.asyncio
    async def test_explain_verse(self, orchestrator, generator):
        verse = VerseDetail(
            surah=2,
            ayah=255,
            surah_name="Al-Baqarah",
            text_translation="Allah - there is no deity except Him.",
        )
        orchestrator._verse_client.get_ayah.return_value = verse

        result = await orchestrator.explain_verse(2, 255, "user-1")

        assert result.success is True
        assert result.sources == ["Quran", "AI"]
        assert result.verse == verse
        assert result.references.verses[0].key == "2:255"
        question = generator.complete.await_args.args[0][-1]["content"]
        assert "(Surah Al-Baqarah, Ayah 255)" in question

    @pytest.mark.asyncio
    async def test_explain_verse_not_found(self, orchestrator, generator):
        orchestrator._verse_client.get_ayah.return_value = None

        result = await orchestrator.explain_verse(2, 999, "user-1")

        assert result.success is False
        assert result.error_kind == ErrorKind.NOT_FOUND
        generator.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explain_verse_invalid_reference(self, orchestrator):
        orchestrator._verse_client.get_ayah.side_effect = ValueError(
            "Invalid Surah number. Must be between 1 and 114."
        )

        result = await orchestrator.explain_verse(115, 1, "user-1")

        assert result.error_kind == ErrorKind.MALFORMED_INPUT
        assert "between 1 and 114" in result.answer

    @pytest.mark.asyncio
    async def test_explain_narration(self, orchestrator):
        narration = NarrationDetail(
            collection="bukhari",
            collection_name="Sahih al-Bukhari",
            hadith_number="1",
            text_english="Actions are judged by intentions.",
            grade="Sahih",
            reference="Sahih al-Bukhari 1",
        )
        orchestrator._narration_client.get_hadith.return_value = narration

        result = await orchestrator.explain_narration("bukhari", "1", "user-1")

        assert result.success is True
        assert result.sources == ["Hadith", "AI"]
        assert result.narration == narration

    @pytest.mark.asyncio
    async def test_explain_narration_missing(self, orchestrator):
        orchestrator._narration_client.get_hadith.return_value = None

        result = await orchestrator.explain_narration("bukhari", "999999", "user-1")

        assert result.success is False
        assert result.error_kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_explain_is_gated_by_explain_quota(self, orchestrator, limiter, generator):
        limiter.action_limits["explain"] = 0
        orchestrator._verse_client.get_ayah.return_value = VerseDetail(surah=1, ayah=1)

        result = await orchestrator.explain_verse(1, 1, "user-1")

        assert result.error_kind == ErrorKind.QUOTA_EXCEEDED
        orchestrator._verse_client.get_ayah.assert_not_awaited()

"""
Dependency getters for the HTTP layer.

Each collaborator is built once per process. Tests replace any of them with
`app.dependency_overrides`.
"""

from functools import lru_cache

from ..config import settings
from ..db.kv_store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore
from ..db.rate_limiter import RateLimiter
from ..guard.lexicon import get_lexicon
from ..guard.safety import get_validator
from ..llm.client import GeneratorClient
from ..pipeline.orchestrator import Orchestrator
from ..references.fusion import ReferenceFusion
from ..references.hadith_client import HadithClient
from ..references.quran_client import QuranClient


@lru_cache
def get_kv_store() -> KeyValueStore:
    if settings.rate_limit_store == "memory":
        return InMemoryKeyValueStore()
    return SqlKeyValueStore()


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_kv_store())


@lru_cache
def get_quran_client() -> QuranClient:
    return QuranClient()


@lru_cache
def get_hadith_client() -> HadithClient:
    return HadithClient()


@lru_cache
def get_generator() -> GeneratorClient:
    return GeneratorClient()


@lru_cache
def get_orchestrator() -> Orchestrator:
    quran = get_quran_client()
    hadith = get_hadith_client()
    return Orchestrator(
        validator=get_validator(),
        fusion=ReferenceFusion(quran, hadith, lexicon=get_lexicon()),
        generator=get_generator(),
        rate_limiter=get_rate_limiter(),
        verse_client=quran,
        narration_client=hadith,
    )

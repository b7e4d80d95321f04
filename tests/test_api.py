"""
HTTP surface tests: routes, status codes, headers and identity resolution.

Uses TestClient without entering its context so the startup hooks (table
creation, sweeper task) do not run.
"""

import time
from typing import Annotated
from unittest.mock import AsyncMock, patch

import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from pydantic import SecretStr

from taqwa_gate.api.dependencies import get_hadith_client, get_orchestrator, get_quran_client
from taqwa_gate.auth.models import Identity
from taqwa_gate.auth.security import resolve_identity
from taqwa_gate.config import settings
from taqwa_gate.core.errors import ProviderUnavailable
from taqwa_gate.db.kv_store import InMemoryKeyValueStore
from taqwa_gate.db.rate_limiter import RateLimiter
from taqwa_gate.llm.client import Completion, TokenUsage
from taqwa_gate.main import create_app
from taqwa_gate.pipeline.orchestrator import Orchestrator
from taqwa_gate.references.fusion import ReferenceFusion
from taqwa_gate.references.models import VerseDetail, VerseSearchResult


JWT_SECRET = "test-secret-for-taqwa-gate-must-be-long-enough"


@pytest.fixture
def limiter(clock):
    return RateLimiter(
        InMemoryKeyValueStore(),
        window_seconds=60,
        max_requests=5,
        action_limits={"ask": 1, "ask_quick": 0, "explain": 5},
        clock=clock,
    )


@pytest.fixture
def generator():
    gen = AsyncMock()
    gen.complete.return_value = Completion(
        text="Allah is with those who are patient.",
        usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
    )
    return gen


@pytest.fixture
def verse_client():
    client = AsyncMock()
    client.search_by_topic.return_value = []
    client.search_by_keyword.return_value = VerseSearchResult()
    return client


@pytest.fixture
def hadith_client():
    client = AsyncMock()
    client.search_by_topic.return_value = []
    return client


@pytest.fixture
def app(validator, lexicon, limiter, generator, verse_client, hadith_client):
    application = create_app()
    orchestrator = Orchestrator(
        validator=validator,
        fusion=ReferenceFusion(verse_client, hadith_client, lexicon=lexicon, timeout=1.0),
        generator=generator,
        rate_limiter=limiter,
        verse_client=verse_client,
        narration_client=hadith_client,
    )
    application.dependency_overrides[get_orchestrator] = lambda: orchestrator
    application.dependency_overrides[get_quran_client] = lambda: verse_client
    application.dependency_overrides[get_hadith_client] = lambda: hadith_client
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


class TestHealth:
    """Tests for the health route."""

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["generator_model"] == settings.generator_model


class TestAskRoutes:
    """Tests for the ask routes."""

    def test_ask_delivers_answer(self, client):
        resp = client.post("/api/ask", json={"question": "What does the Quran say about patience?"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["sources"] == ["AI"]
        assert body["state"] == "delivered"
        assert body["usage"]["total_tokens"] == 15
        assert "error_kind" not in body

    def test_ask_blocked_prompt_is_200_with_reason(self, client, generator):
        resp = client.post("/api/ask", json={"question": "Which political party should I vote for?"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["error_kind"] == "blocked_by_policy"
        assert body["state"] == "rejected_by_prompt_guard"
        generator.complete.assert_not_awaited()

    def test_ask_over_quota_is_429_with_retry_after(self, client):
        question = {"question": "What does the Quran say about patience?"}
        assert client.post("/api/ask", json=question).status_code == 200

        resp = client.post("/api/ask", json=question)

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "60"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        body = resp.json()
        assert body["error_kind"] == "quota_exceeded"
        assert "quota" not in body
        assert body["retry_after"] == 60

    def test_ask_rejects_unknown_fields(self, client):
        resp = client.post("/api/ask", json={"question": "patience", "model": "other"})
        assert resp.status_code == 422

    def test_quick_ask_denied_by_preflight_quota(self, client, generator):
        resp = client.post("/api/ask/quick", json={"question": "What does the Quran say about patience?"})

        assert resp.status_code == 429
        assert "Retry-After" in resp.headers
        assert resp.json()["error_kind"] == "quota_exceeded"
        generator.complete.assert_not_awaited()


class TestQuotaRoute:
    """Tests for the quota route."""

    def test_quota_check_sets_rate_limit_headers(self, client, clock):
        resp = client.post("/api/quota/check", json={"action": "explain"})

        assert resp.status_code == 200
        body = resp.json()
        assert body == {
            "allowed": True,
            "remaining": 4,
            "limit": 5,
            "reset_at": int(clock() * 1000) + 60_000,
        }
        assert resp.headers["X-RateLimit-Limit"] == "5"
        assert resp.headers["X-RateLimit-Remaining"] == "4"
        assert resp.headers["X-RateLimit-Reset"] == str(int(clock()) + 60)

    def test_quota_check_denied_is_429(self, client):
        resp = client.post("/api/quota/check", json={"action": "ask_quick"})

        assert resp.status_code == 429
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert resp.headers["Retry-After"] == "60"


class TestReferenceRoutes:
    """Tests for the explanation and listing routes."""

    def test_explain_verse_returns_verse(self, client, verse_client):
        verse_client.get_ayah.return_value = VerseDetail(
            surah=2,
            ayah=255,
            surah_name="Al-Baqarah",
            text_translation="God - there is no deity save Him",
        )

        resp = client.post("/api/quran/explain", json={"surah": 2, "ayah": 255})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["verse"]["surah_name"] == "Al-Baqarah"
        assert body["sources"] == ["Quran", "AI"]

    def test_explain_verse_out_of_range_is_422(self, client):
        resp = client.post("/api/quran/explain", json={"surah": 115, "ayah": 1})
        assert resp.status_code == 422

    def test_explain_missing_hadith_is_not_found(self, client, hadith_client):
        hadith_client.get_hadith.return_value = None

        resp = client.post("/api/hadith/explain", json={"collection": "bukhari", "number": "999999"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["error_kind"] == "not_found"
        assert body["answer"] == "Hadith not found."

    def test_list_surahs(self, client, verse_client):
        verse_client.get_all_surahs.return_value = [{"number": 1, "englishName": "Al-Faatiha"}]

        resp = client.get("/api/quran/surahs")

        assert resp.status_code == 200
        assert resp.json() == {"surahs": [{"number": 1, "englishName": "Al-Faatiha"}]}

    def test_listing_provider_failure_is_503(self, client, hadith_client):
        hadith_client.get_collections.side_effect = ProviderUnavailable("down")

        resp = client.get("/api/hadith/collections")

        assert resp.status_code == 503
        assert resp.json()["error_kind"] == "provider_unavailable"


@pytest.fixture
def whoami():
    application = FastAPI()

    @application.get("/whoami")
    def _whoami(identity: Annotated[Identity, Depends(resolve_identity)]):
        return identity.model_dump()

    return TestClient(application)


def _token(sub="user-42", audience=None, issuer=None, expired=False, secret=JWT_SECRET):
    now = int(time.time())
    payload = {
        "iss": issuer or settings.jwt_issuer,
        "aud": audience or settings.jwt_audience,
        "iat": now - 3600 if expired else now,
        "exp": now - 10 if expired else now + 60,
        "sub": sub,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


class TestIdentity:
    """Tests for client identity resolution."""

    def test_identity_from_test_client_address(self, whoami):
        assert whoami.get("/whoami").json() == {"key": "ip:testclient", "kind": "ip"}

    def test_identity_prefers_first_forwarded_hop(self, whoami):
        resp = whoami.get("/whoami", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert resp.json() == {"key": "ip:203.0.113.7", "kind": "ip"}

    def test_identity_from_valid_token(self, whoami):
        with patch.object(settings, "jwt_secret", SecretStr(JWT_SECRET)):
            resp = whoami.get("/whoami", headers={"Authorization": f"Bearer {_token()}"})
        assert resp.json() == {"key": "user-42", "kind": "user"}

    @pytest.mark.parametrize(
        "token_kwargs, detail",
        [
            ({"expired": True}, "expired"),
            ({"audience": "someone-else"}, "audience"),
            ({"issuer": "someone-else"}, "issuer"),
            ({"secret": "a-different-secret-that-is-long-enough"}, "Invalid"),
            ({"sub": "bad key with spaces"}, "sub"),
        ],
    )
    def test_invalid_token_is_401(self, whoami, token_kwargs, detail):
        with patch.object(settings, "jwt_secret", SecretStr(JWT_SECRET)):
            resp = whoami.get("/whoami", headers={"Authorization": f"Bearer {_token(**token_kwargs)}"})
        assert resp.status_code == 401
        assert detail in resp.json()["detail"]

    def test_token_ignored_when_jwt_not_configured(self, whoami):
        with patch.object(settings, "jwt_secret", None):
            resp = whoami.get("/whoami", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.json()["kind"] == "ip"

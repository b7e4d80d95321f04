"""
Generator Client

Thin async client for an OpenAI-compatible chat completions endpoint (Groq by
default). Failures are classified into the generator error taxonomy so the
pipeline can map each one to a distinct user-facing message:

- missing API key, HTTP 401/403/404 -> GeneratorMisconfigured
- HTTP 429                          -> GeneratorRateLimited
- anything else (timeouts, 5xx, transport, malformed payload)
                                    -> GeneratorUnavailable

The client performs no retries; retry is the caller's decision.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, NamedTuple, Optional

import httpx

from ..config import settings
from ..core.errors import (
    GeneratorMisconfigured,
    GeneratorRateLimited,
    GeneratorUnavailable,
)

logger = logging.getLogger("taqwa.generator")

_MISCONFIGURED_STATUSES = {401, 403, 404}


class TokenUsage(NamedTuple):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Completion(NamedTuple):
    text: str
    usage: TokenUsage


class GeneratorClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if api_key is None and settings.generator_api_key is not None:
            api_key = settings.generator_api_key.get_secret_value()
        self.api_key = api_key
        self.base_url = str(base_url or settings.generator_base_url)
        self.timeout = timeout if timeout is not None else settings.generator_timeout
        self._transport = transport

    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Completion:
        """
        Run one non-streaming chat completion.

        `messages` is the ordered list of role-tagged blocks, e.g.:
        [
            {"role": "system", "content": "..."},
            {"role": "user", "content": "..."}
        ]
        """
        if not self.api_key:
            raise GeneratorMisconfigured("Generator API key is not configured")

        payload: Dict[str, Any] = {
            "model": model or settings.generator_model,
            "messages": messages,
            "max_tokens": max_tokens or settings.generator_max_tokens,
            "temperature": settings.generator_temperature if temperature is None else temperature,
            "top_p": settings.generator_top_p,
            "stream": False,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.base_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.error("Generator returned HTTP %d", status_code)
            if status_code == 429:
                raise GeneratorRateLimited(f"Generator rate limited (HTTP {status_code})") from exc
            if status_code in _MISCONFIGURED_STATUSES:
                raise GeneratorMisconfigured(f"Generator rejected request (HTTP {status_code})") from exc
            raise GeneratorUnavailable(f"Generator failed (HTTP {status_code})") from exc
        except httpx.HTTPError as exc:
            logger.error("Generator request failed (%s)", type(exc).__name__)
            raise GeneratorUnavailable(f"Generator request failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise GeneratorUnavailable("Generator returned invalid JSON") from exc

        return self._extract_completion(data)

    @staticmethod
    def _extract_completion(data: Any) -> Completion:
        """
        Parse the OpenAI-style response:
            {"choices": [{"message": {"content": "..."}}], "usage": {...}}
        """
        try:
            message = data["choices"][0]["message"]
            text = message.get("content") or ""

            raw_usage = data.get("usage") or {}
            usage = TokenUsage(
                prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
                completion_tokens=int(raw_usage.get("completion_tokens") or 0),
                total_tokens=int(raw_usage.get("total_tokens") or 0),
            )
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            raise GeneratorUnavailable("Malformed generator response") from exc
        return Completion(text=text, usage=usage)

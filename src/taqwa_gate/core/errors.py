"""
Error Taxonomy and Global Error Handling

This module defines the exception hierarchy used across the request-admission
pipeline, plus the FastAPI exception handlers that turn anything escaping the
pipeline into a deterministic response.

Design Goals
------------
- Never leak internal exception details to clients
- Always return deterministic, machine-readable error responses
- Log full stack traces internally for debugging
- Keep each failure class mapped to exactly one `ErrorKind`
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

from fastapi import Request
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from ..guard.models import ValidationVerdict
    from ..db.rate_limiter import QuotaStatus

logger = logging.getLogger("taqwa.errors")


class ErrorKind(str, Enum):
    """Machine-readable failure category carried by a GenerationResult."""

    BLOCKED_BY_POLICY = "blocked_by_policy"
    MALFORMED_INPUT = "malformed_input"
    QUOTA_EXCEEDED = "quota_exceeded"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    GENERATOR_UNAVAILABLE = "generator_unavailable"
    GENERATOR_RATE_LIMITED = "generator_rate_limited"
    GENERATOR_MISCONFIGURED = "generator_misconfigured"
    NOT_FOUND = "not_found"


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class TaqwaGateError(RuntimeError):
    """Base class for all pipeline failures."""

    kind: ErrorKind = ErrorKind.GENERATOR_UNAVAILABLE
    user_message: str = (
        "I apologize, but I'm unable to process this request at the moment. "
        "Please try again or rephrase your question."
    )


class BlockedByPolicy(TaqwaGateError):
    """Prompt or response hit the safety validator. User-facing, not a bug."""

    kind = ErrorKind.BLOCKED_BY_POLICY

    def __init__(self, verdict: "ValidationVerdict") -> None:
        super().__init__(verdict.reason_code.value)
        self.verdict = verdict
        self.user_message = verdict.user_message


class MalformedInput(TaqwaGateError):
    """Empty or oversized question, rejected before any network call."""

    kind = ErrorKind.MALFORMED_INPUT

    def __init__(self, verdict: "ValidationVerdict") -> None:
        super().__init__(verdict.reason_code.value)
        self.verdict = verdict
        self.user_message = verdict.user_message


class QuotaExceeded(TaqwaGateError):
    """Admission denied by the rate limiter."""

    kind = ErrorKind.QUOTA_EXCEEDED
    user_message = "Rate limit exceeded. Please try again later."

    def __init__(self, status: "QuotaStatus") -> None:
        super().__init__(f"quota exceeded, retry after {status.retry_after}s")
        self.status = status


class ProviderUnavailable(TaqwaGateError):
    """A reference provider failed. Always absorbed by reference fusion."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE


class GeneratorError(TaqwaGateError):
    """Base class for generator transport and provider failures."""

    kind = ErrorKind.GENERATOR_UNAVAILABLE


class GeneratorUnavailable(GeneratorError):
    """Generator could not be reached or returned an unusable payload."""


class GeneratorRateLimited(GeneratorError):
    kind = ErrorKind.GENERATOR_RATE_LIMITED
    user_message = "I'm currently experiencing high demand. Please try again in a moment."


class GeneratorMisconfigured(GeneratorError):
    kind = ErrorKind.GENERATOR_MISCONFIGURED
    user_message = "There was a configuration error. Please contact support."


class ReferenceNotFound(TaqwaGateError):
    """A verse or narration requested by reference does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


class InvalidReference(TaqwaGateError):
    """A verse or narration reference is out of range or malformed."""

    kind = ErrorKind.MALFORMED_INPUT

    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


class StoreError(RuntimeError):
    """Raised when the durable key-value store cannot complete a transaction."""


# Pipeline failures are 200s with success=false, except these.
_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.QUOTA_EXCEEDED: 429,
    ErrorKind.PROVIDER_UNAVAILABLE: 503,
}


def rate_limit_headers(status: "QuotaStatus") -> Dict[str, str]:
    """`X-RateLimit-*` headers, plus `Retry-After` on a denial."""
    headers = {
        "X-RateLimit-Limit": str(status.limit),
        "X-RateLimit-Remaining": str(status.remaining),
        "X-RateLimit-Reset": str(-(-status.reset_at // 1000)),
    }
    if status.retry_after is not None:
        headers["Retry-After"] = str(status.retry_after)
    return headers


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def taqwa_error_handler(
    request: Request,
    exc: TaqwaGateError,
) -> JSONResponse:
    """
    Translate a pipeline error that escaped a route into a structured body.

    The answer is the error's canned user message; the internal exception
    text is logged but never returned.
    """
    logger.warning(
        "Pipeline error during request %s %s: %s",
        request.method,
        request.url.path,
        type(exc).__name__,
    )

    status_code = _STATUS_BY_KIND.get(exc.kind, 200)
    headers: Optional[Dict[str, str]] = None
    payload: Dict[str, Any] = {
        "success": False,
        "answer": exc.user_message,
        "sources": [],
        "error_kind": exc.kind.value,
    }
    if isinstance(exc, QuotaExceeded):
        payload["retry_after"] = exc.status.retry_after
        headers = rate_limit_headers(exc.status)

    return JSONResponse(status_code=status_code, content=payload, headers=headers)


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.
    - Ensures consistent error response format across the entire API.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : Exception
        The uncaught exception instance.

    Returns
    -------
    JSONResponse
        A JSON 500 response with a minimal error payload.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )

"""
API Models

Request and response payloads for the HTTP surface. Orchestrator results are
returned as `GenerationResult` directly; only inputs and the quota status
need their own schema here.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------

class AskRequest(BaseModel):
    """
    A free-text question.

    Length bounds are enforced by the prompt guard so that oversized input
    gets the canned message instead of a 422.
    """
    question: str

    model_config = ConfigDict(extra="forbid")


class QuotaCheckRequest(BaseModel):
    action: str = Field(default="ask", min_length=1, max_length=64)

    model_config = ConfigDict(extra="forbid")


class VerseExplainRequest(BaseModel):
    surah: int = Field(..., ge=1, le=114)
    ayah: int = Field(..., ge=1)

    model_config = ConfigDict(extra="forbid")


class NarrationExplainRequest(BaseModel):
    collection: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z]+$")
    number: str = Field(..., min_length=1, max_length=32)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------

class QuotaResponse(BaseModel):
    allowed: bool
    remaining: int = Field(..., ge=0)
    limit: int = Field(..., ge=0)
    reset_at: int
    retry_after: Optional[int] = None
    error: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

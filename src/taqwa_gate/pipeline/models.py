"""
Pipeline Models

The pipeline state machine and the terminal `GenerationResult` artifact
returned by every orchestrator operation.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import ErrorKind
from ..db.rate_limiter import QuotaStatus
from ..guard.models import ReasonCode
from ..references.models import NarrationDetail, ReferenceBundle, VerseDetail


class PipelineState(str, Enum):
    RECEIVED = "received"
    PROMPT_VALIDATED = "prompt_validated"
    REFERENCES_GATHERED = "references_gathered"
    GENERATED = "generated"
    RESPONSE_VALIDATED = "response_validated"
    NORMALIZED = "normalized"
    DELIVERED = "delivered"
    REJECTED_BY_PROMPT_GUARD = "rejected_by_prompt_guard"
    REJECTED_BY_RESPONSE_GUARD = "rejected_by_response_guard"


SOURCE_QURAN = "Quran"
SOURCE_HADITH = "Hadith"
SOURCE_AI = "AI"


class UsageInfo(BaseModel):
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    model_config = ConfigDict(extra="forbid")


class GenerationResult(BaseModel):
    """
    Outcome of one pipeline run.

    `success=False` results always carry a human-readable `answer` and an
    `error_kind`; raw exception text never appears here.
    """
    success: bool
    answer: str
    sources: List[str] = Field(default_factory=list)
    references: ReferenceBundle = Field(default_factory=ReferenceBundle)
    error_kind: Optional[ErrorKind] = None
    reason_code: Optional[ReasonCode] = None
    retry_after: Optional[int] = None
    warning: bool = False
    usage: Optional[UsageInfo] = None
    state: PipelineState = PipelineState.RECEIVED

    # Admission status behind a quota denial; never serialized
    quota: Optional[QuotaStatus] = Field(default=None, exclude=True)

    # Set by the explanation operations only
    verse: Optional[VerseDetail] = None
    narration: Optional[NarrationDetail] = None

    model_config = ConfigDict(extra="forbid")

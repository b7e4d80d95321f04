"""
Ask Routes

HTTP entry points for the guarded question pipeline.

- `POST /api/ask`: the full pipeline (prompt guard, references, quota,
  generation, response guard, normalization).
- `POST /api/ask/quick`: the low-latency path. The pipeline itself skips the
  quota gate, so this route runs a pre-flight `check_quota` for the
  `ask_quick` action first.

A quota denial becomes HTTP 429 with `Retry-After`; every other failure is a
200 with `success=false` and a readable answer.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from .dependencies import get_orchestrator
from .models import AskRequest
from .quota_routes import deliver
from ..auth.models import Identity
from ..auth.security import resolve_identity
from ..core.errors import QuotaExceeded
from ..pipeline.models import GenerationResult
from ..pipeline.orchestrator import ACTION_ASK_QUICK, Orchestrator

router = APIRouter(prefix="/api/ask", tags=["ask"])


@router.post(
    "",
    response_model=GenerationResult,
    response_model_exclude_none=True,
    summary="Ask a question through the full guarded pipeline",
    status_code=status.HTTP_200_OK,
)
async def ask(
    req: AskRequest,
    identity: Annotated[Identity, Depends(resolve_identity)],
    orchestrator: Annotated[Orchestrator, Depends(get_orchestrator)],
):
    return deliver(await orchestrator.ask(req.question, identity.key))


@router.post(
    "/quick",
    response_model=GenerationResult,
    response_model_exclude_none=True,
    summary="Ask a question without reference enrichment",
    status_code=status.HTTP_200_OK,
)
async def ask_quick(
    req: AskRequest,
    identity: Annotated[Identity, Depends(resolve_identity)],
    orchestrator: Annotated[Orchestrator, Depends(get_orchestrator)],
):
    quota = await orchestrator.check_quota(identity.key, ACTION_ASK_QUICK)
    if not quota.allowed:
        raise QuotaExceeded(quota)
    return await orchestrator.quick_ask(req.question)

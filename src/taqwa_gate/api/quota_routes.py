"""
Quota Routes

Pre-flight admission check for clients, plus the helper the other routers use
to answer a quota-exceeded pipeline result with HTTP 429.
"""

from typing import Annotated, Union

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse

from .dependencies import get_orchestrator
from .models import QuotaCheckRequest, QuotaResponse
from ..auth.models import Identity
from ..auth.security import resolve_identity
from ..core.errors import ErrorKind, QuotaExceeded, rate_limit_headers
from ..pipeline.models import GenerationResult
from ..pipeline.orchestrator import Orchestrator

router = APIRouter(prefix="/api/quota", tags=["quota"])


def deliver(result: GenerationResult) -> Union[GenerationResult, JSONResponse]:
    """
    Return a pipeline result as-is, or as a 429 with `Retry-After` when the
    admission controller denied it.
    """
    if result.error_kind != ErrorKind.QUOTA_EXCEEDED:
        return result
    if result.quota is not None:
        headers = rate_limit_headers(result.quota)
    else:
        headers = {"Retry-After": str(result.retry_after or 1)}
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=result.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


@router.post(
    "/check",
    response_model=QuotaResponse,
    response_model_exclude_none=True,
    summary="Run one admission check for the caller",
)
async def check_quota(
    req: QuotaCheckRequest,
    response: Response,
    identity: Annotated[Identity, Depends(resolve_identity)],
    orchestrator: Annotated[Orchestrator, Depends(get_orchestrator)],
) -> QuotaResponse:
    quota = await orchestrator.check_quota(identity.key, req.action)
    if not quota.allowed:
        raise QuotaExceeded(quota)
    response.headers.update(rate_limit_headers(quota))
    return QuotaResponse(**quota._asdict())

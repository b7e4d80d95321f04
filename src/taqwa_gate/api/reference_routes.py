"""
Reference Routes

Verse and narration explanations (gated by the `explain` quota) and the
cached reference listings used by clients to build pickers.
"""

from typing import Annotated, Any, Dict, List

from fastapi import APIRouter, Depends

from .dependencies import get_hadith_client, get_orchestrator, get_quran_client
from .models import NarrationExplainRequest, VerseExplainRequest
from .quota_routes import deliver
from ..auth.models import Identity
from ..auth.security import resolve_identity
from ..pipeline.models import GenerationResult
from ..pipeline.orchestrator import Orchestrator
from ..references.hadith_client import HadithClient
from ..references.quran_client import QuranClient

router = APIRouter(prefix="/api", tags=["references"])


@router.post(
    "/quran/explain",
    response_model=GenerationResult,
    response_model_exclude_none=True,
    summary="Explain a single Quran verse",
)
async def explain_verse(
    req: VerseExplainRequest,
    identity: Annotated[Identity, Depends(resolve_identity)],
    orchestrator: Annotated[Orchestrator, Depends(get_orchestrator)],
):
    return deliver(await orchestrator.explain_verse(req.surah, req.ayah, identity.key))


@router.post(
    "/hadith/explain",
    response_model=GenerationResult,
    response_model_exclude_none=True,
    summary="Explain a single hadith",
)
async def explain_narration(
    req: NarrationExplainRequest,
    identity: Annotated[Identity, Depends(resolve_identity)],
    orchestrator: Annotated[Orchestrator, Depends(get_orchestrator)],
):
    return deliver(
        await orchestrator.explain_narration(req.collection, req.number, identity.key)
    )


@router.get("/quran/surahs", summary="List all surahs")
async def list_surahs(
    quran: Annotated[QuranClient, Depends(get_quran_client)],
) -> Dict[str, List[Dict[str, Any]]]:
    return {"surahs": await quran.get_all_surahs()}


@router.get("/hadith/collections", summary="List hadith collections")
async def list_collections(
    hadith: Annotated[HadithClient, Depends(get_hadith_client)],
) -> Dict[str, List[Dict[str, Any]]]:
    return {"collections": await hadith.get_collections()}

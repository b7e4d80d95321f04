from fastapi import APIRouter
from ..config import settings

router = APIRouter(tags=["health"])

@router.get("/health")
def health():
    return {
        "status": "ok",
        "generator_model": settings.generator_model,
        "rate_limit_store": settings.rate_limit_store,
    }

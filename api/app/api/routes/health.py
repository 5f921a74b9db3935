from fastapi import APIRouter, Depends

from app.services.cache import AdCache, get_cache

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health")
async def health(cache: AdCache = Depends(get_cache)) -> dict[str, str]:
    return {"status": "ok", "cache": "enabled" if cache.enabled else "disabled"}

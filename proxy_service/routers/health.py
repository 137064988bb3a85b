"""Health check routes"""

import time

from fastapi import APIRouter

from proxy_service import __version__
from proxy_service.config import settings
from proxy_service.db import check_health

router = APIRouter(tags=["Health"])


def _credentials() -> dict:
    return {
        "fmp": bool(settings.FMP_API_KEY),
        "benzinga": bool(settings.BENZINGA_API_KEY),
        "openai": bool(settings.OPENAI_API_KEY),
        "anthropic": bool(settings.ANTHROPIC_API_KEY),
    }


@router.get("/health")
async def health():
    """Service health: cache backend connections and which credentials are set"""
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "Market Proxy Service",
            "cacheBackend": settings.CACHE_BACKEND,
            "databases": await check_health(),
            "credentials": _credentials(),
        },
        "message": "Service is running",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}

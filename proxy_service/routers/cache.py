"""
Cache administration
GET  /api/cache/stats  - entries per tier for the rating and earnings caches
POST /api/cache/clear  - drop one symbol's cached results
"""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from proxy_service.models.function import ApiResponse
from proxy_service.services.earnings_service import get_earnings_service
from proxy_service.services.stock_rating_service import get_stock_rating_service

router = APIRouter(prefix="/api/cache", tags=["Cache"])

NAMESPACES = ("ratings", "earnings", "all")


class ClearRequest(BaseModel):
    symbol: str
    namespace: Optional[str] = "all"


@router.get("/stats", response_model=ApiResponse)
async def cache_stats():
    """Memory entries and persistent backend status per cache"""
    return ApiResponse.ok(data={
        "ratings": await get_stock_rating_service().cache.stats(),
        "earnings": await get_earnings_service().cache.stats(),
    })


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(body: ClearRequest):
    """Remove a symbol from the rating and/or earnings caches (both tiers)"""
    namespace = (body.namespace or "all").lower()
    if namespace not in NAMESPACES:
        return ApiResponse.fail(error=f"Unknown namespace: {namespace}", message=", ".join(NAMESPACES))

    symbol = body.symbol.upper()
    if namespace in ("ratings", "all"):
        await get_stock_rating_service().clear(symbol)
    if namespace in ("earnings", "all"):
        await get_earnings_service().clear(symbol)

    return ApiResponse.ok(message=f"Cache cleared: {namespace}:{symbol}")

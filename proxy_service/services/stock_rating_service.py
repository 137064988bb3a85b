"""
Stock rating service
Cache lookup → snapshot fetch → technicals → recommendation → write-through.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from proxy_service.clients.llm import build_llm_provider
from proxy_service.config import settings
from proxy_service.layers.acquisition import AcquisitionLayer, get_acquisition_layer
from proxy_service.layers.analysis import AnalysisLayer, get_analysis_layer
from proxy_service.layers.cache import TieredCache, build_persistent_store, get_memory_cache, make_key
from proxy_service.layers.recommendation import RecommendationEngine

logger = logging.getLogger(__name__)

_STORE_NS = "ratings"


class StockRatingService:
    """Rating payload ``{recommendation, fetchedData}`` per symbol"""

    def __init__(
        self,
        acquisition: Optional[AcquisitionLayer] = None,
        analysis: Optional[AnalysisLayer] = None,
        engine: Optional[RecommendationEngine] = None,
        cache: Optional[TieredCache] = None,
    ):
        self._acq = acquisition or get_acquisition_layer()
        self._analysis = analysis or get_analysis_layer()
        self._engine = engine or RecommendationEngine(build_llm_provider())
        self._cache = cache or TieredCache(
            get_memory_cache(),
            build_persistent_store(_STORE_NS),
            memory_ttl=settings.PREDICTION_MEMORY_TTL,
            max_age_hours=settings.PREDICTION_MAX_AGE_HOURS,
        )

    @property
    def cache(self) -> TieredCache:
        return self._cache

    async def clear(self, symbol: str) -> None:
        """Drop the cached rating and the raw snapshot for ``symbol``"""
        symbol = symbol.upper()
        await self._cache.delete(make_key("prediction", symbol), store_key=symbol)
        self._cache.memory.delete(make_key("data", symbol))

    async def get_rating(self, symbol: str, force_refresh: bool = False) -> Tuple[Dict[str, Any], bool]:
        """
        Returns ``(payload, from_cache)``.

        Args:
            symbol: ticker, any case
            force_refresh: skip both cache tiers on read (the result is still written)
        """
        symbol = symbol.upper()
        key = make_key("prediction", symbol)

        if not force_refresh:
            cached = await self._cache.get(key, store_key=symbol)
            if cached is not None:
                logger.info(f"Serving cached rating for {symbol}")
                return cached, True

        snapshot = await self._acq.fetch_snapshot(symbol)
        technicals = self._analysis.compute_technicals(snapshot.price_history)
        recommendation = await self._engine.recommend(symbol, snapshot, technicals)

        fetched = snapshot.to_dict()
        fetched["technicalAnalysis"] = technicals.to_dict() if technicals else None
        payload = {"recommendation": recommendation.to_dict(), "fetchedData": fetched}

        await self._cache.set(key, payload, store_key=symbol)
        logger.info(
            f"Rating for {symbol}: {recommendation.action.value} "
            f"({recommendation.produced_by.value}, confidence {recommendation.confidence})"
        )
        return payload, False


# ── Module-level singleton ────────────────────────────────
_service: Optional[StockRatingService] = None


def get_stock_rating_service() -> StockRatingService:
    global _service
    if _service is None:
        _service = StockRatingService()
    return _service

"""
Earnings services
Per-symbol earnings history (tiered cache + endpoint fallback chain) and the
market-wide earnings calendar (memory cache).
"""

import logging
from typing import Any, Dict, Optional, Tuple

from proxy_service.config import settings
from proxy_service.exceptions import InvalidRequestError, NoDataError
from proxy_service.layers.acquisition import AcquisitionLayer, get_acquisition_layer
from proxy_service.layers.cache import (
    MemoryCache,
    TieredCache,
    build_persistent_store,
    get_memory_cache,
    make_key,
)

logger = logging.getLogger(__name__)

_STORE_NS = "earnings"
PERIODS = ("quarterly", "annual")


class EarningsService:
    def __init__(
        self,
        acquisition: Optional[AcquisitionLayer] = None,
        cache: Optional[TieredCache] = None,
    ):
        self._acq = acquisition or get_acquisition_layer()
        self._cache = cache or TieredCache(
            get_memory_cache(),
            build_persistent_store(_STORE_NS),
            memory_ttl=settings.EARNINGS_CACHE_TTL,
            max_age_hours=settings.EARNINGS_MAX_AGE_HOURS,
        )

    @property
    def cache(self) -> TieredCache:
        return self._cache

    @staticmethod
    def cache_keys(symbol: str, period: str) -> Tuple[str, str]:
        """(memory key, persistent key)"""
        return make_key("earnings", symbol, period), f"{symbol}_{period.upper()}"

    async def clear(self, symbol: str) -> None:
        for period in PERIODS:
            key, store_key = self.cache_keys(symbol.upper(), period)
            await self._cache.delete(key, store_key=store_key)

    async def get_earnings(self, symbol: str, period: str = "quarterly") -> Tuple[Dict[str, Any], bool]:
        """``({symbol, period, source, earnings}, from_cache)``; nothing found → NoDataError"""
        symbol = symbol.upper()
        period = (period or "quarterly").lower()
        if period not in PERIODS:
            raise InvalidRequestError(f"Invalid period: {period}", details=list(PERIODS))

        key, store_key = self.cache_keys(symbol, period)
        cached = await self._cache.get(key, store_key=store_key)
        if cached is not None:
            return cached, True

        records, source = await self._acq.fetch_earnings(symbol, period)
        if not records:
            raise NoDataError(f"No earnings data available for {symbol}", symbol=symbol)

        payload = {
            "symbol": symbol,
            "period": period,
            "source": source,
            "earnings": [r.to_dict() for r in records],
        }
        await self._cache.set(key, payload, store_key=store_key)
        return payload, False


class EarningsCalendarService:
    def __init__(
        self,
        acquisition: Optional[AcquisitionLayer] = None,
        memory: Optional[MemoryCache] = None,
        ttl: Optional[int] = None,
    ):
        self._acq = acquisition or get_acquisition_layer()
        self._memory = memory if memory is not None else get_memory_cache()
        self._ttl = ttl or settings.EARNINGS_CACHE_TTL

    async def get_calendar(self, start: Optional[str] = None, end: Optional[str] = None) -> Tuple[Dict[str, Any], bool]:
        key = make_key("calendar", start or "default", end or "default")
        cached = self._memory.get(key)
        if cached is not None:
            return cached, True

        rows = await self._acq.fetch_earnings_calendar(start, end)
        logger.info(f"Earnings calendar {start or '-'}..{end or '-'}: {len(rows)} rows")
        payload = {"earningsCalendar": rows}
        self._memory.set(key, payload, self._ttl)
        return payload, False


# ── Module-level singletons ───────────────────────────────
_earnings: Optional[EarningsService] = None
_calendar: Optional[EarningsCalendarService] = None


def get_earnings_service() -> EarningsService:
    global _earnings
    if _earnings is None:
        _earnings = EarningsService()
    return _earnings


def get_earnings_calendar_service() -> EarningsCalendarService:
    global _calendar
    if _calendar is None:
        _calendar = EarningsCalendarService()
    return _calendar

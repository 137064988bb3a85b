"""
Financial Modeling Prep REST client
All calls are keyed by the server-held API key passed as the ``apikey`` query
parameter. Methods return decoded JSON; shaping happens in the acquisition layer.
"""

from typing import Any, Dict, Iterable, Optional

import httpx

from proxy_service.clients.http import get_http_client, get_json
from proxy_service.config import settings
from proxy_service.exceptions import ConfigurationError


class FMPClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        stable_url: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = settings.FMP_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.FMP_BASE_URL).rstrip("/")
        self.stable_url = (stable_url or settings.FMP_STABLE_URL).rstrip("/")
        self._http = http

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http or get_http_client()

    def require_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("API key is not configured")
        return self.api_key

    async def _get(self, path: str, **params: Any) -> Any:
        query = {k: v for k, v in params.items() if v is not None}
        query["apikey"] = self.require_key()
        return await get_json(self.http, f"{self.base_url}/{path}", params=query, label=path)

    # ── Company data ──────────────────────────────────────

    async def quote(self, symbols: str) -> Any:
        return await self._get(f"quote/{symbols}")

    async def profile(self, symbols: str) -> Any:
        return await self._get(f"profile/{symbols}")

    async def income_statement(self, symbol: str, limit: int = 1, period: Optional[str] = None) -> Any:
        return await self._get(f"income-statement/{symbol}", limit=limit, period=period)

    async def balance_sheet(self, symbol: str, limit: int = 1) -> Any:
        return await self._get(f"balance-sheet-statement/{symbol}", limit=limit)

    async def historical_prices(self, symbol: str, start: Optional[str] = None) -> Any:
        return await self._get(f"historical-price-full/{symbol}", **{"from": start})

    async def ratios_ttm(self, symbol: str) -> Any:
        return await self._get(f"ratios-ttm/{symbol}")

    # ── Earnings ──────────────────────────────────────────

    async def historical_earnings(self, symbol: str, limit: int = 12) -> Any:
        return await self._get(f"historical/earning_calendar/{symbol}", limit=limit)

    async def earnings_surprises(self, symbol: str) -> Any:
        return await self._get(f"earnings-surprises/{symbol}")

    async def earnings_calendar(self, start: Optional[str] = None, end: Optional[str] = None) -> Any:
        return await self._get("earning_calendar", **{"from": start, "to": end})

    # ── Generic proxy ─────────────────────────────────────

    async def stable(self, endpoint: str, params: Dict[str, Any]) -> Any:
        """GET /stable/<endpoint>; a caller-supplied apikey is replaced by ours"""
        query = {k: v for k, v in params.items() if k not in ("apikey", "endpoint")}
        query["apikey"] = self.require_key()
        endpoint = endpoint.strip("/")
        return await get_json(self.http, f"{self.stable_url}/{endpoint}", params=query, label=endpoint)


def join_symbols(symbols: Iterable[str]) -> str:
    return ",".join(symbols)

"""Benzinga news and earnings-calendar client (token passed as query parameter)"""

import json
from typing import Any, Optional

import httpx

from proxy_service.clients.http import get_http_client, get_json
from proxy_service.config import settings
from proxy_service.exceptions import ConfigurationError

_JSON = {"Accept": "application/json"}


class BenzingaClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = settings.BENZINGA_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.BENZINGA_BASE_URL).rstrip("/")
        self._http = http

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http or get_http_client()

    def require_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("API configuration error")
        return self.api_key

    async def news(self, ticker: Optional[str] = None, page_size: int = 10) -> Any:
        params = {
            "token": self.require_key(),
            "pageSize": page_size,
            "displayOutput": "full",
            "sortBy": "date",
            "sortDirection": "desc",
        }
        if ticker:
            params["tickers"] = ticker
        return await get_json(self.http, f"{self.base_url}/v2/news", params=params, headers=_JSON, label="v2/news")

    async def bulls_bears(self, ticker: str) -> Any:
        params = {"token": self.require_key(), "symbols": ticker}
        return await get_json(
            self.http,
            f"{self.base_url}/v1/bulls_bears_say",
            params=params,
            headers=_JSON,
            label="v1/bulls_bears_say",
        )

    async def earnings(self, symbol: str, annual: bool = False) -> Any:
        """v2.1 earnings calendar; filters travel JSON-encoded in ``parameters``"""
        filters = {"symbols": symbol}
        if annual:
            filters["annualOnly"] = True
        params = {"token": self.require_key(), "parameters": json.dumps(filters)}
        return await get_json(
            self.http,
            f"{self.base_url}/v2.1/calendar/earnings",
            params=params,
            headers=_JSON,
            label="v2.1/calendar/earnings",
        )

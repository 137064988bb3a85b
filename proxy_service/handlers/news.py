"""
news:      GET ?ticker=&pageSize=10 → {news}
bull-bear: GET ?ticker=             → Benzinga bulls/bears passthrough
"""

from typing import Optional

from proxy_service.clients.benzinga import BenzingaClient
from proxy_service.exceptions import InvalidRequestError
from proxy_service.handlers.common import function_handler, json_response
from proxy_service.models.function import FunctionEvent, FunctionResult

DEFAULT_PAGE_SIZE = 10


@function_handler
async def handle(event: FunctionEvent, client: Optional[BenzingaClient] = None) -> FunctionResult:
    client = client or BenzingaClient()
    try:
        page_size = int(event.query("pageSize", str(DEFAULT_PAGE_SIZE)))
    except ValueError:
        raise InvalidRequestError("pageSize must be an integer")

    items = await client.news(ticker=event.query("ticker"), page_size=page_size)
    return json_response(event, 200, {"news": items if isinstance(items, list) else []})


@function_handler
async def handle_bull_bear(event: FunctionEvent, client: Optional[BenzingaClient] = None) -> FunctionResult:
    ticker = event.query("ticker")
    if not ticker:
        raise InvalidRequestError("Ticker symbol is required")

    client = client or BenzingaClient()
    return json_response(event, 200, await client.bulls_bears(ticker.upper()))

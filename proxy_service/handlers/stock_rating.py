"""stock-rating: GET ?symbol=&refresh= → {recommendation, fetchedData}"""

from typing import Optional

from proxy_service.exceptions import InvalidRequestError
from proxy_service.handlers.common import flag, function_handler, json_response
from proxy_service.models.function import FunctionEvent, FunctionResult
from proxy_service.services.stock_rating_service import StockRatingService, get_stock_rating_service


@function_handler
async def handle(event: FunctionEvent, service: Optional[StockRatingService] = None) -> FunctionResult:
    symbol = event.query("symbol")
    if not symbol:
        raise InvalidRequestError("Symbol parameter is required")

    service = service or get_stock_rating_service()
    payload, from_cache = await service.get_rating(symbol, force_refresh=flag(event.query("refresh")))
    return json_response(event, 200, payload, from_cache=from_cache)

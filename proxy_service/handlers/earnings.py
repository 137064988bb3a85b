"""
earnings:          GET ?symbol=&period=quarterly|annual → {symbol, period, source, earnings}
earnings-calendar: GET ?from=&to=                       → {earningsCalendar}
"""

from typing import Optional

from proxy_service.exceptions import InvalidRequestError
from proxy_service.handlers.common import function_handler, json_response, resolve_symbol
from proxy_service.models.function import FunctionEvent, FunctionResult
from proxy_service.services.earnings_service import (
    EarningsCalendarService,
    EarningsService,
    get_earnings_calendar_service,
    get_earnings_service,
)


@function_handler
async def handle(event: FunctionEvent, service: Optional[EarningsService] = None) -> FunctionResult:
    symbol = resolve_symbol(event, "earnings")
    if not symbol:
        raise InvalidRequestError("Symbol parameter is required")

    service = service or get_earnings_service()
    payload, from_cache = await service.get_earnings(symbol, event.query("period", "quarterly"))
    return json_response(event, 200, payload, from_cache=from_cache)


@function_handler
async def handle_calendar(event: FunctionEvent, service: Optional[EarningsCalendarService] = None) -> FunctionResult:
    service = service or get_earnings_calendar_service()
    payload, from_cache = await service.get_calendar(event.query("from"), event.query("to"))
    return json_response(event, 200, payload, from_cache=from_cache)

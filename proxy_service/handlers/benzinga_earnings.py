"""
benzinga-earnings: GET ?symbol=&period=quarterly|annual → {earnings}
Straight from the Benzinga earnings calendar, no cache and no FMP fallback.
"""

from datetime import date
from typing import Optional

from proxy_service.clients.benzinga import BenzingaClient
from proxy_service.exceptions import (
    InvalidRequestError,
    NoDataError,
    UpstreamError,
    UpstreamUnreachableError,
)
from proxy_service.handlers.common import function_handler, json_response
from proxy_service.layers.processing import get_processing_layer
from proxy_service.models.function import FunctionEvent, FunctionResult
from proxy_service.models.upstream import BenzingaEarning, parse_rows
from proxy_service.services.earnings_service import PERIODS


@function_handler
async def handle(
    event: FunctionEvent,
    client: Optional[BenzingaClient] = None,
    today: Optional[date] = None,
) -> FunctionResult:
    symbol = (event.query("symbol") or "").strip().upper()
    if not symbol:
        raise InvalidRequestError("Missing required parameter: symbol")
    period = (event.query("period") or "quarterly").lower()
    if period not in PERIODS:
        raise InvalidRequestError(f"Invalid period: {period}", details=list(PERIODS))

    client = client or BenzingaClient()
    try:
        payload = await client.earnings(symbol, annual=period == "annual")
    except UpstreamUnreachableError as exc:
        raise UpstreamError("No response received from API", upstream_status=503, details=exc.details, symbol=symbol)

    rows = parse_rows(BenzingaEarning, payload.get("earnings") if isinstance(payload, dict) else None)
    records = get_processing_layer().earnings_from_benzinga(rows, symbol, today or date.today())
    if not records:
        raise NoDataError(f"No earnings data available for {symbol}", symbol=symbol)
    return json_response(event, 200, {"earnings": [r.to_dict() for r in records]})

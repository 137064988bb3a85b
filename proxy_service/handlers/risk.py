"""risk: GET ?symbol= → {stockData, riskData, aiAnalysis}"""

from typing import Optional

from proxy_service.exceptions import InvalidRequestError
from proxy_service.handlers.common import function_handler, json_response
from proxy_service.models.function import FunctionEvent, FunctionResult
from proxy_service.services.risk_service import RiskService, get_risk_service


@function_handler
async def handle(event: FunctionEvent, service: Optional[RiskService] = None) -> FunctionResult:
    symbol = event.query("symbol")
    if not symbol:
        raise InvalidRequestError("Stock symbol is required")

    service = service or get_risk_service()
    return json_response(event, 200, await service.get_risk(symbol))

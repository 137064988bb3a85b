"""fmp: POST {endpoint, ...params} → JSON from the FMP stable API"""

from typing import Optional

from proxy_service.clients.fmp import FMPClient
from proxy_service.exceptions import InvalidRequestError
from proxy_service.handlers.common import function_handler, json_response
from proxy_service.models.function import FunctionEvent, FunctionResult


@function_handler
async def handle(event: FunctionEvent, client: Optional[FMPClient] = None) -> FunctionResult:
    client = client or FMPClient()
    client.require_key()

    params = event.json_body()
    endpoint = params.get("endpoint")
    if not endpoint or not isinstance(endpoint, str):
        raise InvalidRequestError("Endpoint parameter is required")

    return json_response(event, 200, await client.stable(endpoint, params))

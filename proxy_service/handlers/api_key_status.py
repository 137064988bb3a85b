"""api-key-status: GET → masked market-data key and its length"""

from typing import Optional

from proxy_service.config import settings
from proxy_service.exceptions import ConfigurationError
from proxy_service.handlers.common import function_handler, json_response
from proxy_service.models.function import FunctionEvent, FunctionResult


def mask_key(key: str) -> str:
    return f"{key[:4]}...{key[-4:]}"


@function_handler
async def handle(event: FunctionEvent, api_key: Optional[str] = None) -> FunctionResult:
    key = settings.FMP_API_KEY if api_key is None else api_key
    if not key:
        raise ConfigurationError("API key not found in environment variables")
    return json_response(event, 200, {
        "message": "API key retrieved successfully",
        "maskedKey": mask_key(key),
        "keyLength": len(key),
    })

"""
Contract shared by every function
  OPTIONS                → 204 + CORS headers, empty body
  ProxyServiceError      → its status and ``to_body()``
  anything else          → 500 {error, details}, logged with traceback
  success                → 200, Cache-Control by cache provenance
"""

import functools
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import parse_qs, urlparse

from proxy_service.config import settings
from proxy_service.exceptions import ProxyServiceError
from proxy_service.models.function import FunctionEvent, FunctionResult

logger = logging.getLogger(__name__)

CACHED = "public, max-age=3600"
NO_CACHE = "no-cache"

Handler = Callable[..., Awaitable[FunctionResult]]


def cors_headers(event: FunctionEvent) -> Dict[str, str]:
    allowed = settings.ALLOWED_ORIGINS
    origin = event.header("origin")
    if "*" in allowed:
        allow_origin = "*"
    elif origin and origin in allowed:
        allow_origin = origin
    else:
        allow_origin = allowed[0] if allowed else "*"
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
    }


def json_response(event: FunctionEvent, status_code: int, body: Any, from_cache: bool = False) -> FunctionResult:
    headers = cors_headers(event)
    headers["Content-Type"] = "application/json"
    headers["Cache-Control"] = CACHED if from_cache else NO_CACHE
    return FunctionResult(
        status_code=status_code,
        headers=headers,
        body=json.dumps(body, ensure_ascii=False, default=str),
    )


def error_response(event: FunctionEvent, exc: ProxyServiceError) -> FunctionResult:
    return json_response(event, exc.status_code or 500, exc.to_body())


def function_handler(func: Handler) -> Handler:
    """Wrap a handler with preflight handling and error-to-response mapping"""

    @functools.wraps(func)
    async def wrapper(event: FunctionEvent, *args, **kwargs) -> FunctionResult:
        if event.http_method.upper() == "OPTIONS":
            return FunctionResult(status_code=204, headers=cors_headers(event), body="")
        try:
            return await func(event, *args, **kwargs)
        except ProxyServiceError as exc:
            log = logger.error if exc.status_code >= 500 else logger.info
            log(f"{func.__module__}: {exc.status_code} {exc.message} (symbol={exc.symbol})")
            return error_response(event, exc)
        except Exception as exc:
            logger.error(f"{func.__module__}: unhandled error: {exc}", exc_info=True)
            return json_response(event, 500, {"error": "Failed to process request", "details": str(exc)})

    return wrapper


def resolve_symbol(event: FunctionEvent, function_name: str) -> Optional[str]:
    """
    Symbol from ``?symbol=``, else the last path segment, else the referer's
    ``symbol`` / ``ticker`` query parameter.
    """
    symbol = event.query("symbol")
    if symbol:
        return symbol.upper()

    segment = event.path.rstrip("/").rsplit("/", 1)[-1]
    if segment and segment not in (function_name, "functions"):
        return segment.upper()

    referer = event.header("referer")
    if referer:
        params = parse_qs(urlparse(referer).query)
        for name in ("symbol", "ticker"):
            if params.get(name):
                return params[name][0].upper()
    return None


def flag(value: Optional[str]) -> bool:
    return (value or "").lower() in ("1", "true", "yes")

"""
Function hosting
GET / POST / OPTIONS /functions/{name}[/{rest}] → FunctionEvent → handler → FunctionResult
"""

import logging
from typing import Dict

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from proxy_service.handlers import (
    api_key_status,
    benzinga_earnings,
    completion,
    earnings,
    fmp_proxy,
    news,
    risk,
    stock_rating,
)
from proxy_service.handlers.common import Handler
from proxy_service.models.function import FunctionEvent, FunctionResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["Functions"])

HANDLERS: Dict[str, Handler] = {
    "stock-rating": stock_rating.handle,
    "earnings": earnings.handle,
    "earnings-calendar": earnings.handle_calendar,
    "benzinga-earnings": benzinga_earnings.handle,
    "news": news.handle,
    "bull-bear": news.handle_bull_bear,
    "fmp": fmp_proxy.handle,
    "completion": completion.handle,
    "risk": risk.handle,
    "api-key-status": api_key_status.handle,
}

_METHODS = ["GET", "POST", "OPTIONS"]


async def to_event(request: Request) -> FunctionEvent:
    body = await request.body()
    return FunctionEvent(
        http_method=request.method,
        path=request.url.path,
        query_string_parameters=dict(request.query_params),
        headers=dict(request.headers),
        body=body.decode("utf-8", errors="replace") if body else None,
    )


def to_response(result: FunctionResult) -> Response:
    return Response(
        content=result.body,
        status_code=result.status_code,
        headers=result.headers,
    )


async def _dispatch(name: str, request: Request) -> Response:
    handler = HANDLERS.get(name)
    if handler is None:
        return JSONResponse(status_code=404, content={"error": f"Unknown function: {name}"})
    result = await handler(await to_event(request))
    logger.debug(f"{request.method} /functions/{name} → {result.status_code}")
    return to_response(result)


@router.api_route("/{name}", methods=_METHODS)
async def invoke(name: str, request: Request):
    """Run one function"""
    return await _dispatch(name, request)


@router.api_route("/{name}/{rest:path}", methods=_METHODS, include_in_schema=False)
async def invoke_with_path(name: str, rest: str, request: Request):
    return await _dispatch(name, request)

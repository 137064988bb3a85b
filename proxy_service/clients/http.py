"""Shared httpx.AsyncClient for every outbound call"""

import logging
from typing import Any, Dict, Optional

import httpx

from proxy_service.config import settings
from proxy_service.exceptions import UpstreamError, UpstreamUnreachableError

logger = logging.getLogger(__name__)

_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)
    return _client


async def close_http_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("HTTP client closed")


def response_details(response: httpx.Response) -> Any:
    """Upstream error body, JSON when possible"""
    try:
        return response.json()
    except ValueError:
        return response.text or None


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    label: Optional[str] = None,
) -> Any:
    """
    GET ``url`` and decode JSON.

    Raises UpstreamError carrying the upstream status for non-2xx answers and
    no status for transport failures or undecodable bodies. ``label`` names
    the call in logs so credentials in the query string never get logged.
    """
    label = label or url
    try:
        response = await client.get(url, params=params, headers=headers)
    except httpx.HTTPError as exc:
        logger.warning(f"Upstream transport failure ({label}): {exc}")
        raise UpstreamUnreachableError(f"Request to {label} failed", details=str(exc))

    if response.is_error:
        logger.warning(f"Upstream answered {response.status_code} ({label})")
        raise UpstreamError(
            f"API Error: {response.status_code} - {response.reason_phrase}",
            upstream_status=response.status_code,
            details=response_details(response),
        )
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamError(f"Malformed JSON from {label}", details=str(exc))

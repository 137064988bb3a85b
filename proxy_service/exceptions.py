"""
Error taxonomy shared by all functions.

Every error carries the HTTP status it surfaces as and renders a JSON body with
at least an ``error`` field.
"""

from typing import Any, Dict, Optional


class ProxyServiceError(Exception):
    status_code = 500

    def __init__(
        self,
        message: str,
        details: Any = None,
        symbol: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.symbol = symbol
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        if self.symbol:
            body["symbol"] = self.symbol
        return body


class ConfigurationError(ProxyServiceError):
    """A server-side credential or setting is missing."""

    status_code = 500


class InvalidRequestError(ProxyServiceError):
    """Missing parameter or unparseable body."""

    status_code = 400


class NoDataError(ProxyServiceError):
    status_code = 404

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body["noData"] = True
        return body


class CacheError(ProxyServiceError):
    """Persistent cache tier I/O failure; always treated as a miss."""


class _RemoteCallError(ProxyServiceError):
    """Failure of a remote call; mirrors the remote status when one was received."""

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        response: Any = None,
        details: Any = None,
        symbol: Optional[str] = None,
    ):
        super().__init__(message, details=details, symbol=symbol, status_code=upstream_status)
        self.upstream_status = upstream_status
        self.response = response

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        if self.response is not None:
            body["response"] = self.response
        return body


class UpstreamError(_RemoteCallError):
    """Non-2xx, transport failure or malformed JSON from a data provider."""


class LLMError(_RemoteCallError):
    """Transport failure, non-2xx or unusable content from an LLM provider."""


class UpstreamUnreachableError(UpstreamError):
    """The request never got an answer (connect / read / timeout)."""

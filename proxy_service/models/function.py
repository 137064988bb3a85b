"""Request / response envelopes: serverless function events and the admin API"""

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from proxy_service.exceptions import InvalidRequestError, ProxyServiceError
from proxy_service.models.market import to_camel


class FunctionEvent(BaseModel):
    """Abstract inbound request as handed over by the gateway"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    http_method: str = "GET"
    path: str = "/"
    query_string_parameters: Dict[str, str] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None

    def query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.query_string_parameters.get(name)
        return value if value not in (None, "") else default

    def header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None

    def json_body(self) -> Dict[str, Any]:
        try:
            parsed = json.loads(self.body or "")
        except (TypeError, ValueError):
            raise InvalidRequestError("Invalid request body")
        if not isinstance(parsed, dict):
            raise InvalidRequestError("Invalid request body")
        return parsed


class FunctionResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ""

    def payload(self) -> Any:
        return json.loads(self.body) if self.body else None


class ApiResponse(BaseModel):
    """Envelope for the health / cache administration endpoints"""

    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "success") -> "ApiResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str = "failed") -> "ApiResponse":
        return cls(success=False, error=error, message=message)

    @classmethod
    def from_error(cls, exc: ProxyServiceError) -> "ApiResponse":
        return cls(success=False, error=exc.message, message=str(exc.details or ""))

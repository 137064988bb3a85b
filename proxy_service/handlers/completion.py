"""completion: POST {prompt, model?, provider?} → {content}"""

from typing import Optional

from proxy_service.clients.llm import LLMProvider, build_llm_provider
from proxy_service.exceptions import InvalidRequestError
from proxy_service.handlers.common import function_handler, json_response
from proxy_service.models.function import FunctionEvent, FunctionResult

DEFAULT_PROVIDER = "anthropic"
MAX_TOKENS = 4000


@function_handler
async def handle(event: FunctionEvent, provider: Optional[LLMProvider] = None) -> FunctionResult:
    params = event.json_body()
    provider = provider or build_llm_provider(params.get("provider") or DEFAULT_PROVIDER)
    provider.require_key()

    prompt = params.get("prompt")
    if not prompt:
        raise InvalidRequestError("Prompt parameter is required")

    content = await provider.invoke(str(prompt), max_tokens=MAX_TOKENS, model=params.get("model"))
    return json_response(event, 200, {"content": content})

"""
Risk assessment service
Company data → deterministic risk scores → LLM narrative (fixed message on failure).
"""

import logging
from typing import Any, Dict, Optional

from proxy_service.clients.llm import LLMProvider, build_llm_provider
from proxy_service.exceptions import LLMError, NoDataError
from proxy_service.layers.acquisition import AcquisitionLayer, get_acquisition_layer
from proxy_service.layers.risk import (
    NARRATIVE_UNAVAILABLE,
    SYSTEM_PROMPT,
    CompanyRiskInputs,
    assess_risk,
    build_risk_prompt,
)

logger = logging.getLogger(__name__)


class RiskService:
    def __init__(
        self,
        acquisition: Optional[AcquisitionLayer] = None,
        provider: Optional[LLMProvider] = None,
    ):
        self._acq = acquisition or get_acquisition_layer()
        self._provider = provider or build_llm_provider()

    async def narrate(self, inputs: CompanyRiskInputs) -> str:
        try:
            text = await self._provider.invoke(
                build_risk_prompt(inputs),
                system=SYSTEM_PROMPT,
                max_tokens=150,
                temperature=0.3,
            )
        except LLMError as exc:
            logger.warning(f"Risk narrative failed for {inputs.symbol}: {exc.message}")
            return NARRATIVE_UNAVAILABLE
        return text.strip() or NARRATIVE_UNAVAILABLE

    async def get_risk(self, symbol: str) -> Dict[str, Any]:
        symbol = symbol.upper()
        # both credentials are checked before any upstream traffic
        self._acq.fmp.require_key()
        self._provider.require_key()

        inputs = await self._acq.fetch_risk_inputs(symbol)
        if inputs is None:
            raise NoDataError(f"Company with symbol {symbol} not found", symbol=symbol)

        assessment = assess_risk(inputs)
        logger.info(f"Risk for {symbol}: {assessment.overall.level} ({assessment.overall.score})")
        quote = inputs.quote
        return {
            "stockData": {
                "symbol": symbol,
                "companyName": inputs.profile.company_name,
                "sector": inputs.profile.sector,
                "industry": inputs.profile.industry,
                "logo": inputs.profile.image,
                "price": quote.price if quote else inputs.profile.price,
                "priceChange": quote.change if quote else None,
                "priceChangePercent": quote.changes_percentage if quote else None,
            },
            "riskData": assessment.to_dict(),
            "aiAnalysis": await self.narrate(inputs),
        }


# ── Module-level singleton ────────────────────────────────
_service: Optional[RiskService] = None


def get_risk_service() -> RiskService:
    global _service
    if _service is None:
        _service = RiskService()
    return _service

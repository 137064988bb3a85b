"""
Layer 5 – Recommendation
BUY / SELL / HOLD for one symbol from its snapshot and technicals.

The LLM is asked once per materially-changed input; its answer is cached in
memory under ``<provider>_<SYMBOL>_<fingerprint>``. Any LLM failure (transport,
non-2xx, missing key, unparseable answer) drops straight to the deterministic
fallback heuristic, with no retry.
"""

import json
import logging
import math
import re
import time
from datetime import datetime, timezone
from typing import Any, Optional

from proxy_service.clients.llm import LLMProvider
from proxy_service.config import settings
from proxy_service.exceptions import ConfigurationError, LLMError
from proxy_service.layers.cache import Clock, MemoryCache, get_memory_cache, make_key
from proxy_service.models.market import (
    FinancialSnapshot,
    Recommendation,
    RecommendationAction,
    RecommendationSource,
    TechnicalAnalysis,
)

logger = logging.getLogger(__name__)

DEGRADED_NOTE = "AI analysis unavailable; recommendation derived from technical indicators"

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


# ── Prompt ────────────────────────────────────────────────

def _num(value: Optional[float], decimals: int = 0) -> str:
    if value is None:
        return "N/A"
    return f"{value:,.{decimals}f}"


def _pct(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return f"{value:.2f}%"


def current_price_of(snapshot: FinancialSnapshot, technicals: Optional[TechnicalAnalysis]) -> float:
    """Technicals' price first (it already includes the live quote), then the quote, then the newest bar"""
    if technicals is not None and technicals.current_price is not None:
        return technicals.current_price
    if snapshot.current_quote is not None and snapshot.current_quote.price:
        return snapshot.current_quote.price
    latest = snapshot.price_history.latest
    return latest.close if latest is not None else 0.0


def build_prompt(
    symbol: str,
    snapshot: FinancialSnapshot,
    technicals: Optional[TechnicalAnalysis],
    now: Optional[datetime] = None,
) -> str:
    now = now or datetime.now(tz=timezone.utc)
    f = snapshot.fundamentals
    b = snapshot.balance_sheet
    t = technicals or TechnicalAnalysis()
    price = current_price_of(snapshot, technicals)

    quote_price = snapshot.current_quote.price if snapshot.current_quote else None
    eps = f.eps if f else None
    pe = f"{quote_price / eps:.2f}" if quote_price and eps else "N/A"
    debt_to_assets = b.debt_to_assets * 100 if b and b.debt_to_assets is not None else None

    return f"""
You are an AI financial analyst. Based on the following real-time data for {symbol}, provide a recommendation: BUY, SELL, or HOLD.

Key Fundamentals:
- Revenue: {_num(f.revenue if f else None)}
- Net Income: {_num(f.net_income if f else None)}
- EPS: {_num(eps, 2)}
- Net Income Ratio: {_pct(f.net_income_ratio if f else None)}
- P/E Ratio: {pe}

Balance Sheet:
- Total Assets: {_num(b.total_assets if b else None)}
- Total Liabilities: {_num(b.total_liabilities if b else None)}
- Debt to Assets: {_pct(debt_to_assets)}
- Current Ratio: {_num(b.current_ratio if b else None, 2)}

Technical Indicators:
- RSI (14-day): {_num(t.rsi, 2)}
- SMA20: {_num(t.sma20, 2)}
- SMA50: {_num(t.sma50, 2)}
- SMA200: {_num(t.sma200, 2)}
- 1-Day Price Change: {_pct(t.price_change_1d)}
- 1-Month Price Change: {_pct(t.price_change_1m)}
- 3-Month Price Change: {_pct(t.price_change_3m)}
- Volume Change: {_pct(t.volume_change)}
- 52-Week High: {_num(t.high_52_week, 2)}
- 52-Week Low: {_num(t.low_52_week, 2)}
- % From 52-Week High: {_pct(t.distance_from_high)}
- % From 52-Week Low: {_pct(t.distance_from_low)}

Current Price: {_num(price, 2)}
Last Updated: {now.isoformat()}

Respond with only a JSON object containing:
{{
  "action": "BUY/SELL/HOLD",
  "reason": "Brief explanation of your recommendation (1-2 sentences)",
  "targetPrice": numerical value representing your 12-month price target,
  "upside": percentage representing potential upside or downside from current price,
  "confidence": 0-100
}}
""".strip()


def fingerprint(snapshot: FinancialSnapshot, technicals: Optional[TechnicalAnalysis]) -> str:
    """<report date>_<rsi .1f>_<1m change .1f>_<price .2f>"""
    report_date = snapshot.fundamentals.date if snapshot.fundamentals else None
    rsi = technicals.rsi if technicals else None
    change_1m = technicals.price_change_1m if technicals else None
    price = current_price_of(snapshot, technicals)
    return "_".join([
        str(report_date or "na"),
        "na" if rsi is None else f"{rsi:.1f}",
        "na" if change_1m is None else f"{change_1m:.1f}",
        f"{price:.2f}",
    ])


# ── LLM answer ────────────────────────────────────────────

def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").replace(",", "").lstrip("$")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    # NaN / inf fall back to the defaults like any unreadable value
    return number if math.isfinite(number) else None


def _upside(target: float, current_price: float) -> float:
    if not current_price:
        return 0.0
    return round((target / current_price - 1) * 100, 1)


def parse_llm_answer(text: str, current_price: float, now: Optional[datetime] = None) -> Recommendation:
    """
    Model text → Recommendation. The text is untrusted even when it looks like JSON.

    Raises LLMError for anything that is not a JSON object with a BUY/SELL/HOLD action.
    """
    now = now or datetime.now(tz=timezone.utc)
    cleaned = _FENCE.sub("", (text or "").strip())
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        raise LLMError("Failed to parse AI response", details=str(exc))
    if not isinstance(data, dict):
        raise LLMError("Failed to parse AI response", details="answer is not a JSON object")

    raw_action = str(data.get("action") or data.get("recommendation") or "").strip().upper()
    try:
        action = RecommendationAction(raw_action)
    except ValueError:
        raise LLMError("AI response has no valid action", details=raw_action or None)

    target = _to_float(data.get("targetPrice")) or current_price
    upside = _to_float(data.get("upside"))
    if upside is None:
        upside = _upside(target, current_price)
    confidence = _to_float(data.get("confidence"))
    confidence = 50 if confidence is None else int(min(max(confidence, 0), 100))

    try:
        return Recommendation(
            action=action,
            reason=str(data.get("reason") or "").strip(),
            target_price=target,
            upside=upside,
            confidence=confidence,
            produced_by=RecommendationSource.LLM,
            timestamp=now.isoformat(),
        )
    except ValueError as exc:
        raise LLMError("AI response has unusable values", details=str(exc))


# ── Fallback heuristic ────────────────────────────────────

def _below(value: Optional[float], limit: float) -> bool:
    return value is not None and value < limit


def _above(value: Optional[float], limit: float) -> bool:
    return value is not None and value > limit


def fallback_recommendation(
    technicals: Optional[TechnicalAnalysis],
    current_price: float,
    now: Optional[datetime] = None,
) -> Recommendation:
    """Deterministic rules on RSI, 1m/3m change and SMA50; no network"""
    now = now or datetime.now(tz=timezone.utc)
    current_price = current_price or 0.0

    def build(action, reason, target, upside, confidence):
        return Recommendation(
            action=action,
            reason=reason,
            target_price=target,
            upside=upside,
            confidence=confidence,
            produced_by=RecommendationSource.FALLBACK,
            timestamp=now.isoformat(),
            note=DEGRADED_NOTE,
        )

    if technicals is None:
        return build(
            RecommendationAction.HOLD,
            "Insufficient data to make a confident recommendation.",
            current_price, 0.0, 30,
        )

    t = technicals
    if _below(t.rsi, 30) and _below(t.price_change_1m, -5) and _below(t.price_change_3m, 0):
        return build(
            RecommendationAction.BUY,
            "Stock appears oversold with low RSI and recent price decline.",
            round(current_price * 1.15, 2), 15.0, 60,
        )
    if _above(t.rsi, 70) and _above(t.price_change_1m, 10):
        return build(
            RecommendationAction.SELL,
            "Stock appears overbought with high RSI and recent sharp price increase.",
            round(current_price * 0.9, 2), -10.0, 60,
        )

    target = t.sma50 if t.sma50 is not None else current_price * 1.05
    return build(
        RecommendationAction.HOLD,
        "Technical indicators show neutral signals.",
        round(target, 2), _upside(target, current_price), 50,
    )


# ── Engine ────────────────────────────────────────────────

class RecommendationEngine:
    """One engine for every provider: NO_RECOMMENDATION → LLM → (answer | fallback)"""

    def __init__(
        self,
        provider: LLMProvider,
        memory: Optional[MemoryCache] = None,
        llm_ttl: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        self.provider = provider
        self._memory = memory if memory is not None else get_memory_cache()
        self._llm_ttl = llm_ttl or settings.LLM_CACHE_TTL
        self._clock = clock or time.time

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def recommend(
        self,
        symbol: str,
        snapshot: FinancialSnapshot,
        technicals: Optional[TechnicalAnalysis],
    ) -> Recommendation:
        symbol = symbol.upper()
        now = self._now()
        price = current_price_of(snapshot, technicals)
        cache_key = make_key(self.provider.name, symbol, fingerprint(snapshot, technicals))

        cached = self._memory.get(cache_key)
        if cached is not None:
            logger.debug(f"Reusing {self.provider.name} answer for {symbol}")
            return cached

        logger.info(f"Requesting {self.provider.name} recommendation for {symbol} at {price:.2f}")
        try:
            text = await self.provider.invoke(
                build_prompt(symbol, snapshot, technicals, now),
                json_mode=True,
                max_tokens=500,
                temperature=0.4,
            )
            recommendation = parse_llm_answer(text, price, now)
        except (LLMError, ConfigurationError) as exc:
            logger.warning(f"{self.provider.name} recommendation failed for {symbol}, using fallback: {exc.message}")
            return fallback_recommendation(technicals, price, now)

        self._memory.set(cache_key, recommendation, self._llm_ttl)
        return recommendation

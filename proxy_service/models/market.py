"""
Internal data model
PriceBar / PriceSeries / FinancialSnapshot / TechnicalAnalysis / Recommendation
All models serialise with camelCase keys, which is what the browser widgets read.
"""

import datetime as dt
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def to_camel(name: str) -> str:
    """price_change_1d -> priceChange1d, high_52_week -> high52Week"""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ── Price history ─────────────────────────────────────────

class PriceOrder(str, Enum):
    NEWEST_FIRST = "newest_first"
    OLDEST_FIRST = "oldest_first"


class PriceBar(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    date: dt.date
    close: float
    volume: int = 0


class PriceSeries(CamelModel):
    """
    Daily bars plus the order they are held in.

    Display and the live-quote merge work newest-first; RSI needs oldest-first.
    The order travels with the bars so every stage knows which end is "now".
    """

    bars: List[PriceBar] = Field(default_factory=list)
    order: PriceOrder = PriceOrder.NEWEST_FIRST
    high_52_week: Optional[float] = None
    low_52_week: Optional[float] = None

    def __len__(self) -> int:
        return len(self.bars)

    def newest_first(self) -> "PriceSeries":
        if self.order == PriceOrder.NEWEST_FIRST:
            return self
        return self.model_copy(update={"bars": list(reversed(self.bars)), "order": PriceOrder.NEWEST_FIRST})

    def chronological(self) -> "PriceSeries":
        if self.order == PriceOrder.OLDEST_FIRST:
            return self
        return self.model_copy(update={"bars": list(reversed(self.bars)), "order": PriceOrder.OLDEST_FIRST})

    @property
    def latest(self) -> Optional[PriceBar]:
        if not self.bars:
            return None
        return self.bars[0] if self.order == PriceOrder.NEWEST_FIRST else self.bars[-1]

    def closes(self) -> List[float]:
        return [bar.close for bar in self.bars]

    def volumes(self) -> List[int]:
        return [bar.volume for bar in self.bars]


# ── Fundamentals ──────────────────────────────────────────

class Fundamentals(CamelModel):
    date: Optional[str] = None
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    eps: Optional[float] = None
    ebitda: Optional[float] = None
    gross_profit_ratio: Optional[float] = None
    operating_income_ratio: Optional[float] = None
    net_income_ratio: Optional[float] = None


class BalanceSheet(CamelModel):
    date: Optional[str] = None
    cash_and_cash_equivalents: Optional[float] = None
    total_assets: Optional[float] = None
    total_liabilities: Optional[float] = None
    total_debt: Optional[float] = None
    debt_to_assets: Optional[float] = None
    current_ratio: Optional[float] = None


class QuoteSummary(CamelModel):
    price: Optional[float] = None
    change: Optional[float] = None
    changes_percentage: Optional[float] = None
    day_low: Optional[float] = None
    day_high: Optional[float] = None
    year_high: Optional[float] = None
    year_low: Optional[float] = None
    market_cap: Optional[float] = None
    volume: Optional[float] = None
    avg_volume: Optional[float] = None


class FinancialSnapshot(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    symbol: str
    fundamentals: Optional[Fundamentals] = None
    balance_sheet: Optional[BalanceSheet] = None
    price_history: PriceSeries = Field(default_factory=PriceSeries)
    current_quote: Optional[QuoteSummary] = None
    fetched_at: float = 0.0


# ── Derived signals ───────────────────────────────────────

class TechnicalAnalysis(CamelModel):
    rsi: Optional[float] = None
    sma20: Optional[float] = None
    sma50: Optional[float] = None
    sma200: Optional[float] = None
    price_change_1d: Optional[float] = None
    price_change_1m: Optional[float] = None
    price_change_3m: Optional[float] = None
    volume_change: Optional[float] = None
    high_52_week: Optional[float] = None
    low_52_week: Optional[float] = None
    distance_from_high: Optional[float] = None
    distance_from_low: Optional[float] = None
    current_price: Optional[float] = None
    last_updated: Optional[str] = None


class RecommendationAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class RecommendationSource(str, Enum):
    LLM = "LLM"
    FALLBACK = "fallback-heuristic"


class Recommendation(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    action: RecommendationAction
    reason: str
    target_price: float
    upside: float
    confidence: int = Field(ge=0, le=100)
    produced_by: RecommendationSource
    timestamp: str
    note: Optional[str] = None


# ── Cache ─────────────────────────────────────────────────

class CacheEntry(CamelModel):
    key: str
    value: Any = None
    written_at: float
    ttl_seconds: int

    def is_expired(self, now: float) -> bool:
        return now >= self.written_at + self.ttl_seconds


# ── Earnings ──────────────────────────────────────────────

class EarningsRecord(CamelModel):
    date: Optional[str] = None
    fiscal_period: Optional[str] = None
    time_of_day: Optional[str] = None
    estimated_eps: Optional[float] = None
    actual_eps: Optional[float] = None
    surprise_percentage: Optional[float] = None
    estimated_revenue: Optional[float] = None
    actual_revenue: Optional[float] = None
    is_upcoming: bool = False
    source: Optional[str] = None

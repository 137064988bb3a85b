"""
Upstream record types
Optional-field views of the provider payloads. Unknown fields are ignored and
rows that fail validation are dropped at the boundary, so nothing duck-typed
leaks into the internal data model.
"""

import logging
from typing import Any, List, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from proxy_service.models.market import to_camel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class UpstreamRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def parse_rows(model: Type[T], payload: Any) -> List[T]:
    """Validate a JSON array into records; anything that is not an array yields []"""
    if not isinstance(payload, list):
        return []
    rows: List[T] = []
    for raw in payload:
        if not isinstance(raw, dict):
            continue
        try:
            rows.append(model.model_validate(raw))
        except ValidationError as exc:
            logger.debug(f"Dropping malformed {model.__name__} row: {exc.error_count()} error(s)")
    return rows


def first_row(model: Type[T], payload: Any) -> Optional[T]:
    rows = parse_rows(model, payload)
    return rows[0] if rows else None


# ── Financial Modeling Prep ───────────────────────────────

class FMPQuote(UpstreamRecord):
    symbol: Optional[str] = None
    name: Optional[str] = None
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


class FMPIncomeStatement(UpstreamRecord):
    date: Optional[str] = None
    symbol: Optional[str] = None
    period: Optional[str] = None
    calendar_year: Optional[str] = None
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    eps: Optional[float] = None
    ebitda: Optional[float] = None
    gross_profit_ratio: Optional[float] = None
    operating_income_ratio: Optional[float] = None
    net_income_ratio: Optional[float] = None


class FMPBalanceSheet(UpstreamRecord):
    date: Optional[str] = None
    cash_and_cash_equivalents: Optional[float] = None
    total_assets: Optional[float] = None
    total_liabilities: Optional[float] = None
    total_debt: Optional[float] = None
    total_current_assets: Optional[float] = None
    total_current_liabilities: Optional[float] = None


class FMPHistoricalBar(UpstreamRecord):
    date: str
    close: float
    volume: Optional[float] = None


class FMPHistoricalEarning(UpstreamRecord):
    """Row of /historical/earning_calendar and of the market-wide /earning_calendar"""

    date: Optional[str] = None
    symbol: Optional[str] = None
    eps: Optional[float] = None
    eps_estimated: Optional[float] = None
    time: Optional[str] = None
    revenue: Optional[float] = None
    revenue_estimated: Optional[float] = None
    fiscal_date_ending: Optional[str] = None


class FMPEarningsSurprise(UpstreamRecord):
    date: Optional[str] = None
    symbol: Optional[str] = None
    actual_earning_result: Optional[float] = None
    estimated_earning: Optional[float] = None


class FMPProfile(UpstreamRecord):
    symbol: Optional[str] = None
    company_name: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    image: Optional[str] = None
    beta: Optional[float] = None
    mkt_cap: Optional[float] = None
    last_div: Optional[float] = None
    price: Optional[float] = None


class FMPRatiosTTM(UpstreamRecord):
    net_profit_margin: Optional[float] = Field(default=None, alias="netProfitMarginTTM")
    debt_equity_ratio: Optional[float] = Field(default=None, alias="debtEquityRatioTTM")
    current_ratio: Optional[float] = Field(default=None, alias="currentRatioTTM")
    quick_ratio: Optional[float] = Field(default=None, alias="quickRatioTTM")
    return_on_equity: Optional[float] = Field(default=None, alias="returnOnEquityTTM")
    price_earnings_ratio: Optional[float] = Field(default=None, alias="priceEarningsRatioTTM")


# ── Benzinga ──────────────────────────────────────────────

class BenzingaFigure(UpstreamRecord):
    estimate: Optional[float] = None
    actual: Optional[float] = None
    surprise_percent: Optional[float] = Field(default=None, alias="surprise_percent")

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_missing(cls, value: Any) -> Any:
        return None if value == "" else value


class BenzingaEarning(UpstreamRecord):
    """Row of v2.1/calendar/earnings ``earnings``"""

    symbol: Optional[str] = Field(default=None, validation_alias=AliasChoices("symbol", "ticker"))
    date: Optional[str] = None
    time_of_day: Optional[str] = None
    fiscal_quarter: Optional[str] = None
    fiscal_year: Optional[str] = None
    eps: Optional[BenzingaFigure] = None
    revenue: Optional[BenzingaFigure] = None

    @field_validator("fiscal_quarter", "fiscal_year", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        if value == "":
            return None
        return value if value is None else str(value)

"""
Company risk scoring
Market (beta), company (leverage, profitability, liquidity, ROE) and sector
scores on a 0-100 scale, blended 30/50/20 into an overall score. Levels:
< 40 Low, < 65 Medium, otherwise High.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from proxy_service.models.market import CamelModel
from proxy_service.models.upstream import (
    FMPBalanceSheet,
    FMPIncomeStatement,
    FMPProfile,
    FMPQuote,
    FMPRatiosTTM,
)

HIGH_RISK_SECTORS = ("Energy", "Basic Materials", "Financial Services", "Real Estate", "Cryptocurrency")
MEDIUM_RISK_SECTORS = ("Technology", "Communication Services", "Consumer Cyclical", "Industrials", "Transportation")
LOW_RISK_SECTORS = ("Healthcare", "Consumer Defensive", "Utilities", "Infrastructure")

WEIGHTS = {"market": 0.3, "company": 0.5, "sector": 0.2}

SYSTEM_PROMPT = (
    "You are a financial analyst specializing in stock risk assessment. "
    "Provide concise, professional analyses based on the data given."
)
NARRATIVE_UNAVAILABLE = "Failed to generate AI analysis. Please try again later."


class CompanyRiskInputs(BaseModel):
    symbol: str
    profile: FMPProfile
    quote: Optional[FMPQuote] = None
    ratios: Optional[FMPRatiosTTM] = None
    income: List[FMPIncomeStatement] = Field(default_factory=list)
    balance: List[FMPBalanceSheet] = Field(default_factory=list)

    @property
    def revenue_growth(self) -> Optional[float]:
        """Latest revenue against the statement before it, in %"""
        if len(self.income) < 2:
            return None
        latest, previous = self.income[0].revenue, self.income[1].revenue
        if latest is None or not previous:
            return None
        return (latest - previous) / previous * 100


class RiskFactor(CamelModel):
    level: str
    score: float
    description: str


class RiskAssessment(CamelModel):
    market: RiskFactor
    company: RiskFactor
    sector: RiskFactor
    overall: RiskFactor


def risk_level(score: float) -> str:
    if score < 40:
        return "Low"
    if score < 65:
        return "Medium"
    return "High"


def _clamp(score: float) -> float:
    return max(0.0, min(100.0, score))


# ── Factors ───────────────────────────────────────────────

def market_risk(beta: Optional[float]) -> RiskFactor:
    beta = beta or 1.0
    if beta < 0.8:
        return RiskFactor(
            level="Low",
            score=min(30.0, beta * 30),
            description=f"Low exposure to market volatility with beta of {beta:.1f}",
        )
    if beta < 1.2:
        return RiskFactor(
            level="Medium",
            score=30 + (beta - 0.8) * 50,
            description=f"Average market volatility with beta of {beta:.1f}",
        )
    return RiskFactor(
        level="High",
        score=min(85.0, 70 + (beta - 1.2) * 25),
        description=f"High sensitivity to market movements with beta of {beta:.1f}",
    )


def company_risk(ratios: Optional[FMPRatiosTTM]) -> RiskFactor:
    """Starts at 50 and moves with each ratio; missing ratios count as 0"""
    r = ratios or FMPRatiosTTM()
    debt_to_equity = r.debt_equity_ratio or 0.0
    margin = r.net_profit_margin or 0.0
    current = r.current_ratio or 0.0
    roe = r.return_on_equity or 0.0
    quick = r.quick_ratio or 0.0

    score = 50.0
    if debt_to_equity > 1.5:
        score += 25
    elif debt_to_equity > 1:
        score += 15
    elif debt_to_equity < 0.3:
        score -= 15

    if margin > 0.2:
        score -= 15
    elif margin > 0.1:
        score -= 10
    elif margin < 0:
        score += 25

    if current > 2:
        score -= 10
    elif current < 1:
        score += 15

    if roe > 0.2:
        score -= 10
    elif roe < 0.05:
        score += 10

    if quick < 0.7:
        score += 15
    elif quick > 1.5:
        score -= 10

    score = _clamp(score)
    level = risk_level(score)
    if level == "Low":
        description = "Strong financials with healthy balance sheet and good profitability"
    elif level == "Medium":
        description = f"Moderate risk with debt-to-equity ratio of {debt_to_equity:.1f}"
    else:
        description = "Higher risk due to elevated debt levels or profitability concerns"
    return RiskFactor(level=level, score=score, description=description)


def sector_risk(sector: Optional[str]) -> RiskFactor:
    sector = sector or ""
    score = 50.0
    if sector in HIGH_RISK_SECTORS:
        score += 25
    elif sector in LOW_RISK_SECTORS:
        score -= 25

    level = risk_level(score)
    if level == "Low":
        description = f"{sector} sector typically demonstrates stability through economic cycles"
    elif level == "Medium":
        description = f"{sector} sector shows moderate sensitivity to economic cycles"
    else:
        description = f"{sector} sector experiences higher volatility and cyclicality"
    return RiskFactor(level=level, score=score, description=description)


def assess_risk(inputs: CompanyRiskInputs) -> RiskAssessment:
    market = market_risk(inputs.profile.beta)
    company = company_risk(inputs.ratios)
    sector = sector_risk(inputs.profile.sector)

    score = (
        market.score * WEIGHTS["market"]
        + company.score * WEIGHTS["company"]
        + sector.score * WEIGHTS["sector"]
    )
    name = inputs.profile.company_name or inputs.symbol
    level = risk_level(score)
    if level == "Low":
        description = f"{name} demonstrates strong fundamentals and stability relative to peers."
    elif level == "Medium":
        description = f"{name} shows balanced risk profile with some areas of moderate concern."
    else:
        description = f"{name} faces elevated risk factors that may impact performance."

    return RiskAssessment(
        market=market,
        company=company,
        sector=sector,
        overall=RiskFactor(level=level, score=round(score, 1), description=description),
    )


# ── Narrative prompt ──────────────────────────────────────

def format_large_number(value: Optional[float]) -> str:
    if not value:
        return "N/A"
    if value >= 1e12:
        return f"{value / 1e12:.2f} T"
    if value >= 1e9:
        return f"{value / 1e9:.2f} B"
    if value >= 1e6:
        return f"{value / 1e6:.2f} M"
    return f"{value:,.0f}"


def _fixed(value: Optional[float], scale: float = 1.0, suffix: str = "") -> str:
    if value is None:
        return "N/A"
    return f"{value * scale:.2f}{suffix}"


def build_risk_prompt(inputs: CompanyRiskInputs) -> str:
    p = inputs.profile
    r = inputs.ratios or FMPRatiosTTM()
    return f"""
Provide a concise risk assessment for {p.company_name or inputs.symbol} ({inputs.symbol}) based on the following data:

- Sector: {p.sector or 'N/A'}
- Industry: {p.industry or 'N/A'}
- Beta: {p.beta if p.beta is not None else 'N/A'}
- Market Cap: ${format_large_number(p.mkt_cap)}
- P/E Ratio: {_fixed(r.price_earnings_ratio)}
- Profit Margin: {_fixed(r.net_profit_margin, 100, '%')}
- Debt-to-Equity: {_fixed(r.debt_equity_ratio)}
- Current Ratio: {_fixed(r.current_ratio)}
- Return on Equity: {_fixed(r.return_on_equity, 100, '%')}
- Revenue Growth: {_fixed(inputs.revenue_growth, suffix='%')}

Focus on key risk factors, competitive positioning, and financial health. Limit your response to 3-4 sentences.
""".strip()

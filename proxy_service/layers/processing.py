"""
Layer 3 – Processing
Turns validated upstream records into the internal data model: price-history
cleaning and ordering, live-quote merge, 52-week range, ratio guards, and the
earnings row mappers used by the fallback chain.
"""

import logging
from datetime import date
from typing import Iterable, List, Optional

import pandas as pd

from proxy_service.models.market import (
    BalanceSheet,
    EarningsRecord,
    Fundamentals,
    PriceBar,
    PriceOrder,
    PriceSeries,
    QuoteSummary,
)
from proxy_service.models.upstream import (
    BenzingaEarning,
    FMPBalanceSheet,
    FMPEarningsSurprise,
    FMPHistoricalBar,
    FMPHistoricalEarning,
    FMPIncomeStatement,
    FMPQuote,
)

logger = logging.getLogger(__name__)

# A live quote this close to the stored close is the same print
_PRICE_TOLERANCE = 0.01


def safe_ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    """numerator / denominator, or None when either is missing or the denominator is 0"""
    if numerator is None or denominator is None or denominator == 0:
        return None
    return numerator / denominator


def _year(value: Optional[str]) -> Optional[int]:
    try:
        return int(str(value)[:4])
    except (TypeError, ValueError):
        return None


class ProcessingLayer:
    """Cleaning + ordering + shaping"""

    # ── Price history ─────────────────────────────────────

    def normalize_history(self, rows: List[FMPHistoricalBar]) -> PriceSeries:
        """
        Historical rows → newest-first PriceSeries.

        Unparseable dates/closes are dropped and duplicate dates keep the last
        row seen, so the result is strictly ordered by date.
        """
        if not rows:
            return PriceSeries()

        df = pd.DataFrame([{"date": r.date, "close": r.close, "volume": r.volume} for r in rows])
        df["close"] = pd.to_numeric(df["close"], errors="coerce")
        df["volume"] = pd.to_numeric(df["volume"], errors="coerce").fillna(0)
        df["date"] = pd.to_datetime(df["date"], errors="coerce")
        df = df.dropna(subset=["date", "close"])
        df = df.drop_duplicates(subset=["date"], keep="last")
        df = df.sort_values("date", ascending=False).reset_index(drop=True)

        bars = [
            PriceBar(date=row.date.date(), close=float(row.close), volume=int(row.volume))
            for row in df.itertuples(index=False)
        ]
        return PriceSeries(bars=bars, order=PriceOrder.NEWEST_FIRST)

    def merge_quote(self, series: PriceSeries, quote: Optional[QuoteSummary], today: date) -> PriceSeries:
        """
        Keep the series current between the nightly history refresh and the live quote.

        No bar for ``today`` → a new leading bar from the quote. A bar for
        ``today`` whose close differs by more than a cent → close/volume overwritten.
        """
        if quote is None or not quote.price:
            return series

        series = series.newest_first()
        bars = list(series.bars)
        latest = bars[0] if bars else None

        if latest is None or latest.date != today:
            volume = quote.volume or (latest.volume if latest else 0)
            bars.insert(0, PriceBar(date=today, close=quote.price, volume=int(volume)))
        elif abs(latest.close - quote.price) > _PRICE_TOLERANCE:
            volume = int(quote.volume) if quote.volume else latest.volume
            bars[0] = PriceBar(date=today, close=quote.price, volume=volume)
        else:
            return series

        return series.model_copy(update={"bars": bars})

    def with_year_range(self, series: PriceSeries, quote: Optional[QuoteSummary]) -> PriceSeries:
        """52-week high/low: the quote's own fields first, the fetched window otherwise"""
        closes = series.closes()
        high = quote.year_high if quote and quote.year_high else (max(closes) if closes else None)
        low = quote.year_low if quote and quote.year_low else (min(closes) if closes else None)
        return series.model_copy(update={"high_52_week": high, "low_52_week": low})

    def build_price_series(
        self,
        rows: List[FMPHistoricalBar],
        quote: Optional[QuoteSummary],
        today: date,
    ) -> PriceSeries:
        series = self.normalize_history(rows)
        series = self.merge_quote(series, quote, today)
        return self.with_year_range(series, quote)

    # ── Statements / quote ────────────────────────────────

    def to_fundamentals(self, row: Optional[FMPIncomeStatement]) -> Optional[Fundamentals]:
        if row is None:
            return None
        return Fundamentals(
            date=row.date,
            revenue=row.revenue,
            net_income=row.net_income,
            eps=row.eps,
            ebitda=row.ebitda,
            gross_profit_ratio=row.gross_profit_ratio,
            operating_income_ratio=row.operating_income_ratio,
            net_income_ratio=row.net_income_ratio,
        )

    def to_balance_sheet(self, row: Optional[FMPBalanceSheet]) -> Optional[BalanceSheet]:
        if row is None:
            return None
        return BalanceSheet(
            date=row.date,
            cash_and_cash_equivalents=row.cash_and_cash_equivalents,
            total_assets=row.total_assets,
            total_liabilities=row.total_liabilities,
            total_debt=row.total_debt,
            debt_to_assets=safe_ratio(row.total_debt, row.total_assets),
            current_ratio=safe_ratio(row.total_current_assets, row.total_current_liabilities),
        )

    def to_quote_summary(self, row: Optional[FMPQuote]) -> Optional[QuoteSummary]:
        if row is None:
            return None
        return QuoteSummary(
            price=row.price,
            change=row.change,
            changes_percentage=row.changes_percentage,
            day_low=row.day_low,
            day_high=row.day_high,
            year_high=row.year_high,
            year_low=row.year_low,
            market_cap=row.market_cap,
            volume=row.volume,
            avg_volume=row.avg_volume,
        )

    # ── Earnings ──────────────────────────────────────────

    def earnings_from_calendar(self, rows: List[FMPHistoricalEarning], today: date) -> List[EarningsRecord]:
        records = []
        for row in rows:
            surprise = safe_ratio(
                None if row.eps is None or row.eps_estimated is None else row.eps - row.eps_estimated,
                abs(row.eps_estimated) if row.eps_estimated is not None else None,
            )
            records.append(EarningsRecord(
                date=row.date,
                fiscal_period=self._quarter_label(row.fiscal_date_ending or row.date),
                time_of_day=row.time,
                estimated_eps=row.eps_estimated,
                actual_eps=row.eps,
                surprise_percentage=None if surprise is None else surprise * 100,
                estimated_revenue=row.revenue_estimated,
                actual_revenue=row.revenue,
                is_upcoming=self._is_upcoming(row.date, today),
                source="historical-earning-calendar",
            ))
        return self.newest_first(records)

    def earnings_from_surprises(self, rows: List[FMPEarningsSurprise], today: date) -> List[EarningsRecord]:
        records = []
        for row in rows:
            actual, estimate = row.actual_earning_result, row.estimated_earning
            surprise = safe_ratio(
                None if actual is None or estimate is None else actual - estimate,
                abs(estimate) if estimate is not None else None,
            )
            records.append(EarningsRecord(
                date=row.date,
                fiscal_period=self._quarter_label(row.date),
                estimated_eps=estimate,
                actual_eps=actual,
                surprise_percentage=None if surprise is None else surprise * 100,
                is_upcoming=self._is_upcoming(row.date, today),
                source="earnings-surprises",
            ))
        return self.newest_first(records)

    def earnings_from_income(
        self,
        rows: List[FMPIncomeStatement],
        today: date,
        annual: bool = False,
    ) -> List[EarningsRecord]:
        """
        Income statements as an earnings proxy: actuals only.

        Annual rows get a synthetic surprise, the EPS growth against the
        previous fiscal year when that year is present.
        """
        eps_by_year = {_year(r.date): r.eps for r in rows if _year(r.date) is not None}
        records = []
        for row in rows:
            year = _year(row.date)
            surprise = None
            if annual and year is not None:
                prev_eps = eps_by_year.get(year - 1)
                if row.eps is not None and prev_eps:
                    surprise = (row.eps - prev_eps) / abs(prev_eps) * 100
                label = f"FY {year}"
            else:
                label = " ".join(p for p in (row.period, row.calendar_year) if p) or self._quarter_label(row.date)
            records.append(EarningsRecord(
                date=row.date,
                fiscal_period=label,
                actual_eps=row.eps,
                surprise_percentage=surprise,
                actual_revenue=row.revenue,
                is_upcoming=self._is_upcoming(row.date, today),
                source="income-statement",
            ))
        return self.newest_first(records)

    def earnings_from_benzinga(self, rows: List[BenzingaEarning], symbol: str, today: date) -> List[EarningsRecord]:
        """Rows for ``symbol`` only; the calendar can answer with neighbouring tickers"""
        records = []
        for row in rows:
            if (row.symbol or "").upper() != symbol:
                continue
            eps, revenue = row.eps, row.revenue
            quarter = f"Q{row.fiscal_quarter}" if row.fiscal_quarter else None
            records.append(EarningsRecord(
                date=row.date,
                fiscal_period=" ".join(p for p in (quarter, row.fiscal_year) if p) or None,
                time_of_day=row.time_of_day,
                estimated_eps=eps.estimate if eps else None,
                actual_eps=eps.actual if eps else None,
                surprise_percentage=eps.surprise_percent if eps else None,
                estimated_revenue=revenue.estimate if revenue else None,
                actual_revenue=revenue.actual if revenue else None,
                is_upcoming=self._is_upcoming(row.date, today),
                source="benzinga",
            ))
        return self.newest_first(records)

    @staticmethod
    def newest_first(records: Iterable[EarningsRecord]) -> List[EarningsRecord]:
        return sorted(records, key=lambda r: r.date or "", reverse=True)

    @staticmethod
    def _is_upcoming(value: Optional[str], today: date) -> bool:
        try:
            return date.fromisoformat(str(value)[:10]) > today
        except (TypeError, ValueError):
            return False

    @staticmethod
    def _quarter_label(value: Optional[str]) -> Optional[str]:
        try:
            d = date.fromisoformat(str(value)[:10])
        except (TypeError, ValueError):
            return None
        return f"Q{(d.month - 1) // 3 + 1} {d.year}"


# ── Module-level singleton ────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor

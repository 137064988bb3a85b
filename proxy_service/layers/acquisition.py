"""
Layer 1 – Acquisition
Pulls raw data from Financial Modeling Prep and hands validated records to the
processing layer. Two fetch shapes:
  * independent resources (statements, history, quote) are gathered concurrently;
    one failing sub-call leaves only its sub-record absent
  * alternative endpoints for the same logical data are tried in order, the
    first non-empty answer wins and later endpoints are never called
"""

import asyncio
import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from proxy_service.clients.fmp import FMPClient, join_symbols
from proxy_service.config import settings
from proxy_service.exceptions import NoDataError, UpstreamError
from proxy_service.layers.cache import Clock, MemoryCache, get_memory_cache, make_key
from proxy_service.layers.processing import ProcessingLayer, get_processing_layer
from proxy_service.layers.risk import CompanyRiskInputs
from proxy_service.models.market import EarningsRecord, FinancialSnapshot
from proxy_service.models.upstream import (
    FMPBalanceSheet,
    FMPEarningsSurprise,
    FMPHistoricalBar,
    FMPHistoricalEarning,
    FMPIncomeStatement,
    FMPProfile,
    FMPQuote,
    FMPRatiosTTM,
    first_row,
    parse_rows,
)

logger = logging.getLogger(__name__)

# (name, fetch, mapper): mapper turns the decoded payload into records
Attempt = Tuple[str, Callable[[], Awaitable[Any]], Callable[[Any], List[Any]]]

_BATCH_SIZE = 20
_HISTORY_DAYS = 365


async def first_available(attempts: Sequence[Attempt], symbol: Optional[str] = None) -> Tuple[List[Any], Optional[str]]:
    """
    Run ``attempts`` in order until one yields records.

    Returns ``(records, source name)``; ``([], None)`` when every endpoint
    answered but none had rows. Raises the first UpstreamError when every
    endpoint failed outright.
    """
    errors: List[UpstreamError] = []
    for name, fetch, mapper in attempts:
        try:
            payload = await fetch()
        except UpstreamError as exc:
            logger.warning(f"{name} failed for {symbol}: {exc.message}")
            errors.append(exc)
            continue
        records = mapper(payload)
        if records:
            logger.info(f"{name} answered for {symbol} ({len(records)} rows)")
            return records, name
        logger.info(f"{name} returned no rows for {symbol}, trying next source")

    if errors and len(errors) == len(attempts):
        first = errors[0]
        first.symbol = first.symbol or symbol
        raise first
    return [], None


class AcquisitionLayer:
    """Data aggregator over the FMP endpoints"""

    def __init__(
        self,
        fmp: Optional[FMPClient] = None,
        memory: Optional[MemoryCache] = None,
        processor: Optional[ProcessingLayer] = None,
        clock: Optional[Clock] = None,
        snapshot_ttl: Optional[int] = None,
    ):
        self._fmp = fmp or FMPClient()
        self._memory = memory if memory is not None else get_memory_cache()
        self._proc = processor or get_processing_layer()
        self._clock = clock or time.time
        self._snapshot_ttl = snapshot_ttl or settings.SNAPSHOT_CACHE_TTL

    @property
    def fmp(self) -> FMPClient:
        return self._fmp

    def today(self) -> date:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()

    # ── Stock snapshot ────────────────────────────────────

    async def fetch_snapshot(self, symbol: str) -> FinancialSnapshot:
        """
        Fundamentals, balance sheet, 12 months of prices and the live quote.

        Served from memory for SNAPSHOT_CACHE_TTL seconds so the price stays fresh.
        """
        symbol = symbol.upper()
        cache_key = make_key("data", symbol)
        cached = self._memory.get(cache_key)
        if cached is not None:
            return cached

        self._fmp.require_key()
        today = self.today()
        start = (today - timedelta(days=_HISTORY_DAYS)).isoformat()
        results = await asyncio.gather(
            self._fmp.income_statement(symbol, limit=1),
            self._fmp.balance_sheet(symbol, limit=1),
            self._fmp.historical_prices(symbol, start=start),
            self._fmp.quote(symbol),
            return_exceptions=True,
        )
        names = ("income-statement", "balance-sheet", "historical-prices", "quote")
        payloads: Dict[str, Any] = {}
        failures: List[UpstreamError] = []
        for name, result in zip(names, results):
            if isinstance(result, UpstreamError):
                logger.warning(f"{name} unavailable for {symbol}: {result.message}")
                failures.append(result)
                payloads[name] = None
            elif isinstance(result, BaseException):
                raise result
            else:
                payloads[name] = result

        if len(failures) == len(names):
            first = failures[0]
            first.symbol = symbol
            raise first

        history = payloads["historical-prices"]
        history_rows = parse_rows(FMPHistoricalBar, history.get("historical") if isinstance(history, dict) else None)
        quote = self._proc.to_quote_summary(first_row(FMPQuote, payloads["quote"]))
        price_history = self._proc.build_price_series(history_rows, quote, today)
        if not len(price_history) and quote is None:
            raise NoDataError(f"No market data available for {symbol}", symbol=symbol)

        snapshot = FinancialSnapshot(
            symbol=symbol,
            fundamentals=self._proc.to_fundamentals(first_row(FMPIncomeStatement, payloads["income-statement"])),
            balance_sheet=self._proc.to_balance_sheet(first_row(FMPBalanceSheet, payloads["balance-sheet"])),
            price_history=price_history,
            current_quote=quote,
            fetched_at=self._clock(),
        )
        self._memory.set(cache_key, snapshot, self._snapshot_ttl)
        return snapshot

    # ── Earnings (per symbol) ─────────────────────────────

    def earnings_attempts(self, symbol: str, period: str = "quarterly") -> List[Attempt]:
        today = self.today()
        proc = self._proc
        if period == "annual":
            return [(
                "income-statement-annual",
                lambda: self._fmp.income_statement(symbol, limit=5, period="annual"),
                lambda p: proc.earnings_from_income(parse_rows(FMPIncomeStatement, p), today, annual=True),
            )]
        return [
            (
                "historical-earning-calendar",
                lambda: self._fmp.historical_earnings(symbol),
                lambda p: proc.earnings_from_calendar(parse_rows(FMPHistoricalEarning, p), today),
            ),
            (
                "earnings-surprises",
                lambda: self._fmp.earnings_surprises(symbol),
                lambda p: proc.earnings_from_surprises(parse_rows(FMPEarningsSurprise, p), today),
            ),
            (
                "income-statement",
                lambda: self._fmp.income_statement(symbol, limit=8, period="quarter"),
                lambda p: proc.earnings_from_income(parse_rows(FMPIncomeStatement, p), today),
            ),
        ]

    async def fetch_earnings(self, symbol: str, period: str = "quarterly") -> Tuple[List[EarningsRecord], Optional[str]]:
        symbol = symbol.upper()
        self._fmp.require_key()
        return await first_available(self.earnings_attempts(symbol, period), symbol=symbol)

    # ── Earnings calendar (market-wide) ───────────────────

    async def fetch_earnings_calendar(self, start: Optional[str] = None, end: Optional[str] = None) -> List[Dict[str, Any]]:
        """Calendar rows enriched with profile and quote data, fetched in batches of 20"""
        payload = await self._fmp.earnings_calendar(start, end)
        entries = parse_rows(FMPHistoricalEarning, payload)
        symbols = sorted({e.symbol for e in entries if e.symbol})
        batches = [symbols[i:i + _BATCH_SIZE] for i in range(0, len(symbols), _BATCH_SIZE)]

        profiles: Dict[str, FMPProfile] = {}
        quotes: Dict[str, FMPQuote] = {}
        for batch_profiles, batch_quotes in await asyncio.gather(*(self._enrich_batch(b) for b in batches)):
            profiles.update(batch_profiles)
            quotes.update(batch_quotes)

        enriched = []
        for entry in entries:
            profile = profiles.get(entry.symbol)
            quote = quotes.get(entry.symbol)
            row = entry.model_dump(by_alias=True)
            row.update({
                "companyName": profile.company_name if profile else None,
                "sector": profile.sector if profile else None,
                "industry": profile.industry if profile else None,
                "image": profile.image if profile else None,
                "marketCap": (quote.market_cap if quote else None) or (profile.mkt_cap if profile else None),
                "price": quote.price if quote else None,
                "changesPercentage": quote.changes_percentage if quote else None,
            })
            enriched.append(row)
        return enriched

    async def _enrich_batch(self, batch: List[str]) -> Tuple[Dict[str, FMPProfile], Dict[str, FMPQuote]]:
        joined = join_symbols(batch)
        try:
            profile_rows = parse_rows(FMPProfile, await self._fmp.profile(joined))
            quote_rows = parse_rows(FMPQuote, await self._fmp.quote(joined))
        except UpstreamError as exc:
            logger.error(f"Error fetching data for batch {joined}: {exc.message}")
            return {}, {}
        return (
            {p.symbol: p for p in profile_rows if p.symbol},
            {q.symbol: q for q in quote_rows if q.symbol},
        )

    # ── Risk inputs ───────────────────────────────────────

    async def fetch_risk_inputs(self, symbol: str) -> Optional[CompanyRiskInputs]:
        """Profile first; without a profile the company is unknown and None is returned"""
        symbol = symbol.upper()
        profile = first_row(FMPProfile, await self._fmp.profile(symbol))
        if profile is None:
            return None

        async def optional(name: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
            try:
                return await fetch()
            except UpstreamError as exc:
                logger.warning(f"{name} unavailable for {symbol}: {exc.message}")
                return None

        quote = first_row(FMPQuote, await optional("quote", lambda: self._fmp.quote(symbol)))
        ratios = first_row(FMPRatiosTTM, await optional("ratios-ttm", lambda: self._fmp.ratios_ttm(symbol)))
        income = parse_rows(
            FMPIncomeStatement,
            await optional("income-statement", lambda: self._fmp.income_statement(symbol, limit=4)),
        )
        balance = parse_rows(
            FMPBalanceSheet,
            await optional("balance-sheet", lambda: self._fmp.balance_sheet(symbol, limit=4)),
        )
        return CompanyRiskInputs(
            symbol=symbol,
            profile=profile,
            quote=quote,
            ratios=ratios,
            income=income,
            balance=balance,
        )


# ── Module-level singleton ────────────────────────────────
_acquisition: Optional[AcquisitionLayer] = None


def get_acquisition_layer() -> AcquisitionLayer:
    global _acquisition
    if _acquisition is None:
        _acquisition = AcquisitionLayer()
    return _acquisition

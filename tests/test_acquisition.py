"""
Acquisition layer tests (upstream traffic stubbed with httpx.MockTransport)

Covers:
  - ordered endpoint fallback (first non-empty wins, later endpoints never called)
  - concurrent snapshot fetch (partial failure, total failure, snapshot cache)
  - live-quote merge through the full fetch
  - earnings chains and calendar enrichment batches
  - risk inputs
"""

import asyncio
import os
import sys
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from proxy_service.clients.fmp import FMPClient
from proxy_service.exceptions import ConfigurationError, NoDataError, UpstreamError
from proxy_service.layers.acquisition import AcquisitionLayer, first_available
from proxy_service.layers.cache import MemoryCache

NOW = datetime(2024, 6, 14, 15, 0, tzinfo=timezone.utc).timestamp()
TODAY = date(2024, 6, 14)


def _history_payload(n: int = 30, last: date = TODAY - timedelta(days=1)) -> dict:
    return {
        "symbol": "AAPL",
        "historical": [
            {"date": (last - timedelta(days=i)).isoformat(), "close": 100.0 + (n - 1 - i), "volume": 1000}
            for i in range(n)
        ],
    }


def _snapshot_routes(**overrides) -> dict:
    routes = {
        "/income-statement/AAPL": (200, [{"date": "2024-03-30", "revenue": 90e9, "eps": 1.53}]),
        "/balance-sheet-statement/AAPL": (200, [{"date": "2024-03-30", "totalAssets": 300e9, "totalDebt": 100e9}]),
        "/historical-price-full/AAPL": (200, _history_payload()),
        "/quote/AAPL": (200, [{"symbol": "AAPL", "price": 200.0, "volume": 5000, "yearHigh": 220.0, "yearLow": 150.0}]),
    }
    routes.update(overrides)
    return routes


def _transport(routes: dict, calls: list):
    """Answer by path suffix; record every path requested"""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        calls.append(path)
        for suffix, answer in routes.items():
            if path.endswith(suffix):
                if callable(answer):
                    return answer(request)
                status, payload = answer
                return httpx.Response(status, json=payload)
        return httpx.Response(404, json={"Error Message": "not found"})

    return httpx.MockTransport(handler)


def run_acquisition(routes: dict, action, api_key: str = "test-key", memory: MemoryCache = None):
    """Run ``action(layer)`` against stubbed FMP; returns (result, requested paths)"""
    calls: list = []

    async def main():
        async with httpx.AsyncClient(transport=_transport(routes, calls)) as http:
            fmp = FMPClient(
                api_key=api_key,
                base_url="https://fmp.test/api/v3",
                stable_url="https://fmp.test/stable",
                http=http,
            )
            layer = AcquisitionLayer(
                fmp=fmp,
                memory=memory if memory is not None else MemoryCache(clock=lambda: NOW),
                clock=lambda: NOW,
                snapshot_ttl=300,
            )
            return await action(layer)

    return asyncio.run(main()), calls


# ─────────────────────────────────────────────────────────
# 1. Ordered fallback
# ─────────────────────────────────────────────────────────

class TestFirstAvailable:
    def test_first_non_empty_wins(self):
        a = AsyncMock(return_value=[])
        b = AsyncMock(return_value=[{"x": 1}])
        c = AsyncMock(return_value=[{"x": 2}])
        attempts = [
            ("a", a, list),
            ("b", b, lambda rows: [r["x"] for r in rows]),
            ("c", c, list),
        ]
        records, source = asyncio.run(first_available(attempts, symbol="AAPL"))
        assert records == [1]
        assert source == "b"
        c.assert_not_called()

    def test_errors_fall_through(self):
        a = AsyncMock(side_effect=UpstreamError("API Error: 500", upstream_status=500))
        b = AsyncMock(return_value=[7])
        records, source = asyncio.run(first_available([("a", a, list), ("b", b, list)]))
        assert (records, source) == ([7], "b")

    def test_all_failed_raises_first_error(self):
        first = UpstreamError("API Error: 403", upstream_status=403)
        attempts = [
            ("a", AsyncMock(side_effect=first), list),
            ("b", AsyncMock(side_effect=UpstreamError("API Error: 500", upstream_status=500)), list),
        ]
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(first_available(attempts, symbol="AAPL"))
        assert exc_info.value is first
        assert exc_info.value.symbol == "AAPL"

    def test_empty_and_failed_is_no_data(self):
        attempts = [
            ("a", AsyncMock(side_effect=UpstreamError("boom")), list),
            ("b", AsyncMock(return_value=[]), list),
        ]
        assert asyncio.run(first_available(attempts)) == ([], None)


# ─────────────────────────────────────────────────────────
# 2. Snapshot
# ─────────────────────────────────────────────────────────

class TestSnapshot:
    def test_full_snapshot(self):
        snapshot, calls = run_acquisition(_snapshot_routes(), lambda layer: layer.fetch_snapshot("aapl"))
        assert snapshot.symbol == "AAPL"
        assert snapshot.fundamentals.eps == 1.53
        assert snapshot.balance_sheet.debt_to_assets == pytest.approx(1 / 3)
        assert snapshot.current_quote.price == 200.0
        assert len(calls) == 4

    def test_quote_merged_into_history(self):
        snapshot, _ = run_acquisition(_snapshot_routes(), lambda layer: layer.fetch_snapshot("AAPL"))
        series = snapshot.price_history
        assert len(series) == 31
        assert series.bars[0].date == TODAY
        assert series.bars[0].close == 200.0
        assert series.high_52_week == 220.0
        assert series.low_52_week == 150.0

    def test_history_window_starts_a_year_back(self):
        seen = {}

        def history(request):
            seen["from"] = request.url.params.get("from")
            seen["apikey"] = request.url.params.get("apikey")
            return httpx.Response(200, json=_history_payload())

        run_acquisition(
            _snapshot_routes(**{"/historical-price-full/AAPL": history}),
            lambda layer: layer.fetch_snapshot("AAPL"),
        )
        assert seen["from"] == "2023-06-15"
        assert seen["apikey"] == "test-key"

    def test_failed_sub_call_leaves_record_absent(self):
        routes = _snapshot_routes(**{"/balance-sheet-statement/AAPL": (500, {"error": "down"})})
        snapshot, _ = run_acquisition(routes, lambda layer: layer.fetch_snapshot("AAPL"))
        assert snapshot.balance_sheet is None
        assert snapshot.fundamentals is not None

    def test_every_sub_call_failed(self):
        routes = {suffix: (503, {"error": "down"}) for suffix in _snapshot_routes()}
        with pytest.raises(UpstreamError) as exc_info:
            run_acquisition(routes, lambda layer: layer.fetch_snapshot("AAPL"))
        assert exc_info.value.status_code == 503
        assert exc_info.value.symbol == "AAPL"

    def test_no_prices_and_no_quote(self):
        routes = _snapshot_routes(**{
            "/historical-price-full/AAPL": (200, {}),
            "/quote/AAPL": (200, []),
        })
        with pytest.raises(NoDataError):
            run_acquisition(routes, lambda layer: layer.fetch_snapshot("AAPL"))

    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            run_acquisition(_snapshot_routes(), lambda layer: layer.fetch_snapshot("AAPL"), api_key="")

    def test_snapshot_served_from_memory(self):
        memory = MemoryCache(clock=lambda: NOW)

        async def twice(layer):
            await layer.fetch_snapshot("AAPL")
            return await layer.fetch_snapshot("AAPL")

        _, calls = run_acquisition(_snapshot_routes(), twice, memory=memory)
        assert len(calls) == 4


# ─────────────────────────────────────────────────────────
# 3. Earnings
# ─────────────────────────────────────────────────────────

class TestEarnings:
    def test_quarterly_chain_stops_at_first_answer(self):
        routes = {
            "/historical/earning_calendar/AAPL": (200, []),
            "/earnings-surprises/AAPL": (200, [
                {"date": "2024-05-02", "symbol": "AAPL", "actualEarningResult": 1.53, "estimatedEarning": 1.5},
            ]),
            "/income-statement/AAPL": (200, [{"date": "2024-03-30", "eps": 1.53}]),
        }
        (records, source), calls = run_acquisition(routes, lambda layer: layer.fetch_earnings("AAPL"))
        assert source == "earnings-surprises"
        assert records[0].surprise_percentage == pytest.approx(2.0)
        assert not any(path.endswith("/income-statement/AAPL") for path in calls)

    def test_annual_uses_income_statement(self):
        def income(request):
            assert request.url.params["period"] == "annual"
            assert request.url.params["limit"] == "5"
            return httpx.Response(200, json=[
                {"date": "2023-09-30", "eps": 6.13, "revenue": 383e9},
                {"date": "2022-09-24", "eps": 6.11, "revenue": 394e9},
            ])

        (records, source), _ = run_acquisition(
            {"/income-statement/AAPL": income},
            lambda layer: layer.fetch_earnings("AAPL", "annual"),
        )
        assert source == "income-statement-annual"
        assert records[0].fiscal_period == "FY 2023"

    def test_calendar_enriched_in_batches(self):
        symbols = [f"S{i:02d}" for i in range(25)]

        def profiles(request):
            batch = request.url.path.rsplit("/", 1)[-1].split(",")
            return httpx.Response(200, json=[{"symbol": s, "companyName": f"{s} Inc", "sector": "Technology"} for s in batch])

        def quotes(request):
            batch = request.url.path.rsplit("/", 1)[-1].split(",")
            if "S20" in batch:
                return httpx.Response(500, json={"error": "down"})
            return httpx.Response(200, json=[{"symbol": s, "price": 10.0} for s in batch])

        def router(request):
            path = request.url.path
            if "/profile/" in path:
                return profiles(request)
            if "/quote/" in path:
                return quotes(request)
            return httpx.Response(200, json=[{"date": "2024-06-20", "symbol": s} for s in symbols])

        rows, calls = run_acquisition({"": router}, lambda layer: layer.fetch_earnings_calendar("2024-06-17", "2024-06-21"))
        assert len(rows) == 25
        assert sum("/profile/" in path for path in calls) == 2
        by_symbol = {row["symbol"]: row for row in rows}
        assert by_symbol["S00"]["companyName"] == "S00 Inc"
        assert by_symbol["S00"]["price"] == 10.0
        # the second batch failed as a whole
        assert by_symbol["S24"]["companyName"] is None


# ─────────────────────────────────────────────────────────
# 4. Risk inputs
# ─────────────────────────────────────────────────────────

class TestRiskInputs:
    def test_unknown_company(self):
        inputs, calls = run_acquisition({"/profile/ZZZZ": (200, [])}, lambda layer: layer.fetch_risk_inputs("ZZZZ"))
        assert inputs is None
        assert len(calls) == 1

    def test_optional_calls_may_fail(self):
        routes = {
            "/profile/MSFT": (200, [{"symbol": "MSFT", "companyName": "Microsoft", "beta": 0.9}]),
            "/quote/MSFT": (200, [{"symbol": "MSFT", "price": 420.0}]),
            "/ratios-ttm/MSFT": (500, {"error": "down"}),
            "/income-statement/MSFT": (200, [{"revenue": 2}, {"revenue": 1}]),
            "/balance-sheet-statement/MSFT": (200, []),
        }
        inputs, _ = run_acquisition(routes, lambda layer: layer.fetch_risk_inputs("msft"))
        assert inputs.profile.company_name == "Microsoft"
        assert inputs.quote.price == 420.0
        assert inputs.ratios is None
        assert inputs.revenue_growth == pytest.approx(100.0)

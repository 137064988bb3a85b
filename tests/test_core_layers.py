"""
Core layer unit tests

Covers:
  - configuration (service discovery, URIs)
  - cache layer (memory TTL, freshness boundary, file / MongoDB / Redis stores, tiered read/write)
  - processing layer (history normalisation, live-quote merge, ratios, earnings rows)
  - analysis layer (RSI / SMA / percent change / volume change / full indicator set)
"""

import asyncio
import json
import os
import sys
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from proxy_service.exceptions import CacheError
from proxy_service.layers.analysis import (
    AnalysisLayer,
    percent_change,
    rsi,
    sma,
    volume_change,
)
from proxy_service.layers.cache import (
    FileStore,
    MemoryCache,
    MongoStore,
    RedisStore,
    TieredCache,
    build_persistent_store,
    is_fresh,
    make_key,
)
from proxy_service.layers.processing import ProcessingLayer, safe_ratio
from proxy_service.models.market import CacheEntry, PriceBar, PriceOrder, PriceSeries, QuoteSummary
from proxy_service.models.upstream import (
    FMPBalanceSheet,
    FMPEarningsSurprise,
    FMPHistoricalBar,
    FMPHistoricalEarning,
    FMPIncomeStatement,
    parse_rows,
)

HOUR = 3600
NOW = datetime(2024, 6, 14, 15, 0, tzinfo=timezone.utc).timestamp()
TODAY = date(2024, 6, 14)


class FakeClock:
    def __init__(self, t: float = NOW):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


def _history_rows(n: int = 30, last: date = TODAY - timedelta(days=1), start_close: float = 100.0) -> list:
    """n daily rows ending at ``last``, newest first, close rising by 1 per day"""
    rows = []
    for i in range(n):
        rows.append(FMPHistoricalBar(
            date=(last - timedelta(days=i)).isoformat(),
            close=start_close + (n - 1 - i),
            volume=1000 + i,
        ))
    return rows


# ─────────────────────────────────────────────────────────
# 1. Configuration
# ─────────────────────────────────────────────────────────

class TestConfig:
    def test_defaults(self):
        from proxy_service.config import ProxyServiceSettings
        s = ProxyServiceSettings()
        assert s.PORT == 8001
        assert s.MONGODB_DATABASE == "marketproxy"
        assert s.CACHE_DIR == "/tmp/stock-cache"
        assert s.PREDICTION_MAX_AGE_HOURS == 24.0

    def test_mongo_uri_with_auth(self):
        from proxy_service.config import ProxyServiceSettings
        s = ProxyServiceSettings(
            MONGODB_USERNAME="user",
            MONGODB_PASSWORD="pass",
            MONGODB_HOST="db-host",
            MONGODB_PORT=27017,
            MONGODB_DATABASE="mydb",
        )
        assert "user:pass@db-host:27017/mydb" in s.MONGO_URI

    def test_redis_url_with_auth(self):
        from proxy_service.config import ProxyServiceSettings
        s = ProxyServiceSettings(REDIS_PASSWORD="secret", REDIS_HOST="cache", REDIS_PORT=6379)
        assert ":secret@cache:6379" in s.REDIS_URL

    def test_docker_service_discovery(self):
        with patch.dict(os.environ, {"DOCKER_CONTAINER": "true"}, clear=False):
            from proxy_service import config as cfg_module
            assert cfg_module._default_mongo_host() == "mongodb"
            assert cfg_module._default_redis_host() == "redis"

    def test_credentials_from_environment(self):
        from proxy_service.config import ProxyServiceSettings
        with patch.dict(os.environ, {"FMP_API_KEY": "env-key"}, clear=False):
            assert ProxyServiceSettings().FMP_API_KEY == "env-key"


# ─────────────────────────────────────────────────────────
# 2. Cache layer
# ─────────────────────────────────────────────────────────

class TestCacheKeys:
    def test_key_format(self):
        assert make_key("prediction", "AAPL") == "prediction_AAPL"
        assert make_key("openai", "AAPL", "2024-03-30_25.0_-8.0_100.00") == "openai_AAPL_2024-03-30_25.0_-8.0_100.00"

    def test_long_key_hashed(self):
        key = make_key("calendar", "x" * 300)
        assert key.startswith("calendar_")
        assert len(key) < 60


class TestFreshness:
    def test_one_hour_old_is_fresh(self):
        assert is_fresh(NOW - HOUR, 24, now=NOW) is True

    def test_twenty_five_hours_old_is_stale(self):
        assert is_fresh(NOW - 25 * HOUR, 24, now=NOW) is False

    def test_exact_boundary_is_stale(self):
        assert is_fresh(NOW - 24 * HOUR, 24, now=NOW) is False


class TestMemoryCache:
    def setup_method(self):
        self.clock = FakeClock()
        self.cache = MemoryCache(clock=self.clock)

    def test_set_then_get_returns_same_value(self):
        value = {"recommendation": {"action": "BUY"}, "fetchedData": [1, 2.5, None]}
        self.cache.set("prediction_AAPL", value, 60)
        assert self.cache.get("prediction_AAPL") is value

    def test_missing_key(self):
        assert self.cache.get("nope") is None

    def test_expired_entry_is_evicted_on_read(self):
        self.cache.set("k", "v", 60)
        self.clock.advance(61)
        assert self.cache.get("k") is None
        assert len(self.cache) == 0

    def test_delete_and_clear(self):
        self.cache.set("a", 1)
        self.cache.set("b", 2)
        self.cache.delete("a")
        assert self.cache.get("a") is None
        self.cache.clear()
        assert len(self.cache) == 0


class TestFileStore:
    def test_write_then_read(self, tmp_path):
        store = FileStore("ratings", cache_dir=str(tmp_path))
        entry = CacheEntry(key="AAPL", value={"a": 1}, written_at=NOW, ttl_seconds=HOUR)
        asyncio.run(store.set(entry))

        assert (tmp_path / "ratings" / "AAPL.json").exists()
        loaded = asyncio.run(store.get("AAPL"))
        assert loaded.value == {"a": 1}
        assert loaded.written_at == NOW

    def test_unreadable_file_raises_cache_error(self, tmp_path):
        store = FileStore("ratings", cache_dir=str(tmp_path))
        (tmp_path / "ratings").mkdir()
        (tmp_path / "ratings" / "AAPL.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(CacheError):
            asyncio.run(store.get("AAPL"))


class TestMongoStore:
    def setup_method(self):
        self.collection = AsyncMock()
        self.store = MongoStore("ratings", {"ratings": self.collection})

    def test_write_upserts_document_keyed_by_symbol(self):
        entry = CacheEntry(key="AAPL", value={"a": 1}, written_at=NOW, ttl_seconds=HOUR)
        asyncio.run(self.store.set(entry))
        self.collection.update_one.assert_awaited_once_with(
            {"_id": "AAPL"},
            {"$set": {"key": "AAPL", "value": {"a": 1}, "writtenAt": NOW, "ttlSeconds": HOUR}},
            upsert=True,
        )

    def test_read_returns_stored_entry(self):
        self.collection.find_one.return_value = {
            "_id": "AAPL", "key": "AAPL", "value": {"a": 1}, "writtenAt": NOW, "ttlSeconds": HOUR,
        }
        loaded = asyncio.run(self.store.get("AAPL"))
        self.collection.find_one.assert_awaited_once_with({"_id": "AAPL"})
        assert loaded.value == {"a": 1}
        assert loaded.written_at == NOW

    def test_missing_document_is_none(self):
        self.collection.find_one.return_value = None
        assert asyncio.run(self.store.get("AAPL")) is None

    def test_read_failure_raises_cache_error(self):
        self.collection.find_one.side_effect = RuntimeError("connection reset")
        with pytest.raises(CacheError):
            asyncio.run(self.store.get("AAPL"))

    def test_legacy_document_raises_cache_error(self):
        self.collection.find_one.return_value = {"_id": "AAPL", "value": {"action": "BUY"}}
        with pytest.raises(CacheError):
            asyncio.run(self.store.get("AAPL"))

    def test_legacy_document_is_a_tiered_miss(self):
        self.collection.find_one.return_value = {"_id": "AAPL", "value": {"action": "BUY"}}
        cache = TieredCache(MemoryCache(clock=FakeClock()), self.store, clock=FakeClock())
        assert asyncio.run(cache.get("prediction_AAPL", store_key="AAPL")) is None

    def test_write_failure_raises_cache_error(self):
        self.collection.update_one.side_effect = RuntimeError("not primary")
        entry = CacheEntry(key="AAPL", value=1, written_at=NOW, ttl_seconds=HOUR)
        with pytest.raises(CacheError):
            asyncio.run(self.store.set(entry))

    def test_stats_counts_documents(self):
        self.collection.count_documents.return_value = 3
        stats = asyncio.run(self.store.stats())
        assert stats["backend"] == "mongodb"
        assert stats["documents"] == 3


class TestRedisStore:
    def setup_method(self):
        self.redis = AsyncMock()
        self.store = RedisStore("ratings", self.redis)

    def test_write_uses_namespaced_key_with_expiry(self):
        entry = CacheEntry(key="AAPL", value={"a": 1}, written_at=NOW, ttl_seconds=24 * HOUR)
        asyncio.run(self.store.set(entry))
        key, ttl, raw = self.redis.setex.await_args.args
        assert key == "ratings:AAPL"
        assert ttl == 24 * HOUR
        assert json.loads(raw) == {"key": "AAPL", "value": {"a": 1}, "writtenAt": NOW, "ttlSeconds": 24 * HOUR}

    def test_zero_ttl_still_expires(self):
        entry = CacheEntry(key="AAPL", value=1, written_at=NOW, ttl_seconds=0)
        asyncio.run(self.store.set(entry))
        assert self.redis.setex.await_args.args[1] == 1

    def test_read_parses_stored_json(self):
        self.redis.get.return_value = json.dumps(
            {"key": "AAPL", "value": {"a": 1}, "writtenAt": NOW, "ttlSeconds": HOUR}
        )
        loaded = asyncio.run(self.store.get("AAPL"))
        self.redis.get.assert_awaited_once_with("ratings:AAPL")
        assert loaded.value == {"a": 1}

    def test_missing_key_is_none(self):
        self.redis.get.return_value = None
        assert asyncio.run(self.store.get("AAPL")) is None

    def test_garbage_value_raises_cache_error(self):
        self.redis.get.return_value = "{not json"
        with pytest.raises(CacheError):
            asyncio.run(self.store.get("AAPL"))

    def test_read_failure_raises_cache_error(self):
        self.redis.get.side_effect = ConnectionError("refused")
        with pytest.raises(CacheError):
            asyncio.run(self.store.get("AAPL"))

    def test_write_failure_raises_cache_error(self):
        self.redis.setex.side_effect = ConnectionError("refused")
        entry = CacheEntry(key="AAPL", value=1, written_at=NOW, ttl_seconds=HOUR)
        with pytest.raises(CacheError):
            asyncio.run(self.store.set(entry))

    def test_delete_uses_namespaced_key(self):
        asyncio.run(self.store.delete("AAPL"))
        self.redis.delete.assert_awaited_once_with("ratings:AAPL")


class TestPersistentStoreFactory:
    def test_none_backend(self):
        assert build_persistent_store("ratings", backend="none") is None

    def test_disconnected_database_degrades_to_files(self):
        with patch("proxy_service.layers.cache.get_redis", return_value=None):
            store = build_persistent_store("ratings", backend="redis")
        assert isinstance(store, FileStore)


class TestTieredCache:
    def setup_method(self):
        self.clock = FakeClock()

    def _cache(self, store, memory=None):
        return TieredCache(
            memory if memory is not None else MemoryCache(clock=self.clock),
            store,
            memory_ttl=HOUR,
            max_age_hours=24,
            clock=self.clock,
        )

    def test_persistent_hit_populates_memory(self, tmp_path):
        store = FileStore("ratings", cache_dir=str(tmp_path))
        asyncio.run(self._cache(store).set("prediction_AAPL", {"x": 1}, store_key="AAPL"))

        memory = MemoryCache(clock=self.clock)
        cache = self._cache(store, memory)
        self.clock.advance(HOUR)
        assert asyncio.run(cache.get("prediction_AAPL", store_key="AAPL")) == {"x": 1}
        assert memory.get("prediction_AAPL") == {"x": 1}

    def test_stale_persistent_entry_is_a_miss(self, tmp_path):
        store = FileStore("ratings", cache_dir=str(tmp_path))
        asyncio.run(self._cache(store).set("prediction_AAPL", {"x": 1}, store_key="AAPL"))

        self.clock.advance(25 * HOUR)
        assert asyncio.run(self._cache(store).get("prediction_AAPL", store_key="AAPL")) is None

    def test_store_failure_is_a_miss(self):
        store = AsyncMock()
        store.backend = "mock"
        store.get.side_effect = CacheError("boom")
        assert asyncio.run(self._cache(store).get("prediction_AAPL", store_key="AAPL")) is None

    def test_store_write_failure_keeps_memory_value(self):
        store = AsyncMock()
        store.backend = "mock"
        store.set.side_effect = CacheError("disk full")
        cache = self._cache(store)
        asyncio.run(cache.set("prediction_AAPL", {"x": 1}, store_key="AAPL"))
        assert cache.memory.get("prediction_AAPL") == {"x": 1}


# ─────────────────────────────────────────────────────────
# 3. Processing layer
# ─────────────────────────────────────────────────────────

class TestProcessingLayer:
    def setup_method(self):
        self.proc = ProcessingLayer()

    def test_normalize_empty(self):
        assert len(self.proc.normalize_history([])) == 0

    def test_normalize_sorts_newest_first_and_dedupes(self):
        rows = [
            FMPHistoricalBar(date="2024-06-10", close=10, volume=1),
            FMPHistoricalBar(date="2024-06-12", close=12, volume=1),
            FMPHistoricalBar(date="2024-06-11", close=11, volume=1),
            FMPHistoricalBar(date="2024-06-12", close=12.5, volume=2),
        ]
        series = self.proc.normalize_history(rows)
        assert series.order == PriceOrder.NEWEST_FIRST
        assert [b.date.isoformat() for b in series.bars] == ["2024-06-12", "2024-06-11", "2024-06-10"]
        assert series.bars[0].close == 12.5

    def test_merge_adds_bar_for_today(self):
        series = self.proc.normalize_history(_history_rows(30))
        merged = self.proc.merge_quote(series, QuoteSummary(price=250.0, volume=5000), TODAY)
        assert len(merged) == len(series) + 1
        assert merged.bars[0].date == TODAY
        assert merged.bars[0].close == 250.0

    def test_merge_overwrites_todays_bar_when_price_moved(self):
        series = self.proc.normalize_history(_history_rows(5, last=TODAY))
        merged = self.proc.merge_quote(series, QuoteSummary(price=90.0, volume=77), TODAY)
        assert len(merged) == len(series)
        assert merged.bars[0].close == 90.0
        assert merged.bars[0].volume == 77

    def test_merge_within_tolerance_is_unchanged(self):
        series = self.proc.normalize_history(_history_rows(5, last=TODAY))
        latest = series.bars[0].close
        merged = self.proc.merge_quote(series, QuoteSummary(price=latest + 0.005), TODAY)
        assert merged.bars[0].close == latest

    def test_year_range_prefers_quote(self):
        series = self.proc.normalize_history(_history_rows(10))
        ranged = self.proc.with_year_range(series, QuoteSummary(price=1, year_high=500.0, year_low=5.0))
        assert ranged.high_52_week == 500.0
        assert ranged.low_52_week == 5.0

    def test_year_range_from_window_without_quote(self):
        series = self.proc.normalize_history(_history_rows(10))
        ranged = self.proc.with_year_range(series, None)
        assert ranged.high_52_week == 109.0
        assert ranged.low_52_week == 100.0

    def test_ratios_absent_on_zero_denominator(self):
        sheet = self.proc.to_balance_sheet(FMPBalanceSheet(
            total_debt=50, total_assets=0, total_current_assets=10, total_current_liabilities=None,
        ))
        assert sheet.debt_to_assets is None
        assert sheet.current_ratio is None
        assert safe_ratio(1, 4) == 0.25

    def test_parse_rows_drops_malformed(self):
        rows = parse_rows(FMPHistoricalBar, [{"date": "2024-01-01", "close": 1}, {"date": "x"}, "junk"])
        assert len(rows) == 1
        assert parse_rows(FMPHistoricalBar, {"error": "limit"}) == []

    def test_earnings_from_calendar(self):
        rows = [
            FMPHistoricalEarning(date="2024-05-02", eps=1.53, eps_estimated=1.5, fiscal_date_ending="2024-03-30"),
            FMPHistoricalEarning(date="2024-08-01", eps=None, eps_estimated=1.35, fiscal_date_ending="2024-06-29"),
        ]
        records = self.proc.earnings_from_calendar(rows, TODAY)
        assert records[0].date == "2024-08-01"
        assert records[0].is_upcoming is True
        assert records[0].surprise_percentage is None
        assert records[1].fiscal_period == "Q1 2024"
        assert records[1].surprise_percentage == pytest.approx(2.0)

    def test_earnings_from_surprises_negative_estimate(self):
        rows = [FMPEarningsSurprise(date="2024-02-01", actual_earning_result=-0.5, estimated_earning=-1.0)]
        record = self.proc.earnings_from_surprises(rows, TODAY)[0]
        assert record.surprise_percentage == pytest.approx(50.0)

    def test_annual_income_has_yoy_surprise(self):
        rows = [
            FMPIncomeStatement(date="2023-09-30", eps=6.0, revenue=100),
            FMPIncomeStatement(date="2022-09-30", eps=5.0, revenue=90),
        ]
        records = self.proc.earnings_from_income(rows, TODAY, annual=True)
        assert records[0].fiscal_period == "FY 2023"
        assert records[0].surprise_percentage == pytest.approx(20.0)
        assert records[1].surprise_percentage is None


# ─────────────────────────────────────────────────────────
# 4. Analysis layer
# ─────────────────────────────────────────────────────────

class TestIndicators:
    def test_rsi_rising_series_is_100(self):
        assert rsi([float(i) for i in range(1, 31)]) == 100.0

    def test_rsi_falling_series_is_0(self):
        assert rsi([float(i) for i in range(30, 0, -1)]) == pytest.approx(0.0)

    def test_rsi_bounded_for_mixed_series(self):
        closes = [100, 102, 101, 103, 102, 104, 103, 105, 104, 106, 105, 107, 106, 108, 107, 109]
        value = rsi([float(c) for c in closes])
        assert 0 < value < 100

    def test_rsi_insufficient_data(self):
        assert rsi([1.0] * 14) is None

    def test_sma_constant_series(self):
        closes = [42.0] * 60
        for period in (1, 20, 50, 60):
            assert sma(closes, period) == pytest.approx(42.0)

    def test_sma_insufficient_data(self):
        assert sma([1.0] * 10, 20) is None

    def test_percent_change(self):
        assert percent_change([100.0, 110.0], 1) == pytest.approx(10.0)
        assert percent_change([50.0] * 21, 20) == 0
        assert percent_change([1.0, 2.0], 5) is None

    def test_volume_change(self):
        assert volume_change([100] * 10 + [150] * 10) == pytest.approx(50.0)
        assert volume_change([100] * 19) is None


class TestAnalysisLayer:
    def setup_method(self):
        self.analysis = AnalysisLayer()
        self.proc = ProcessingLayer()

    def test_compute_all(self):
        series = self.proc.build_price_series(_history_rows(30), None, TODAY)
        ta = self.analysis.compute_technicals(series, now=datetime(2024, 6, 14, tzinfo=timezone.utc))
        assert ta.rsi == 100.0
        assert ta.sma20 == pytest.approx(119.5)
        assert ta.sma50 is None
        assert ta.sma200 is None
        assert ta.price_change_3m is None
        assert ta.current_price == 129.0
        assert ta.price_change_1d == pytest.approx((129 - 128) / 128 * 100)
        assert ta.distance_from_high == pytest.approx(0.0)
        assert ta.last_updated.startswith("2024-06-14")

    def test_order_does_not_change_result(self):
        newest_first = self.proc.normalize_history(_history_rows(40))
        oldest_first = newest_first.chronological()
        a = self.analysis.compute_technicals(newest_first)
        b = self.analysis.compute_technicals(oldest_first)
        assert a.rsi == b.rsi
        assert a.sma20 == b.sma20
        assert a.current_price == b.current_price

    def test_too_few_bars(self):
        bars = [PriceBar(date=TODAY - timedelta(days=i), close=10.0) for i in range(13)]
        assert self.analysis.compute_technicals(PriceSeries(bars=bars)) is None

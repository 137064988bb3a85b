"""
Layer 4 – Technical analysis
RSI(14, Wilder), SMA 20/50/200, 1d/1m/3m price change, 10-vs-10 bar volume
change and distance from the 52-week range.

Every indicator takes closes/volumes oldest-first and returns None when the
history is too short; absence is propagated, never replaced by 0.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

import pandas as pd

from proxy_service.models.market import PriceSeries, TechnicalAnalysis

logger = logging.getLogger(__name__)

RSI_PERIOD = 14
MIN_BARS = 14
ONE_DAY = 1
ONE_MONTH = 20      # trading days
THREE_MONTHS = 60
VOLUME_WINDOW = 10


# ── Indicators ────────────────────────────────────────────

def rsi(closes: Sequence[float], period: int = RSI_PERIOD) -> Optional[float]:
    """Final RSI value with Wilder smoothing; 100 when there were no losses"""
    if len(closes) < period + 1:
        return None

    gains = losses = 0.0
    for i in range(1, period + 1):
        change = closes[i] - closes[i - 1]
        if change >= 0:
            gains += change
        else:
            losses -= change
    avg_gain = gains / period
    avg_loss = losses / period

    for i in range(period + 1, len(closes)):
        change = closes[i] - closes[i - 1]
        avg_gain = (avg_gain * (period - 1) + max(change, 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + max(-change, 0.0)) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


def sma(closes: Sequence[float], period: int) -> Optional[float]:
    if period <= 0 or len(closes) < period:
        return None
    return float(pd.Series(closes, dtype="float64").rolling(window=period).mean().iloc[-1])


def percent_change(closes: Sequence[float], days: int) -> Optional[float]:
    """Change of the latest close against the close ``days`` bars earlier, in %"""
    if len(closes) < days + 1:
        return None
    recent = closes[-1]
    past = closes[-1 - days]
    if past == 0:
        return None
    return (recent - past) / past * 100


def volume_change(volumes: Sequence[float], window: int = VOLUME_WINDOW) -> Optional[float]:
    """Mean volume of the last ``window`` bars against the ``window`` before, in %"""
    if len(volumes) < 2 * window:
        return None
    series = pd.Series(volumes[-2 * window:], dtype="float64")
    past = series.iloc[:window].mean()
    recent = series.iloc[window:].mean()
    if past == 0:
        return None
    return float((recent - past) / past * 100)


def distance_from_high(current: Optional[float], high: Optional[float]) -> Optional[float]:
    if current is None or not high:
        return None
    return (high - current) / high * 100


def distance_from_low(current: Optional[float], low: Optional[float]) -> Optional[float]:
    if current is None or not low:
        return None
    return (current - low) / low * 100


# ── Full indicator set ────────────────────────────────────

class AnalysisLayer:
    """Indicator set for one price series"""

    def compute_technicals(self, series: PriceSeries, now: Optional[datetime] = None) -> Optional[TechnicalAnalysis]:
        """
        TechnicalAnalysis for ``series`` in whatever order it arrives.

        The series is converted to chronological order here, once, so every
        indicator sees oldest-first input. Fewer than MIN_BARS bars → None.
        """
        chronological = series.chronological()
        if len(chronological) < MIN_BARS:
            logger.debug(f"Not enough bars for technicals: {len(chronological)}")
            return None

        closes = chronological.closes()
        volumes = chronological.volumes()
        current = closes[-1]
        high = series.high_52_week or max(closes)
        low = series.low_52_week or min(closes)
        now = now or datetime.now(tz=timezone.utc)

        return TechnicalAnalysis(
            rsi=rsi(closes),
            sma20=sma(closes, 20),
            sma50=sma(closes, 50),
            sma200=sma(closes, 200),
            price_change_1d=percent_change(closes, ONE_DAY),
            price_change_1m=percent_change(closes, ONE_MONTH),
            price_change_3m=percent_change(closes, THREE_MONTHS),
            volume_change=volume_change(volumes),
            high_52_week=high,
            low_52_week=low,
            distance_from_high=distance_from_high(current, high),
            distance_from_low=distance_from_low(current, low),
            current_price=current,
            last_updated=now.isoformat(),
        )


# ── Module-level singleton ────────────────────────────────
_analysis: Optional[AnalysisLayer] = None


def get_analysis_layer() -> AnalysisLayer:
    global _analysis
    if _analysis is None:
        _analysis = AnalysisLayer()
    return _analysis

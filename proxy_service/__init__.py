"""
Market proxy functions
Stateless request handlers that proxy browser requests to market-data, news
and LLM providers, reshape the responses and apply light caching.

Layered architecture:
  Acquisition     → pulls quotes / statements / price history from FMP
  Cache           → in-process memory tier + persistent tier (file / MongoDB / Redis)
  Processing      → price-history normalisation and live-quote merge
  Analysis        → technical indicators (RSI / SMA / momentum / 52-week range)
  Recommendation  → LLM prompt, answer parsing, deterministic fallback
"""

__version__ = "1.0.0"

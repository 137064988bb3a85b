"""
Data-flow layers
  Layer 1 – Acquisition    : upstream fetch with ordered fallback
  Layer 2 – Cache          : memory → persistent (file / MongoDB / Redis)
  Layer 3 – Processing     : price-history normalisation
  Layer 4 – Analysis       : technical indicators
  Layer 5 – Recommendation : LLM answer with heuristic fallback
  risk                     : company risk scores for the risk function
"""

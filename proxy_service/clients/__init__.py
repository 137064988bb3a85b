"""
Outbound connections
  http       : shared httpx.AsyncClient
  fmp        : Financial Modeling Prep REST API
  benzinga   : Benzinga news and bulls/bears-say API
  llm        : OpenAI and Anthropic completion adapters
"""

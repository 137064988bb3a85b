"""
Market proxy service
FastAPI entry point hosting the serverless functions

Run:
    uvicorn proxy_service.main:app --host 0.0.0.0 --port 8001
    python -m proxy_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from proxy_service import __version__
from proxy_service.clients.http import close_http_client
from proxy_service.config import settings
from proxy_service.db import close_connections, init_mongodb, init_redis
from proxy_service.exceptions import ProxyServiceError
from proxy_service.models.function import ApiResponse
from proxy_service.routers import cache, functions, health

# ── Logging ───────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks"""
    logger.info("=" * 60)
    logger.info(f"🚀 Market Proxy Service v{__version__} starting")
    logger.info(f"   Cache     : {settings.CACHE_BACKEND}")
    logger.info(f"   LLM       : {settings.LLM_PROVIDER}")
    logger.info(f"   FMP key   : {'set' if settings.FMP_API_KEY else 'missing'}")
    logger.info("=" * 60)

    # a database that is down degrades the persistent tier to files, it does not stop startup
    if settings.CACHE_BACKEND == "mongodb":
        if await init_mongodb():
            logger.info("✅ Persistent cache: MongoDB")
        else:
            logger.warning("⚠️ MongoDB unavailable, persistent cache degraded to files")
    elif settings.CACHE_BACKEND == "redis":
        if await init_redis():
            logger.info("✅ Persistent cache: Redis")
        else:
            logger.warning("⚠️ Redis unavailable, persistent cache degraded to files")
    elif settings.CACHE_BACKEND == "none":
        logger.info("Persistent cache disabled, memory tier only")
    else:
        logger.info(f"✅ Persistent cache: files under {settings.CACHE_DIR}")

    yield

    logger.info("🔄 Market Proxy Service shutting down...")
    await close_http_client()
    await close_connections()
    logger.info("✅ Market Proxy Service stopped")


# ── Application ───────────────────────────────────────────
app = FastAPI(
    title="Market Proxy Service",
    description=(
        "Browser-facing proxy for market data, news and LLM analysis:\n"
        "- 📊 AI stock rating with a deterministic fallback\n"
        "- 📅 Earnings history and the market-wide earnings calendar\n"
        "- 📰 News and bull/bear cases\n"
        "- ⚠️ Company risk assessment\n"
        "- 🗄️ Two-tier cache (memory → file / MongoDB / Redis)\n\n"
        "**Layers**\n"
        "```\n"
        "Acquisition     ← upstream REST calls, endpoint fallback chains\n"
        "Cache           ← memory + persistent tiers\n"
        "Processing      ← price-history cleaning, quote merge\n"
        "Analysis        ← RSI / SMA / price and volume change\n"
        "Recommendation  ← LLM answer or fallback heuristic\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS for the admin endpoints (functions set their own headers) ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request timing ────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── Exception handlers ────────────────────────────────────
@app.exception_handler(ProxyServiceError)
async def proxy_error_handler(request: Request, exc: ProxyServiceError):
    logger.warning(f"{request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=ApiResponse.from_error(exc).model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "message": str(exc)},
    )


# ── Routers ───────────────────────────────────────────────
app.include_router(health.router)
app.include_router(cache.router)
app.include_router(functions.router)


# ── Root ──────────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Market Proxy Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "functions": sorted(functions.HANDLERS),
    }


# ── Direct run ────────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "proxy_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )

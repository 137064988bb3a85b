"""
Persistent cache connections
MongoDB (motor) and Redis (redis.asyncio) back the persistent cache tier. Only
the backend selected by CACHE_BACKEND is ever connected; a failed connection
leaves the getters returning None and the stores fall back to files.
"""

import logging
from typing import Awaitable, Callable, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from redis.asyncio import Redis

from proxy_service.config import settings

logger = logging.getLogger(__name__)

# ── Process-wide connections ──────────────────────────────
_mongo_client: Optional[AsyncIOMotorClient] = None
_mongo_db: Optional[AsyncIOMotorDatabase] = None
_redis_client: Optional[Redis] = None


def _selected(backend: str) -> bool:
    if settings.CACHE_BACKEND.lower() != backend:
        logger.info(f"Cache backend is '{settings.CACHE_BACKEND}', not connecting {backend}")
        return False
    return True


async def init_mongodb() -> bool:
    """Connect MongoDB when it is the cache backend; False when skipped or unreachable"""
    global _mongo_client, _mongo_db
    if not _selected("mongodb"):
        return False

    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        serverSelectionTimeoutMS=settings.MONGO_SERVER_SELECTION_TIMEOUT_MS,
    )
    try:
        await client.admin.command("ping")
    except Exception as exc:
        logger.warning(f"⚠️ MongoDB unreachable at {settings.MONGODB_HOST}:{settings.MONGODB_PORT}: {exc}")
        client.close()
        return False

    _mongo_client = client
    _mongo_db = client[settings.MONGODB_DATABASE]
    logger.info(f"✅ MongoDB cache database '{settings.MONGODB_DATABASE}' at {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
    return True


async def init_redis() -> bool:
    """Connect Redis when it is the cache backend; False when skipped or unreachable"""
    global _redis_client
    if not _selected("redis"):
        return False

    client = Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=10,
    )
    try:
        await client.ping()
    except Exception as exc:
        logger.warning(f"⚠️ Redis unreachable at {settings.REDIS_HOST}:{settings.REDIS_PORT}: {exc}")
        await client.aclose()
        return False

    _redis_client = client
    logger.info(f"✅ Redis cache db {settings.REDIS_DB} at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    return True


async def close_connections():
    global _mongo_client, _mongo_db, _redis_client
    if _mongo_client is not None:
        _mongo_client.close()
        logger.info("MongoDB connection closed")
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("Redis connection closed")
    _mongo_client = _mongo_db = _redis_client = None


def get_mongo_db() -> Optional[AsyncIOMotorDatabase]:
    return _mongo_db


def get_redis() -> Optional[Redis]:
    return _redis_client


async def _probe(ping: Callable[[], Awaitable], host: str) -> dict:
    try:
        await ping()
    except Exception as exc:
        return {"status": "unhealthy", "error": str(exc)}
    return {"status": "healthy", "host": host}


async def check_health() -> dict:
    """
    Status per database: healthy / unhealthy when connected, disconnected
    when selected but not connected, disabled otherwise.
    """
    backend = settings.CACHE_BACKEND.lower()
    result = {}

    if _mongo_client is not None:
        result["mongodb"] = await _probe(lambda: _mongo_client.admin.command("ping"), settings.MONGODB_HOST)
    else:
        result["mongodb"] = {"status": "disconnected" if backend == "mongodb" else "disabled"}

    if _redis_client is not None:
        result["redis"] = await _probe(_redis_client.ping, settings.REDIS_HOST)
    else:
        result["redis"] = {"status": "disconnected" if backend == "redis" else "disabled"}

    return result

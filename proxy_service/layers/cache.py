"""
Layer 2 – Cache
Two tiers checked in strict order:
  memory      – process-lifetime map, short TTL, lazy eviction on read
  persistent  – file / MongoDB / Redis entry keyed by the uppercased symbol,
                freshness checked against its write time
Persistent-tier failures are logged and treated as a miss.
"""

import hashlib
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from proxy_service.config import settings
from proxy_service.db import get_mongo_db, get_redis
from proxy_service.exceptions import CacheError
from proxy_service.models.market import CacheEntry

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def make_key(namespace: str, *parts: Any) -> str:
    """prediction_AAPL, data_AAPL, openai_AAPL_<fingerprint>"""
    raw = "_".join([namespace] + [str(p) for p in parts])
    if len(raw) > 200:
        raw = namespace + "_" + hashlib.md5(raw.encode()).hexdigest()
    return raw


def is_fresh(written_at: float, max_age_hours: float, now: Optional[float] = None) -> bool:
    now = time.time() if now is None else now
    return (now - written_at) < max_age_hours * 3600


# ── Memory tier ───────────────────────────────────────────

class MemoryCache:
    """Process-wide key/value map with per-entry TTL"""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or time.time
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int = 3600) -> None:
        self._entries[key] = CacheEntry(
            key=key, value=value, written_at=self._clock(), ttl_seconds=ttl_seconds
        )

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# ── Persistent tier ───────────────────────────────────────

class PersistentStore(ABC):
    """Durable cache backend: get(key) / set(key, entry)"""

    backend = "base"

    def __init__(self, namespace: str):
        self.namespace = namespace

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    async def set(self, entry: CacheEntry) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def stats(self) -> dict:
        return {"backend": self.backend, "namespace": self.namespace, "status": "healthy"}


class FileStore(PersistentStore):
    """One JSON file per key under <cache_dir>/<namespace>/"""

    backend = "file"

    def __init__(self, namespace: str, cache_dir: Optional[str] = None):
        super().__init__(namespace)
        self.directory = os.path.join(cache_dir or settings.CACHE_DIR, namespace)

    def _path(self, key: str) -> str:
        safe = key.replace(":", "_").replace("/", "_")
        return os.path.join(self.directory, f"{safe}.json")

    async def get(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return CacheEntry.model_validate(json.load(fh))
        except Exception as exc:
            raise CacheError(f"File cache read failed: {path}", details=str(exc))

    async def set(self, entry: CacheEntry) -> None:
        path = self._path(entry.key)
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(entry.to_dict(), fh, ensure_ascii=False, default=str)
        except Exception as exc:
            raise CacheError(f"File cache write failed: {path}", details=str(exc))

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as exc:
            raise CacheError(f"File cache delete failed: {path}", details=str(exc))

    async def stats(self) -> dict:
        files = 0
        if os.path.isdir(self.directory):
            files = len([f for f in os.listdir(self.directory) if f.endswith(".json")])
        return {**await super().stats(), "files": files, "dir": self.directory}


class MongoStore(PersistentStore):
    """Document per key in the <namespace> collection, _id = key"""

    backend = "mongodb"

    def __init__(self, namespace: str, db):
        super().__init__(namespace)
        self._collection = db[namespace]

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            doc = await self._collection.find_one({"_id": key})
        except Exception as exc:
            raise CacheError(f"MongoDB cache read failed: {key}", details=str(exc))
        if not doc:
            return None
        try:
            return CacheEntry.model_validate(doc)
        except ValueError as exc:
            raise CacheError(f"MongoDB cache entry unreadable: {key}", details=str(exc))

    async def set(self, entry: CacheEntry) -> None:
        try:
            await self._collection.update_one(
                {"_id": entry.key},
                {"$set": entry.to_dict()},
                upsert=True,
            )
        except Exception as exc:
            raise CacheError(f"MongoDB cache write failed: {entry.key}", details=str(exc))

    async def delete(self, key: str) -> None:
        try:
            await self._collection.delete_one({"_id": key})
        except Exception as exc:
            raise CacheError(f"MongoDB cache delete failed: {key}", details=str(exc))

    async def stats(self) -> dict:
        try:
            count = await self._collection.count_documents({})
        except Exception as exc:
            return {**await super().stats(), "status": "error", "error": str(exc)}
        return {**await super().stats(), "documents": count}


class RedisStore(PersistentStore):
    """<namespace>:<key> strings with server-side expiry"""

    backend = "redis"

    def __init__(self, namespace: str, redis):
        super().__init__(namespace)
        self._redis = redis

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self._redis.get(self._key(key))
        except Exception as exc:
            raise CacheError(f"Redis cache read failed: {key}", details=str(exc))
        if not raw:
            return None
        try:
            return CacheEntry.model_validate(json.loads(raw))
        except ValueError as exc:
            raise CacheError(f"Redis cache entry unreadable: {key}", details=str(exc))

    async def set(self, entry: CacheEntry) -> None:
        try:
            await self._redis.setex(
                self._key(entry.key),
                max(int(entry.ttl_seconds), 1),
                json.dumps(entry.to_dict(), ensure_ascii=False, default=str),
            )
        except Exception as exc:
            raise CacheError(f"Redis cache write failed: {entry.key}", details=str(exc))

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except Exception as exc:
            raise CacheError(f"Redis cache delete failed: {key}", details=str(exc))


def build_persistent_store(namespace: str, backend: Optional[str] = None) -> Optional[PersistentStore]:
    """
    Persistent store for the configured backend.

    A selected database that is not connected degrades to the file store.
    """
    backend = (backend or settings.CACHE_BACKEND).lower()
    if backend == "none":
        return None
    if backend == "mongodb":
        db = get_mongo_db()
        if db is not None:
            return MongoStore(namespace, db)
        logger.warning(f"MongoDB not connected, cache '{namespace}' uses file store")
    elif backend == "redis":
        redis = get_redis()
        if redis is not None:
            return RedisStore(namespace, redis)
        logger.warning(f"Redis not connected, cache '{namespace}' uses file store")
    return FileStore(namespace)


# ── Tiered cache ──────────────────────────────────────────

class TieredCache:
    """
    Memory tier in front of an optional persistent store.

    get: memory hit → value; else a persistent entry younger than
    ``max_age_hours`` is copied into memory and returned; else None.
    set: writes through to both tiers.
    """

    def __init__(
        self,
        memory: MemoryCache,
        store: Optional[PersistentStore] = None,
        memory_ttl: int = 3600,
        max_age_hours: float = 24.0,
        clock: Optional[Clock] = None,
    ):
        self.memory = memory
        self.store = store
        self.memory_ttl = memory_ttl
        self.max_age_hours = max_age_hours
        self._clock = clock or time.time

    async def get(self, key: str, store_key: Optional[str] = None) -> Optional[Any]:
        value = self.memory.get(key)
        if value is not None:
            logger.debug(f"Cache hit (memory): {key}")
            return value

        if self.store is None or store_key is None:
            return None
        try:
            entry = await self.store.get(store_key)
        except CacheError as exc:
            logger.warning(f"{exc.message}: {exc.details}")
            return None
        if entry is None:
            return None
        if not is_fresh(entry.written_at, self.max_age_hours, now=self._clock()):
            logger.debug(f"Cache stale ({self.store.backend}): {store_key}")
            return None

        logger.debug(f"Cache hit ({self.store.backend}): {store_key}")
        self.memory.set(key, entry.value, self.memory_ttl)
        return entry.value

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[int] = None,
        store_key: Optional[str] = None,
    ) -> None:
        self.memory.set(key, value, ttl_seconds or self.memory_ttl)
        if self.store is None or store_key is None:
            return
        entry = CacheEntry(
            key=store_key,
            value=value,
            written_at=self._clock(),
            ttl_seconds=int(self.max_age_hours * 3600),
        )
        try:
            await self.store.set(entry)
            logger.debug(f"Cache write ({self.store.backend}): {store_key}")
        except CacheError as exc:
            logger.warning(f"{exc.message}: {exc.details}")

    async def delete(self, key: str, store_key: Optional[str] = None) -> None:
        self.memory.delete(key)
        if self.store is None or store_key is None:
            return
        try:
            await self.store.delete(store_key)
        except CacheError as exc:
            logger.warning(f"{exc.message}: {exc.details}")

    async def stats(self) -> dict:
        result: dict = {"memory": {"entries": len(self.memory)}}
        result["persistent"] = await self.store.stats() if self.store else {"status": "disabled"}
        return result


# ── Process-wide memory tier ──────────────────────────────
_memory: Optional[MemoryCache] = None


def get_memory_cache() -> MemoryCache:
    global _memory
    if _memory is None:
        _memory = MemoryCache()
    return _memory

"""
Proxy service configuration
Reads settings from environment variables / .env and detects Docker containers
for database service discovery.
"""

import os
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """Whether the process runs inside a Docker container"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_mongo_host() -> str:
    """Docker uses the 'mongodb' service name, local runs use 'localhost'"""
    return "mongodb" if _is_docker() else "localhost"


def _default_redis_host() -> str:
    """Docker uses the 'redis' service name, local runs use 'localhost'"""
    return "redis" if _is_docker() else "localhost"


class ProxyServiceSettings(BaseSettings):
    """Proxy service settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Service ───────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8001)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["https://www.themarketlinks.com"]
    )

    # ── Credentials ───────────────────────────────────────
    FMP_API_KEY: str = Field(default="")
    BENZINGA_API_KEY: str = Field(default="")
    OPENAI_API_KEY: str = Field(default="")
    ANTHROPIC_API_KEY: str = Field(default="")

    # ── Upstream APIs ─────────────────────────────────────
    FMP_BASE_URL: str = Field(default="https://financialmodelingprep.com/api/v3")
    FMP_STABLE_URL: str = Field(default="https://financialmodelingprep.com/stable")
    BENZINGA_BASE_URL: str = Field(default="https://api.benzinga.com/api")
    OPENAI_URL: str = Field(default="https://api.openai.com/v1/chat/completions")
    OPENAI_MODEL: str = Field(default="gpt-4o-mini")
    ANTHROPIC_URL: str = Field(default="https://api.anthropic.com/v1/messages")
    ANTHROPIC_MODEL: str = Field(default="claude-3-sonnet-20240229")
    ANTHROPIC_VERSION: str = Field(default="2023-06-01")
    LLM_PROVIDER: str = Field(default="openai")       # openai / anthropic
    HTTP_TIMEOUT: float = Field(default=30.0)          # seconds

    # ── Cache ─────────────────────────────────────────────
    CACHE_BACKEND: str = Field(default="file")         # file / mongodb / redis / none
    CACHE_DIR: str = Field(default="/tmp/stock-cache")
    PREDICTION_MAX_AGE_HOURS: float = Field(default=24.0)
    PREDICTION_MEMORY_TTL: int = Field(default=3600)
    SNAPSHOT_CACHE_TTL: int = Field(default=300)       # raw upstream data
    EARNINGS_MAX_AGE_HOURS: float = Field(default=0.5)
    EARNINGS_CACHE_TTL: int = Field(default=1800)
    LLM_CACHE_TTL: int = Field(default=3600)           # 1h-12h

    # ── MongoDB (service discovery) ───────────────────────
    MONGODB_HOST: str = Field(default_factory=_default_mongo_host)
    MONGODB_PORT: int = Field(default=27017)
    MONGODB_USERNAME: str = Field(default="")
    MONGODB_PASSWORD: str = Field(default="")
    MONGODB_DATABASE: str = Field(default="marketproxy")
    MONGODB_AUTH_SOURCE: str = Field(default="admin")
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000)

    @property
    def MONGO_URI(self) -> str:
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            return (
                f"mongodb://{self.MONGODB_USERNAME}:{self.MONGODB_PASSWORD}"
                f"@{self.MONGODB_HOST}:{self.MONGODB_PORT}"
                f"/{self.MONGODB_DATABASE}?authSource={self.MONGODB_AUTH_SOURCE}"
            )
        return f"mongodb://{self.MONGODB_HOST}:{self.MONGODB_PORT}/{self.MONGODB_DATABASE}"

    # ── Redis (service discovery) ─────────────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── Logging ───────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache
def get_settings() -> ProxyServiceSettings:
    """Process-wide settings (singleton)"""
    return ProxyServiceSettings()


settings = get_settings()

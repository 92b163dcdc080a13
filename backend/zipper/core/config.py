"""
Core configuration for the File Zipper service
"""
from pydantic_settings import BaseSettings
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    # ===========================================
    # SERVER & INFRASTRUCTURE
    # ===========================================

    APP_NAME: str = "File Zipper"
    APP_VERSION: str = "1.0.0"

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    BACKEND_HOST: str = "127.0.0.1"  # Bind address (use 0.0.0.0 to expose externally)
    BACKEND_PORT: int = 8000

    # ===========================================
    # MANIFEST CACHE (Redis)
    # ===========================================

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 10

    # Manifests are stored under "<namespace>:<ref>"
    MANIFEST_NAMESPACE: str = "zip"

    # ===========================================
    # ARCHIVE OUTPUT
    # ===========================================

    DEFAULT_DOWNLOAD_NAME: str = "download.zip"  # Used when ?downloadas= is missing or sanitizes to nothing
    FALLBACK_FILE_NAME: str = "file"  # Used when an entry's FileName sanitizes to nothing

    READ_CHUNK_SIZE: int = 64 * 1024

    # Number of sources opened ahead of the entry being written (1 = strictly sequential)
    FETCH_AHEAD: int = 4

    # Zip64 framing lifts the 4 GiB per-entry limit at the cost of older unzip tools
    ZIP64: bool = False

    # ===========================================
    # REMOTE SOURCES (httpx)
    # ===========================================

    REMOTE_FOLLOW_REDIRECTS: bool = True
    REMOTE_TIMEOUT: Optional[float] = None  # None = no timeout, bound latency at the proxy instead
    REMOTE_MAX_CONNECTIONS: int = 20

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def fetch_ahead(self) -> int:
        """Fetch-ahead window, never below one"""
        return max(1, self.FETCH_AHEAD)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

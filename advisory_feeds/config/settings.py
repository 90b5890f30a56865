"""
Configuration settings for the Advisory Feed Engine
"""

from typing import Dict, List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["*"]

    # Feed configuration document; None means built-in defaults
    FEEDS_CONFIG_PATH: Optional[str] = None

    # Fetching
    PROXY_URL: Optional[str] = None  # e.g. https://dashboard.example.org/api/proxy-rss
    USER_AGENT: str = "AdvisoryFeeds/1.0"
    FETCH_TIMEOUT_SECONDS: float = 30.0
    RATE_LIMIT_SECONDS: float = 1.0  # minimum spacing per hostname
    FETCH_BATCH_SIZE: int = 5
    BATCH_TIMEOUT_SECONDS: float = 60.0

    # Credentials for sources with api_key_required, keyed by source id
    FEED_API_KEYS: Dict[str, str] = {}

    # Cache
    CACHE_MAX_SIZE_BYTES: int = 100 * 1024 * 1024  # 100MB
    CACHE_MAX_ENTRIES: int = 2000
    CACHE_COMPRESSION_ENABLED: bool = True
    CACHE_COMPRESSION_THRESHOLD: int = 1024
    CACHE_CLEANUP_INTERVAL_SECONDS: float = 300.0  # 5 minutes

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()

from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "LAN Cut"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    CORS_ORIGINS: list[str] = ["*"]

    # Network Scanning
    BACKGROUND_SCANNING: bool = True
    SCAN_INTERVAL: int = 300  # seconds between full scans
    SCAN_INITIAL_DELAY: float = 5  # seconds before the first automatic scan
    SCAN_CONCURRENCY: int = 50  # simultaneous ICMP probes during a sweep
    PROBE_TIMEOUT_MS: int = 500
    HOSTNAME_TIMEOUT_MS: int = 2000
    INTERFACE: Optional[str] = None  # Auto-detect if None

    # Presence tracking
    PRESENCE_INTERVAL: float = 3  # seconds between ARP presence passes
    PRESENCE_INITIAL_DELAY: float = 10
    FRESHNESS_WINDOW: int = 120  # seconds without signal before a device is offline

    # Access control
    SPOOF_INTERVAL: float = 1.0  # seconds between forged ARP rounds
    SHUTDOWN_UNBLOCK_TIMEOUT: float = 1.0  # per-device bound when force-unblocking

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

"""Application configuration management."""
from typing import Optional

from pydantic_settings import BaseSettings

from .models.connection import ReconnectPolicy


class Settings(BaseSettings):
    """Client settings, overridable through environment or .env."""

    # Application
    APP_NAME: str = "SeoPage Chat Client"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Endpoints
    API_BASE_URL: str = "https://api.websitelm.com/v1"
    CHAT_WS_URL: str = "wss://agents.zhuyuejoey.com"

    # Timeouts
    SEARCH_TIMEOUT_SECONDS: float = 300.0
    CONNECT_TIMEOUT_SECONDS: float = 10.0
    HEARTBEAT_INTERVAL_SECONDS: float = 30.0

    # Reconnection
    RECONNECT_MAX_ATTEMPTS: int = 5
    RECONNECT_BASE_DELAY_MS: int = 2000
    RECONNECT_MAX_DELAY_MS: int = 30000

    # Storage
    ACCESS_TOKEN_KEY: str = "alternativelyAccessToken"
    LAST_DOMAIN_KEY: str = "last_domain"
    LAST_DOMAIN_INPUT_KEY: str = "last_domain_input"
    REDIS_URL: Optional[str] = None
    STORE_PREFIX: str = "seopage"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    def reconnect_policy(self) -> ReconnectPolicy:
        return ReconnectPolicy(
            max_attempts=self.RECONNECT_MAX_ATTEMPTS,
            base_delay_ms=self.RECONNECT_BASE_DELAY_MS,
            max_delay_ms=self.RECONNECT_MAX_DELAY_MS,
        )


settings = Settings()

"""
Ritual Engine - Configuration
Settings are read from the environment (or a local .env file).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ==========================================
    # CORE SETTINGS
    # ==========================================
    env: str = "dev"  # dev | test | prod
    db_url: str = "sqlite+aiosqlite:///./rituals.db"
    db_echo: bool = False
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 30 * 24 * 60  # 30 days
    cors_origins: list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    # ==========================================
    # RITUAL ENGINE
    # ==========================================

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    # Optimistic concurrency on the ritual row
    max_commit_retries: int = 5

    # Analytics lookback, "<days>d"
    default_analytics_window: str = "30d"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()

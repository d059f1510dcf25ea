"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. The .env file is gitignored; .env.example is the safe template.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from app.config import settings
    print(settings.SECRET_KEY)
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Mock UPI API.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign JWT tokens
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Mock UPI API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    # JSON lines for log shippers; console rendering when False
    LOG_JSON: bool = True

    # --- Database ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/upi.db"

    # --- Authentication ---
    # REQUIRED: No default — forces the developer to set a real secret
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # --- Transfers ---
    # Lifetime of an idempotency record; a request id is blocked for this long
    IDEMPOTENCY_TTL_SECONDS: int = 30
    IDEMPOTENCY_REAPER_INTERVAL_SECONDS: int = 60
    # Attempts at the balance update when a concurrent transfer wins the race
    TRANSFER_MAX_ATTEMPTS: int = 3

    # --- Finzen sync ---
    # Sync is disabled entirely when FINZEN_API_URL is unset
    FINZEN_API_URL: str | None = None
    FINZEN_API_KEY: str = "default-key"
    FINZEN_TIMEOUT_SECONDS: float = 10.0
    FINZEN_MAX_ATTEMPTS: int = 3
    FINZEN_BACKOFF_SECONDS: float = 1.0
    # Periodic pull of Finzen transactions; 0 turns the job off
    FINZEN_SYNC_INTERVAL_SECONDS: int = 0


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()

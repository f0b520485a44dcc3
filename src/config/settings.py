from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Tenant Access Gateway"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Paths
    BASE_DIR: str = "."
    SQLITE_DB_PATH: str = "data/access.db"

    # Auth
    IDENTITY_TOKEN_SECRET: str  # shared secret of the identity provider
    IDENTITY_TOKEN_ALGORITHMS: list[str] = ["HS256"]

    # Infrastructure
    REDIS_URL: str = "redis://redis:6379/0"
    SEQ_URL: str | None = "http://seq:5341"
    SEQ_API_KEY: str | None = None

    # --- Role Cache ---
    ROLE_CACHE_BACKEND: Literal["memory", "redis"] = "memory"
    ROLE_CACHE_TTL_SECONDS: int = 300

    # --- Invitations & Email ---
    INVITATION_TTL_DAYS: int = 7
    EMAIL_API_URL: str | None = None
    EMAIL_API_KEY: str | None = None
    EMAIL_FROM: str = "no-reply@localhost"
    EMAIL_QUEUE_ENABLED: bool = True
    PORTAL_URL: str = "http://localhost:3000"
    PORTAL_NAME: str = "Tenant Portal"

    model_config = SettingsConfigDict(env_file="secrets/.env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()

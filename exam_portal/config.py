"""Application settings loaded from the environment."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EXAM_", env_file=".env", extra="ignore"
    )

    # Application
    APP_NAME: str = "Exam Portal"
    LOG_LEVEL: str = "INFO"
    SESSION_SECRET: str = Field(default="CHANGE_ME_TO_A_RANDOM_SECRET")

    # Database
    DATABASE_URL: str = "sqlite:///./exam_portal.db"
    DATABASE_ECHO: bool = False

    # Code execution service
    CODE_RUNNER_URL: str = "http://localhost:2000/api/v1"
    CODE_RUNNER_API_KEY: str | None = None
    CODE_RUNNER_TIMEOUT: float = 10.0
    CODE_RUNNER_MAX_ATTEMPTS: int = 2
    DEFAULT_LANGUAGE: str = "python"

    # Exams
    # Optional upper bound on exam length; unset means no cap
    MAX_EXAM_DURATION_MINUTES: float | None = None

    # Proctoring uploads
    UPLOAD_DIR: str = "uploads"
    # Prefix of stored recording references; maps onto UPLOAD_DIR
    UPLOAD_URL_PREFIX: str = "uploads"
    MAX_VIDEO_BYTES: int = 50 * 1024 * 1024

    # Auto-submit
    AUTO_SUBMIT_SWEEP_SECONDS: float = 30.0

    # Default admin created on first startup
    SEED_ADMIN_NAME: str = "System Admin"
    SEED_ADMIN_EMAIL: str = "admin@example.com"
    SEED_ADMIN_PASSWORD: str = "admin123"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

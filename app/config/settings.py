from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Attendance Notification Server"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:8081,http://localhost:19006"
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "sqlite:///./attendance.db"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Expo Push Gateway
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    EXPO_ACCESS_TOKEN: str = ""
    EXPO_TIMEOUT_SECONDS: float = 30.0

    # Notification Pipeline
    NOTIFICATION_BATCH_SIZE: int = 100
    NOTIFICATION_PAGE_SIZE: int = 100
    NOTIFICATION_RETRY_PAGE_SIZE: int = 50
    NOTIFICATION_MAX_RETRIES: int = 3
    NOTIFICATION_RETRY_DELAY_MINUTES: int = 5
    NOTIFICATION_MAX_CONCURRENT_BATCHES: int = 4
    NOTIFICATION_RETENTION_DAYS: int = 30
    DELIVERY_LOG_RETENTION_DAYS: int = 90
    NOTIFICATION_PROCESS_INTERVAL_MINUTES: int = 5

    # Attendance Reminders
    REMINDER_OFFSET_MINUTES: int = 5

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # App
    app_name: str = "Permit To Work"
    debug: bool = False
    
    # Database
    database_url: str = "sqlite:///./ptw.db"
    sqlite_busy_timeout: float = 30.0  # seconds a writer waits for the permit lock
    
    # Security
    secret_key: str = "dev-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    
    # Permit serials
    serial_prefix: str = "PTW"
    serial_width: int = 4
    serial_retry_limit: int = 5
    
    # Notifications
    notification_webhook_url: Optional[str] = None
    webhook_timeout: int = 10
    expiry_reminder_minutes: int = 30
    
    # Logging
    log_level: str = "INFO"
    log_dir: str = "./logs"
    file_logging: bool = False
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PTW_",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()

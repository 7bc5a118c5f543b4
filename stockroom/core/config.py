"""
Stockroom Configuration
Core settings for the inventory ledger application
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from decimal import Decimal
from pathlib import Path


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    # Application Info
    APP_NAME: str = "Stockroom Inventory API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./stockroom.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    AUTO_CREATE_TABLES: bool = True

    # Security
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # CORS
    ALLOWED_HOSTS: List[str] = ["*"]
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Path = Path("logs")
    LOG_FILE: str = "app.log"
    ERROR_LOG_FILE: str = "error.log"
    LOG_TO_FILE: bool = True

    # Business Logic Settings
    DEFAULT_CURRENCY: str = "GBP"

    # Financial Precision
    CURRENCY_DECIMAL_PLACES: int = 2
    QUANTITY_DECIMAL_PLACES: int = 4
    COST_DECIMAL_PLACES: int = 4

    # Price variance thresholds (unset means any variance is reported)
    PRICE_VARIANCE_THRESHOLD_PERCENT: Optional[Decimal] = None
    PRICE_VARIANCE_THRESHOLD_AMOUNT: Optional[Decimal] = None

    # API Configuration
    API_V1_STR: str = "/api/v1"
    DOCS_URL: str = "/docs"
    REDOC_URL: str = "/redoc"
    OPENAPI_URL: str = "/openapi.json"

    # Email Settings (for notifications)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: str = "stockroom@localhost"
    NCR_NOTIFICATION_EMAILS: List[str] = []

    @field_validator("LOG_DIR", mode="before")
    @classmethod
    def create_log_dir(cls, v):
        """Ensure logs directory exists"""
        path = Path(v) if isinstance(v, str) else v
        path.mkdir(exist_ok=True, parents=True)
        return path

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


# Global settings instance
settings = Settings()

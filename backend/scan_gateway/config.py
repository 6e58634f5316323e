from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Scan Gateway"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/gateway.db"
    SCHEDULER_DB_URL: str = "sqlite:///./data/scheduler.db"
    DB_TIMEOUT_SECONDS: int = 5

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    MAX_JOB_WORKERS: int = 4

    # Response cache
    CACHE_TTL_DAYS: int = 7  # 0 = never expires until flushed

    # Quotas
    ANONYMOUS_DAILY_LIMIT: int = 10
    FREE_MONTHLY_LIMIT: int = 10
    BASIC_MONTHLY_LIMIT: int = 200
    PRO_MONTHLY_LIMIT: int = 1000
    PRO_HOURLY_LIMIT: int = 100
    USAGE_WARNING_PERCENT: float = 80.0
    QUOTA_FAIL_OPEN: bool = True

    # Billing product identifiers
    BASIC_PRODUCT_ID: str = "prod_TFUNPU55PGdYSt"
    PRO_PRODUCT_ID: str = "prod_TFUNP2Cp1fIeun"

    # Retention
    METRICS_RETENTION_DAYS: int = 180
    SCAN_RETENTION_DAYS: int = 30
    USAGE_COUNTER_RETENTION_DAYS: int = 90

    # Metrics
    DEFAULT_PRICING_MODEL: str = "gemini-2.0-flash-exp"

    # Paths
    DATA_DIR: str = "./data"

    # CORS (for local development)
    CORS_ORIGINS: list = ["http://localhost:3000", "http://localhost:5173"]

    # Optional admin bootstrap (user id granted the admin role at startup)
    BOOTSTRAP_ADMIN_USER_ID: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()

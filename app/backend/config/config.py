import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """
    Settings read straight from environment variables.
    """
    # Storage
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL", "redis://localhost:6379/0")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL", "memory://")
    # Legacy flat attendance_logs table
    DATABASE_URL: str = os.environ.get("DATABASE_URL")

    # Calendar
    ATTENDANCE_TIMEZONE: str = os.environ.get("ATTENDANCE_TIMEZONE", "Asia/Tokyo")
    HISTORY_START: str = os.environ.get("HISTORY_START", "2020-01-01")
    LATEST_LOG_LOOKBACK_DAYS: int = int(os.environ.get("LATEST_LOG_LOOKBACK_DAYS", 365))
    USER_LOG_DEFAULT_LIMIT: int = int(os.environ.get("USER_LOG_DEFAULT_LIMIT", 50))

    # Cohort number of first-year members in GRADE_BASE_YEAR
    GRADE_BASE_YEAR: int = int(os.environ.get("GRADE_BASE_YEAR", 2025))
    GRADE_BASE_COHORT: int = int(os.environ.get("GRADE_BASE_COHORT", 10))

    # Kiosk / registration
    APP_BASE_URL: str = os.environ.get("APP_BASE_URL", "http://localhost:3000")
    LINK_WATCH_POLL_SECONDS: float = float(os.environ.get("LINK_WATCH_POLL_SECONDS", 1.0))
    FORCE_CHECKOUT_HOUR: int = int(os.environ.get("FORCE_CHECKOUT_HOUR", 23))
    FORCE_CHECKOUT_MINUTE: int = int(os.environ.get("FORCE_CHECKOUT_MINUTE", 59))

    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

# Single importable instance
settings = Config()

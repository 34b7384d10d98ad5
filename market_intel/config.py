"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
STATE_DB = DATA_DIR / "market_intel.db"

DATA_DIR.mkdir(exist_ok=True)


class Config:
    """Application configuration."""

    # eBay credentials
    EBAY_CLIENT_ID: str | None = os.getenv("EBAY_CLIENT_ID")
    EBAY_CLIENT_SECRET: str | None = os.getenv("EBAY_CLIENT_SECRET")
    EBAY_APP_ID: str | None = os.getenv("EBAY_APP_ID") or os.getenv("EBAY_CLIENT_ID")
    EBAY_ENVIRONMENT: str = os.getenv("EBAY_ENVIRONMENT", "SANDBOX").upper()
    EBAY_USER_TOKEN: str | None = os.getenv("EBAY_USER_TOKEN") or None
    EBAY_OAUTH_SCOPE: str = os.getenv("EBAY_OAUTH_SCOPE", "https://api.ebay.com/oauth/api_scope")
    TOKEN_SAFETY_MARGIN: int = int(os.getenv("TOKEN_SAFETY_MARGIN", "60"))

    # Collection
    PAGE_SIZE: int = int(os.getenv("PAGE_SIZE", "100"))
    MAX_PAGES: int = int(os.getenv("MAX_PAGES", "5"))
    SELLER_MAX_PAGES: int = int(os.getenv("SELLER_MAX_PAGES", "2"))
    RATE_PER_DOMAIN: float = float(os.getenv("RATE_PER_DOMAIN", "2.0"))
    DAILY_CALL_LIMIT: int = int(os.getenv("DAILY_CALL_LIMIT", "5000"))
    TIMEOUT: int = int(os.getenv("TIMEOUT", "20"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))

    # Analysis
    OUTLIER_IQR_MULTIPLIER: float = float(os.getenv("OUTLIER_IQR_MULTIPLIER", "1.5"))
    SURGE_MIN_WATCHER_INCREASE: int = int(os.getenv("SURGE_MIN_WATCHER_INCREASE", "1"))
    TREND_RECENT_DAYS: int = int(os.getenv("TREND_RECENT_DAYS", "7"))
    TREND_BASELINE_DAYS: int = int(os.getenv("TREND_BASELINE_DAYS", "30"))

    # Aggregate cache
    DASHBOARD_TTL_SECONDS: int = int(os.getenv("DASHBOARD_TTL_SECONDS", "300"))
    CACHE_WORKERS: int = int(os.getenv("CACHE_WORKERS", "4"))

    # Supabase mirror (optional)
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE: str | None = os.getenv("SUPABASE_SERVICE_ROLE")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")
    CRON_SECRET: str | None = os.getenv("CRON_SECRET")

    @classmethod
    def validate(cls, require_marketplace: bool = True, require_supabase: bool = False) -> None:
        """Validate required configuration."""
        errors = []
        if require_marketplace:
            if not cls.EBAY_CLIENT_ID:
                errors.append("EBAY_CLIENT_ID is required")
            if not cls.EBAY_CLIENT_SECRET:
                errors.append("EBAY_CLIENT_SECRET is required")
        if cls.EBAY_ENVIRONMENT not in ("SANDBOX", "PRODUCTION"):
            errors.append(f"EBAY_ENVIRONMENT must be SANDBOX or PRODUCTION, got {cls.EBAY_ENVIRONMENT}")
        if require_supabase:
            if not cls.SUPABASE_URL:
                errors.append("SUPABASE_URL is required")
            if not cls.SUPABASE_SERVICE_ROLE:
                errors.append("SUPABASE_SERVICE_ROLE is required")
        if cls.PAGE_SIZE <= 0 or cls.MAX_PAGES <= 0:
            errors.append("PAGE_SIZE and MAX_PAGES must be positive")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @classmethod
    def supabase_enabled(cls) -> bool:
        return bool(cls.SUPABASE_URL and cls.SUPABASE_SERVICE_ROLE)


config = Config()

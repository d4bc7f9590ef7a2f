import logging
from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Dict, List, Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379/0"

    # Identity (trusted upstream edge header)
    IDENTITY_HEADER: str = "CF-Access-Authenticated-User-Email"

    # Billing / Stripe
    BILLING_ENABLED: bool = False
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None  # comma-separated during rotation
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_LITE_PRICE_ID: Optional[str] = None
    STRIPE_PRO_PRICE_ID: Optional[str] = None
    CONSENT_VERSION: str = "2025-01"

    # App URLs
    APP_BASE_URL: str = "https://blog4koma.com"
    ALLOWED_RETURN_ORIGINS: str = "https://www.blog4koma.com"  # comma-separated

    # Demo tier
    DEMO_DAILY_LIMIT: int = 3
    MOVIE_DEMO_DAILY_LIMIT: int = 1
    DEMO_GEMINI_API_KEY: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def app_origin(self) -> str:
        return self.APP_BASE_URL.rstrip("/")

    @property
    def allowed_return_origins(self) -> List[str]:
        extra = [o.strip().rstrip("/") for o in self.ALLOWED_RETURN_ORIGINS.split(",") if o.strip()]
        return [self.app_origin] + [o for o in extra if o != self.app_origin]

    @property
    def webhook_secrets(self) -> List[str]:
        if not self.STRIPE_WEBHOOK_SECRET:
            return []
        return [s.strip() for s in self.STRIPE_WEBHOOK_SECRET.split(",") if s.strip()]

    @property
    def price_ids(self) -> Dict[str, Optional[str]]:
        return {
            "lite": self.STRIPE_LITE_PRICE_ID,
            "pro": self.STRIPE_PRO_PRICE_ID,
        }

    @property
    def demo_limits(self) -> Dict[str, int]:
        return {
            "blog": self.DEMO_DAILY_LIMIT,
            "movie": self.MOVIE_DEMO_DAILY_LIMIT,
        }


@lru_cache
def get_settings() -> Settings:
    """Build settings once per process. Business code receives them by parameter."""
    return Settings()


def validate_config(settings_obj: Settings, strict: Optional[bool] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    log = logger or logging.getLogger("koma")
    strict_mode = strict if strict is not None else settings_obj.CONFIG_STRICT

    required_keys = ["DATABASE_URL"]
    if settings_obj.BILLING_ENABLED:
        required_keys += [
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "STRIPE_LITE_PRICE_ID",
            "STRIPE_PRO_PRICE_ID",
        ]

    missing = [key for key in required_keys if not getattr(settings_obj, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if not settings_obj.DEMO_GEMINI_API_KEY:
        log.warning("DEMO_GEMINI_API_KEY not set; demo tier will report unavailable")

    return True

import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"

    # Backends: "memory" keeps everything in-process (dev/tests)
    STORE_BACKEND: str = "memory"  # memory | sql
    REFERRAL_DURABLE_BACKEND: str = "memory"  # memory | redis
    CHECKOUT_GATEWAY: str = "stripe"  # stripe | document_store

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_PRICE_BASIC_MONTH: Optional[str] = None
    STRIPE_PRICE_BASIC_YEAR: Optional[str] = None
    STRIPE_PRICE_FLEXY: Optional[str] = None

    # App URLs
    BASE_URL: str = "http://localhost:8000"

    # Checkout
    CHECKOUT_TIMEOUT_SECONDS: float = 30.0
    CHECKOUT_POLL_INTERVAL_SECONDS: float = 0.5
    CHECKOUT_SOURCE: str = "ShareWizard Web App"

    # Referrals
    REFERRAL_EXPIRY_DAYS: int = 90
    REFERRAL_QUERY_PARAM: str = "ref"

    # Plans
    TRIAL_LENGTH_DAYS: int = 5
    LOW_USAGE_WARNING_PERCENT: float = 80.0

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("sharewizard")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = []
    if cfg.STORE_BACKEND == "sql":
        required_keys.append("DATABASE_URL")
    if cfg.CHECKOUT_GATEWAY == "stripe":
        required_keys.append("STRIPE_SECRET_KEY")
    required_keys += [
        "STRIPE_PRICE_BASIC_MONTH",
        "STRIPE_PRICE_BASIC_YEAR",
        "STRIPE_PRICE_FLEXY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True

import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Trigger + admin credentials
    CRON_SECRET_TOKEN: Optional[str] = None  # Bearer token for the external scheduler
    ADMIN_KEY: Optional[str] = None  # X-Admin-Key for admin endpoints

    # End-user auth (tokens are issued elsewhere, only verified here)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_ALGORITHM: str = "HS256"
    ALLOW_USER_ID_HEADER: bool = True  # X-User-Id fallback (dev/test)

    # Competition schedule (day offsets from the 1st of the month)
    SUBMISSION_PHASE_DAYS: int = 25  # Days 1-25
    JUDGING_PHASE_DAYS: int = 5  # Days 26-30
    RESULTS_PHASE_DAYS: int = 1  # Day 31
    COMPETITION_TIMEZONE: str = "UTC"

    # Entry rules
    MIN_WORD_COUNT: int = 350
    MAX_WORD_COUNT: int = 2000
    MAX_ENTRIES_PER_MONTH: int = 3

    # Trusted time source
    TRUSTED_TIME_ENABLED: bool = False
    TRUSTED_TIME_URLS: str = (
        "https://worldtimeapi.org/api/timezone/UTC,"
        "https://timeapi.io/api/Time/current/zone?timeZone=UTC"
    )  # comma-separated, tried in order
    TRUSTED_TIME_TIMEOUT_SECONDS: float = 3.0

    # AI assessment collaborator
    ASSESSMENT_ENGINE_URL: Optional[str] = None
    ASSESSMENT_TIMEOUT_SECONDS: float = 20.0

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
    log = logger or logging.getLogger("writeclub")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "CRON_SECRET_TOKEN",
        "ADMIN_KEY",
        "AUTH_JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    phase_days = cfg.SUBMISSION_PHASE_DAYS + cfg.JUDGING_PHASE_DAYS + cfg.RESULTS_PHASE_DAYS
    if cfg.SUBMISSION_PHASE_DAYS < 1 or cfg.JUDGING_PHASE_DAYS < 1 or cfg.RESULTS_PHASE_DAYS < 1:
        raise RuntimeError("Competition phase lengths must be at least one day")
    if phase_days > 31:
        log.warning(f"Competition schedule spans {phase_days} days and will overlap the next month")
    if cfg.MIN_WORD_COUNT > cfg.MAX_WORD_COUNT:
        raise RuntimeError("MIN_WORD_COUNT must not exceed MAX_WORD_COUNT")

    return True

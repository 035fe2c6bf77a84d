import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional, Tuple


class Settings(BaseSettings):
    """Engine settings read from the environment and an optional .env file."""

    ENV: str = "development"
    # Raise instead of warn on bad settings
    CONFIG_STRICT: bool = False

    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Calendar: IANA zone name; None uses the host's local zone
    LOCAL_TIMEZONE: Optional[str] = None
    DEFAULT_LANG: str = "nl"

    # Joker economy
    JOKER_MONTHLY_GRANT: int = 2
    JOKER_WINDOW_DAYS: int = 7

    # Answers
    ANSWER_MAX_LENGTH: int = 280

    # Streak celebrations
    STREAK_MILESTONES: Tuple[int, ...] = (7, 30, 100)

    # Sessions untouched this long are closed; 0 keeps them until sign-out
    SESSION_IDLE_SECONDS: int = 1800

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def _config_problems(cfg: Settings) -> List[str]:
    checks = (
        ("DATABASE_URL", cfg.ENV.lower() == "production" and not cfg.DATABASE_URL),
        ("JOKER_WINDOW_DAYS", cfg.JOKER_WINDOW_DAYS < 1),
        ("JOKER_MONTHLY_GRANT", cfg.JOKER_MONTHLY_GRANT < 0),
        ("ANSWER_MAX_LENGTH", cfg.ANSWER_MAX_LENGTH < 1),
        ("STREAK_MILESTONES", any(n < 1 for n in cfg.STREAK_MILESTONES)),
        ("SESSION_IDLE_SECONDS", cfg.SESSION_IDLE_SECONDS < 0),
    )
    return [name for name, broken in checks if broken]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """
    Check the engagement settings at startup.

    Problems are reported by setting name only, never by value.
    CONFIG_STRICT turns the warning into a RuntimeError.
    """
    cfg = settings_obj or settings
    problems = _config_problems(cfg)
    if not problems:
        return True

    message = "Invalid engagement configuration: " + ", ".join(problems)
    if (cfg.CONFIG_STRICT if strict is None else strict):
        raise RuntimeError(message)
    (logger or logging.getLogger("dailyq")).warning(message)
    return True

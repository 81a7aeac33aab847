"""
Settings Configuration

Centralized, environment-driven settings for the evaluation backend.
All values are read from environment variables (a local .env is honoured).
"""
import os

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on junk."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    """
    Runtime settings for the application.

    To add a new setting:
    1. Add it here as a class property
    2. Load it from environment variable
    3. Read it through `settings`
    """

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./thesis_eval.db")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Bulk assignment fan-out (number of creations in flight at once)
    ASSIGNMENT_MAX_CONCURRENCY: int = max(1, get_int_env("ASSIGNMENT_MAX_CONCURRENCY", 8))

    # Student feedback
    FEATURE_REQUIRE_ANSWERS_ON_SUBMIT: bool = get_bool_env('FEATURE_REQUIRE_ANSWERS_ON_SUBMIT', True)
    FEATURE_PIN_FEEDBACK_FORM_PER_SCHEDULE: bool = get_bool_env('FEATURE_PIN_FEEDBACK_FORM_PER_SCHEDULE', True)

    @classmethod
    def to_dict(cls) -> dict:
        """Non-secret settings, for diagnostics."""
        return {
            "ASSIGNMENT_MAX_CONCURRENCY": cls.ASSIGNMENT_MAX_CONCURRENCY,
            "FEATURE_REQUIRE_ANSWERS_ON_SUBMIT": cls.FEATURE_REQUIRE_ANSWERS_ON_SUBMIT,
            "FEATURE_PIN_FEEDBACK_FORM_PER_SCHEDULE": cls.FEATURE_PIN_FEEDBACK_FORM_PER_SCHEDULE,
            "LOG_LEVEL": cls.LOG_LEVEL,
        }


settings = Settings()

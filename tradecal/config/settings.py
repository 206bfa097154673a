"""
Application configuration using pydantic-settings with nested structure
"""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv


# ============================================================================
# NESTED CONFIGURATION MODELS
# ============================================================================

# .env file lives next to the project root
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _BASE_DIR / ".env"


class LoggerConfig(BaseSettings):
    """Logger configuration settings."""
    default_level: str = "INFO"
    console_level: str = "WARNING"
    file_enabled: bool = False
    file_path: str = "./data/logs/tradecal.log"
    rotation: str = "10 MB"
    retention: str = "30 days"
    filter_enabled: bool = True
    filter_max_history: int = 5
    filter_time_threshold_seconds: float = 1.0
    model_config = SettingsConfigDict(env_prefix="TRADECAL_LOGGER__", extra="ignore")


class SchedulerConfig(BaseSettings):
    """Calendar manager scheduling configuration."""
    retry_delay_seconds: float = Field(default=10.0, gt=0)
    holiday_fetch_timeout_seconds: Optional[float] = Field(default=30.0, gt=0)
    max_lookahead_days: int = Field(default=3660, gt=0)
    model_config = SettingsConfigDict(env_prefix="TRADECAL_SCHEDULER__", extra="ignore")


class CalendarDefaults(BaseSettings):
    """Defaults applied to calendars that leave a value unset."""
    default_timezone: Optional[str] = None
    model_config = SettingsConfigDict(env_prefix="TRADECAL_CALENDAR__", extra="ignore")


# ============================================================================
# MAIN SETTINGS CLASS
# ============================================================================

class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Nested sections are read from their own prefixed variables, e.g.

        TRADECAL_LOGGER__DEFAULT_LEVEL=DEBUG
        TRADECAL_SCHEDULER__RETRY_DELAY_SECONDS=5
        TRADECAL_CALENDAR__DEFAULT_TIMEZONE=Asia/Shanghai
    """

    APP_NAME: str = "tradecal"
    APP_VERSION: str = "1.0.0"

    # Nested configuration sections (constructed after the environment is loaded)
    LOGGER: Optional[LoggerConfig] = None
    SCHEDULER: Optional[SchedulerConfig] = None
    CALENDAR: Optional[CalendarDefaults] = None

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.LOGGER = LoggerConfig()
        self.SCHEDULER = SchedulerConfig()
        self.CALENDAR = CalendarDefaults()

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        env_nested_delimiter="__",
        env_prefix="TRADECAL_",
    )


# Load .env file into environment variables
if _ENV_FILE.exists():
    load_dotenv(str(_ENV_FILE), override=False)

settings = Settings()

"""
Time Manager Data Models
Calendar configuration (validated pydantic models) and resolution results (dataclasses)
"""
import copy
import json
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from tradecal.core.enums import Strategy
from tradecal.core.exceptions import ConfigurationError


MILLIS_PER_DAY = 24 * 60 * 60 * 1000

# Anchor instants may be epoch milliseconds, datetimes or ISO strings
Instant = Union[int, float, datetime, str]

_TIME_POINT_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2})(?:\.(\d{1,3}))?)?$")


# ============================================================================
# CONFIGURATION MODELS
# ============================================================================

class TimePoint(BaseModel):
    """Wall-clock instant within a day, relative to the calendar timezone.

    Accepts a mapping (``{"hour": 9, "minute": 30}``) or a string such as
    ``"09:30"``, ``"09:30:00"`` or ``"09:30:00.500"``.
    """
    model_config = ConfigDict(frozen=True)

    hour: int = Field(0, ge=0, le=23)
    minute: int = Field(0, ge=0, le=59)
    second: int = Field(0, ge=0, le=59)
    millisecond: int = Field(0, ge=0, le=999)

    @model_validator(mode="before")
    @classmethod
    def _parse_string(cls, data: Any) -> Any:
        if isinstance(data, time):
            return {
                "hour": data.hour,
                "minute": data.minute,
                "second": data.second,
                "millisecond": data.microsecond // 1000,
            }
        if not isinstance(data, str):
            return data
        match = _TIME_POINT_RE.match(data.strip())
        if not match:
            raise ValueError(f"Invalid time point '{data}', expected HH:MM[:SS[.mmm]]")
        hour, minute, second, millis = match.groups()
        return {
            "hour": int(hour),
            "minute": int(minute),
            "second": int(second or 0),
            # "500" and "5" are both read as fractions of a second
            "millisecond": int((millis or "0").ljust(3, "0")),
        }

    def as_millis(self) -> int:
        """Milliseconds since local midnight"""
        return ((self.hour * 60 + self.minute) * 60 + self.second) * 1000 + self.millisecond

    def to_time(self) -> time:
        return time(self.hour, self.minute, self.second, self.millisecond * 1000)

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}:{self.second:02d}.{self.millisecond:03d}"


class ConfigPeriod(BaseModel):
    """Daily window between two time points (pre-market or post-market)"""
    start: TimePoint
    end: TimePoint


class VirtualTimeConfig(BaseModel):
    """Virtual time settings for a calendar.

    ``one_day_duration`` is how many real milliseconds one calendar day lasts;
    43_200_000 runs two calendar days per real day.
    """
    enabled: bool = True
    strategy: Strategy = Field(Strategy.STANDARD, description="Anchoring strategy")
    standard: Optional[Instant] = Field(None, description="Virtual anchor, defaults to calendar start")
    custom: Optional[Instant] = Field(None, description="Real anchor for the CUSTOM strategy")
    one_day_duration: int = Field(MILLIS_PER_DAY, gt=0, description="Real ms per calendar day")
    overrides: Optional[Dict[str, Any]] = Field(
        None, description="Partial calendar config merged over the base config when active"
    )


class CalendarConfig(BaseModel):
    """Daily schedule of a trading calendar.

    Time points are interpreted in ``timezone_name``. When the name is
    missing or unknown the host local zone is used.
    """
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    timezone_name: Optional[str] = None
    before: ConfigPeriod
    start: TimePoint
    end: TimePoint
    after: ConfigPeriod
    start_time: Optional[int] = Field(None, description="Calendar start instant (epoch ms)")
    virtual: Optional[VirtualTimeConfig] = None

    @model_validator(mode="after")
    def _check_session(self) -> "CalendarConfig":
        if self.start.as_millis() >= self.end.as_millis():
            raise ValueError(f"Session start {self.start} must be before session end {self.end}")
        return self

    @property
    def virtual_active(self) -> bool:
        return self.virtual is not None and self.virtual.enabled


def deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``base`` with ``patch`` merged in recursively.

    Nested mappings are merged key by key; any other value in ``patch``
    replaces the one in ``base``. Neither argument is modified.
    """
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def config_to_dict(config: Union[CalendarConfig, Dict[str, Any], None], partial: bool = False) -> Dict[str, Any]:
    """Plain-dict view of a calendar configuration (partial keeps only set fields)"""
    if config is None:
        return {}
    if isinstance(config, BaseModel):
        return config.model_dump(exclude_unset=partial)
    if isinstance(config, dict):
        return copy.deepcopy(config)
    raise ConfigurationError(f"Unsupported calendar configuration type: {type(config).__name__}")


def validate_calendar_config(data: Union[CalendarConfig, Dict[str, Any]]) -> CalendarConfig:
    """Validate a configuration mapping, raising ConfigurationError on failure"""
    if isinstance(data, CalendarConfig):
        return data
    try:
        return CalendarConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid calendar configuration: {e}") from e


def load_calendar_config(path: Union[str, Path]) -> CalendarConfig:
    """Load a calendar configuration from a JSON file

    Args:
        path: JSON file holding a single calendar configuration object

    Returns:
        Validated CalendarConfig

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(f"Calendar configuration not found: {file_path}")
    try:
        with open(file_path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read calendar configuration {file_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Calendar configuration {file_path} must be a JSON object")
    return validate_calendar_config(data)


# ============================================================================
# RESOLUTION RESULTS
# ============================================================================

@dataclass(frozen=True)
class TimePeriod:
    """Tradable window [start, end) in epoch milliseconds

    Calendar or real coordinates depending on the accessor that produced it.
    """
    start: Union[int, float]
    end: Union[int, float]

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Invalid period: start {self.start} must be before end {self.end}")

    @property
    def duration(self) -> Union[int, float]:
        return self.end - self.start

    def contains(self, stamp: Union[int, float]) -> bool:
        return self.start <= stamp < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "end": self.end}


@dataclass
class TimeInfo:
    """Resolved trade date with its tradable periods

    ``day_start`` / ``day_end`` are local 00:00:00.000 and 23:59:59.999
    of the trade date. Periods are ordered and never empty.
    """
    trade_date: int                     # YYYYMMDD
    time_periods: List[TimePeriod] = field(default_factory=list)
    day_start: Union[int, float] = 0
    day_end: Union[int, float] = 0

    @property
    def market_open(self) -> Optional[Union[int, float]]:
        """Start of the first period"""
        return self.time_periods[0].start if self.time_periods else None

    @property
    def market_close(self) -> Optional[Union[int, float]]:
        """End of the last period"""
        return self.time_periods[-1].end if self.time_periods else None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HolidayInterval:
    """Closed market interval in epoch milliseconds"""
    start: Union[int, float]
    end: Union[int, float]
    name: Optional[str] = field(default=None, compare=False)

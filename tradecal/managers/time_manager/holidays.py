"""
Holiday sources

A holiday source is any callable (or object with ``fetch``) taking
``(start_ms, end_ms)`` and returning closed intervals overlapping that
range, synchronously or as an awaitable.

File format (JSON):
    {
        "timezone": "America/New_York",
        "holidays": [
            {"date": "2024-07-04", "name": "Independence Day", "type": "full_close"},
            {"date": "2024-07-03", "type": "early_close", "early_close_time": "13:00"},
            {"date": "2024-03-05", "type": "partial", "start_time": "11:30", "end_time": "13:00"}
        ]
    }

``"years": {"2024": [...], "2025": [...]}`` may be used instead of
``"holidays"``. CSV files need a ``Date`` column and may carry
``Holiday Name`` and ``Early Close Time``.
"""
import csv
import json
from dataclasses import dataclass
from datetime import date, datetime, time as dt_time, timezone, tzinfo
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from tradecal.core.exceptions import ConfigurationError
from tradecal.logger import logger
from tradecal.managers.time_manager.models import HolidayInterval, TimePoint
from tradecal.managers.time_manager.resolver import (
    DAY_END,
    DAY_START,
    normalize_holidays,
    point_to_timestamp,
)
from tradecal.managers.time_manager.timezones import resolve_timezone


def empty_holiday_source(start: int, end: int) -> List[HolidayInterval]:
    """Holiday source for calendars without any closures"""
    return []


class StaticHolidaySource:
    """In-memory list of holiday intervals"""

    def __init__(self, holidays: Optional[Iterable[Any]] = None, tz: Optional[tzinfo] = None):
        tz = tz or timezone.utc
        self._holidays = normalize_holidays(list(holidays or []), tz)

    @property
    def holidays(self) -> List[HolidayInterval]:
        return list(self._holidays)

    def fetch(self, start: int, end: int) -> List[HolidayInterval]:
        return [h for h in self._holidays if h.start < end and h.end > start]

    __call__ = fetch


@dataclass(frozen=True)
class HolidayRule:
    """Closure of a single calendar date, in local wall-clock terms

    ``closed_from`` / ``closed_until`` default to the whole day.
    """
    day: date
    name: str = ""
    closed_from: Optional[TimePoint] = None
    closed_until: Optional[TimePoint] = None

    @property
    def is_full_close(self) -> bool:
        return self.closed_from is None and self.closed_until is None

    def to_interval(self, tz: tzinfo) -> HolidayInterval:
        start = point_to_timestamp(self.day, self.closed_from or DAY_START, tz)
        end = point_to_timestamp(self.day, self.closed_until or DAY_END, tz)
        if self.closed_until is None:
            end += 1
        return HolidayInterval(start, end, self.name or None)


class HolidayFileSource:
    """Holiday source backed by rules loaded from a JSON or CSV file"""

    def __init__(self, rules: Iterable[HolidayRule], tz: tzinfo):
        self.rules = sorted(rules, key=lambda r: r.day)
        self.tz = tz
        self._intervals = normalize_holidays([r.to_interval(tz) for r in self.rules], tz)

    def fetch(self, start: int, end: int) -> List[HolidayInterval]:
        return [h for h in self._intervals if h.start < end and h.end > start]

    __call__ = fetch

    def __len__(self) -> int:
        return len(self.rules)

    @classmethod
    def from_file(cls, path: Union[str, Path], timezone_name: Optional[str] = None) -> "HolidayFileSource":
        """Load holiday rules from a file

        Args:
            path: JSON or CSV file
            timezone_name: Zone used to place closures; overrides the file's ``timezone``

        Raises:
            ConfigurationError: If the file is missing or has an unsupported format
        """
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigurationError(f"Holiday file not found: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix == ".json":
            file_tz, rules = cls._load_json(file_path)
        elif suffix == ".csv":
            file_tz, rules = None, cls._load_csv(file_path)
        else:
            raise ConfigurationError(f"Unsupported holiday file format: {suffix}. Use .json or .csv")

        tz, tz_name = resolve_timezone(timezone_name or file_tz)
        logger.info(f"Loaded {len(rules)} holiday rules from {file_path.name} ({tz_name})")
        return cls(rules, tz)

    @staticmethod
    def _load_json(path: Path):
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

        # Support both flat list and multi-year structure
        if "holidays" in data:
            entries = list(data["holidays"])
        elif "years" in data:
            entries = [h for year_holidays in data["years"].values() for h in year_holidays]
        else:
            raise ConfigurationError("JSON holiday file must contain 'holidays' or 'years' field")

        rules = []
        for entry in entries:
            rule = HolidayFileSource._parse_json_holiday(entry)
            if rule:
                rules.append(rule)
        return data.get("timezone"), rules

    @staticmethod
    def _parse_json_holiday(h: Dict[str, Any]) -> Optional[HolidayRule]:
        """Parse a single holiday entry, returning None if it is invalid"""
        try:
            holiday_date = date.fromisoformat(h["date"])
            name = h.get("name", h.get("holiday_name", ""))
            holiday_type = h.get("type", "full_close")

            if holiday_type == "full_close":
                return HolidayRule(holiday_date, name)
            if holiday_type == "early_close":
                return HolidayRule(holiday_date, name, closed_from=TimePoint.model_validate(h["early_close_time"]))
            if holiday_type == "partial":
                return HolidayRule(
                    holiday_date,
                    name,
                    closed_from=TimePoint.model_validate(h["start_time"]) if h.get("start_time") else None,
                    closed_until=TimePoint.model_validate(h["end_time"]) if h.get("end_time") else None,
                )
            raise ValueError(f"unknown holiday type '{holiday_type}'")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to parse holiday {h}: {e}")
            return None

    @staticmethod
    def _load_csv(path: Path) -> List[HolidayRule]:
        rules = []
        with open(path, "r", newline="") as f:
            reader = csv.DictReader(f)
            for row in reader:
                # Skip empty rows
                if not row.get("Date"):
                    continue
                try:
                    holiday_date = HolidayFileSource._parse_csv_date(row["Date"])
                    early_close = (row.get("Early Close Time") or "").strip()
                    rules.append(HolidayRule(
                        holiday_date,
                        (row.get("Holiday Name") or "").strip(),
                        closed_from=TimePoint.model_validate(early_close) if early_close else None,
                    ))
                except ValueError as e:
                    logger.warning(f"Invalid row in CSV: {row} - {e}")
        return rules

    @staticmethod
    def _parse_csv_date(value: str) -> date:
        date_str = value.strip().strip('"')
        try:
            return date.fromisoformat(date_str)
        except ValueError:
            pass
        # "Wednesday, January 1, 2025" -> "January 1, 2025"
        parts = date_str.split(",")
        if len(parts) >= 3:
            date_str = ",".join(parts[1:]).strip()
        for fmt in ("%B %d, %Y", "%b %d, %Y", "%m/%d/%Y", "%Y%m%d"):
            try:
                return datetime.strptime(date_str, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"Could not parse date: {value}")


def holiday_from_times(day: date, start: dt_time, end: dt_time, tz: tzinfo, name: Optional[str] = None) -> HolidayInterval:
    """Interval closing ``day`` between two local wall-clock times"""
    return HolidayInterval(
        point_to_timestamp(day, TimePoint.model_validate(start), tz),
        point_to_timestamp(day, TimePoint.model_validate(end), tz),
        name,
    )

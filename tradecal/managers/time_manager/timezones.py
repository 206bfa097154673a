"""
Timezone lookup with dateutil fallback
"""
from datetime import datetime, tzinfo
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import tz as _tz

from tradecal.logger import logger


def local_timezone_name(zone: tzinfo) -> str:
    """Best-effort display name for a zone without an IANA key"""
    key = getattr(zone, "key", None)
    if key:
        return key
    return datetime.now(zone).tzname() or str(zone)


def resolve_timezone(name: Optional[str]) -> Tuple[tzinfo, str]:
    """Resolve an IANA timezone name

    Tries zoneinfo first, then dateutil's database, then falls back to the
    host local zone.

    Returns:
        (tzinfo, effective name)
    """
    if name:
        try:
            return ZoneInfo(name), name
        except (ZoneInfoNotFoundError, ValueError) as e:
            fallback = _tz.gettz(name)
            if fallback is not None:
                logger.debug(f"zoneinfo could not load {name} ({e}), using dateutil")
                return fallback, name
            logger.warning(f"Unknown timezone '{name}', falling back to host local zone")
    local = _tz.tzlocal()
    return local, local_timezone_name(local)

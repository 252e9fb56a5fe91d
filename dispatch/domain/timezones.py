"""
UTC <-> local time helpers.

All timestamps are stored in UTC.  Customers type schedule times in their
local zone; these helpers convert at the read/write boundary only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

import pytz

from .errors import ValidationError

DISPLAY_FORMAT = "%Y-%m-%d %H:%M"
LOCAL_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_zone(name: str):
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown time zone: {name}")


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive values; convert aware values to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=pytz.utc)
    return value.astimezone(pytz.utc)


def local_to_utc(value: Union[str, datetime], zone_name: str) -> datetime:
    """
    Interpret *value* as wall-clock time in *zone_name* and return UTC.

    An ISO string or datetime carrying its own offset is honoured as-is.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("scheduledAt must be an ISO-8601 date-time")
    if value.tzinfo is not None:
        return value.astimezone(pytz.utc)
    zone = get_zone(zone_name)
    return zone.localize(value).astimezone(pytz.utc)


def to_local(value: Optional[datetime], zone_name: str) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(value).astimezone(get_zone(zone_name))


def to_local_iso(value: Optional[datetime], zone_name: str) -> Optional[str]:
    local = to_local(value, zone_name)
    return local.replace(microsecond=0).isoformat() if local else None


def to_local_display(value: Optional[datetime], zone_name: str) -> Optional[str]:
    local = to_local(value, zone_name)
    return local.strftime(DISPLAY_FORMAT) if local else None


def utc_to_local_string(value: Optional[datetime], zone_name: str) -> Optional[str]:
    local = to_local(value, zone_name)
    return local.strftime(LOCAL_FORMAT) if local else None

# CREATE FILE: services/pricing_service/scheduling.py

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Los_Angeles"
DEFAULT_PICKUP_BUFFER_MINUTES = 45
MIN_LEAD_TIME_HOURS = 2
BUSINESS_HOURS_START = 7
BUSINESS_HOURS_END = 22


def local_time_to_utc(delivery_date: str, delivery_time: str, tz: str = DEFAULT_TIMEZONE) -> datetime:
    """Interpret "YYYY-MM-DD" + "HH:MM" in the given zone and return an aware UTC datetime"""
    local = datetime.strptime(f"{delivery_date} {delivery_time}", "%Y-%m-%d %H:%M")
    return local.replace(tzinfo=ZoneInfo(tz)).astimezone(timezone.utc)


def to_iso_utc(value: datetime) -> str:
    """ISO-8601 with millisecond precision and a Z suffix"""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def calculate_pickup_time(delivery_date: str, delivery_time: str,
                          buffer_minutes: int = DEFAULT_PICKUP_BUFFER_MINUTES,
                          tz: str = DEFAULT_TIMEZONE) -> str:
    """Pickup time in UTC: the delivery time minus the preparation buffer"""
    delivery_utc = local_time_to_utc(delivery_date, delivery_time, tz)
    return to_iso_utc(delivery_utc - timedelta(minutes=buffer_minutes))


def is_delivery_time_available(delivery_date: str, delivery_time: str,
                               now: Optional[datetime] = None,
                               tz: str = DEFAULT_TIMEZONE,
                               min_lead_time_hours: float = MIN_LEAD_TIME_HOURS,
                               business_hours_start: int = BUSINESS_HOURS_START,
                               business_hours_end: int = BUSINESS_HOURS_END) -> bool:
    """
    A delivery slot is bookable when it is at least the minimum lead time away
    and its local hour falls inside business hours [start, end).
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    delivery_utc = local_time_to_utc(delivery_date, delivery_time, tz)
    if delivery_utc - now < timedelta(hours=min_lead_time_hours):
        return False

    local_hour = delivery_utc.astimezone(ZoneInfo(tz)).hour
    return business_hours_start <= local_hour < business_hours_end

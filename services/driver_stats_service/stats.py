# CREATE FILE: services/driver_stats_service/stats.py

import asyncio
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from utils.logging import get_logger, StructuredLogger
from .sources import (
    DeliveryCounts, DeliveryCountSource, ShiftStatsRepository,
    CurrentDeliveryCountSource, LegacyDispatchCountSource
)
from .db import Database

ALL_TIME_START = datetime(2020, 1, 1, tzinfo=timezone.utc)
DEFAULT_TIMEZONE = "America/Los_Angeles"

_UUID_RE = re.compile(
    r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$'
)


class StatsPeriod(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


# Length of the rolling window, and of the trend comparison window
PERIOD_DAYS = {
    StatsPeriod.WEEK: 7,
    StatsPeriod.MONTH: 30,
}


class InvalidStatsQueryError(ValueError):
    pass


class InvalidDriverIdError(InvalidStatsQueryError):
    pass


def round_one(value: float) -> float:
    """Round half up to one decimal place"""
    return math.floor(value * 10 + 0.5) / 10


def round_whole(value: float) -> int:
    return int(math.floor(value + 0.5))


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_iso(value: datetime) -> str:
    value = ensure_utc(value).astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_period(value) -> StatsPeriod:
    try:
        return StatsPeriod(value)
    except ValueError:
        raise InvalidStatsQueryError(f"Unknown stats period: {value!r}")


def assert_uuid(value: str, field_name: str = "driverId"):
    if not isinstance(value, str) or not _UUID_RE.match(value):
        raise InvalidDriverIdError(f"Invalid {field_name} provided for driver stats")


def format_driver_name(first_name: Optional[str], last_name: Optional[str]) -> Optional[str]:
    if first_name and last_name:
        return f"{first_name} {last_name}"
    return first_name or last_name or None


def get_date_range_for_period(period: StatsPeriod, now: datetime = None,
                              tz: str = DEFAULT_TIMEZONE) -> Tuple[datetime, datetime]:
    """
    Window for a named period, ending now.

    today: local midnight; week/month: local midnight 7/30 days back;
    all: fixed 2020-01-01 UTC start.
    """
    period = parse_period(period)
    end_date = ensure_utc(now) if now else datetime.now(timezone.utc)
    local_now = end_date.astimezone(ZoneInfo(tz))

    if period == StatsPeriod.ALL:
        return ALL_TIME_START, end_date

    start_local = local_now - timedelta(days=PERIOD_DAYS.get(period, 0))
    start_local = start_local.replace(hour=0, minute=0, second=0, microsecond=0)
    return start_local.astimezone(timezone.utc), end_date


def days_between(start_date: datetime, end_date: datetime) -> int:
    """Whole days spanned by the window, at least one"""
    seconds = abs((end_date - start_date).total_seconds())
    return max(1, math.ceil(seconds / 86400))


def percent_change(current: float, previous: float) -> int:
    if previous > 0:
        return round_whole((current - previous) / previous * 100)
    return 100 if current > 0 else 0


@dataclass
class DriverStatsQuery:
    driver_id: str
    period: StatsPeriod = StatsPeriod.TODAY
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass
class DeliveryStats:
    total: int
    completed: int
    cancelled: int
    in_progress: int
    average_per_day: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "cancelled": self.cancelled,
            "inProgress": self.in_progress,
            "averagePerDay": self.average_per_day,
        }


@dataclass
class DistanceStats:
    total_miles: float
    gps_verified_miles: float
    average_miles_per_delivery: float
    average_miles_per_day: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalMiles": self.total_miles,
            "gpsVerifiedMiles": self.gps_verified_miles,
            "averageMilesPerDelivery": self.average_miles_per_delivery,
            "averageMilesPerDay": self.average_miles_per_day,
        }


@dataclass
class ShiftStats:
    total_shifts: int
    total_hours_worked: float
    average_shift_duration: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalShifts": self.total_shifts,
            "totalHoursWorked": self.total_hours_worked,
            "averageShiftDuration": self.average_shift_duration,
        }


@dataclass
class CurrentShiftInfo:
    id: str
    start_time: str
    current_deliveries: int
    current_miles: float
    is_on_break: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "startTime": self.start_time,
            "currentDeliveries": self.current_deliveries,
            "currentMiles": self.current_miles,
            "isOnBreak": self.is_on_break,
        }


@dataclass
class TrendInfo:
    delivery_change: int
    distance_change: int
    efficiency_rating: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deliveryChange": self.delivery_change,
            "distanceChange": self.distance_change,
            "efficiencyRating": self.efficiency_rating,
        }


@dataclass
class AggregatedDriverStats:
    driver_id: str
    driver_name: Optional[str]
    period: StatsPeriod
    period_start: str
    period_end: str
    delivery_stats: DeliveryStats
    distance_stats: DistanceStats
    shift_stats: ShiftStats
    current_shift: Optional[CurrentShiftInfo] = None
    trends: Optional[TrendInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "driverId": self.driver_id,
            "driverName": self.driver_name,
            "period": self.period.value,
            "periodStart": self.period_start,
            "periodEnd": self.period_end,
            "deliveryStats": self.delivery_stats.to_dict(),
            "distanceStats": self.distance_stats.to_dict(),
            "shiftStats": self.shift_stats.to_dict(),
        }
        if self.current_shift is not None:
            result["currentShift"] = self.current_shift.to_dict()
        if self.trends is not None:
            result["trends"] = self.trends.to_dict()
        return result


@dataclass
class TopPerformer:
    driver_id: str
    driver_name: Optional[str]
    delivery_count: int
    total_miles: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "driverId": self.driver_id,
            "driverName": self.driver_name,
            "deliveryCount": self.delivery_count,
            "totalMiles": self.total_miles,
        }


@dataclass
class DriverStatsSummary:
    period: StatsPeriod
    total_active_drivers: int
    total_deliveries: int
    total_miles: float
    average_deliveries_per_driver: float
    average_miles_per_driver: float
    drivers_on_duty: int
    top_performers: List[TopPerformer] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period.value,
            "totalActiveDrivers": self.total_active_drivers,
            "aggregates": {
                "totalDeliveries": self.total_deliveries,
                "totalMiles": self.total_miles,
                "averageDeliveriesPerDriver": self.average_deliveries_per_driver,
                "averageMilesPerDriver": self.average_miles_per_driver,
            },
            "topPerformers": [performer.to_dict() for performer in self.top_performers],
            "driversOnDuty": self.drivers_on_duty,
        }


class DriverStatsAggregator:
    """
    Builds per-driver and fleet-wide statistics reports.

    Delivery counts are the sum of every configured DeliveryCountSource (the
    current delivery records plus the legacy dispatch records). Shift-derived
    figures come from the ShiftStatsRepository. Nothing here writes.
    """

    def __init__(self, repository: ShiftStatsRepository,
                 delivery_sources: List[DeliveryCountSource],
                 config: Dict[str, Any] = None,
                 logger: StructuredLogger = None):
        self.repository = repository
        self.delivery_sources = delivery_sources
        self.config = config or {}
        self.timezone = self.config.get("timezone", DEFAULT_TIMEZONE)
        self.top_performers_limit = self.config.get("top_performers_limit", 5)
        self.logger = logger or get_logger("driver_stats")

    def _report(self, message: str, error: Exception, **context):
        self.logger.error(message, error=error, **{
            key: to_iso(value) if isinstance(value, datetime) else value
            for key, value in context.items()
        })

    def resolve_window(self, query: DriverStatsQuery, now: datetime = None) -> Tuple[datetime, datetime]:
        if query.start_date and query.end_date:
            start_date, end_date = ensure_utc(query.start_date), ensure_utc(query.end_date)
            if start_date > end_date:
                raise InvalidStatsQueryError("start_date must not be after end_date")
            return start_date, end_date
        return get_date_range_for_period(query.period, now=now, tz=self.timezone)

    async def get_delivery_counts(self, driver_id: str, start_date: datetime,
                                  end_date: datetime) -> DeliveryCounts:
        """Sum of all delivery sources; the eras do not overlap, so no dedup"""
        results = await asyncio.gather(*[
            source.count_deliveries(driver_id, start_date, end_date)
            for source in self.delivery_sources
        ])
        counts = DeliveryCounts()
        for result in results:
            counts = counts + result
        return counts

    async def get_delivery_stats(self, driver_id: str, start_date: datetime,
                                 end_date: datetime) -> DeliveryStats:
        assert_uuid(driver_id)
        try:
            counts = await self.get_delivery_counts(driver_id, start_date, end_date)
        except Exception as e:
            self._report("Delivery stats query failed", e,
                         driver_id=driver_id, start_date=start_date, end_date=end_date)
            raise

        days = days_between(start_date, end_date)
        return DeliveryStats(
            total=counts.total,
            completed=counts.completed,
            cancelled=counts.cancelled,
            in_progress=counts.in_progress,
            average_per_day=round_one(counts.total / days)
        )

    async def get_distance_stats(self, driver_id: str, start_date: datetime,
                                 end_date: datetime) -> DistanceStats:
        assert_uuid(driver_id)
        try:
            totals = await self.repository.fetch_distance_totals(driver_id, start_date, end_date)
        except Exception as e:
            self._report("Distance stats query failed", e,
                         driver_id=driver_id, start_date=start_date, end_date=end_date)
            raise

        total_miles = totals["total_miles"]
        delivery_count = totals["delivery_count"]
        days = days_between(start_date, end_date)

        return DistanceStats(
            total_miles=round_one(total_miles),
            gps_verified_miles=round_one(totals["gps_miles"]),
            average_miles_per_delivery=round_one(total_miles / delivery_count) if delivery_count > 0 else 0,
            average_miles_per_day=round_one(total_miles / days)
        )

    async def get_shift_stats(self, driver_id: str, start_date: datetime,
                              end_date: datetime) -> ShiftStats:
        assert_uuid(driver_id)
        try:
            totals = await self.repository.fetch_shift_totals(driver_id, start_date, end_date)
        except Exception as e:
            self._report("Shift stats query failed", e,
                         driver_id=driver_id, start_date=start_date, end_date=end_date)
            raise

        total_shifts = totals["total_shifts"]
        total_hours = totals["total_hours"]

        return ShiftStats(
            total_shifts=total_shifts,
            total_hours_worked=round_one(total_hours),
            average_shift_duration=round_one(total_hours / total_shifts) if total_shifts > 0 else 0
        )

    async def get_current_shift(self, driver_id: str) -> Optional[CurrentShiftInfo]:
        """Active shift snapshot; a failed lookup is reported and treated as off duty"""
        assert_uuid(driver_id)
        try:
            shift = await self.repository.fetch_active_shift(driver_id)
        except Exception as e:
            self._report("Current shift lookup failed", e, driver_id=driver_id)
            return None

        if not shift:
            return None

        return CurrentShiftInfo(
            id=str(shift["id"]),
            start_time=to_iso(shift["shift_start"]),
            current_deliveries=int(shift.get("delivery_count") or 0),
            current_miles=float(shift.get("total_distance_miles") or 0),
            is_on_break=shift.get("break_start") is not None and shift.get("break_end") is None
        )

    async def get_driver_name(self, driver_id: str) -> Optional[str]:
        try:
            row = await self.repository.fetch_driver_name_parts(driver_id)
        except Exception as e:
            self._report("Driver name lookup failed", e, driver_id=driver_id)
            raise

        if not row:
            return None
        return format_driver_name(row.get("first_name"), row.get("last_name"))

    async def get_trend_info(self, driver_id: str, period: StatsPeriod, window_start: datetime,
                             current_deliveries: int, current_miles: float,
                             current_hours: float) -> Optional[TrendInfo]:
        """
        Compare the window against the preceding window of the same length.

        Only week and month have a meaningful previous window. Efficiency is
        deliveries per hour worked in the current window.
        """
        period = parse_period(period)
        if period not in PERIOD_DAYS:
            return None

        previous_end = window_start - timedelta(seconds=1)
        previous_start = previous_end - timedelta(days=PERIOD_DAYS[period])

        # Sources are queried directly so a failure is reported once, here
        try:
            previous_counts, previous_distance = await asyncio.gather(
                self.get_delivery_counts(driver_id, previous_start, previous_end),
                self.repository.fetch_distance_totals(driver_id, previous_start, previous_end),
            )
        except Exception as e:
            self._report("Trend calculation failed", e, driver_id=driver_id, period=period.value,
                         start_date=previous_start, end_date=previous_end)
            return None

        return TrendInfo(
            delivery_change=percent_change(current_deliveries, previous_counts.total),
            distance_change=percent_change(current_miles, round_one(previous_distance["total_miles"])),
            efficiency_rating=round_one(current_deliveries / current_hours) if current_hours > 0 else 0
        )

    async def get_driver_stats(self, query: DriverStatsQuery, now: datetime = None) -> AggregatedDriverStats:
        """Aggregated report for one driver; rejects malformed ids before any query"""
        assert_uuid(query.driver_id)
        period = parse_period(query.period)
        start_date, end_date = self.resolve_window(query, now=now)
        driver_id = query.driver_id

        results = await asyncio.gather(
            self.get_driver_name(driver_id),
            self.get_delivery_stats(driver_id, start_date, end_date),
            self.get_distance_stats(driver_id, start_date, end_date),
            self.get_shift_stats(driver_id, start_date, end_date),
            self.get_current_shift(driver_id),
            return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        driver_name, delivery_stats, distance_stats, shift_stats, current_shift = results

        trends = await self.get_trend_info(
            driver_id,
            period,
            start_date,
            delivery_stats.total,
            distance_stats.total_miles,
            shift_stats.total_hours_worked
        )

        return AggregatedDriverStats(
            driver_id=driver_id,
            driver_name=driver_name,
            period=period,
            period_start=to_iso(start_date),
            period_end=to_iso(end_date),
            delivery_stats=delivery_stats,
            distance_stats=distance_stats,
            shift_stats=shift_stats,
            current_shift=current_shift,
            trends=trends
        )

    async def get_all_drivers_stats_summary(self, period: StatsPeriod,
                                            include_inactive: bool = False,
                                            now: datetime = None) -> DriverStatsSummary:
        """Fleet roll-up: driver counts, delivery and mile totals, top performers"""
        period = parse_period(period)
        start_date, end_date = get_date_range_for_period(period, now=now, tz=self.timezone)

        try:
            counts, totals, top_rows = await asyncio.gather(
                self.repository.fetch_fleet_counts(include_inactive),
                self.repository.fetch_fleet_totals(start_date, end_date, include_inactive),
                self.repository.fetch_top_performers(start_date, end_date, self.top_performers_limit),
            )
        except Exception as e:
            self._report("Fleet stats summary failed", e,
                         period=period.value, include_inactive=include_inactive)
            raise

        total_active = counts["total_active"]
        total_deliveries = totals["total_deliveries"]
        total_miles = totals["total_miles"]

        top_performers = [
            TopPerformer(
                driver_id=str(row["driver_id"]),
                driver_name=format_driver_name(row.get("first_name"), row.get("last_name")),
                delivery_count=int(row.get("delivery_count") or 0),
                total_miles=round_one(float(row.get("total_miles") or 0))
            )
            for row in top_rows
        ]

        return DriverStatsSummary(
            period=period,
            total_active_drivers=total_active,
            total_deliveries=total_deliveries,
            total_miles=round_one(total_miles),
            average_deliveries_per_driver=round_one(total_deliveries / total_active) if total_active > 0 else 0,
            average_miles_per_driver=round_one(total_miles / total_active) if total_active > 0 else 0,
            drivers_on_duty=counts["on_duty"],
            top_performers=top_performers
        )


def create_driver_stats_aggregator(db: Database = None, config: Dict[str, Any] = None) -> DriverStatsAggregator:
    """Aggregator wired to Postgres with the current and legacy delivery sources"""
    db = db or Database()
    return DriverStatsAggregator(
        repository=ShiftStatsRepository(db),
        delivery_sources=[
            CurrentDeliveryCountSource(db),
            LegacyDispatchCountSource(db),
        ],
        config=config
    )

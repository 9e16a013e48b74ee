# CREATE FILE: services/driver_stats_service/sources.py

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .db import Database


@dataclass
class DeliveryCounts:
    """Raw delivery counts for one driver and window from a single source"""
    total: int = 0
    completed: int = 0
    cancelled: int = 0
    in_progress: int = 0

    def __add__(self, other: "DeliveryCounts") -> "DeliveryCounts":
        return DeliveryCounts(
            total=self.total + other.total,
            completed=self.completed + other.completed,
            cancelled=self.cancelled + other.cancelled,
            in_progress=self.in_progress + other.in_progress
        )


def _as_int(value: Any) -> int:
    return int(value or 0)


def _as_float(value: Any) -> float:
    return float(value or 0)


class DeliveryCountSource:
    """Provider of per-driver delivery counts for a time window"""

    source_name = "base"

    def __init__(self, db: Database):
        self.db = db

    async def count_deliveries(self, driver_id: str, start_date: datetime,
                               end_date: datetime) -> DeliveryCounts:
        raise NotImplementedError


class CurrentDeliveryCountSource(DeliveryCountSource):
    """Delivery records keyed directly by driver id"""

    source_name = "deliveries"

    SQL = """
        SELECT
          COUNT(*) AS total,
          COUNT(*) FILTER (WHERE status = 'delivered') AS completed,
          COUNT(*) FILTER (WHERE status = 'cancelled') AS cancelled,
          COUNT(*) FILTER (WHERE status IN ('pending', 'assigned', 'picked_up')) AS in_progress
        FROM deliveries
        WHERE driver_id = $1::uuid
          AND created_at >= $2::timestamptz
          AND created_at <= $3::timestamptz
          AND deleted_at IS NULL
    """

    async def count_deliveries(self, driver_id, start_date, end_date):
        row = await self.db.fetch_one(self.SQL, driver_id, start_date, end_date,
                                      operation="count_current_deliveries") or {}
        return DeliveryCounts(
            total=_as_int(row.get("total")),
            completed=_as_int(row.get("completed")),
            cancelled=_as_int(row.get("cancelled")),
            in_progress=_as_int(row.get("in_progress"))
        )


class LegacyDispatchCountSource(DeliveryCountSource):
    """
    Pre-migration dispatch records.

    Dispatches are keyed by profile id, so the driver's profile is looked up
    first. Only total and completed are tracked in this era; a driver without
    a profile has no legacy history.
    """

    source_name = "dispatches"

    PROFILE_SQL = """
        SELECT profile_id FROM drivers WHERE id = $1::uuid AND deleted_at IS NULL
    """

    SQL = """
        SELECT
          COUNT(DISTINCT d.id) AS total,
          COUNT(DISTINCT d.id) FILTER (
            WHERE (cr.status IN ('completed', 'delivered') OR od.status IN ('completed', 'delivered'))
          ) AS completed
        FROM dispatches d
        LEFT JOIN catering_requests cr ON d."cateringRequestId" = cr.id
        LEFT JOIN on_demand_requests od ON d."onDemandId" = od.id
        WHERE d."driverId" = $1::uuid
          AND d."createdAt" >= $2::timestamptz
          AND d."createdAt" <= $3::timestamptz
    """

    async def resolve_profile_id(self, driver_id: str) -> Optional[str]:
        row = await self.db.fetch_one(self.PROFILE_SQL, driver_id, operation="resolve_driver_profile")
        if not row or not row.get("profile_id"):
            return None
        return str(row["profile_id"])

    async def count_deliveries(self, driver_id, start_date, end_date):
        profile_id = await self.resolve_profile_id(driver_id)
        if profile_id is None:
            return DeliveryCounts()

        row = await self.db.fetch_one(self.SQL, profile_id, start_date, end_date,
                                      operation="count_legacy_dispatches") or {}
        return DeliveryCounts(
            total=_as_int(row.get("total")),
            completed=_as_int(row.get("completed"))
        )


class ShiftStatsRepository:
    """Read-only queries over driver shifts, drivers and profiles"""

    DRIVER_NAME_SQL = """
        SELECT p.first_name, p.last_name
        FROM drivers d
        LEFT JOIN profiles p ON d.profile_id = p.id
        WHERE d.id = $1::uuid AND d.deleted_at IS NULL
    """

    DISTANCE_SQL = """
        SELECT
          COALESCE(SUM(total_distance_miles), 0) AS total_miles,
          COALESCE(SUM(gps_distance_miles), 0) AS gps_miles,
          COALESCE(SUM(delivery_count), 0) AS delivery_count
        FROM driver_shifts
        WHERE driver_id = $1::uuid
          AND shift_start >= $2::timestamptz
          AND shift_start <= $3::timestamptz
          AND deleted_at IS NULL
    """

    SHIFT_SQL = """
        SELECT
          COUNT(*) AS total_shifts,
          COALESCE(
            SUM(EXTRACT(EPOCH FROM (COALESCE(shift_end, NOW()) - shift_start)) / 3600),
            0
          ) AS total_hours
        FROM driver_shifts
        WHERE driver_id = $1::uuid
          AND shift_start >= $2::timestamptz
          AND shift_start <= $3::timestamptz
          AND deleted_at IS NULL
    """

    ACTIVE_SHIFT_SQL = """
        SELECT id, shift_start, delivery_count, total_distance_miles, break_start, break_end
        FROM driver_shifts
        WHERE driver_id = $1::uuid
          AND status = 'active'
          AND deleted_at IS NULL
        ORDER BY shift_start DESC
        LIMIT 1
    """

    FLEET_COUNTS_SQL = """
        SELECT
          COUNT(*) FILTER (WHERE is_active = true OR $1::boolean) AS total_active,
          COUNT(*) FILTER (WHERE is_on_duty = true) AS on_duty
        FROM drivers
        WHERE deleted_at IS NULL
    """

    FLEET_TOTALS_SQL = """
        SELECT
          COALESCE(SUM(ds.delivery_count), 0) AS total_deliveries,
          COALESCE(SUM(ds.total_distance_miles), 0) AS total_miles
        FROM driver_shifts ds
        INNER JOIN drivers d ON ds.driver_id = d.id
        WHERE ds.shift_start >= $1::timestamptz
          AND ds.shift_start <= $2::timestamptz
          AND ds.deleted_at IS NULL
          AND d.deleted_at IS NULL
          AND (d.is_active = true OR $3::boolean)
    """

    TOP_PERFORMERS_SQL = """
        SELECT
          d.id AS driver_id,
          p.first_name,
          p.last_name,
          COALESCE(SUM(ds.delivery_count), 0) AS delivery_count,
          COALESCE(SUM(ds.total_distance_miles), 0) AS total_miles
        FROM drivers d
        LEFT JOIN profiles p ON d.profile_id = p.id
        LEFT JOIN driver_shifts ds ON ds.driver_id = d.id
          AND ds.shift_start >= $1::timestamptz
          AND ds.shift_start <= $2::timestamptz
          AND ds.deleted_at IS NULL
        WHERE d.deleted_at IS NULL
          AND d.is_active = true
        GROUP BY d.id, p.first_name, p.last_name
        HAVING COALESCE(SUM(ds.delivery_count), 0) > 0
        ORDER BY delivery_count DESC
        LIMIT $3
    """

    def __init__(self, db: Database):
        self.db = db

    async def fetch_driver_name_parts(self, driver_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.fetch_one(self.DRIVER_NAME_SQL, driver_id, operation="driver_name")

    async def fetch_distance_totals(self, driver_id: str, start_date: datetime,
                                    end_date: datetime) -> Dict[str, float]:
        row = await self.db.fetch_one(self.DISTANCE_SQL, driver_id, start_date, end_date,
                                      operation="shift_distance_totals") or {}
        return {
            "total_miles": _as_float(row.get("total_miles")),
            "gps_miles": _as_float(row.get("gps_miles")),
            "delivery_count": _as_int(row.get("delivery_count"))
        }

    async def fetch_shift_totals(self, driver_id: str, start_date: datetime,
                                 end_date: datetime) -> Dict[str, float]:
        row = await self.db.fetch_one(self.SHIFT_SQL, driver_id, start_date, end_date,
                                      operation="shift_hour_totals") or {}
        return {
            "total_shifts": _as_int(row.get("total_shifts")),
            "total_hours": _as_float(row.get("total_hours"))
        }

    async def fetch_active_shift(self, driver_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.fetch_one(self.ACTIVE_SHIFT_SQL, driver_id, operation="active_shift")

    async def fetch_fleet_counts(self, include_inactive: bool) -> Dict[str, int]:
        row = await self.db.fetch_one(self.FLEET_COUNTS_SQL, include_inactive,
                                      operation="fleet_driver_counts") or {}
        return {
            "total_active": _as_int(row.get("total_active")),
            "on_duty": _as_int(row.get("on_duty"))
        }

    async def fetch_fleet_totals(self, start_date: datetime, end_date: datetime,
                                 include_inactive: bool) -> Dict[str, float]:
        row = await self.db.fetch_one(self.FLEET_TOTALS_SQL, start_date, end_date, include_inactive,
                                      operation="fleet_totals") or {}
        return {
            "total_deliveries": _as_int(row.get("total_deliveries")),
            "total_miles": _as_float(row.get("total_miles"))
        }

    async def fetch_top_performers(self, start_date: datetime, end_date: datetime,
                                   limit: int = 5) -> List[Dict[str, Any]]:
        return await self.db.fetch_all(self.TOP_PERFORMERS_SQL, start_date, end_date, limit,
                                       operation="fleet_top_performers")

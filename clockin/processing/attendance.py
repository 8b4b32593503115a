# clockin/processing/attendance.py
"""
Attendance rules outside the capture flow.

- AttendanceGuard: has this subject already checked in on this date?
- Geofence: is the device within the office radius?
- AttendanceService: clock-out and history.

The guard is a read-before-write check with no lock: two sessions for the
same subject can both pass it before either inserts.

Usage:
    guard = AttendanceGuard(gateway)
    if guard.has_marked_today("E1", "2024-03-04"):
        ...
"""
import calendar
import logging
import math
from datetime import datetime
from typing import List, Optional

from ..core.errors import AlreadyMarked, GuardCheckError, NotCheckedIn, OutsideGeofence, TransportError
from ..data.models import AttendanceRecord, GeoLocation

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0


class AttendanceGuard:
    """Same-day uniqueness check through the gateway."""

    def __init__(self, gateway):
        self.gateway = gateway

    def has_marked_today(self, subject_id: str, date: str) -> bool:
        """
        Strict check, used before any write.

        Raises:
            GuardCheckError: the existence query failed (fail closed)
        """
        try:
            return bool(self.gateway.query_attendance_exists(subject_id, date))
        except TransportError as e:
            raise GuardCheckError(f"Could not verify today's attendance: {e}") from e

    def check(self, subject_id: str, date: str) -> None:
        """
        Raises:
            AlreadyMarked: a record exists for (subject_id, date)
            GuardCheckError: the existence query failed
        """
        if self.has_marked_today(subject_id, date):
            raise AlreadyMarked()

    def is_marked(self, subject_id: str, date: str) -> bool:
        """Tolerant check for status displays; a failed query reads as False."""
        try:
            return self.has_marked_today(subject_id, date)
        except GuardCheckError as e:
            logger.warning(f"Error checking attendance: {e}")
            return False


def distance_m(a: GeoLocation, b: GeoLocation) -> float:
    """Great-circle distance in metres (haversine)."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


class Geofence:
    def __init__(self, center: GeoLocation, radius_m: float):
        self.center = center
        self.radius_m = radius_m

    def check(self, location: Optional[GeoLocation]) -> float:
        """
        Returns the distance to the office.

        Raises:
            OutsideGeofence: no location, or farther than `radius_m`
        """
        if location is None:
            raise OutsideGeofence("Waiting for location... Please ensure GPS is on.")
        distance = distance_m(self.center, location)
        if distance > self.radius_m:
            raise OutsideGeofence(
                f"You are {distance:.0f}m from the office. Check-in is allowed within {self.radius_m:.0f}m."
            )
        return distance


class AttendanceService:
    """Clock-out and history on top of the gateway."""

    def __init__(self, gateway, clock=datetime.now):
        self.gateway = gateway
        self.clock = clock

    def today_record(self, subject_id: str, now: Optional[datetime] = None) -> Optional[AttendanceRecord]:
        now = now or self.clock()
        return self.gateway.fetch_attendance(subject_id, now.strftime("%Y-%m-%d"))

    def clock_out(self, subject_id: str, now: Optional[datetime] = None) -> AttendanceRecord:
        """
        Set today's check-out time. A record that is already clocked out is
        returned unchanged.

        Raises:
            NotCheckedIn: no record for today
        """
        now = now or self.clock()
        today = now.strftime("%Y-%m-%d")
        existing = self.gateway.fetch_attendance(subject_id, today)
        if existing is None:
            raise NotCheckedIn()
        if existing.check_out_time:
            return existing

        record = self.gateway.update_check_out(subject_id, today, now.strftime("%H:%M"))
        logger.info(f"🔴 {subject_id} - CLOCK-OUT {record.check_out_time}")
        return record

    def history(self, subject_id: str, year: int, month: int) -> List[AttendanceRecord]:
        """Records of one month, newest first."""
        last_day = calendar.monthrange(year, month)[1]
        start = f"{year:04d}-{month:02d}-01"
        end = f"{year:04d}-{month:02d}-{last_day:02d}"
        return self.gateway.list_attendance(subject_id, start, end)


def geofence_from_settings(config=None) -> Optional[Geofence]:
    """Office geofence from settings, or None when not configured."""
    if config is None:
        from ..core.settings import settings as config
    if not config.geofence_enabled:
        return None
    center = GeoLocation(config.OFFICE_LATITUDE, config.OFFICE_LONGITUDE)
    return Geofence(center, config.GEOFENCE_RADIUS_M)

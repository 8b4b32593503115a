# clockin/data/models.py
"""Records exchanged with the backend."""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class AttendanceStatus(str, Enum):
    """Stored status values, derived by the time policy."""
    PRESENT = "Present"
    LATE = "Late"
    ABSENT = "Absent"


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class AttendanceRecord:
    """
    One check-in per subject per day.

    `date` is YYYY-MM-DD and `check_in_time` HH:MM, both local wall clock.
    """
    subject_id: str
    date: str
    check_in_time: str
    status: AttendanceStatus
    photo_url: str
    location: Optional[GeoLocation] = None
    check_out_time: Optional[str] = None

    def with_check_out(self, check_out_time: str) -> "AttendanceRecord":
        return replace(self, check_out_time=check_out_time)

    def to_row(self) -> dict:
        """Flat row in the backend's column naming."""
        return {
            "user_id": self.subject_id,
            "date": self.date,
            "check_in": self.check_in_time,
            "check_out": self.check_out_time,
            "status": self.status.value,
            "photo_url": self.photo_url,
            "latitude": self.location.latitude if self.location else None,
            "longitude": self.location.longitude if self.location else None,
        }

    @classmethod
    def from_row(cls, row: dict) -> "AttendanceRecord":
        lat, lon = row.get("latitude"), row.get("longitude")
        location = GeoLocation(float(lat), float(lon)) if lat is not None and lon is not None else None
        return cls(
            subject_id=str(row["user_id"]),
            date=str(row["date"]),
            check_in_time=str(row["check_in"])[:5],
            status=AttendanceStatus(row["status"]),
            photo_url=row.get("photo_url") or "",
            location=location,
            check_out_time=str(row["check_out"])[:5] if row.get("check_out") else None,
        )

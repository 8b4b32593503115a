# clockin/processing/reports.py
"""Monthly attendance percentage."""
import calendar
from dataclasses import dataclass, asdict
from datetime import date
from typing import Iterable

from ..data.models import AttendanceRecord, AttendanceStatus

ATTENDED = (AttendanceStatus.PRESENT, AttendanceStatus.LATE)


@dataclass(frozen=True)
class MonthlyStats:
    working_days: int
    present_days: int
    late_days: int
    absent_days: int
    percentage: float

    def to_dict(self) -> dict:
        return asdict(self)


def working_days_in_month(year: int, month: int) -> int:
    """Monday to Friday count."""
    days = calendar.monthrange(year, month)[1]
    return sum(1 for d in range(1, days + 1) if date(year, month, d).weekday() < 5)


def monthly_stats(records: Iterable[AttendanceRecord], year: int, month: int) -> MonthlyStats:
    """
    Present and Late both count as attended. Percentage has one decimal and
    is capped at 100.
    """
    prefix = f"{year:04d}-{month:02d}-"
    in_month = [r for r in records if r.date.startswith(prefix)]

    present = sum(1 for r in in_month if r.status == AttendanceStatus.PRESENT)
    late = sum(1 for r in in_month if r.status == AttendanceStatus.LATE)
    absent = sum(1 for r in in_month if r.status == AttendanceStatus.ABSENT)

    working = working_days_in_month(year, month)
    percentage = 0.0
    if working:
        percentage = min(round((present + late) / working * 100, 1), 100.0)

    return MonthlyStats(
        working_days=working,
        present_days=present + late,
        late_days=late,
        absent_days=absent,
        percentage=percentage,
    )

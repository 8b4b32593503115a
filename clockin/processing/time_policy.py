# clockin/processing/time_policy.py
"""
Check-in time policy.

    minutes <= threshold           -> Present
    minutes <= threshold + grace   -> Late
    otherwise                      -> Absent

Saturday and Sunday are rejected. Pure: the caller passes `now`.

Usage:
    policy = TimePolicy(check_in_time="09:30", late_limit_minutes=10)
    decision = policy.evaluate(datetime(2024, 3, 5, 9, 5))
    decision.status   # AttendanceStatus.PRESENT
"""
from dataclasses import dataclass
from datetime import datetime

from ..core.errors import WeekendNotAllowed
from ..data.models import AttendanceStatus

CHECK_IN_TIME = "09:30"
LATE_LIMIT_MINUTES = 10
WEEKEND = (5, 6)  # Saturday, Sunday


def time_to_minutes(value: str) -> int:
    """'HH:MM' -> minutes since midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def is_weekday(moment: datetime) -> bool:
    return moment.weekday() not in WEEKEND


@dataclass(frozen=True)
class PolicyDecision:
    date: str            # YYYY-MM-DD
    check_in_time: str   # HH:MM
    status: AttendanceStatus


class TimePolicy:
    def __init__(self, check_in_time: str = CHECK_IN_TIME, late_limit_minutes: int = LATE_LIMIT_MINUTES):
        self.threshold = time_to_minutes(check_in_time)
        self.grace = int(late_limit_minutes)

    def status_for(self, minutes: int) -> AttendanceStatus:
        if minutes <= self.threshold:
            return AttendanceStatus.PRESENT
        if minutes <= self.threshold + self.grace:
            return AttendanceStatus.LATE
        return AttendanceStatus.ABSENT

    def evaluate(self, now: datetime) -> PolicyDecision:
        """
        Raises:
            WeekendNotAllowed: `now` is a Saturday or Sunday
        """
        if not is_weekday(now):
            raise WeekendNotAllowed()

        return PolicyDecision(
            date=now.strftime("%Y-%m-%d"),
            check_in_time=now.strftime("%H:%M"),
            status=self.status_for(now.hour * 60 + now.minute),
        )

from datetime import datetime

import pytest

from clockin.core.errors import WeekendNotAllowed
from clockin.data.models import AttendanceStatus
from clockin.processing.time_policy import TimePolicy, is_weekday, time_to_minutes

MONDAY = (2024, 3, 4)


def at(hour, minute, day=MONDAY):
    return datetime(*day, hour, minute)


def test_evaluate_is_deterministic():
    policy = TimePolicy()
    moment = datetime(2024, 3, 5, 9, 17, 42)

    assert policy.evaluate(moment) == policy.evaluate(moment)


@pytest.mark.parametrize("day", [(2024, 3, 9), (2024, 3, 10)])
def test_weekend_is_rejected(day):
    with pytest.raises(WeekendNotAllowed, match="weekends"):
        TimePolicy().evaluate(at(9, 0, day))


def test_monday_is_accepted():
    decision = TimePolicy().evaluate(at(9, 0))

    assert decision.date == "2024-03-04"
    assert decision.check_in_time == "09:00"
    assert decision.status == AttendanceStatus.PRESENT


@pytest.mark.parametrize("hour, minute, expected", [
    (9, 30, AttendanceStatus.PRESENT),
    (9, 31, AttendanceStatus.LATE),
    (9, 40, AttendanceStatus.LATE),
    (9, 41, AttendanceStatus.ABSENT),
    (0, 0, AttendanceStatus.PRESENT),
    (23, 59, AttendanceStatus.ABSENT),
])
def test_status_boundaries(hour, minute, expected):
    assert TimePolicy("09:30", 10).evaluate(at(hour, minute)).status == expected


def test_seconds_do_not_push_past_threshold():
    decision = TimePolicy().evaluate(datetime(2024, 3, 4, 9, 30, 59))

    assert decision.status == AttendanceStatus.PRESENT
    assert decision.check_in_time == "09:30"


def test_custom_threshold_and_grace():
    policy = TimePolicy(check_in_time="08:00", late_limit_minutes=15)

    assert policy.evaluate(at(8, 15)).status == AttendanceStatus.LATE
    assert policy.evaluate(at(8, 16)).status == AttendanceStatus.ABSENT


def test_helpers():
    assert time_to_minutes("09:30") == 570
    assert is_weekday(at(12, 0))
    assert not is_weekday(at(12, 0, (2024, 3, 9)))

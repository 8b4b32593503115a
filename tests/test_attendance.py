from datetime import datetime

import pytest

from clockin.core.errors import AlreadyMarked, GuardCheckError, NotCheckedIn, OutsideGeofence, TransportError
from clockin.data.models import AttendanceRecord, AttendanceStatus, GeoLocation
from clockin.processing.attendance import (
    AttendanceGuard,
    AttendanceService,
    Geofence,
    distance_m,
)


def record(date="2024-03-04", subject="E1", status=AttendanceStatus.PRESENT, check_in="09:00"):
    return AttendanceRecord(subject, date, check_in, status, f"https://x/{subject}/{date}.jpg")


def test_guard_sees_existing_record(gateway):
    gateway.add(record("2024-03-04"))
    guard = AttendanceGuard(gateway)

    assert guard.has_marked_today("E1", "2024-03-04") is True
    assert guard.has_marked_today("E1", "2024-03-04") is True
    assert guard.has_marked_today("E1", "2024-03-05") is False
    assert guard.has_marked_today("E2", "2024-03-04") is False


def test_guard_fails_closed_on_query_error(gateway):
    gateway.fail["query"] = TransportError("network down")
    guard = AttendanceGuard(gateway)

    with pytest.raises(GuardCheckError, match="network down"):
        guard.has_marked_today("E1", "2024-03-04")


def test_tolerant_check_reads_error_as_not_marked(gateway):
    gateway.fail["query"] = TransportError("network down")

    assert AttendanceGuard(gateway).is_marked("E1", "2024-03-04") is False


def test_check_raises_already_marked(gateway):
    gateway.add(record())

    with pytest.raises(AlreadyMarked, match="already marked"):
        AttendanceGuard(gateway).check("E1", "2024-03-04")


def test_clock_out_sets_time(gateway):
    gateway.add(record("2024-03-05"))
    service = AttendanceService(gateway)

    out = service.clock_out("E1", datetime(2024, 3, 5, 18, 2))

    assert out.check_out_time == "18:02"
    assert gateway.fetch_attendance("E1", "2024-03-05").check_out_time == "18:02"


def test_clock_out_twice_keeps_first_time(gateway):
    gateway.add(record("2024-03-05"))
    service = AttendanceService(gateway)

    service.clock_out("E1", datetime(2024, 3, 5, 17, 0))
    again = service.clock_out("E1", datetime(2024, 3, 5, 19, 0))

    assert again.check_out_time == "17:00"


def test_clock_out_without_check_in(gateway):
    with pytest.raises(NotCheckedIn):
        AttendanceService(gateway).clock_out("E1", datetime(2024, 3, 5, 17, 0))


def test_history_is_month_scoped_and_newest_first(gateway):
    for date in ("2024-02-29", "2024-03-01", "2024-03-04", "2024-03-05", "2024-04-01"):
        gateway.add(record(date))

    dates = [r.date for r in AttendanceService(gateway).history("E1", 2024, 3)]

    assert dates == ["2024-03-05", "2024-03-04", "2024-03-01"]


def test_today_record_uses_clock(gateway):
    gateway.add(record("2024-03-05"))
    service = AttendanceService(gateway, clock=lambda: datetime(2024, 3, 5, 12, 0))

    assert service.today_record("E1").date == "2024-03-05"


OFFICE = GeoLocation(21.0285, 105.8542)


def test_geofence_inside():
    nearby = GeoLocation(21.0290, 105.8545)

    assert Geofence(OFFICE, 100).check(nearby) < 100


def test_geofence_outside():
    far = GeoLocation(21.0400, 105.8542)

    with pytest.raises(OutsideGeofence, match="from the office"):
        Geofence(OFFICE, 100).check(far)


def test_geofence_requires_location():
    with pytest.raises(OutsideGeofence, match="location"):
        Geofence(OFFICE, 100).check(None)


def test_distance_one_degree_latitude():
    assert distance_m(GeoLocation(0, 0), GeoLocation(1, 0)) == pytest.approx(111195, rel=1e-3)

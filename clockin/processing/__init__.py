# clockin/processing/__init__.py
"""
Processing modules - attendance rules and the capture flow.

- time_policy: Present / Late / Absent from the check-in time
- attendance: same-day guard, geofence, clock-out and history
- capture: CaptureOrchestrator state machine
- reports: monthly attendance percentage
- display: preview overlay
"""

from .time_policy import TimePolicy, PolicyDecision
from .attendance import AttendanceGuard, AttendanceService, Geofence, geofence_from_settings
from .capture import CaptureOrchestrator, CaptureState, StaticLocationProvider
from .reports import MonthlyStats, monthly_stats
from .display import DisplayHandler

__all__ = [
    'TimePolicy',
    'PolicyDecision',
    'AttendanceGuard',
    'AttendanceService',
    'Geofence',
    'geofence_from_settings',
    'CaptureOrchestrator',
    'CaptureState',
    'StaticLocationProvider',
    'MonthlyStats',
    'monthly_stats',
    'DisplayHandler',
]

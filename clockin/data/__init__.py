# clockin/data/__init__.py
"""
Data layer - backend gateways and record types.
"""
from .models import AttendanceRecord, AttendanceStatus, GeoLocation
from .gateway import DataAccessGateway, TimeoutGateway, with_timeout
from .database import SQLiteGateway


def create_gateway(backend=None):
    """Build the configured gateway, wrapped with the configured timeout."""
    from ..core.settings import settings

    backend = (backend or settings.BACKEND).lower()
    if backend == "supabase":
        from .supabase_gateway import SupabaseGateway
        gateway = SupabaseGateway()
    elif backend == "sqlite":
        gateway = SQLiteGateway(db_path=settings.DB_PATH, photo_dir=settings.PHOTO_DIR)
    else:
        raise ValueError(f"Unknown backend: {backend}")
    return with_timeout(gateway, settings.GATEWAY_TIMEOUT)


__all__ = [
    'AttendanceRecord',
    'AttendanceStatus',
    'GeoLocation',
    'DataAccessGateway',
    'TimeoutGateway',
    'with_timeout',
    'SQLiteGateway',
    'create_gateway',
]

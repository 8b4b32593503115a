# clockin/data/supabase_gateway.py
"""
Supabase backend: `attendance` table, `profiles` table and a public storage
bucket for verification photos.

The client is created lazily from SUPABASE_URL / SUPABASE_KEY unless one is
injected. Every SDK failure is converted to the clockin transport errors.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from supabase import Client, create_client

from ..core.errors import (
    AlreadyMarked,
    DestinationMissingError,
    InsertError,
    NotCheckedIn,
    TransportError,
    UploadError,
)
from ..core.settings import settings
from .models import AttendanceRecord

logger = logging.getLogger(__name__)

_MISSING_BUCKET_MARKERS = ("bucket not found", "bucket_not_found", "the resource was not found")


def _is_missing_bucket(exc: Exception) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _MISSING_BUCKET_MARKERS)


def _is_duplicate(exc: Exception) -> bool:
    """unique_violation on (user_id, date), when the table carries the constraint."""
    return getattr(exc, "code", None) == "23505" or "duplicate key" in str(exc).lower()


def _is_existing_object(exc: Exception) -> bool:
    """Storage refused an upload because the object already exists."""
    text = str(exc).lower()
    return "duplicate" in text or "already exists" in text


class SupabaseGateway:
    """DataAccessGateway over the Supabase Python client."""

    def __init__(
        self,
        client: Optional[Client] = None,
        url: Optional[str] = None,
        key: Optional[str] = None,
        bucket: Optional[str] = None,
        table: Optional[str] = None,
        profiles_table: Optional[str] = None,
    ):
        self._client = client
        self.url = url or settings.SUPABASE_URL
        self.key = key or settings.SUPABASE_KEY
        self.bucket = bucket or settings.ATTENDANCE_BUCKET
        self.table = table or settings.ATTENDANCE_TABLE
        self.profiles_table = profiles_table or settings.PROFILES_TABLE

    @property
    def client(self) -> Client:
        if self._client is None:
            if not self.url or not self.key:
                raise TransportError("SUPABASE_URL / SUPABASE_KEY not set")
            self._client = create_client(self.url, self.key)
            logger.info(f"Supabase client initialised → {self.url}")
        return self._client

    def _storage(self):
        return self.client.storage.from_(self.bucket)

    # === CAPTURE PIPELINE ===

    def query_attendance_exists(self, subject_id: str, date: str) -> bool:
        try:
            res = (
                self.client.table(self.table)
                .select("id")
                .eq("user_id", subject_id)
                .eq("date", date)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise TransportError(f"Attendance lookup failed: {e}") from e
        return bool(res.data)

    def upload_image(self, path: str, blob: bytes) -> None:
        try:
            self._storage().upload(
                path,
                blob,
                {"content-type": "image/jpeg", "cache-control": "3600", "upsert": "false"},
            )
        except Exception as e:
            if _is_existing_object(e):
                # Retried upload under the same path, e.g. after a timeout
                logger.debug(f"Photo {path} already stored")
                return
            if _is_missing_bucket(e):
                raise DestinationMissingError(f"Upload failed: bucket '{self.bucket}' not found") from e
            raise UploadError(f"Upload failed: {e}") from e

    def resolve_public_url(self, path: str) -> str:
        try:
            url = self._storage().get_public_url(path)
        except Exception as e:
            raise TransportError(f"Public URL lookup failed: {e}") from e
        # Older clients return {"publicUrl": ...}
        if isinstance(url, dict):
            url = url.get("publicUrl") or url.get("publicURL") or ""
        return url.rstrip("?")

    def insert_attendance(self, record: AttendanceRecord) -> None:
        row = record.to_row()
        row.pop("check_out")
        try:
            self.client.table(self.table).insert(row).execute()
        except Exception as e:
            if _is_duplicate(e):
                raise AlreadyMarked() from e
            raise InsertError(f"Attendance submission failed: {e}") from e

    # === CLOCK-OUT / HISTORY ===

    def fetch_attendance(self, subject_id: str, date: str) -> Optional[AttendanceRecord]:
        try:
            res = (
                self.client.table(self.table)
                .select("*")
                .eq("user_id", subject_id)
                .eq("date", date)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise TransportError(f"Attendance lookup failed: {e}") from e
        return AttendanceRecord.from_row(res.data[0]) if res.data else None

    def update_check_out(self, subject_id: str, date: str, check_out_time: str) -> AttendanceRecord:
        try:
            res = (
                self.client.table(self.table)
                .update({"check_out": check_out_time})
                .eq("user_id", subject_id)
                .eq("date", date)
                .execute()
            )
        except Exception as e:
            raise TransportError(f"Clock-out failed: {e}") from e
        if not res.data:
            raise NotCheckedIn()
        return AttendanceRecord.from_row(res.data[0])

    def list_attendance(self, subject_id: str, start_date: str, end_date: str) -> List[AttendanceRecord]:
        try:
            res = (
                self.client.table(self.table)
                .select("*")
                .eq("user_id", subject_id)
                .gte("date", start_date)
                .lte("date", end_date)
                .order("date", desc=True)
                .execute()
            )
        except Exception as e:
            raise TransportError(f"History lookup failed: {e}") from e
        return [AttendanceRecord.from_row(row) for row in res.data or []]

    def delete_image(self, path: str) -> None:
        try:
            self._storage().remove([path])
        except Exception as e:
            raise TransportError(f"Delete failed: {e}") from e

    def touch_last_seen(self, subject_id: str) -> None:
        (
            self.client.table(self.profiles_table)
            .update({"last_seen": datetime.now(timezone.utc).isoformat()})
            .eq("id", subject_id)
            .execute()
        )

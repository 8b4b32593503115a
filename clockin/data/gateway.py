# clockin/data/gateway.py
"""
Data Access Gateway contract.

The capture pipeline needs four primitives from the backend (existence
query, upload, public URL, insert); clock-out, history and orphan cleanup use
the rest. Implementations: SQLiteGateway (local) and SupabaseGateway.

Implementations raise UploadError / InsertError / TransportError; they never
return error values.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import List, Optional, Protocol

from ..core.errors import GatewayTimeout
from .models import AttendanceRecord

logger = logging.getLogger(__name__)


class DataAccessGateway(Protocol):
    def query_attendance_exists(self, subject_id: str, date: str) -> bool: ...

    def upload_image(self, path: str, blob: bytes) -> None: ...

    def resolve_public_url(self, path: str) -> str: ...

    def insert_attendance(self, record: AttendanceRecord) -> None: ...

    def fetch_attendance(self, subject_id: str, date: str) -> Optional[AttendanceRecord]: ...

    def update_check_out(self, subject_id: str, date: str, check_out_time: str) -> AttendanceRecord: ...

    def list_attendance(self, subject_id: str, start_date: str, end_date: str) -> List[AttendanceRecord]: ...

    def delete_image(self, path: str) -> None: ...

    def touch_last_seen(self, subject_id: str) -> None: ...


class TimeoutGateway:
    """
    Wraps a gateway and bounds every call by `timeout` seconds.

    A call that times out keeps running in its worker thread; its result is
    dropped and GatewayTimeout is raised to the caller. The side effect may
    still happen, so a timeout means "outcome unknown", not "failed".
    """

    def __init__(self, inner, timeout: float, max_workers: int = 4):
        self.inner = inner
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gateway")

    def _call(self, name: str, *args):
        future = self._executor.submit(getattr(self.inner, name), *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            logger.warning(f"⏱️ Gateway call {name} timed out after {self.timeout}s")
            raise GatewayTimeout(f"{name} timed out after {self.timeout}s") from None

    def query_attendance_exists(self, subject_id, date):
        return self._call("query_attendance_exists", subject_id, date)

    def upload_image(self, path, blob):
        return self._call("upload_image", path, blob)

    def resolve_public_url(self, path):
        return self._call("resolve_public_url", path)

    def insert_attendance(self, record):
        return self._call("insert_attendance", record)

    def fetch_attendance(self, subject_id, date):
        return self._call("fetch_attendance", subject_id, date)

    def update_check_out(self, subject_id, date, check_out_time):
        return self._call("update_check_out", subject_id, date, check_out_time)

    def list_attendance(self, subject_id, start_date, end_date):
        return self._call("list_attendance", subject_id, start_date, end_date)

    def delete_image(self, path):
        return self._call("delete_image", path)

    def touch_last_seen(self, subject_id):
        return self._call("touch_last_seen", subject_id)

    def shutdown(self):
        self._executor.shutdown(wait=False)


def with_timeout(gateway, timeout: Optional[float]):
    """Wrap `gateway` when a positive timeout is configured."""
    if timeout and timeout > 0:
        return TimeoutGateway(gateway, timeout)
    return gateway

# clockin/data/database.py
"""
SQLite backend for single-machine deployments (kiosk, development, tests).

Tables:
    attendance  one row per (user_id, date), UNIQUE constraint as backstop
    profiles    last_seen timestamp per subject

Photos are stored as files under `photo_dir`; their "public URL" is the
file:// URI.

Thread-safe: a new connection per call, writes serialised by a lock.
"""
import logging
import os
import sqlite3
import threading
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..core.errors import (
    AlreadyMarked,
    DestinationMissingError,
    InsertError,
    NotCheckedIn,
    TransportError,
    UploadError,
)
from .models import AttendanceRecord

logger = logging.getLogger(__name__)

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        date TEXT NOT NULL,
        check_in TEXT NOT NULL,
        check_out TEXT,
        status TEXT NOT NULL,
        photo_url TEXT,
        latitude REAL,
        longitude REAL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (user_id, date)
    );
    CREATE TABLE IF NOT EXISTS profiles (
        user_id TEXT PRIMARY KEY,
        last_seen DATETIME
    );
'''


class SQLiteGateway:
    """DataAccessGateway over a local SQLite file and photo directory."""

    def __init__(self, db_path: str = "attendance.db", photo_dir: str = "attendance-photos", create: bool = True):
        self.db_path = db_path
        self.photo_dir = Path(photo_dir)
        self._write_lock = threading.Lock()
        if create:
            self.init_db()

    def get_connection(self) -> sqlite3.Connection:
        """New connection per call; SQLite allows many readers, one writer."""
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        """Create tables and the photo directory if missing."""
        with closing(self.get_connection()) as conn:
            conn.executescript(SCHEMA)
            conn.commit()
        self.photo_dir.mkdir(parents=True, exist_ok=True)

    # === CAPTURE PIPELINE ===

    def query_attendance_exists(self, subject_id: str, date: str) -> bool:
        try:
            with closing(self.get_connection()) as conn:
                row = conn.execute(
                    'SELECT 1 FROM attendance WHERE user_id = ? AND date = ? LIMIT 1',
                    (subject_id, date)
                ).fetchone()
        except sqlite3.Error as e:
            raise TransportError(f"Attendance lookup failed: {e}") from e
        return row is not None

    def upload_image(self, path: str, blob: bytes) -> None:
        if not self.photo_dir.is_dir():
            raise DestinationMissingError(f"Upload failed: storage directory {self.photo_dir} does not exist")
        target = self._photo_path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # 'xb': never overwrite an existing photo
            with open(target, 'xb') as f:
                f.write(blob)
        except FileExistsError as e:
            # Retried upload of the same photo, e.g. after a timeout
            if target.read_bytes() == blob:
                logger.debug(f"Photo {path} already stored")
                return
            raise UploadError(f"Upload failed: {path} already exists") from e
        except OSError as e:
            raise UploadError(f"Upload failed: {e}") from e

    def _photo_path(self, path: str) -> Path:
        """Absolute location of `path`, which must stay inside the photo store."""
        root = self.photo_dir.resolve()
        target = (root / path).resolve()
        if target == root or root not in target.parents:
            raise UploadError(f"Invalid photo path: {path}")
        return target

    def resolve_public_url(self, path: str) -> str:
        return self._photo_path(path).as_uri()

    def insert_attendance(self, record: AttendanceRecord) -> None:
        row = record.to_row()
        try:
            with self._write_lock, closing(self.get_connection()) as conn:
                conn.execute('''
                    INSERT INTO attendance
                        (user_id, date, check_in, check_out, status, photo_url, latitude, longitude)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''', (row["user_id"], row["date"], row["check_in"], row["check_out"],
                      row["status"], row["photo_url"], row["latitude"], row["longitude"]))
                conn.commit()
        except sqlite3.IntegrityError as e:
            # UNIQUE(user_id, date) caught a concurrent submission the guard missed
            raise AlreadyMarked() from e
        except sqlite3.Error as e:
            raise InsertError(f"Attendance submission failed: {e}") from e

    # === CLOCK-OUT / HISTORY ===

    def fetch_attendance(self, subject_id: str, date: str) -> Optional[AttendanceRecord]:
        try:
            with closing(self.get_connection()) as conn:
                row = conn.execute(
                    'SELECT * FROM attendance WHERE user_id = ? AND date = ?',
                    (subject_id, date)
                ).fetchone()
        except sqlite3.Error as e:
            raise TransportError(f"Attendance lookup failed: {e}") from e
        return AttendanceRecord.from_row(dict(row)) if row else None

    def update_check_out(self, subject_id: str, date: str, check_out_time: str) -> AttendanceRecord:
        try:
            with self._write_lock, closing(self.get_connection()) as conn:
                cursor = conn.execute(
                    'UPDATE attendance SET check_out = ? WHERE user_id = ? AND date = ?',
                    (check_out_time, subject_id, date)
                )
                conn.commit()
                updated = cursor.rowcount
        except sqlite3.Error as e:
            raise TransportError(f"Clock-out failed: {e}") from e
        if not updated:
            raise NotCheckedIn()
        return self.fetch_attendance(subject_id, date)

    def list_attendance(self, subject_id: str, start_date: str, end_date: str) -> List[AttendanceRecord]:
        try:
            with closing(self.get_connection()) as conn:
                rows = conn.execute('''
                    SELECT * FROM attendance
                    WHERE user_id = ? AND date BETWEEN ? AND ?
                    ORDER BY date DESC
                ''', (subject_id, start_date, end_date)).fetchall()
        except sqlite3.Error as e:
            raise TransportError(f"History lookup failed: {e}") from e
        return [AttendanceRecord.from_row(dict(row)) for row in rows]

    def delete_image(self, path: str) -> None:
        try:
            os.remove(self._photo_path(path))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise TransportError(f"Delete failed: {e}") from e

    def touch_last_seen(self, subject_id: str) -> None:
        with self._write_lock, closing(self.get_connection()) as conn:
            conn.execute('''
                INSERT INTO profiles (user_id, last_seen) VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET last_seen = excluded.last_seen
            ''', (subject_id, datetime.now().isoformat(timespec="seconds")))
            conn.commit()

    def get_last_seen(self, subject_id: str) -> Optional[str]:
        with closing(self.get_connection()) as conn:
            row = conn.execute('SELECT last_seen FROM profiles WHERE user_id = ?', (subject_id,)).fetchone()
        return row['last_seen'] if row else None

"""
SQLite persistence for the calendar registry, settings and sync history.
"""

import sqlite3
import time
from collections.abc import Iterable
from pathlib import Path

from calendar_busy_sync.models import CalendarEntry
from calendar_busy_sync.models import CalendarSyncError
from calendar_busy_sync.models import SyncResult
from calendar_busy_sync.models import SyncStatus


class StateDatabase:
    """Manages the SQLite state database."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Initialize and connect to the state database."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # The manager writes from the scheduler thread as well as the caller's.
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise CalendarSyncError(f"Cannot open state database {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS calendars (
                calendar_id TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                account TEXT NOT NULL DEFAULT '',
                read_only INTEGER NOT NULL DEFAULT 0,
                sync_enabled INTEGER NOT NULL DEFAULT 0,
                updated_at INTEGER NOT NULL
            );
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS sync_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at INTEGER NOT NULL,
                finished_at INTEGER,
                status TEXT NOT NULL,
                target_dates TEXT NOT NULL,
                dry_run INTEGER NOT NULL DEFAULT 0,
                blocks_created INTEGER NOT NULL DEFAULT 0,
                blocks_removed INTEGER NOT NULL DEFAULT 0,
                conflicts INTEGER NOT NULL DEFAULT 0,
                failures INTEGER NOT NULL DEFAULT 0,
                message TEXT NOT NULL DEFAULT ''
            );
        """)
        self.conn.commit()

    # ------------------------------------------------------------------ #
    # Calendars                                                            #
    # ------------------------------------------------------------------ #

    def load_calendars(self) -> list[CalendarEntry]:
        cursor = self.conn.execute(
            "SELECT calendar_id, display_name, account, read_only, sync_enabled "
            "FROM calendars ORDER BY display_name, calendar_id"
        )
        return [
            CalendarEntry(
                id=row["calendar_id"],
                display_name=row["display_name"],
                sync_enabled=bool(row["sync_enabled"]),
                account=row["account"],
                read_only=bool(row["read_only"]),
            )
            for row in cursor.fetchall()
        ]

    def save_calendar(self, entry: CalendarEntry):
        """Insert or update one calendar record."""
        self.conn.execute(
            "INSERT INTO calendars "
            "(calendar_id, display_name, account, read_only, sync_enabled, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(calendar_id) DO UPDATE SET "
            "display_name = excluded.display_name, "
            "account = excluded.account, "
            "read_only = excluded.read_only, "
            "sync_enabled = excluded.sync_enabled, "
            "updated_at = excluded.updated_at",
            (
                entry.id,
                entry.display_name,
                entry.account,
                int(entry.read_only),
                int(entry.sync_enabled),
                int(time.time()),
            ),
        )

    def save_calendars(self, entries: Iterable[CalendarEntry]):
        for entry in entries:
            self.save_calendar(entry)

    def delete_calendar(self, calendar_id: str):
        self.conn.execute("DELETE FROM calendars WHERE calendar_id = ?", (calendar_id,))

    # ------------------------------------------------------------------ #
    # Settings                                                             #
    # ------------------------------------------------------------------ #

    def get_settings(self) -> dict[str, str]:
        cursor = self.conn.execute("SELECT key, value FROM settings")
        return {row["key"]: row["value"] for row in cursor.fetchall()}

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        row = self.conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else default

    def set_setting(self, key: str, value):
        self.conn.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, str(value)),
        )

    # ------------------------------------------------------------------ #
    # Sync history                                                         #
    # ------------------------------------------------------------------ #

    def record_run(self, result: SyncResult | None, status: SyncStatus, message: str = ""):
        """Store the outcome of one sync invocation."""
        now = int(time.time())
        if result is None:
            self.conn.execute(
                "INSERT INTO sync_runs (started_at, finished_at, status, target_dates, message) "
                "VALUES (?, ?, ?, '', ?)",
                (now, now, status.value, message),
            )
            return
        started = int(result.started_at.timestamp()) if result.started_at else now
        finished = int(result.finished_at.timestamp()) if result.finished_at else now
        self.conn.execute(
            "INSERT INTO sync_runs "
            "(started_at, finished_at, status, target_dates, dry_run, "
            " blocks_created, blocks_removed, conflicts, failures, message) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                started,
                finished,
                status.value,
                ",".join(d.isoformat() for d in result.target_dates),
                int(result.dry_run),
                result.blocks_created,
                result.blocks_removed,
                len(result.conflicts),
                len(result.failures),
                message or result.summary(),
            ),
        )

    def last_successful_sync(self) -> int | None:
        """Unix timestamp of the last successful, non-dry-run sync."""
        row = self.conn.execute(
            "SELECT MAX(finished_at) FROM sync_runs WHERE status = ? AND dry_run = 0",
            (SyncStatus.SUCCEEDED.value,),
        ).fetchone()
        return row[0] if row else None

    def recent_runs(self, limit: int = 10) -> list:
        cursor = self.conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        return cursor.fetchall()

    def commit(self):
        """Commit pending transactions."""
        if self.conn:
            self.conn.commit()

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None


def query_recent_runs(db_path: Path, limit: int = 10) -> list:
    """
    Return the most recent sync_runs rows without creating the database.

    Returns an empty list when the DB file does not exist or has no
    sync_runs table yet.
    """
    if not db_path.exists():
        return []
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        if "sync_runs" not in tables:
            return []
        cursor = conn.execute("SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (limit,))
        return cursor.fetchall()
    finally:
        conn.close()


def migrate_calendar_id(db_path: Path, old_id: str, new_id: str, dry_run: bool) -> int:
    """
    Move the stored registry record of old_id onto new_id.

    Used after an account reconnection changes EDS calendar UIDs: the
    sync_enabled flag follows the calendar. Returns the number of rows
    affected (0 or 1).
    """
    conn = sqlite3.connect(db_path)
    try:
        rows = conn.execute(
            "SELECT COUNT(*) FROM calendars WHERE calendar_id = ?", (old_id,)
        ).fetchone()[0]
        if rows and not dry_run:
            conn.execute("DELETE FROM calendars WHERE calendar_id = ?", (new_id,))
            conn.execute(
                "UPDATE calendars SET calendar_id = ?, updated_at = ? WHERE calendar_id = ?",
                (new_id, int(time.time()), old_id),
            )
            conn.commit()
    finally:
        conn.close()
    return rows

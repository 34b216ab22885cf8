"""SQLite-backed inbox of in-app notifications."""

from __future__ import annotations

import sqlite3
import uuid
from pathlib import Path
from threading import RLock
from typing import Any

NOTIFICATION_TYPES: frozenset[str] = frozenset({"info", "success", "warning", "error"})

_COLUMNS: tuple[str, ...] = (
    "notification_id",
    "user_id",
    "message",
    "type",
    "resource_id",
    "is_read",
    "created_at",
)


def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    data = {column: row[column] for column in _COLUMNS}
    data["is_read"] = bool(data["is_read"])
    return data


class NotificationStore:
    """Per-user notices, polled by clients. Each call commits on its own."""

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    message TEXT NOT NULL,
                    type TEXT NOT NULL,
                    resource_id TEXT,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_notifications_user
                    ON notifications (user_id, created_at);
                """
            )
            self._db.commit()

    def create(
        self,
        user_id: str,
        message: str,
        notification_type: str,
        resource_id: str | None,
        now: str,
    ) -> dict[str, Any]:
        """Store one notice and return it."""
        if notification_type not in NOTIFICATION_TYPES:
            msg = f"Unknown notification type: {notification_type}"
            raise ValueError(msg)

        notification = {
            "notification_id": f"ntf-{uuid.uuid4()}",
            "user_id": user_id,
            "message": message,
            "type": notification_type,
            "resource_id": resource_id,
            "is_read": False,
            "created_at": now,
        }
        with self._lock:
            self._db.execute(
                f"INSERT INTO notifications ({', '.join(_COLUMNS)}) "  # nosec B608
                f"VALUES ({', '.join('?' for _ in _COLUMNS)})",
                tuple(int(v) if isinstance(v, bool) else v for v in notification.values()),
            )
            self._db.commit()
        return notification

    def get(self, notification_id: str, user_id: str) -> dict[str, Any] | None:
        """Fetch a notice owned by ``user_id``; other users' notices are invisible."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM notifications "  # nosec B608
                "WHERE notification_id = ? AND user_id = ?",
                (notification_id, user_id),
            ).fetchone()
        return _row_to_dict(row) if row is not None else None

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """List a user's notices, newest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM notifications "  # nosec B608
                "WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        return [_row_to_dict(row) for row in rows]

    def mark_read(self, notification_id: str, user_id: str) -> int:
        """Mark one notice as read and return the number of affected rows."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE notifications SET is_read = 1 WHERE notification_id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notice of a user as read."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
                (user_id,),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def delete(self, notification_id: str, user_id: str) -> int:
        """Delete one notice and return the number of affected rows."""
        with self._lock:
            cursor = self._db.execute(
                "DELETE FROM notifications WHERE notification_id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()

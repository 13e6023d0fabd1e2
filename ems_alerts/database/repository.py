"""
Repository classes for triggers, notification history and settings.
"""

import json
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from ems_alerts.errors import NotFoundError, ValidationError
from ems_alerts.validation import (
    normalize_phone_number,
    normalize_threshold,
    validate_is_active,
    validate_settings_update,
    validate_simulator_id,
)
from .connection import Database
from .models import NotificationHistoryEntry, NotificationSettings, Trigger


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def _to_db_time(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


class TriggerRepository:
    """CRUD operations for notification triggers."""

    _UPDATABLE = {"simulator_id", "phone_number", "threshold_percentage", "is_active"}

    def __init__(self, db: Database):
        self.db = db

    def create(
        self,
        simulator_id: str,
        phone_number: str,
        threshold_percentage: float,
        is_active: bool = True,
    ) -> Trigger:
        """
        Validate and store a new trigger.

        Raises:
            ValidationError: On a bad phone number, threshold or simulator id,
                or when the simulator already has a trigger with the same
                phone number and threshold
        """
        trigger = Trigger(
            simulator_id=validate_simulator_id(simulator_id),
            phone_number=normalize_phone_number(phone_number),
            threshold_percentage=normalize_threshold(threshold_percentage),
            is_active=validate_is_active(is_active),
        )
        now = datetime.now()
        trigger.id = _new_id("trigger")
        trigger.created_at = now
        trigger.updated_at = now

        with self.db.transaction("create_trigger") as cursor:
            self._check_duplicate(cursor, trigger)
            cursor.execute(
                """
                INSERT INTO notification_triggers
                (id, simulator_id, phone_number, threshold_percentage,
                 is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    trigger.id,
                    trigger.simulator_id,
                    trigger.phone_number,
                    trigger.threshold_percentage,
                    1 if trigger.is_active else 0,
                    _to_db_time(now),
                    _to_db_time(now),
                ),
            )
        return trigger

    def get(self, trigger_id: str) -> Optional[Trigger]:
        """Get trigger by ID."""
        with self.db.transaction("get_trigger") as cursor:
            cursor.execute(
                "SELECT * FROM notification_triggers WHERE id = ?", (trigger_id,)
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_trigger(row)

    def update(self, trigger_id: str, **updates: Any) -> Trigger:
        """
        Apply a partial update and return the stored trigger.

        Raises:
            NotFoundError: If the trigger does not exist
            ValidationError: If an updated field is invalid or the result
                duplicates another trigger
        """
        unknown = set(updates) - self._UPDATABLE
        if unknown:
            raise ValidationError(
                f"Cannot update fields: {', '.join(sorted(unknown))}", "trigger"
            )

        with self.db.transaction("update_trigger") as cursor:
            cursor.execute(
                "SELECT * FROM notification_triggers WHERE id = ?", (trigger_id,)
            )
            row = cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Trigger with id {trigger_id} not found")

            trigger = self._row_to_trigger(row)
            if "simulator_id" in updates:
                trigger.simulator_id = validate_simulator_id(updates["simulator_id"])
            if "phone_number" in updates:
                trigger.phone_number = normalize_phone_number(updates["phone_number"])
            if "threshold_percentage" in updates:
                trigger.threshold_percentage = normalize_threshold(
                    updates["threshold_percentage"]
                )
            if "is_active" in updates:
                trigger.is_active = validate_is_active(updates["is_active"])
            trigger.updated_at = datetime.now()

            self._check_duplicate(cursor, trigger)
            cursor.execute(
                """
                UPDATE notification_triggers
                SET simulator_id = ?, phone_number = ?, threshold_percentage = ?,
                    is_active = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    trigger.simulator_id,
                    trigger.phone_number,
                    trigger.threshold_percentage,
                    1 if trigger.is_active else 0,
                    _to_db_time(trigger.updated_at),
                    trigger.id,
                ),
            )
        return trigger

    def delete(self, trigger_id: str) -> None:
        """
        Delete a trigger. History entries that reference it are kept.

        Raises:
            NotFoundError: If the trigger does not exist
        """
        with self.db.transaction("delete_trigger") as cursor:
            cursor.execute(
                "DELETE FROM notification_triggers WHERE id = ?", (trigger_id,)
            )
            deleted = cursor.rowcount
        if deleted == 0:
            raise NotFoundError(f"Trigger with id {trigger_id} not found")

    def list_by_simulator(self, simulator_id: str) -> list[Trigger]:
        """List all triggers for a simulator."""
        with self.db.transaction("list_triggers") as cursor:
            cursor.execute(
                """
                SELECT * FROM notification_triggers
                WHERE simulator_id = ?
                ORDER BY threshold_percentage, created_at
                """,
                (simulator_id,),
            )
            rows = cursor.fetchall()
        return [self._row_to_trigger(row) for row in rows]

    def list_active_by_simulator(self, simulator_id: str) -> list[Trigger]:
        """List only active triggers for a simulator."""
        with self.db.transaction("list_active_triggers") as cursor:
            cursor.execute(
                """
                SELECT * FROM notification_triggers
                WHERE simulator_id = ? AND is_active = 1
                ORDER BY threshold_percentage, created_at
                """,
                (simulator_id,),
            )
            rows = cursor.fetchall()
        return [self._row_to_trigger(row) for row in rows]

    def list_all(self) -> list[Trigger]:
        """List every trigger."""
        with self.db.transaction("list_all_triggers") as cursor:
            cursor.execute(
                "SELECT * FROM notification_triggers ORDER BY simulator_id, threshold_percentage"
            )
            rows = cursor.fetchall()
        return [self._row_to_trigger(row) for row in rows]

    def _check_duplicate(self, cursor, trigger: Trigger) -> None:
        """Reject a second trigger with the same simulator, phone and threshold."""
        cursor.execute(
            """
            SELECT 1 FROM notification_triggers
            WHERE simulator_id = ?
              AND phone_number = ?
              AND threshold_percentage = ?
              AND id != ?
            LIMIT 1
            """,
            (
                trigger.simulator_id,
                trigger.phone_number,
                trigger.threshold_percentage,
                trigger.id,
            ),
        )
        if cursor.fetchone() is not None:
            raise ValidationError(
                "A trigger with the same phone number and threshold already "
                "exists for this simulator",
                "trigger",
            )

    def _row_to_trigger(self, row) -> Trigger:
        """Convert database row to Trigger."""
        return Trigger(
            id=row["id"],
            simulator_id=row["simulator_id"],
            phone_number=row["phone_number"],
            threshold_percentage=row["threshold_percentage"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class HistoryRepository:
    """Append-only store of notification attempts."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, entry: NotificationHistoryEntry) -> NotificationHistoryEntry:
        """
        Store a history entry and return it with its ID assigned.

        No validation is performed; failed attempts are recorded too.

        Raises:
            StorageError: If the write fails
        """
        entry_id = entry.id or _new_id("history")
        with self.db.transaction("append_history") as cursor:
            cursor.execute(
                """
                INSERT INTO notification_history
                (id, trigger_id, simulator_id, phone_number, threshold_percentage,
                 actual_percentage, success, error_message, sent_at, notification_type)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    entry.trigger_id,
                    entry.simulator_id,
                    entry.phone_number,
                    entry.threshold_percentage,
                    entry.actual_percentage,
                    1 if entry.success else 0,
                    entry.error_message,
                    _to_db_time(entry.sent_at),
                    entry.notification_type,
                ),
            )
        return replace(entry, id=entry_id)

    def get(self, entry_id: str) -> Optional[NotificationHistoryEntry]:
        """Get a history entry by ID."""
        with self.db.transaction("get_history") as cursor:
            cursor.execute(
                "SELECT * FROM notification_history WHERE id = ?", (entry_id,)
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def list_by_simulator(
        self, simulator_id: str, limit: int = 100
    ) -> list[NotificationHistoryEntry]:
        """Get history for a simulator, newest first."""
        with self.db.transaction("list_history") as cursor:
            cursor.execute(
                """
                SELECT * FROM notification_history
                WHERE simulator_id = ?
                ORDER BY sent_at DESC, rowid DESC
                LIMIT ?
                """,
                (simulator_id, limit),
            )
            rows = cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    def list_all(self, limit: int = 100) -> list[NotificationHistoryEntry]:
        """Get history across all simulators, newest first."""
        with self.db.transaction("list_all_history") as cursor:
            cursor.execute(
                """
                SELECT * FROM notification_history
                ORDER BY sent_at DESC, rowid DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    def count_since(self, trigger_id: str, since: datetime) -> int:
        """Count attempts for a trigger, successful or not, sent at or after `since`."""
        with self.db.transaction("count_history") as cursor:
            cursor.execute(
                """
                SELECT COUNT(*) FROM notification_history
                WHERE trigger_id = ? AND sent_at >= ?
                """,
                (trigger_id, _to_db_time(since)),
            )
            return cursor.fetchone()[0]

    def count_all_since(self, since: datetime) -> int:
        """Count attempts across all triggers sent at or after `since`."""
        with self.db.transaction("count_all_history") as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM notification_history WHERE sent_at >= ?",
                (_to_db_time(since),),
            )
            return cursor.fetchone()[0]

    def count_all(self) -> int:
        """Total number of stored entries."""
        with self.db.transaction("count_all_history") as cursor:
            cursor.execute("SELECT COUNT(*) FROM notification_history")
            return cursor.fetchone()[0]

    def last_success_time(
        self, trigger_id: str, phone_number: str
    ) -> Optional[datetime]:
        """Time of the most recent successful send for a trigger and recipient."""
        with self.db.transaction("last_success_time") as cursor:
            cursor.execute(
                """
                SELECT MAX(sent_at) FROM notification_history
                WHERE trigger_id = ? AND phone_number = ? AND success = 1
                """,
                (trigger_id, phone_number),
            )
            value = cursor.fetchone()[0]
        return datetime.fromisoformat(value) if value else None

    def _row_to_entry(self, row) -> NotificationHistoryEntry:
        """Convert database row to NotificationHistoryEntry."""
        return NotificationHistoryEntry(
            id=row["id"],
            trigger_id=row["trigger_id"],
            simulator_id=row["simulator_id"],
            phone_number=row["phone_number"],
            threshold_percentage=row["threshold_percentage"],
            actual_percentage=row["actual_percentage"],
            success=bool(row["success"]),
            error_message=row["error_message"],
            sent_at=datetime.fromisoformat(row["sent_at"]),
            notification_type=row["notification_type"],
        )


class SettingsRepository:
    """Key-value store for the process-wide notification settings."""

    def __init__(self, db: Database, defaults: Optional[NotificationSettings] = None):
        self.db = db
        self.defaults = defaults or NotificationSettings()

    def get(self) -> NotificationSettings:
        """Load settings, falling back to defaults for keys never written."""
        with self.db.transaction("get_settings") as cursor:
            cursor.execute("SELECT key, value FROM notification_settings")
            stored = {row["key"]: json.loads(row["value"]) for row in cursor.fetchall()}

        return NotificationSettings(
            enabled_globally=stored.get("enabled_globally", self.defaults.enabled_globally),
            cooldown_minutes=stored.get("cooldown_minutes", self.defaults.cooldown_minutes),
            max_daily_notifications=stored.get(
                "max_daily_notifications", self.defaults.max_daily_notifications
            ),
        )

    def update(self, **updates: Any) -> NotificationSettings:
        """
        Validate and persist a partial settings update.

        Raises:
            ValidationError: On unknown keys or out-of-range values
        """
        normalized = validate_settings_update(updates)
        with self.db.transaction("update_settings") as cursor:
            cursor.executemany(
                """
                INSERT INTO notification_settings (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                [(key, json.dumps(value)) for key, value in normalized.items()],
            )
        return self.get()

"""
Filters for notification history listings.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional

from ems_alerts.database.models import NOTIFICATION_TYPES, NotificationHistoryEntry
from ems_alerts.errors import ValidationError

HistoryPredicate = Callable[[NotificationHistoryEntry], bool]

STATUSES = ("success", "failed")


def by_status(status: str) -> HistoryPredicate:
    """Match delivered ("success") or failed ("failed") attempts."""
    if status not in STATUSES:
        raise ValidationError(f"Unknown status filter: {status}", "status")
    wanted = status == "success"
    return lambda entry: entry.success is wanted


def by_type(notification_type: str) -> HistoryPredicate:
    if notification_type not in NOTIFICATION_TYPES:
        raise ValidationError(
            f"Unknown notification type: {notification_type}", "notification_type"
        )
    return lambda entry: entry.notification_type == notification_type


def in_range(
    since: Optional[datetime] = None, until: Optional[datetime] = None
) -> HistoryPredicate:
    """Match entries sent in [since, until). Either bound may be open."""
    return lambda entry: (since is None or entry.sent_at >= since) and (
        until is None or entry.sent_at < until
    )


def filter_history(
    entries: Iterable[NotificationHistoryEntry],
    status: Optional[str] = None,
    notification_type: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> list[NotificationHistoryEntry]:
    """Apply every given filter, keeping the input order."""
    predicates: list[HistoryPredicate] = []
    if status:
        predicates.append(by_status(status))
    if notification_type:
        predicates.append(by_type(notification_type))
    if since or until:
        predicates.append(in_range(since, until))

    return [e for e in entries if all(p(e) for p in predicates)]

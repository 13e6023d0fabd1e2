"""
Data models for the notification engine.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

NOTIFICATION_TYPE_THRESHOLD = "threshold"
NOTIFICATION_TYPE_STARTUP = "startup"
NOTIFICATION_TYPES = (NOTIFICATION_TYPE_THRESHOLD, NOTIFICATION_TYPE_STARTUP)


@dataclass
class Trigger:
    """A rule binding a simulator, a phone number and a usage threshold."""

    simulator_id: str
    phone_number: str
    threshold_percentage: float
    is_active: bool = True
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class NotificationHistoryEntry:
    """Immutable record of one notification attempt for one trigger."""

    trigger_id: str
    simulator_id: str
    phone_number: str  # snapshot at send time
    threshold_percentage: float  # snapshot at send time
    actual_percentage: float
    success: bool
    sent_at: datetime
    notification_type: str = NOTIFICATION_TYPE_THRESHOLD
    error_message: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class NotificationSettings:
    """Process-wide notification policy."""

    enabled_globally: bool = True
    cooldown_minutes: int = 15
    max_daily_notifications: int = 10


@dataclass(frozen=True)
class SystemStatus:
    """Summary shown on the notifications dashboard."""

    whatsapp_ready: bool
    total_triggers: int
    active_triggers: int
    notifications_enabled: bool
    recent_notifications: int

"""
Cooldown and rolling daily-cap checks shared by every dispatch path.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from ems_alerts.database.models import NotificationSettings, Trigger
from ems_alerts.database.repository import HistoryRepository

logger = logging.getLogger(__name__)

DAILY_WINDOW = timedelta(hours=24)


class RateLimiter:
    """
    Decides whether a trigger may send again, based on stored history.

    Cooldown is measured from the last successful send to the same phone
    number for the same trigger. The daily cap counts every attempt, success
    or failure, in the 24 hours before `now`.
    """

    def __init__(self, history_repo: HistoryRepository, settings: NotificationSettings):
        """
        Initialize rate limiter.

        Args:
            history_repo: History store to read past attempts from
            settings: Notification settings in effect; replaced wholesale when
                an operator changes them
        """
        self.history_repo = history_repo
        self.settings = settings

    def block_reason(self, trigger: Trigger, now: Optional[datetime] = None) -> Optional[str]:
        """
        Explain why `trigger` may not send at `now`, or return None if it may.

        Raises:
            StorageError: If history cannot be read
        """
        now = now or datetime.now()

        last_success = self.history_repo.last_success_time(
            trigger.id, trigger.phone_number
        )
        if last_success is not None:
            cooldown = timedelta(minutes=self.settings.cooldown_minutes)
            if now - last_success < cooldown:
                remaining = cooldown - (now - last_success)
                return (
                    "Cooldown period active "
                    f"({math.ceil(remaining.total_seconds() / 60)} min remaining)"
                )

        attempts = self.history_repo.count_since(trigger.id, now - DAILY_WINDOW)
        if attempts >= self.settings.max_daily_notifications:
            return (
                f"Daily limit reached ({attempts}/"
                f"{self.settings.max_daily_notifications} in the last 24h)"
            )

        return None

    def allows(self, trigger: Trigger, now: Optional[datetime] = None) -> bool:
        """Check whether `trigger` may send at `now`."""
        reason = self.block_reason(trigger, now)
        if reason:
            logger.debug(f"Trigger {trigger.id} blocked: {reason}")
            return False
        return True

"""
Startup notifications, sent once when a simulator's reading stream starts.
"""

import logging
from datetime import datetime
from typing import Optional

from ems_alerts.database.models import NOTIFICATION_TYPE_STARTUP
from ems_alerts.database.repository import TriggerRepository
from ems_alerts.errors import ValidationError
from ems_alerts.rules.engine import EligibleFire
from .dispatcher import DispatchResult, NotificationDispatcher

logger = logging.getLogger(__name__)

RUN_MODES = ("auto", "manual")


class StartupNotifier:
    """Notifies every active trigger's recipient that a simulator started."""

    def __init__(self, trigger_repo: TriggerRepository, dispatcher: NotificationDispatcher):
        self.trigger_repo = trigger_repo
        self.dispatcher = dispatcher

    def notify_startup(
        self,
        simulator_id: str,
        mode: str,
        simulator_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[DispatchResult]:
        """
        Send the startup notice for a simulator.

        No threshold comparison or edge detection is done; every active
        trigger is selected, then cooldown and the daily cap filter it like
        any other dispatch. Recipients shared by several triggers get one
        message and one history entry per trigger.

        Args:
            simulator_id: Simulator whose stream started
            mode: "auto" or "manual"
            simulator_name: Display name, defaults to the simulator id
            now: Send time, defaults to the current time

        Returns:
            Dispatch results, empty if the simulator has no active triggers
            or notifications are disabled

        Raises:
            ValidationError: If mode is not "auto" or "manual"
            StorageError: If the active triggers cannot be loaded
        """
        if mode not in RUN_MODES:
            raise ValidationError(f"Unknown run mode: {mode}", "mode")

        if not self.dispatcher.limiter.settings.enabled_globally:
            logger.info(f"Notifications disabled; skipping startup notice for {simulator_id}")
            return []

        triggers = self.trigger_repo.list_active_by_simulator(simulator_id)
        if not triggers:
            logger.info(f"No active triggers for simulator {simulator_id}")
            return []

        display_name = simulator_name or simulator_id
        message = self.dispatcher.formatter.startup_message(display_name, mode, now)
        fires = [EligibleFire(trigger=t, actual_percentage=0.0) for t in triggers]

        logger.info(
            f"Sending {mode} startup notice for {simulator_id} "
            f"to {len({t.phone_number for t in triggers})} recipient(s)"
        )
        return self.dispatcher.dispatch(
            fires,
            NOTIFICATION_TYPE_STARTUP,
            compose=lambda fire, sent_at: message,
            now=now,
        )

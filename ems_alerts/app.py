"""
Notification service: the entry point the rest of the dashboard talks to.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from ems_alerts.config import AppConfig
from ems_alerts.database.connection import Database
from ems_alerts.database.models import (
    NotificationHistoryEntry,
    NotificationSettings,
    SystemStatus,
    Trigger,
)
from ems_alerts.database.repository import (
    HistoryRepository,
    SettingsRepository,
    TriggerRepository,
)
from ems_alerts.errors import StorageError
from ems_alerts.history_filters import filter_history
from ems_alerts.notifiers.base import MessageTransport, TransportFactory
from ems_alerts.notifiers.dispatcher import DispatchResult, NotificationDispatcher
from ems_alerts.notifiers.messages import MessageFormatter
from ems_alerts.notifiers.startup import StartupNotifier
from ems_alerts.rules.engine import ThresholdEvaluator
from ems_alerts.rules.limits import RateLimiter

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(hours=24)


class NotificationService:
    """Wires stores, evaluator, dispatcher and startup notifier together."""

    def __init__(
        self,
        db: Database,
        transport: MessageTransport,
        defaults: Optional[NotificationSettings] = None,
        formatter: Optional[MessageFormatter] = None,
        history_limit: int = 100,
        hysteresis_percentage: float = 0.0,
    ):
        """
        Initialize the service.

        Args:
            db: Initialized database
            transport: Message transport used for every send
            defaults: Settings used until an operator stores their own
            formatter: Message formatter
            history_limit: Default number of history entries returned
            hysteresis_percentage: Re-arm band below each threshold
        """
        self.db = db
        self.history_limit = history_limit
        self._simulator_names: dict[str, str] = {}

        # Initialize repositories
        self.trigger_repo = TriggerRepository(db)
        self.history_repo = HistoryRepository(db)
        self.settings_repo = SettingsRepository(db, defaults)

        # Initialize services
        self.limiter = RateLimiter(self.history_repo, self.settings_repo.get())
        self.evaluator = ThresholdEvaluator(
            self.trigger_repo, self.limiter, hysteresis_percentage
        )
        self.dispatcher = NotificationDispatcher(
            transport,
            self.history_repo,
            self.limiter,
            formatter=formatter,
            simulator_names=self.simulator_name,
        )
        self.startup_notifier = StartupNotifier(self.trigger_repo, self.dispatcher)

    # Triggers

    def create_trigger(
        self,
        simulator_id: str,
        phone_number: str,
        threshold_percentage: float,
        is_active: bool = True,
    ) -> Trigger:
        trigger = self.trigger_repo.create(
            simulator_id, phone_number, threshold_percentage, is_active
        )
        logger.info(
            f"Created trigger {trigger.id} for {simulator_id} "
            f"at {trigger.threshold_percentage:g}%"
        )
        return trigger

    def update_trigger(self, trigger_id: str, **updates: Any) -> Trigger:
        return self.trigger_repo.update(trigger_id, **updates)

    def toggle_trigger(self, trigger_id: str, is_active: bool) -> Trigger:
        return self.trigger_repo.update(trigger_id, is_active=is_active)

    def bulk_toggle(self, simulator_id: str, is_active: bool) -> list[Trigger]:
        """Activate or deactivate every trigger of a simulator."""
        return [
            self.trigger_repo.update(t.id, is_active=is_active)
            for t in self.trigger_repo.list_by_simulator(simulator_id)
        ]

    def delete_trigger(self, trigger_id: str) -> None:
        self.trigger_repo.delete(trigger_id)
        logger.info(f"Deleted trigger {trigger_id}")

    def get_trigger(self, trigger_id: str) -> Optional[Trigger]:
        return self.trigger_repo.get(trigger_id)

    def list_triggers(self, simulator_id: Optional[str] = None) -> list[Trigger]:
        if simulator_id is None:
            return self.trigger_repo.list_all()
        return self.trigger_repo.list_by_simulator(simulator_id)

    # Settings

    def get_settings(self) -> NotificationSettings:
        return self.settings_repo.get()

    def update_settings(self, **updates: Any) -> NotificationSettings:
        """Validate, persist and apply new settings to every dispatch path."""
        settings = self.settings_repo.update(**updates)
        self.limiter.settings = settings
        logger.info(f"Notification settings updated: {settings}")
        return settings

    # Readings and streams

    def simulator_name(self, simulator_id: str) -> str:
        return self._simulator_names.get(simulator_id, simulator_id)

    def process_reading(
        self,
        simulator_id: str,
        actual_percentage: float,
        timestamp: Optional[datetime] = None,
    ) -> list[DispatchResult]:
        """
        Evaluate a reading and dispatch whatever it fires.

        Storage failures are logged and produce no notifications; the next
        reading evaluates again from unchanged edge memory.
        """
        try:
            fires = self.evaluator.evaluate(simulator_id, actual_percentage, now=timestamp)
        except StorageError as e:
            logger.error(f"Evaluation failed for {simulator_id}: {e}")
            return []

        if not fires:
            return []
        return self.dispatcher.dispatch(fires, now=timestamp)

    def on_stream_started(
        self,
        simulator_id: str,
        mode: str,
        simulator_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[DispatchResult]:
        """Record the simulator's display name and send the startup notice."""
        if simulator_name:
            self._simulator_names[simulator_id] = simulator_name
        try:
            return self.startup_notifier.notify_startup(
                simulator_id, mode, simulator_name, now=now
            )
        except StorageError as e:
            logger.error(f"Startup notification failed for {simulator_id}: {e}")
            return []

    def on_stream_stopped(self, simulator_id: str) -> None:
        """Forget edge memory so the next run starts like a fresh process."""
        self.evaluator.reset(simulator_id)

    # History

    def get_history(
        self,
        simulator_id: Optional[str] = None,
        limit: Optional[int] = None,
        status: Optional[str] = None,
        notification_type: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[NotificationHistoryEntry]:
        """List history newest first, optionally filtered."""
        limit = limit or self.history_limit
        if simulator_id is None:
            entries = self.history_repo.list_all(limit)
        else:
            entries = self.history_repo.list_by_simulator(simulator_id, limit)
        return filter_history(
            entries,
            status=status,
            notification_type=notification_type,
            since=since,
            until=until,
        )

    def retry(self, history_id: str) -> DispatchResult:
        return self.dispatcher.retry(history_id)

    def get_system_status(self, now: Optional[datetime] = None) -> SystemStatus:
        """Summarize gateway readiness, trigger counts and recent activity."""
        now = now or datetime.now()
        try:
            whatsapp_ready = self.dispatcher.transport.get_status().ready
        except Exception as e:
            logger.error(f"Error getting WhatsApp status: {e}")
            whatsapp_ready = False

        try:
            triggers = self.trigger_repo.list_all()
            settings = self.settings_repo.get()
            recent = self.history_repo.count_all_since(now - RECENT_WINDOW)
        except StorageError as e:
            logger.error(f"Error getting system status: {e}")
            return SystemStatus(
                whatsapp_ready=False,
                total_triggers=0,
                active_triggers=0,
                notifications_enabled=False,
                recent_notifications=0,
            )

        return SystemStatus(
            whatsapp_ready=whatsapp_ready,
            total_triggers=len(triggers),
            active_triggers=sum(1 for t in triggers if t.is_active),
            notifications_enabled=settings.enabled_globally,
            recent_notifications=recent,
        )


def create_service(
    config: AppConfig,
    transport: Optional[MessageTransport] = None,
    dry_run: bool = False,
) -> NotificationService:
    """Build a service from configuration."""
    db = Database(config.database.path, timeout=config.database.timeout_seconds)
    db.initialize()

    if transport is None:
        transport = TransportFactory.create(
            {
                "type": "log" if dry_run else "whatsapp",
                "api_url": config.whatsapp.api_url,
                "timeout_seconds": config.whatsapp.timeout_seconds,
            }
        )

    defaults = NotificationSettings(
        enabled_globally=config.notifications.enabled_globally,
        cooldown_minutes=config.notifications.cooldown_minutes,
        max_daily_notifications=config.notifications.max_daily_notifications,
    )
    return NotificationService(
        db,
        transport,
        defaults=defaults,
        formatter=MessageFormatter(template=config.notifications.template),
        history_limit=config.advanced.history_limit,
        hysteresis_percentage=config.notifications.hysteresis_percentage,
    )

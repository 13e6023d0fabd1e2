"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta

from ems_alerts.app import NotificationService
from ems_alerts.database.connection import Database
from ems_alerts.database.models import NotificationSettings
from ems_alerts.database.repository import (
    HistoryRepository,
    SettingsRepository,
    TriggerRepository,
)
from ems_alerts.notifiers.base import MessageTransport, SendResult, TransportStatus

T0 = datetime(2026, 3, 2, 9, 0, 0)


def minutes(n: float) -> datetime:
    """Time n minutes after T0."""
    return T0 + timedelta(minutes=n)


class FakeTransport(MessageTransport):
    """Records sends and answers with queued results (success by default)."""

    def __init__(self, ready: bool = True):
        self.sent: list[tuple[str, str]] = []
        self.results: list[SendResult] = []
        self.ready = ready

    def fail_next(self, error: str = "Gateway unavailable") -> None:
        self.results.append(SendResult(success=False, error=error))

    def send_message(self, to: str, message: str) -> SendResult:
        self.sent.append((to, message))
        if self.results:
            return self.results.pop(0)
        return SendResult(success=True, id=f"msg-{len(self.sent)}")

    def get_status(self) -> TransportStatus:
        return TransportStatus(ready=self.ready)


@pytest.fixture
def db():
    """Fresh in-memory database with schema."""
    database = Database(":memory:")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def trigger_repo(db):
    return TriggerRepository(db)


@pytest.fixture
def history_repo(db):
    return HistoryRepository(db)


@pytest.fixture
def settings_repo(db):
    return SettingsRepository(db)


@pytest.fixture
def settings():
    """Settings used by the reading scenarios."""
    return NotificationSettings(
        enabled_globally=True, cooldown_minutes=60, max_daily_notifications=5
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def service(db, transport, settings):
    """Notification service over the in-memory database and fake transport."""
    return NotificationService(db, transport, defaults=settings)


@pytest.fixture
def sample_phone_number():
    return "60123456789"

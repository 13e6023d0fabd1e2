"""
Integration tests for the notification service.
Tests the full flow from reading to transport call and history.
"""

import pytest
from datetime import datetime, timedelta

from conftest import T0, FakeTransport, minutes
from ems_alerts.app import NotificationService, create_service
from ems_alerts.config import AppConfig, DatabaseConfig, NotificationDefaultsConfig
from ems_alerts.database.models import NotificationSettings, SystemStatus
from ems_alerts.errors import NotFoundError, ValidationError
from ems_alerts.notifiers.whatsapp import LoggingTransport

SIM_1_READINGS = [50, 85, 90, 40, 95]


class TestReadingScenario:
    """sim-1: one trigger at 80%, cooldown 60 min, cap 5, readings one minute apart."""

    @pytest.fixture
    def trigger(self, service: NotificationService, sample_phone_number):
        return service.create_trigger("sim-1", sample_phone_number, 80)

    def replay(self, service: NotificationService):
        fired = {}
        for t, pct in enumerate(SIM_1_READINGS):
            results = service.process_reading("sim-1", pct, minutes(t))
            if results:
                fired[t] = results
        return fired

    def test_two_attempts_when_first_send_fails(
        self, service: NotificationService, transport: FakeTransport, trigger
    ):
        """Should fire at t=1 and t=4, since a failed send starts no cooldown."""
        transport.fail_next("Gateway unavailable")

        fired = self.replay(service)

        assert sorted(fired) == [1, 4]
        assert fired[1][0].success is False
        assert fired[4][0].success is True
        assert len(transport.sent) == 2

        history = service.get_history("sim-1")
        assert len(history) == 2
        assert all(e.notification_type == "threshold" for e in history)
        assert [e.actual_percentage for e in history] == [95, 85]

    def test_cooldown_holds_back_second_edge(
        self, service: NotificationService, transport: FakeTransport, trigger
    ):
        """Should not resend at t=4 when the t=1 send succeeded within the cooldown."""
        fired = self.replay(service)

        assert sorted(fired) == [1]
        assert len(transport.sent) == 1
        assert len(service.get_history("sim-1")) == 1

    def test_short_cooldown_allows_both_edges(
        self, service: NotificationService, transport: FakeTransport, trigger
    ):
        """Should fire on both rising edges once the cooldown has elapsed."""
        service.update_settings(cooldown_minutes=1)

        fired = self.replay(service)

        assert sorted(fired) == [1, 4]
        assert all(r.success for results in fired.values() for r in results)

    def test_transport_crash_recorded(self, db, sample_phone_number):
        """Should record both fires when the transport raises on the second phone."""

        class FlakyTransport(FakeTransport):
            def send_message(self, to, message):
                if self.sent:
                    raise TimeoutError("socket read timed out")
                return super().send_message(to, message)

        service = NotificationService(db, FlakyTransport())
        service.create_trigger("sim-1", sample_phone_number, 80)
        service.create_trigger("sim-1", "60198765432", 80)

        results = service.process_reading("sim-1", 90, T0)

        assert sorted(r.success for r in results) == [False, True]
        assert len(service.get_history("sim-1")) == 2

    def test_storage_failure_sends_nothing(
        self, service: NotificationService, transport: FakeTransport, trigger
    ):
        """Should log and return no results when the store is unreachable."""
        service.db.close()

        assert service.process_reading("sim-1", 95, T0) == []
        assert transport.sent == []


class TestStartupScenario:
    """Test the stream-start path through the service."""

    def test_one_active_one_inactive(
        self, service: NotificationService, transport: FakeTransport
    ):
        """Should send one startup notice for the active trigger only."""
        service.create_trigger("sim-1", "60123456789", 80)
        service.create_trigger("sim-1", "60198765432", 90, is_active=False)

        results = service.on_stream_started("sim-1", "auto", "Factory A", now=T0)

        assert len(results) == 1
        assert len(transport.sent) == 1
        [entry] = service.get_history("sim-1")
        assert entry.notification_type == "startup"

    def test_name_used_for_threshold_alerts(
        self, service: NotificationService, transport: FakeTransport
    ):
        """Should word later threshold alerts with the registered name."""
        service.create_trigger("sim-1", "60123456789", 80)
        service.update_settings(cooldown_minutes=1)
        service.on_stream_started("sim-1", "manual", "Factory A", now=minutes(0))

        service.process_reading("sim-1", 95, minutes(5))

        assert "EMS Alert: Factory A" in transport.sent[-1][1]

    def test_stream_stop_resets_edge_memory(
        self, service: NotificationService, transport: FakeTransport
    ):
        """Should treat the next run's first high reading as a crossing."""
        service.create_trigger("sim-1", "60123456789", 80)
        service.update_settings(cooldown_minutes=1)

        service.process_reading("sim-1", 95, minutes(0))
        service.on_stream_stopped("sim-1")
        results = service.process_reading("sim-1", 95, minutes(10))

        assert len(results) == 1
        assert len(transport.sent) == 2

    def test_unknown_mode(self, service: NotificationService):
        """Should surface a bad run mode to the caller."""
        with pytest.raises(ValidationError):
            service.on_stream_started("sim-1", "turbo")


class TestTriggerManagement:
    """Test trigger operations exposed by the service."""

    def test_crud(self, service: NotificationService):
        """Should create, update, toggle and delete triggers."""
        trigger = service.create_trigger("sim-1", "60123456789", 80)

        updated = service.update_trigger(trigger.id, threshold_percentage=85)
        assert updated.threshold_percentage == 85.0

        toggled = service.toggle_trigger(trigger.id, False)
        assert toggled.is_active is False
        assert service.get_trigger(trigger.id).is_active is False

        service.delete_trigger(trigger.id)
        assert service.list_triggers() == []
        with pytest.raises(NotFoundError):
            service.delete_trigger(trigger.id)

    def test_bulk_toggle(self, service: NotificationService):
        """Should toggle every trigger of one simulator."""
        service.create_trigger("sim-1", "60123456789", 80)
        service.create_trigger("sim-1", "60123456789", 90)
        other = service.create_trigger("sim-2", "60123456789", 80)

        changed = service.bulk_toggle("sim-1", False)

        assert len(changed) == 2
        assert all(not t.is_active for t in service.list_triggers("sim-1"))
        assert service.get_trigger(other.id).is_active is True

    def test_settings_update_applies_immediately(
        self, service: NotificationService, transport: FakeTransport
    ):
        """Should stop evaluating once notifications are switched off."""
        service.create_trigger("sim-1", "60123456789", 80)
        service.update_settings(enabled_globally=False)

        assert service.process_reading("sim-1", 95, T0) == []
        assert service.on_stream_started("sim-1", "auto", now=T0) == []
        assert transport.sent == []
        assert service.get_settings().enabled_globally is False

    def test_invalid_settings(self, service: NotificationService):
        """Should reject invalid settings and keep the current ones."""
        with pytest.raises(ValidationError):
            service.update_settings(cooldown_minutes=5000)
        assert service.limiter.settings.cooldown_minutes == 60


class TestHistoryAndRetry:
    """Test history listing and operator retry."""

    def test_filtered_history(self, service: NotificationService, transport: FakeTransport):
        """Should filter history by status."""
        service.create_trigger("sim-1", "60123456789", 80)
        transport.fail_next()
        service.process_reading("sim-1", 95, minutes(0))
        service.process_reading("sim-1", 40, minutes(1))
        service.process_reading("sim-1", 95, minutes(2))

        assert len(service.get_history("sim-1")) == 2
        assert len(service.get_history("sim-1", status="failed")) == 1
        assert len(service.get_history(status="success")) == 1
        assert len(service.get_history("sim-1", limit=1)) == 1

    def test_retry(self, service: NotificationService, transport: FakeTransport):
        """Should resend a failed notification."""
        service.create_trigger("sim-1", "60123456789", 80)
        transport.fail_next()
        [failed] = service.process_reading("sim-1", 95, T0)

        result = service.retry(failed.history_id)

        assert result.success is True
        assert len(service.get_history("sim-1")) == 2


class TestSystemStatus:
    """Test the dashboard status summary."""

    def test_status(self, service: NotificationService):
        """Should combine gateway, trigger, settings and history state."""
        service.create_trigger("sim-1", "60123456789", 80)
        service.create_trigger("sim-1", "60123456789", 90, is_active=False)
        now = datetime.now()
        service.process_reading("sim-1", 85, now - timedelta(hours=1))
        service.process_reading("sim-1", 50, now - timedelta(minutes=30))

        assert service.get_system_status(now) == SystemStatus(
            whatsapp_ready=True,
            total_triggers=2,
            active_triggers=1,
            notifications_enabled=True,
            recent_notifications=1,
        )

    def test_old_history_not_recent(self, service: NotificationService):
        """Should only count the last 24 hours."""
        service.create_trigger("sim-1", "60123456789", 80)
        service.process_reading("sim-1", 85, T0)

        status = service.get_system_status(T0 + timedelta(hours=25))
        assert status.recent_notifications == 0

    def test_gateway_not_ready(self, db):
        """Should report the gateway state."""
        service = NotificationService(db, FakeTransport(ready=False))
        assert service.get_system_status().whatsapp_ready is False

    def test_status_check_error_degrades(self, db):
        """Should report the gateway as not ready when its status check raises."""

        class BrokenStatusTransport(FakeTransport):
            def get_status(self):
                raise TimeoutError("status timed out")

        service = NotificationService(db, BrokenStatusTransport())
        service.create_trigger("sim-1", "60123456789", 80)

        status = service.get_system_status()

        assert status.whatsapp_ready is False
        assert status.total_triggers == 1

    def test_storage_failure_degrades(self, service: NotificationService):
        """Should fall back to an all-false status when the store fails."""
        service.db.close()

        assert service.get_system_status() == SystemStatus(
            whatsapp_ready=False,
            total_triggers=0,
            active_triggers=0,
            notifications_enabled=False,
            recent_notifications=0,
        )


class TestCreateService:
    """Test building the service from configuration."""

    def test_from_config(self):
        """Should apply configured defaults and use the given transport."""
        config = AppConfig(
            database=DatabaseConfig(path=":memory:"),
            notifications=NotificationDefaultsConfig(
                cooldown_minutes=5,
                max_daily_notifications=2,
                template="simple",
                hysteresis_percentage=3,
            ),
        )
        transport = FakeTransport()

        service = create_service(config, transport=transport)

        assert service.get_settings() == NotificationSettings(
            enabled_globally=True, cooldown_minutes=5, max_daily_notifications=2
        )
        service.create_trigger("sim-1", "60123456789", 80)
        service.process_reading("sim-1", 90, T0)
        assert transport.sent[0][1].startswith("⚡ sim-1: 90.0% usage")
        assert service.evaluator.hysteresis_percentage == 3.0
        service.db.close()

    def test_dry_run_uses_logging_transport(self):
        """Should log instead of sending in dry-run mode."""
        config = AppConfig(database=DatabaseConfig(path=":memory:"))
        service = create_service(config, dry_run=True)

        assert isinstance(service.dispatcher.transport, LoggingTransport)
        service.db.close()

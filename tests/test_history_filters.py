"""
History filter tests.
"""

import pytest

from conftest import T0, minutes
from ems_alerts.database.models import NotificationHistoryEntry
from ems_alerts.errors import ValidationError
from ems_alerts.history_filters import by_status, by_type, filter_history, in_range


def entry(sent_at, success=True, notification_type="threshold"):
    return NotificationHistoryEntry(
        trigger_id="trigger-1",
        simulator_id="sim-1",
        phone_number="60123456789",
        threshold_percentage=80.0,
        actual_percentage=0.0 if notification_type == "startup" else 85.0,
        success=success,
        error_message=None if success else "Gateway unavailable",
        sent_at=sent_at,
        notification_type=notification_type,
    )


@pytest.fixture
def entries():
    """Newest first, as the history store returns them."""
    return [
        entry(minutes(30), success=False),
        entry(minutes(20), notification_type="startup"),
        entry(minutes(10)),
        entry(minutes(0), success=False, notification_type="startup"),
    ]


class TestPredicates:
    """Test individual filter predicates."""

    def test_by_status(self, entries):
        """Should split delivered and failed attempts."""
        assert [e.sent_at for e in entries if by_status("failed")(e)] == [
            minutes(30),
            minutes(0),
        ]
        assert sum(1 for e in entries if by_status("success")(e)) == 2

    def test_by_type(self, entries):
        """Should match the notification type."""
        assert sum(1 for e in entries if by_type("startup")(e)) == 2

    def test_in_range_half_open(self, entries):
        """Should include the start and exclude the end."""
        matches = [e.sent_at for e in entries if in_range(minutes(10), minutes(30))(e)]
        assert matches == [minutes(20), minutes(10)]

    def test_open_bounds(self, entries):
        """Should treat a missing bound as unlimited."""
        assert len([e for e in entries if in_range(since=minutes(20))(e)]) == 2
        assert len([e for e in entries if in_range(until=minutes(20))(e)]) == 2

    def test_unknown_values(self):
        """Should reject unknown status and type filters."""
        with pytest.raises(ValidationError):
            by_status("pending")
        with pytest.raises(ValidationError):
            by_type("digest")


class TestFilterHistory:
    """Test combined filtering."""

    def test_no_filters(self, entries):
        """Should return every entry in order."""
        assert filter_history(entries) == entries

    def test_combined(self, entries):
        """Should apply all filters together, keeping order."""
        result = filter_history(
            entries, status="failed", notification_type="startup", until=minutes(5)
        )
        assert result == [entries[3]]

    def test_time_range(self, entries):
        """Should filter by time range."""
        assert filter_history(entries, since=T0, until=minutes(15)) == entries[2:]

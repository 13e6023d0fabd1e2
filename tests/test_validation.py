"""
Validation helper tests.
"""

import pytest

from ems_alerts.errors import ValidationError
from ems_alerts.validation import (
    format_phone_number_for_display,
    is_valid_phone_number,
    normalize_phone_number,
    normalize_threshold,
    phone_numbers_equal,
    validate_settings_update,
    validate_simulator_id,
)


class TestPhoneNumbers:
    """Test phone number normalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("60123456789", "60123456789"),
            ("+60 12-345 6789", "60123456789"),
            ("(601) 234-56789", "60123456789"),
            ("123456789012345", "123456789012345"),
        ],
    )
    def test_valid_numbers(self, raw, expected):
        """Should strip separators and keep the digits."""
        assert normalize_phone_number(raw) == expected

    @pytest.mark.parametrize(
        "raw", ["123", "", None, "601234567890123456", "60123abc789", 60123456789]
    )
    def test_invalid_numbers(self, raw):
        """Should reject short, long, empty and non-numeric values."""
        with pytest.raises(ValidationError) as exc_info:
            normalize_phone_number(raw)
        assert exc_info.value.field == "phone_number"

    def test_is_valid_phone_number(self):
        """Should report validity without raising."""
        assert is_valid_phone_number("60123456789")
        assert not is_valid_phone_number("123")

    def test_phone_numbers_equal(self):
        """Should compare numbers ignoring formatting."""
        assert phone_numbers_equal("+60 123 456 789", "60123456789")
        assert not phone_numbers_equal("60123456789", "60123456780")
        assert not phone_numbers_equal("123", "123")

    def test_format_for_display(self):
        """Should group digits and leave invalid input as is."""
        assert format_phone_number_for_display("60123456789") == "601 234 567 89"
        assert format_phone_number_for_display("123") == "123"


class TestThresholds:
    """Test threshold normalization."""

    @pytest.mark.parametrize(
        "raw,expected", [(80, 80.0), ("85.5", 85.5), (0.04 + 0.1, 0.1), (200, 200.0)]
    )
    def test_valid_thresholds(self, raw, expected):
        """Should accept positive values up to 200, rounded to one decimal."""
        assert normalize_threshold(raw) == expected

    @pytest.mark.parametrize("raw", [0, -1, 200.1, "abc", None, "", True, float("nan")])
    def test_invalid_thresholds(self, raw):
        """Should reject missing, non-numeric, non-positive and oversized values."""
        with pytest.raises(ValidationError):
            normalize_threshold(raw)


class TestSimulatorIds:
    """Test simulator id validation."""

    def test_valid_id(self):
        """Should accept letters, digits, hyphens and underscores."""
        assert validate_simulator_id("factory_A-01") == "factory_A-01"

    @pytest.mark.parametrize("raw", ["", "   ", "sim 1", "sim/1", "x" * 101, None])
    def test_invalid_ids(self, raw):
        """Should reject empty, oversized and punctuated ids."""
        with pytest.raises(ValidationError):
            validate_simulator_id(raw)


class TestSettingsUpdate:
    """Test settings validation."""

    def test_valid_update(self):
        """Should normalize whole-number floats to int."""
        assert validate_settings_update(
            {"cooldown_minutes": 30.0, "max_daily_notifications": 5}
        ) == {"cooldown_minutes": 30, "max_daily_notifications": 5}

    def test_bounds_are_inclusive(self):
        """Should accept the range limits."""
        assert validate_settings_update(
            {"cooldown_minutes": 1440, "max_daily_notifications": 1}
        ) == {"cooldown_minutes": 1440, "max_daily_notifications": 1}

    @pytest.mark.parametrize(
        "updates",
        [
            {"cooldown_minutes": 0},
            {"cooldown_minutes": 15.5},
            {"cooldown_minutes": "15"},
            {"max_daily_notifications": 0},
            {"max_daily_notifications": True},
            {"enabled_globally": 1},
            {"unknown": 1},
        ],
    )
    def test_invalid_update(self, updates):
        """Should reject out-of-range, wrongly typed and unknown values."""
        with pytest.raises(ValidationError):
            validate_settings_update(updates)

    def test_error_names_field(self):
        """Should name the offending field."""
        with pytest.raises(ValidationError) as exc_info:
            validate_settings_update({"max_daily_notifications": 500})
        assert exc_info.value.field == "max_daily_notifications"

"""
Validation helpers for triggers and notification settings.

Every function here either returns a normalized value or raises
ValidationError naming the offending field.
"""

import math
import re
from typing import Any

from ems_alerts.errors import ValidationError

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
THRESHOLD_MAX = 200.0
SIMULATOR_ID_MAX_LENGTH = 100

COOLDOWN_RANGE = (1, 1440)
MAX_DAILY_RANGE = (1, 100)

_PHONE_SEPARATORS = re.compile(r"[\s\-\(\)\+]")
_SIMULATOR_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


def normalize_phone_number(phone_number: Any) -> str:
    """
    Validate a phone number and return its international digit form.

    Spaces, dashes, parentheses and a leading plus are stripped; what remains
    must be 10-15 digits including the country code.

    Raises:
        ValidationError: If the number is missing or malformed
    """
    if not phone_number or not isinstance(phone_number, str):
        raise ValidationError("Phone number is required", "phone_number")

    cleaned = _PHONE_SEPARATORS.sub("", phone_number)
    if not cleaned.isdigit() or not cleaned.isascii():
        raise ValidationError(
            "Phone number can only contain digits", "phone_number"
        )

    if not PHONE_MIN_DIGITS <= len(cleaned) <= PHONE_MAX_DIGITS:
        raise ValidationError(
            f"Phone number must be {PHONE_MIN_DIGITS}-{PHONE_MAX_DIGITS} digits "
            "including country code",
            "phone_number",
        )

    return cleaned


def is_valid_phone_number(phone_number: Any) -> bool:
    """Check a phone number without raising."""
    try:
        normalize_phone_number(phone_number)
    except ValidationError:
        return False
    return True


def phone_numbers_equal(first: str, second: str) -> bool:
    """Compare two phone numbers ignoring formatting. Invalid numbers never match."""
    try:
        return normalize_phone_number(first) == normalize_phone_number(second)
    except ValidationError:
        return False


def format_phone_number_for_display(phone_number: str) -> str:
    """Group digits for display, e.g. 60123456789 -> 601 234 567 89."""
    try:
        number = normalize_phone_number(phone_number)
    except ValidationError:
        return phone_number

    if len(number) <= 13:
        return re.sub(r"^(\d{1,3})(\d{3})(\d{3})(\d+)$", r"\1 \2 \3 \4", number)
    return number


def normalize_threshold(threshold: Any) -> float:
    """
    Validate a threshold percentage and round it to one decimal place.

    Raises:
        ValidationError: If the value is missing, not numeric, not positive
            or above 200
    """
    if threshold is None or threshold == "" or isinstance(threshold, bool):
        raise ValidationError(
            "Threshold percentage is required", "threshold_percentage"
        )

    try:
        value = float(threshold)
    except (TypeError, ValueError):
        raise ValidationError(
            "Threshold must be a valid number", "threshold_percentage"
        )

    if math.isnan(value) or value <= 0:
        raise ValidationError(
            "Threshold must be greater than 0%", "threshold_percentage"
        )

    if value > THRESHOLD_MAX:
        raise ValidationError(
            f"Threshold cannot exceed {THRESHOLD_MAX:g}%", "threshold_percentage"
        )

    return round(value, 1)


def normalize_hysteresis(hysteresis: Any) -> float:
    """
    Validate the re-arm band below a threshold, in percentage points.

    Raises:
        ValidationError: If the value is not a number in [0, 200]
    """
    if isinstance(hysteresis, bool) or not isinstance(hysteresis, (int, float)):
        raise ValidationError(
            "Hysteresis must be a number", "hysteresis_percentage"
        )
    if math.isnan(hysteresis) or not 0 <= hysteresis <= THRESHOLD_MAX:
        raise ValidationError(
            f"Hysteresis must be between 0 and {THRESHOLD_MAX:g}",
            "hysteresis_percentage",
        )
    return float(hysteresis)


def validate_simulator_id(simulator_id: Any) -> str:
    """Validate a simulator identifier."""
    if not simulator_id or not isinstance(simulator_id, str) or not simulator_id.strip():
        raise ValidationError("Simulator ID is required", "simulator_id")

    if len(simulator_id) > SIMULATOR_ID_MAX_LENGTH:
        raise ValidationError(
            f"Simulator ID is too long (max {SIMULATOR_ID_MAX_LENGTH} characters)",
            "simulator_id",
        )

    if not _SIMULATOR_ID_PATTERN.match(simulator_id):
        raise ValidationError(
            "Simulator ID can only contain letters, numbers, hyphens, and underscores",
            "simulator_id",
        )

    return simulator_id


def validate_is_active(is_active: Any) -> bool:
    """Ensure the active flag is a real boolean."""
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean", "is_active")
    return is_active


def _validate_int_range(value: Any, field: str, label: str, bounds: tuple[int, int]) -> int:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{label} must be a number", field)
    if isinstance(value, float) and (math.isnan(value) or not value.is_integer()):
        raise ValidationError(f"{label} must be a whole number", field)
    if not low <= value <= high:
        raise ValidationError(f"{label} must be between {low} and {high}", field)
    return int(value)


def validate_settings_update(updates: dict[str, Any]) -> dict[str, Any]:
    """
    Validate a partial settings update.

    Args:
        updates: Mapping with any of enabled_globally, cooldown_minutes,
            max_daily_notifications

    Returns:
        The normalized update mapping

    Raises:
        ValidationError: On unknown keys or out-of-range values
    """
    if not isinstance(updates, dict):
        raise ValidationError("Settings must be a mapping", "settings")

    known = {"enabled_globally", "cooldown_minutes", "max_daily_notifications"}
    unknown = set(updates) - known
    if unknown:
        raise ValidationError(
            f"Unknown settings: {', '.join(sorted(unknown))}", "settings"
        )

    normalized: dict[str, Any] = {}

    if "enabled_globally" in updates:
        if not isinstance(updates["enabled_globally"], bool):
            raise ValidationError(
                "Enabled globally must be a boolean", "enabled_globally"
            )
        normalized["enabled_globally"] = updates["enabled_globally"]

    if "cooldown_minutes" in updates:
        normalized["cooldown_minutes"] = _validate_int_range(
            updates["cooldown_minutes"],
            "cooldown_minutes",
            "Cooldown minutes",
            COOLDOWN_RANGE,
        )

    if "max_daily_notifications" in updates:
        normalized["max_daily_notifications"] = _validate_int_range(
            updates["max_daily_notifications"],
            "max_daily_notifications",
            "Max daily notifications",
            MAX_DAILY_RANGE,
        )

    return normalized

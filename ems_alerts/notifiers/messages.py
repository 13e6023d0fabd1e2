"""
Alert message templates.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

THRESHOLD_TEMPLATES = {
    "default": (
        "🚨 EMS Alert: {simulator_name}\n"
        "\n"
        "Current Usage: {current_percentage}% of target\n"
        "Threshold: {threshold_percentage}%\n"
        "\n"
        "Time: {timestamp}\n"
        "\n"
        "Please check your energy consumption and take appropriate action."
    ),
    "simple": (
        "⚡ {simulator_name}: {current_percentage}% usage "
        "(threshold: {threshold_percentage}%)"
    ),
    "detailed": (
        "🚨 ENERGY ALERT 🚨\n"
        "\n"
        "Facility: {simulator_name}\n"
        "Alert Time: {timestamp}\n"
        "\n"
        "USAGE DETAILS:\n"
        "• Current: {current_percentage}%\n"
        "• Threshold: {threshold_percentage}%\n"
        "\n"
        "STATUS: THRESHOLD EXCEEDED\n"
        "Action required to prevent overconsumption."
    ),
    "urgent": (
        "🔴 URGENT: {simulator_name} at {current_percentage}%!\n"
        "\n"
        "Immediate action required.\n"
        "Contact facility manager immediately."
    ),
}

STARTUP_TEMPLATE = (
    "🚀 EMS Simulator Started!\n"
    "\n"
    "Simulator: {simulator_name}\n"
    "Mode: {mode}\n"
    "Started: {timestamp}\n"
    "\n"
    "Your energy simulator is now running and generating data. "
    "You'll receive threshold alerts as configured."
)

MODE_LABELS = {"auto": "Auto Run", "manual": "Manual Run", "resend": "Resent by operator"}


@dataclass
class MessageContext:
    """Values available to threshold templates."""

    simulator_name: str
    current_percentage: float
    threshold_percentage: float
    timestamp: datetime


class MessageFormatter:
    """Renders threshold and startup messages."""

    def __init__(self, template: str = "default", custom_templates: Optional[dict[str, str]] = None):
        self.templates = dict(THRESHOLD_TEMPLATES)
        if custom_templates:
            self.templates.update(custom_templates)
        self.template = template

    def threshold_message(self, context: MessageContext, template: Optional[str] = None) -> str:
        """Format a threshold alert. Unknown template ids fall back to default."""
        body = self.templates.get(template or self.template, self.templates["default"])
        return body.format(
            simulator_name=context.simulator_name,
            current_percentage=f"{context.current_percentage:.1f}",
            threshold_percentage=f"{context.threshold_percentage:g}",
            timestamp=context.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        )

    def startup_message(
        self, simulator_name: str, mode: str, timestamp: Optional[datetime] = None
    ) -> str:
        """Format the notice sent when a simulator's reading stream starts."""
        timestamp = timestamp or datetime.now()
        return STARTUP_TEMPLATE.format(
            simulator_name=simulator_name,
            mode=MODE_LABELS.get(mode, mode),
            timestamp=timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        )

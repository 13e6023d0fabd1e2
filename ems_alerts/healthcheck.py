"""
Health check - reports trigger/history state and optionally sends it over WhatsApp.
"""

import logging
import os
from datetime import datetime

from dotenv import load_dotenv

from ems_alerts.app import NotificationService
from ems_alerts.errors import StorageError

logger = logging.getLogger(__name__)

HISTORY_WARNING_SIZE = 1000


def collect_health(service: NotificationService) -> dict:
    """
    Gather counts and warnings for the store and the gateway.

    Args:
        service: Notification service (database already initialized)

    Returns:
        Dict with "healthy", "issues" and "stats" keys
    """
    issues = []
    stats = {}

    status = service.get_system_status()
    stats["total_triggers"] = status.total_triggers
    stats["active_triggers"] = status.active_triggers
    stats["recent_notifications"] = status.recent_notifications
    stats["notifications_enabled"] = status.notifications_enabled
    stats["whatsapp_ready"] = status.whatsapp_ready

    try:
        stats["history_entries"] = service.history_repo.count_all()
    except StorageError as e:
        logger.error(f"Could not count history entries: {e}")
        issues.append(f"Storage error: {e}")
        stats["history_entries"] = 0

    if stats["history_entries"] > HISTORY_WARNING_SIZE:
        issues.append(
            f"Large history ({stats['history_entries']} entries) may slow queries"
        )
    if not status.whatsapp_ready:
        issues.append("WhatsApp gateway is not ready")
    if not status.notifications_enabled:
        issues.append("Notifications are disabled globally")

    return {"healthy": not issues, "issues": issues, "stats": stats}


def format_report(report: dict) -> str:
    stats = report["stats"]
    lines = [
        "EMS Alerts Health Check",
        "",
        f"Status: {'OK' if report['healthy'] else 'ATTENTION'}",
        f"Triggers: {stats['active_triggers']} active / {stats['total_triggers']} total",
        f"Notifications (24h): {stats['recent_notifications']}",
        f"History entries: {stats['history_entries']}",
        f"WhatsApp ready: {'yes' if stats['whatsapp_ready'] else 'no'}",
    ]
    if report["issues"]:
        lines.append("")
        lines.extend(f"- {issue}" for issue in report["issues"])
    return "\n".join(lines)


def run_healthcheck(service: NotificationService) -> dict:
    """Run health check and send the report to HEALTHCHECK_PHONE_NUMBER if set.

    Args:
        service: Notification service (database already initialized)
    """
    report = collect_health(service)
    text = format_report(report)
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(text)

    phone_number = os.getenv("HEALTHCHECK_PHONE_NUMBER")
    if not phone_number:
        print("HEALTHCHECK_PHONE_NUMBER not set")
        return report

    result = service.dispatcher.transport.send_message(phone_number, text)
    if result.success:
        print(f"{now} - Health check sent to {phone_number}")
    else:
        print(f"{now} - Health check failed: {result.error}")
    return report


def main():
    """CLI entry point."""
    import argparse

    from ems_alerts.app import create_service
    from ems_alerts.config import load_config

    load_dotenv()

    parser = argparse.ArgumentParser(description="EMS alerts health check")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    service = create_service(load_config(args.config))
    try:
        run_healthcheck(service)
    finally:
        service.db.close()


if __name__ == "__main__":
    main()

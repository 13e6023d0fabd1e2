"""
CLI commands for managing EMS notification triggers.
"""

import argparse
import sys
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from ems_alerts.app import NotificationService, create_service
from ems_alerts.config import AppConfig, DatabaseConfig, load_config
from ems_alerts.database.models import NotificationHistoryEntry, Trigger
from ems_alerts.errors import NotificationError
from ems_alerts.validation import format_phone_number_for_display


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"Expected a boolean, got {value!r}")


def _parse_time(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected an ISO timestamp, got {value!r}")


def format_trigger(trigger: Trigger) -> str:
    state = "active" if trigger.is_active else "inactive"
    return (
        f"{trigger.id}  {trigger.simulator_id}  "
        f"{format_phone_number_for_display(trigger.phone_number)}  "
        f"{trigger.threshold_percentage:g}%  {state}"
    )


def format_history_entry(entry: NotificationHistoryEntry) -> str:
    status = "sent" if entry.success else f"FAILED ({entry.error_message})"
    return (
        f"{entry.sent_at:%Y-%m-%d %H:%M:%S}  {entry.id}  {entry.notification_type}  "
        f"{entry.simulator_id}  {entry.phone_number}  "
        f"{entry.actual_percentage:.1f}%/{entry.threshold_percentage:g}%  {status}"
    )


def update_settings(
    service: NotificationService,
    enabled: Optional[bool] = None,
    cooldown: Optional[int] = None,
    max_daily: Optional[int] = None,
):
    """Apply only the settings that were given on the command line."""
    updates = {}
    if enabled is not None:
        updates["enabled_globally"] = enabled
    if cooldown is not None:
        updates["cooldown_minutes"] = cooldown
    if max_daily is not None:
        updates["max_daily_notifications"] = max_daily
    if not updates:
        return service.get_settings()
    return service.update_settings(**updates)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="EMS alerts CLI")
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument("--db", default="data/ems_alerts.db", help="Database path")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Trigger commands
    triggers_parser = subparsers.add_parser("triggers", help="Trigger management")
    triggers_subparsers = triggers_parser.add_subparsers(dest="action")

    add_parser = triggers_subparsers.add_parser("add", help="Add trigger")
    add_parser.add_argument("--simulator", required=True, help="Simulator ID")
    add_parser.add_argument("--phone", required=True, help="Recipient phone number")
    add_parser.add_argument(
        "--threshold", type=float, required=True, help="Threshold percentage"
    )
    add_parser.add_argument(
        "--inactive", action="store_true", help="Create the trigger disabled"
    )

    list_parser = triggers_subparsers.add_parser("list", help="List triggers")
    list_parser.add_argument("--simulator", help="Simulator ID filter")

    update_parser = triggers_subparsers.add_parser("update", help="Update trigger")
    update_parser.add_argument("id", help="Trigger ID")
    update_parser.add_argument("--phone", help="Recipient phone number")
    update_parser.add_argument("--threshold", type=float, help="Threshold percentage")

    toggle_parser = triggers_subparsers.add_parser("toggle", help="Enable or disable")
    toggle_parser.add_argument("id", nargs="?", help="Trigger ID")
    toggle_parser.add_argument("--simulator", help="Toggle every trigger of a simulator")
    toggle_parser.add_argument("--active", type=_parse_bool, required=True)

    delete_parser = triggers_subparsers.add_parser("delete", help="Delete trigger")
    delete_parser.add_argument("id", help="Trigger ID")

    # Settings commands
    settings_parser = subparsers.add_parser("settings", help="Notification settings")
    settings_subparsers = settings_parser.add_subparsers(dest="action")
    settings_subparsers.add_parser("show", help="Show settings")
    set_parser = settings_subparsers.add_parser("set", help="Change settings")
    set_parser.add_argument("--enabled", type=_parse_bool, help="Global switch")
    set_parser.add_argument("--cooldown", type=int, help="Cooldown in minutes")
    set_parser.add_argument("--max-daily", type=int, help="Attempts per 24h")

    # History commands
    history_parser = subparsers.add_parser("history", help="Notification history")
    history_parser.add_argument("--simulator", help="Simulator ID filter")
    history_parser.add_argument("--limit", type=int, help="Maximum entries")
    history_parser.add_argument("--status", choices=["success", "failed"])
    history_parser.add_argument("--type", choices=["threshold", "startup"])
    history_parser.add_argument("--since", type=_parse_time, help="ISO start time")
    history_parser.add_argument("--until", type=_parse_time, help="ISO end time")

    retry_parser = subparsers.add_parser("retry", help="Resend a failed notification")
    retry_parser.add_argument("id", help="History entry ID")

    subparsers.add_parser("status", help="Show system status")

    # DB commands
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="action")
    db_subparsers.add_parser("status", help="Show table counts")
    db_subparsers.add_parser("migrate", help="Create missing tables")

    return parser


def run_command(service: NotificationService, args: argparse.Namespace) -> int:
    """Execute a parsed command, printing its output. Returns an exit code."""
    if args.command == "triggers":
        if args.action == "add":
            trigger = service.create_trigger(
                args.simulator, args.phone, args.threshold, is_active=not args.inactive
            )
            print(f"Created trigger with ID: {trigger.id}")
        elif args.action == "list":
            for trigger in service.list_triggers(args.simulator):
                print(format_trigger(trigger))
        elif args.action == "update":
            updates = {}
            if args.phone is not None:
                updates["phone_number"] = args.phone
            if args.threshold is not None:
                updates["threshold_percentage"] = args.threshold
            print(format_trigger(service.update_trigger(args.id, **updates)))
        elif args.action == "toggle":
            if args.simulator:
                changed = service.bulk_toggle(args.simulator, args.active)
                print(f"Updated {len(changed)} trigger(s)")
            elif args.id:
                print(format_trigger(service.toggle_trigger(args.id, args.active)))
            else:
                print("Either a trigger ID or --simulator is required")
                return 2
        elif args.action == "delete":
            service.delete_trigger(args.id)
            print(f"Deleted trigger {args.id}")

    elif args.command == "settings":
        if args.action == "set":
            settings = update_settings(
                service, args.enabled, args.cooldown, args.max_daily
            )
        else:
            settings = service.get_settings()
        print(f"Enabled: {settings.enabled_globally}")
        print(f"Cooldown: {settings.cooldown_minutes} min")
        print(f"Max daily notifications: {settings.max_daily_notifications}")

    elif args.command == "history":
        entries = service.get_history(
            args.simulator,
            args.limit,
            status=args.status,
            notification_type=args.type,
            since=args.since,
            until=args.until,
        )
        for entry in entries:
            print(format_history_entry(entry))

    elif args.command == "retry":
        result = service.retry(args.id)
        if result.success:
            print(f"Resent notification, new entry: {result.history_id}")
        else:
            print(f"Retry failed: {result.error_message}")
            return 1

    elif args.command == "status":
        status = service.get_system_status()
        print(f"WhatsApp ready: {status.whatsapp_ready}")
        print(f"Triggers: {status.active_triggers} active / {status.total_triggers} total")
        print(f"Notifications enabled: {status.notifications_enabled}")
        print(f"Notifications in last 24h: {status.recent_notifications}")

    elif args.command == "db":
        if args.action == "migrate":
            service.db.initialize()
            print("Migrations applied")
        else:
            print(f"Triggers: {len(service.list_triggers())}")
            print(f"History entries: {service.history_repo.count_all()}")

    return 0


def main():
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(2)

    if args.config:
        config = load_config(args.config)
    else:
        config = AppConfig(database=DatabaseConfig(path=args.db))

    service = create_service(config)
    try:
        code = run_command(service, args)
    except NotificationError as e:
        print(f"Error: {e}")
        code = 1
    finally:
        service.db.close()
    sys.exit(code)


if __name__ == "__main__":
    main()

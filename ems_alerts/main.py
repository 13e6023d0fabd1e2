"""
Main application entry point: replays simulator readings through the service.
"""

import csv
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, Optional

from dotenv import load_dotenv

load_dotenv()

from ems_alerts.app import NotificationService, create_service

logger = logging.getLogger(__name__)


@dataclass
class Reading:
    """One consumption sample from a simulator stream."""

    simulator_id: str
    actual_percentage: float
    timestamp: Optional[datetime] = None


def read_readings(path: str) -> Iterator[Reading]:
    """
    Read samples from a CSV file.

    Rows are ``simulator_id,percentage[,timestamp]`` with an ISO timestamp.
    Blank lines, ``#`` comments and a ``simulator_id`` header are skipped.

    Raises:
        ValueError: If a row cannot be parsed
    """
    with open(path, newline="") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            if not row or not row[0].strip() or row[0].startswith("#"):
                continue
            if row[0].strip() == "simulator_id":
                continue
            try:
                timestamp = None
                if len(row) > 2 and row[2].strip():
                    timestamp = datetime.fromisoformat(row[2].strip())
                yield Reading(
                    simulator_id=row[0].strip(),
                    actual_percentage=float(row[1]),
                    timestamp=timestamp,
                )
            except (IndexError, ValueError) as e:
                raise ValueError(f"{path}:{line_no}: invalid reading {row!r}") from e


class ReplayRunner:
    """Feeds readings to the service, announcing each simulator once per run."""

    def __init__(self, service: NotificationService, mode: Optional[str] = None):
        """
        Initialize runner.

        Args:
            service: Notification service
            mode: Run mode for the startup notice; None sends no notice
        """
        self.service = service
        self.mode = mode

    def run(self, readings: Iterable[Reading]) -> dict:
        """Process readings in order and return send statistics."""
        stats = {"readings": 0, "sent": 0, "failed": 0, "suppressed": 0}
        started: set[str] = set()

        for reading in readings:
            stats["readings"] += 1
            if reading.simulator_id not in started:
                started.add(reading.simulator_id)
                if self.mode:
                    self._count(
                        stats,
                        self.service.on_stream_started(
                            reading.simulator_id, self.mode, now=reading.timestamp
                        ),
                    )

            results = self.service.process_reading(
                reading.simulator_id, reading.actual_percentage, reading.timestamp
            )
            self._count(stats, results)

        for simulator_id in started:
            self.service.on_stream_stopped(simulator_id)
        return stats

    def _count(self, stats: dict, results) -> None:
        for result in results:
            if result.suppressed:
                stats["suppressed"] += 1
            elif result.success:
                stats["sent"] += 1
            else:
                stats["failed"] += 1


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="EMS notification replay")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--dry-run", action="store_true", help="Log messages instead of sending them"
    )
    parser.add_argument(
        "--startup",
        choices=["auto", "manual"],
        help="Send a startup notice in this mode when each simulator first appears",
    )
    parser.add_argument("readings", nargs="+", help="CSV files of readings")

    args = parser.parse_args()

    from ems_alerts.config import load_config

    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else getattr(
        logging, config.advanced.log_level.upper()
    )
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.dry_run:
        logger.info("Dry run mode - messages are logged, not sent")

    service = create_service(config, dry_run=args.dry_run)
    runner = ReplayRunner(service, mode=args.startup)

    try:
        for path in args.readings:
            stats = runner.run(read_readings(path))
            logger.info(
                f"{path}: {stats['readings']} readings, {stats['sent']} sent, "
                f"{stats['failed']} failed, {stats['suppressed']} suppressed"
            )
    finally:
        service.db.close()


if __name__ == "__main__":
    main()

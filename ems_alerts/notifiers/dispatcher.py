"""
Notification dispatch: dedup by recipient, send, record history.
"""

import logging
import threading
import weakref
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import requests

from ems_alerts.database.models import (
    NOTIFICATION_TYPE_STARTUP,
    NOTIFICATION_TYPE_THRESHOLD,
    NOTIFICATION_TYPES,
    NotificationHistoryEntry,
    Trigger,
)
from ems_alerts.database.repository import HistoryRepository
from ems_alerts.errors import NotFoundError, StorageError, TransportError, ValidationError
from ems_alerts.rules.engine import EligibleFire
from ems_alerts.rules.limits import RateLimiter
from .base import MessageTransport, SendResult
from .messages import MessageContext, MessageFormatter

logger = logging.getLogger(__name__)

# Builds message text for a fire at the given send time.
Composer = Callable[[EligibleFire, datetime], str]


@dataclass
class DispatchResult:
    """Outcome of one eligible fire."""

    trigger_id: str
    success: bool
    error_message: Optional[str] = None
    suppressed: bool = False  # blocked by cooldown/cap re-check, nothing sent
    history_id: Optional[str] = None


class NotificationDispatcher:
    """
    Sends notifications for eligible fires and records every attempt.

    Fires that share a phone number are collapsed into one transport call,
    worded after the lowest-threshold trigger, but each fire still gets its
    own history entry. Cooldown and the daily cap are re-checked while
    holding a lock per (trigger, phone number), so overlapping dispatches
    for the same trigger cannot both get through.
    """

    def __init__(
        self,
        transport: MessageTransport,
        history_repo: HistoryRepository,
        limiter: RateLimiter,
        formatter: Optional[MessageFormatter] = None,
        simulator_names: Optional[Callable[[str], str]] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            transport: Message transport
            history_repo: History store to record attempts in
            limiter: Cooldown and daily-cap policy
            formatter: Message formatter, default templates if omitted
            simulator_names: Maps a simulator id to a display name
        """
        self.transport = transport
        self.history_repo = history_repo
        self.limiter = limiter
        self.formatter = formatter or MessageFormatter()
        self.simulator_names = simulator_names or (lambda simulator_id: simulator_id)
        # (trigger_id, phone_number) -> lock, kept only while some dispatch holds it
        self._key_locks = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def dispatch(
        self,
        fires: list[EligibleFire],
        notification_type: str = NOTIFICATION_TYPE_THRESHOLD,
        compose: Optional[Composer] = None,
        enforce_limits: bool = True,
        now: Optional[datetime] = None,
    ) -> list[DispatchResult]:
        """
        Dispatch a batch of eligible fires.

        Args:
            fires: Fires produced by evaluation or startup selection
            notification_type: "threshold" or "startup"
            compose: Builds the message text for a fire; threshold wording
                if omitted
            enforce_limits: Re-check cooldown and daily cap before sending.
                Disabled for operator retries.
            now: Send time, defaults to the current time

        Returns:
            One DispatchResult per fire, in input order. Never raises for
            transport or storage failures.
        """
        if notification_type not in NOTIFICATION_TYPES:
            raise ValidationError(
                f"Unknown notification type: {notification_type}", "notification_type"
            )
        compose = compose or self.compose_threshold

        results: dict[int, DispatchResult] = {}
        for phone_number, group in self._group_by_phone(fires).items():
            results.update(
                self._dispatch_group(
                    phone_number, group, notification_type, compose, enforce_limits, now
                )
            )

        return [results[i] for i in range(len(fires))]

    def retry(self, history_id: str) -> DispatchResult:
        """
        Resend a failed notification on operator request.

        The batch is rebuilt from the history entry's snapshot, so it works
        even if the trigger was deleted since. Retries skip cooldown and the
        daily cap.

        Raises:
            NotFoundError: If the history entry does not exist
            ValidationError: If the entry was already delivered
        """
        entry = self.history_repo.get(history_id)
        if entry is None:
            raise NotFoundError(f"History entry with id {history_id} not found")
        if entry.success:
            raise ValidationError(
                "Notification was already delivered; nothing to retry", "history_id"
            )

        trigger = Trigger(
            id=entry.trigger_id,
            simulator_id=entry.simulator_id,
            phone_number=entry.phone_number,
            threshold_percentage=entry.threshold_percentage,
        )
        fire = EligibleFire(trigger=trigger, actual_percentage=entry.actual_percentage)

        if entry.notification_type == NOTIFICATION_TYPE_STARTUP:
            compose: Composer = lambda f, sent_at: self.formatter.startup_message(
                self.simulator_names(f.trigger.simulator_id), "resend", sent_at
            )
        else:
            compose = self.compose_threshold

        logger.info(f"Retrying notification {history_id} to {entry.phone_number}")
        return self.dispatch(
            [fire], entry.notification_type, compose=compose, enforce_limits=False
        )[0]

    def compose_threshold(self, fire: EligibleFire, sent_at: datetime) -> str:
        """Default threshold wording for a fire, stamped with the send time."""
        return self.formatter.threshold_message(
            MessageContext(
                simulator_name=self.simulator_names(fire.trigger.simulator_id),
                current_percentage=fire.actual_percentage,
                threshold_percentage=fire.trigger.threshold_percentage,
                timestamp=sent_at,
            )
        )

    def _group_by_phone(
        self, fires: list[EligibleFire]
    ) -> dict[str, list[tuple[int, EligibleFire]]]:
        """Group fires by recipient, lowest threshold first within each group."""
        groups: dict[str, list[tuple[int, EligibleFire]]] = {}
        for index, fire in enumerate(fires):
            groups.setdefault(fire.trigger.phone_number, []).append((index, fire))
        for group in groups.values():
            group.sort(key=lambda item: item[1].trigger.threshold_percentage)
        return groups

    def _dispatch_group(
        self,
        phone_number: str,
        group: list[tuple[int, EligibleFire]],
        notification_type: str,
        compose: Composer,
        enforce_limits: bool,
        now: Optional[datetime],
    ) -> dict[int, DispatchResult]:
        results: dict[int, DispatchResult] = {}
        keys = sorted({(fire.trigger.id, phone_number) for _, fire in group})

        with ExitStack() as stack:
            for key in keys:
                stack.enter_context(self._lock_for(key))

            sent_at = now or datetime.now()
            sendable: list[tuple[int, EligibleFire]] = []
            for index, fire in group:
                if not enforce_limits:
                    sendable.append((index, fire))
                    continue
                try:
                    reason = self.limiter.block_reason(fire.trigger, sent_at)
                except StorageError as e:
                    logger.error(f"Rate limit check failed for trigger {fire.trigger.id}: {e}")
                    results[index] = DispatchResult(
                        trigger_id=fire.trigger.id,
                        success=False,
                        error_message=f"Storage error: {e}",
                    )
                    continue
                if reason:
                    logger.info(f"Suppressed trigger {fire.trigger.id}: {reason}")
                    results[index] = DispatchResult(
                        trigger_id=fire.trigger.id,
                        success=False,
                        error_message=reason,
                        suppressed=True,
                    )
                    continue
                sendable.append((index, fire))

            if not sendable:
                return results

            outcome = self._send(phone_number, compose, sendable[0][1], sent_at)
            error_message = None
            if not outcome.success:
                error_message = outcome.error or "Failed to send notification"
                logger.warning(f"Notification to {phone_number} failed: {error_message}")
            else:
                logger.info(
                    f"Sent {notification_type} notification to {phone_number} "
                    f"for {len(sendable)} trigger(s)"
                )

            for index, fire in sendable:
                entry = NotificationHistoryEntry(
                    trigger_id=fire.trigger.id,
                    simulator_id=fire.trigger.simulator_id,
                    phone_number=phone_number,
                    threshold_percentage=fire.trigger.threshold_percentage,
                    actual_percentage=fire.actual_percentage,
                    success=outcome.success,
                    error_message=error_message,
                    sent_at=sent_at,
                    notification_type=notification_type,
                )
                results[index] = DispatchResult(
                    trigger_id=fire.trigger.id,
                    success=outcome.success,
                    error_message=error_message,
                    history_id=self._record(entry),
                )

        return results

    def _send(
        self, phone_number: str, compose: Composer, fire: EligibleFire, sent_at: datetime
    ) -> SendResult:
        """Compose and send one message. Every failure becomes a failed SendResult."""
        try:
            message = compose(fire, sent_at)
        except Exception as e:
            logger.exception(f"Could not compose message for trigger {fire.trigger.id}")
            return SendResult(success=False, error=f"Message formatting failed: {e}")

        try:
            return self.transport.send_message(phone_number, message)
        except (TransportError, requests.exceptions.RequestException) as e:
            return SendResult(success=False, error=str(e))
        except Exception as e:
            logger.exception(f"Transport raised while sending to {phone_number}")
            return SendResult(success=False, error=str(e) or type(e).__name__)

    def _record(self, entry: NotificationHistoryEntry) -> Optional[str]:
        """Append history; a failed write is logged, the send already happened."""
        try:
            return self.history_repo.append(entry).id
        except StorageError as e:
            logger.error(
                f"Could not record notification for trigger {entry.trigger_id}: {e}"
            )
            return None

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        """Lock for one (trigger, phone) key, dropped once no dispatch holds it."""
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

"""
Threshold evaluation engine.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ems_alerts.database.models import Trigger
from ems_alerts.database.repository import TriggerRepository
from ems_alerts.validation import normalize_hysteresis
from .limits import RateLimiter

logger = logging.getLogger(__name__)

__all__ = ["EligibleFire", "ThresholdEvaluator"]


@dataclass(frozen=True)
class EligibleFire:
    """A trigger that should notify, paired with the reading that qualified it."""

    trigger: Trigger
    actual_percentage: float


class ThresholdEvaluator:
    """
    Edge-triggered threshold evaluation for simulator usage readings.

    A trigger fires when a reading is at or above its threshold and the
    previous reading seen for that trigger was below it, or no reading has
    been seen yet. With a hysteresis band the trigger only re-arms once a
    reading falls below threshold minus the band, so readings hovering just
    under the threshold do not count as a drop.

    The "previous reading" memory lives in this object only, so a restart
    makes every trigger eligible again on its next high reading.
    Cooldown and the daily cap still apply in that case.
    """

    def __init__(
        self,
        trigger_repo: TriggerRepository,
        limiter: RateLimiter,
        hysteresis_percentage: float = 0.0,
    ):
        """
        Initialize evaluator.

        Args:
            trigger_repo: Trigger store
            limiter: Cooldown and daily-cap policy
            hysteresis_percentage: Points below the threshold a reading must
                reach before the trigger can fire again
        """
        self.trigger_repo = trigger_repo
        self.limiter = limiter
        self.hysteresis_percentage = normalize_hysteresis(hysteresis_percentage)
        # (simulator_id, trigger_id) -> whether the trigger is latched above threshold
        self._above: dict[tuple[str, str], bool] = {}
        self._lock = threading.Lock()

    def evaluate(
        self,
        simulator_id: str,
        actual_percentage: float,
        now: Optional[datetime] = None,
    ) -> list[EligibleFire]:
        """
        Evaluate one reading against the simulator's active triggers.

        Args:
            simulator_id: Simulator that produced the reading
            actual_percentage: Usage as a percentage of target
            now: Evaluation time, defaults to the current time

        Returns:
            Triggers that crossed their threshold on this reading and are not
            held back by cooldown or the daily cap

        Raises:
            StorageError: If the trigger or history store cannot be read. Edge
                memory is left untouched in that case.
        """
        if not self.limiter.settings.enabled_globally:
            return []

        now = now or datetime.now()
        triggers = self.trigger_repo.list_active_by_simulator(simulator_id)

        with self._lock:
            previous = {
                t.id: self._above.get((simulator_id, t.id)) for t in triggers
            }

        observed: dict[str, bool] = {}
        crossed: list[Trigger] = []
        for trigger in triggers:
            was_above = bool(previous[trigger.id])
            is_above = actual_percentage >= trigger.threshold_percentage
            if is_above and not was_above:
                crossed.append(trigger)
            observed[trigger.id] = self._latched(trigger, actual_percentage, was_above)

        eligible = [
            EligibleFire(trigger=t, actual_percentage=actual_percentage)
            for t in crossed
            if self.limiter.allows(t, now)
        ]

        with self._lock:
            for trigger_id, is_above in observed.items():
                self._above[(simulator_id, trigger_id)] = is_above

        if crossed:
            logger.info(
                f"{simulator_id} at {actual_percentage:.1f}%: "
                f"{len(crossed)} trigger(s) crossed, {len(eligible)} eligible"
            )
        return eligible

    def _latched(self, trigger: Trigger, actual_percentage: float, was_above: bool) -> bool:
        if actual_percentage >= trigger.threshold_percentage:
            return True
        if actual_percentage < trigger.threshold_percentage - self.hysteresis_percentage:
            return False
        return was_above

    def reset(self, simulator_id: Optional[str] = None) -> None:
        """Forget edge memory for one simulator, or for all of them."""
        with self._lock:
            if simulator_id is None:
                self._above.clear()
                return
            for key in [k for k in self._above if k[0] == simulator_id]:
                del self._above[key]

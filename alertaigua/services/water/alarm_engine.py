"""
Alarm Engine

Per-subscriber alarm ring:

    normal --(value >= threshold)--> initialAlarm
    initialAlarm --(value >= threshold * (1 + delta/100))--> escalationAlarm
    initialAlarm / escalationAlarm --(clear_count readings below threshold)--> normal

Any reading at or above the threshold resets the below-threshold counter,
so the counter only ever measures an unbroken run of normal readings.
escalationAlarm never steps back to initialAlarm.

The decision is computed once from the subscriber record passed in, and
that same result is both written and returned. Nothing is written when
neither the state nor the counter changes.
"""

from dataclasses import dataclass
from typing import Any

from common.config import AlarmSettings, AlarmState, Metric
from common.logging_setup import get_service_logger, log_alarm_transition
from storage.subscribers import Subscriber

logger = get_service_logger("water.alarm_engine")


@dataclass(frozen=True)
class AlertOutcome:
    """Result of one evaluation that changed the subscriber"""
    subscriber_id: str
    previous_state: AlarmState
    new_state: AlarmState
    value: float
    threshold: float
    metric: Metric
    consecutive_normal_count: int = 0

    @property
    def state_changed(self) -> bool:
        return self.previous_state != self.new_state


def next_alarm_state(
    state: AlarmState,
    counter: int,
    value: float,
    threshold: float,
    delta_percentage: float,
    clear_count: int,
) -> tuple[AlarmState, int]:
    """
    Pure transition function.

    Returns:
        (new_state, new_consecutive_normal_count)
    """
    escalation_line = threshold * (1 + delta_percentage / 100)

    if state == AlarmState.NORMAL:
        if value >= threshold:
            return AlarmState.INITIAL_ALARM, 0
        return AlarmState.NORMAL, 0

    if state == AlarmState.INITIAL_ALARM and value >= escalation_line:
        return AlarmState.ESCALATION_ALARM, 0

    # initialAlarm or escalationAlarm from here on
    if value >= threshold:
        return state, 0

    counter += 1
    if counter >= clear_count:
        return AlarmState.NORMAL, 0
    return state, counter


class AlarmEngine:
    """Evaluates and persists alarm transitions"""

    def __init__(self, store: Any, settings: AlarmSettings):
        self.store = store
        self.settings = settings

    async def evaluate(self, subscriber: Subscriber, value: float) -> AlertOutcome | None:
        """
        Evaluate one subscriber against the current value of its metric.

        Returns:
            AlertOutcome when state or counter changed, else None

        Raises:
            PersistenceError: if the write fails (no outcome is produced)
        """
        previous_state = subscriber.alarm_state
        previous_counter = subscriber.consecutive_normal_count or 0

        new_state, new_counter = next_alarm_state(
            previous_state,
            previous_counter,
            value,
            subscriber.threshold,
            self.settings.delta_percentage,
            self.settings.clear_count,
        )

        if new_state == previous_state and new_counter == previous_counter:
            return None

        await self.store.update(
            subscriber.id,
            {"alarm_state": new_state, "consecutive_normal_count": new_counter},
        )

        log_alarm_transition(
            logger,
            subscriber.id,
            subscriber.metric.value,
            previous_state.value,
            new_state.value,
            value,
            subscriber.threshold,
        )

        return AlertOutcome(
            subscriber_id=subscriber.id,
            previous_state=previous_state,
            new_state=new_state,
            value=value,
            threshold=subscriber.threshold,
            metric=subscriber.metric,
            consecutive_normal_count=new_counter,
        )

    async def evaluate_all(self, values: dict[Metric, float]) -> list[AlertOutcome]:
        """
        Evaluate every subscriber sequentially.

        A failure for one subscriber is logged and skipped; the rest of the
        batch still runs.

        Args:
            values: Current value per metric

        Raises:
            PersistenceError: only if the subscriber list itself can't be read
        """
        subscribers = await self.store.find_many()
        outcomes: list[AlertOutcome] = []

        for subscriber in subscribers:
            value = values.get(subscriber.metric)
            if value is None:
                logger.warning(
                    f"No value for metric {subscriber.metric.value}, skipping {subscriber.id}",
                    extra={"subscriber_id": subscriber.id},
                )
                continue

            try:
                outcome = await self.evaluate(subscriber, value)
            except Exception as e:
                logger.error(
                    f"Alarm evaluation failed for subscriber {subscriber.id}: {e}",
                    extra={"subscriber_id": subscriber.id, "error_type": type(e).__name__},
                )
                continue

            if outcome:
                outcomes.append(outcome)

        return outcomes

"""
Alert Dispatcher

Turns alarm outcomes and availability flips into push notifications.

- Outcomes where only the below-threshold counter moved are not announced.
- Muted subscribers receive no alarm messages until the mute ends; their
  alarm state keeps being tracked.
- A failure for one subscriber never stops the rest of the batch.
"""

from typing import Any, Callable
from datetime import datetime

from common.config import AlarmState
from common.logging_setup import get_service_logger
from services.water.alarm_engine import AlertOutcome

from .messages import MessageKind, alarm_message, service_message
from .pushsafer import Notifier, Severity

logger = get_service_logger("notify.dispatcher")


class AlertDispatcher:
    """Delivers alarm and service notifications to subscribers"""

    def __init__(
        self,
        store: Any,
        notifier: Notifier,
        now: Callable[[], datetime],
        sensor_url: str | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.sensor_url = sensor_url
        self._now = now

    async def dispatch(self, outcomes: list[AlertOutcome]) -> int:
        """
        Notify subscribers whose alarm state changed.

        Returns:
            Number of notifications delivered
        """
        delivered = 0
        for outcome in outcomes:
            if not outcome.state_changed:
                continue
            try:
                if await self._dispatch_one(outcome):
                    delivered += 1
            except Exception as e:
                logger.error(
                    f"Dispatch failed for subscriber {outcome.subscriber_id}: {e}",
                    extra={
                        "subscriber_id": outcome.subscriber_id,
                        "alarm_state": outcome.new_state.value,
                    },
                )
        return delivered

    async def _dispatch_one(self, outcome: AlertOutcome) -> bool:
        subscriber = await self.store.find_unique(outcome.subscriber_id)
        if subscriber is None:
            logger.warning(
                f"Subscriber {outcome.subscriber_id} not found",
                extra={"subscriber_id": outcome.subscriber_id},
            )
            return False

        now = self._now()
        if subscriber.is_muted(now):
            logger.info(
                f"Subscriber {subscriber.id} muted until {subscriber.muted_until.isoformat()}, "
                f"not announcing {outcome.new_state.value}",
                extra={"subscriber_id": subscriber.id},
            )
            return False

        message = alarm_message(
            subscriber.language, outcome.new_state, outcome.metric, outcome.value
        )
        severity = Severity.NORMAL if outcome.new_state == AlarmState.NORMAL else Severity.CRITICAL

        success = await self.notifier.notify(
            subscriber,
            MessageKind.for_state(outcome.new_state).value,
            message.title,
            message.body,
            severity,
            url=self.sensor_url,
            url_title=message.url_title,
        )

        if not success:
            logger.error(
                "Failed to send notification",
                extra={"subscriber_id": subscriber.id, "alarm_state": outcome.new_state.value},
            )
            return False

        await self.store.update(
            subscriber.id,
            {
                "alarm_state": outcome.new_state,
                "consecutive_normal_count": 0,
                "last_warned_at": now,
            },
        )
        return True

    async def broadcast(self, kind: MessageKind) -> int:
        """
        Send a service-availability message to every subscriber.

        Returns:
            Number of notifications delivered

        Raises:
            PersistenceError: if the subscriber list can't be read
        """
        subscribers = await self.store.find_many()
        delivered = 0

        for subscriber in subscribers:
            message = service_message(subscriber.language, kind)
            try:
                if await self.notifier.notify(
                    subscriber, kind.value, message.title, message.body, Severity.NORMAL
                ):
                    delivered += 1
            except Exception as e:
                logger.error(
                    f"{kind.value} notification failed for {subscriber.id}: {e}",
                    extra={"subscriber_id": subscriber.id, "kind": kind.value},
                )

        logger.info(
            f"Broadcast {kind.value}: {delivered}/{len(subscribers)} delivered",
            extra={"kind": kind.value, "delivered": delivered, "total": len(subscribers)},
        )
        return delivered

"""
Alert Evaluator
===============

Runs once per tick batch: merges the batch into the watchlist, fires
every alert whose threshold has been crossed, queues one notification per
fired alert and rings the chime hook.

The whole pass is synchronous. Detecting a crossing and deactivating the
alert happen in the same step, which is what makes each alert fire at
most once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from signaldesk.event_bus import MarketEventBus, SubscriptionToken
from signaldesk.events import TickBatch
from signaldesk.notifications import ChimeHook, Notification, NotificationQueue
from signaldesk.watchlist import TriggeredAlert, WatchlistStore


logger = logging.getLogger(__name__)


def _format_target(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def build_notification(triggered: TriggeredAlert, fired_at: datetime) -> Notification:
    alert = triggered.alert
    return Notification(
        title=f"Price Alert: {triggered.symbol}",
        message=f"{triggered.symbol} crossed {alert.condition.value} {_format_target(alert.target_price)}",
        symbol=triggered.symbol,
        fired_at=fired_at,
    )


class AlertEvaluator:
    """
    Tick-batch consumer for the watchlist/alert pipeline.

    Usage:
        evaluator = AlertEvaluator(store, queue, chime)
        evaluator.attach(bus)
    """

    def __init__(
        self,
        store: WatchlistStore,
        queue: NotificationQueue,
        chime: ChimeHook | None = None,
    ):
        self._store = store
        self._queue = queue
        self._chime = chime
        self._token: SubscriptionToken | None = None
        self._batches_evaluated = 0
        self._alerts_fired = 0

    def attach(self, event_bus: MarketEventBus) -> SubscriptionToken:
        """Subscribe to the bus (idempotent)."""
        if self._token is None:
            self._token = event_bus.subscribe(self.on_tick_batch, name="alert_evaluator")
        return self._token

    def detach(self, event_bus: MarketEventBus) -> None:
        if self._token is not None:
            event_bus.unsubscribe(self._token)
            self._token = None

    def on_tick_batch(self, batch: TickBatch) -> list[Notification]:
        """Merge the batch into the store, then evaluate alerts."""
        self._store.apply_tick_batch(batch)
        return self.evaluate()

    def evaluate(self) -> list[Notification]:
        """
        Fire every active alert whose condition holds at the current price.

        Returns the notifications created by this pass (possibly empty).
        """
        self._batches_evaluated += 1
        now = datetime.now(timezone.utc)
        triggered = self._store.trigger_alerts(now)
        if not triggered:
            return []

        notifications = [build_notification(t, now) for t in triggered]
        for t in triggered:
            logger.info(
                f"Alert triggered: {t.symbol} {t.alert.condition.value} "
                f"{t.alert.target_price} at {t.price}"
            )

        self._alerts_fired += len(notifications)
        self._queue.push(notifications)

        if self._chime is not None:
            self._chime.fire(notifications)

        return notifications

    def get_stats(self) -> dict:
        return {
            "batches_evaluated": self._batches_evaluated,
            "alerts_fired": self._alerts_fired,
            "attached": self._token is not None,
        }

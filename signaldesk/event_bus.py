"""
Market Event Bus
================

Fan-out delivery of tick batches from the price simulator to any number
of consumers (watchlist/alert pipeline, dashboard WebSocket, ...).

Features:
- Synchronous publish, subscribers invoked in subscription order
- Late subscribers receive the latest batch immediately on subscribe
- Token-based subscriptions (the same callable may be registered twice)
- Subscriber errors are logged and isolated from other subscribers
- Metrics tracking for monitoring
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from signaldesk.events import EventType, TickBatch


logger = logging.getLogger(__name__)


TickCallback = Callable[[TickBatch], None]


@dataclass(frozen=True)
class SubscriptionToken:
    """Handle returned by subscribe(); pass it back to unsubscribe()."""
    token_id: int
    name: str = ""


@dataclass
class BusMetrics:
    """Metrics for bus monitoring."""
    total_batches_published: int = 0
    total_deliveries: int = 0
    total_handler_errors: int = 0
    last_publish_time: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "total_published": self.total_batches_published,
            "total_deliveries": self.total_deliveries,
            "total_handler_errors": self.total_handler_errors,
            "last_publish_time": self.last_publish_time.isoformat() if self.last_publish_time else None,
        }


class MarketEventBus:
    """
    In-process publish/subscribe channel for "market-update" events.

    Every operation is synchronous and runs to completion on the calling
    task, so a publish pass is never interleaved with another publish.
    """

    def __init__(self):
        self._subscribers: dict[SubscriptionToken, TickCallback] = {}
        self._token_counter = itertools.count(1)
        self._latest: TickBatch | None = None
        self._metrics = BusMetrics()

    def subscribe(self, callback: TickCallback, name: str = "") -> SubscriptionToken:
        """
        Register a callback and return its subscription token.

        If a batch has already been published, the callback is invoked
        once, right away, with that batch.
        """
        token = SubscriptionToken(next(self._token_counter), name or getattr(callback, "__name__", ""))
        self._subscribers[token] = callback
        logger.debug(f"Subscribed {token.name or token.token_id} to {EventType.MARKET_UPDATE.value}")

        if self._latest is not None:
            self._deliver(token, callback, self._latest)

        return token

    def unsubscribe(self, token: SubscriptionToken) -> None:
        """Remove a subscription. Unknown or already-removed tokens are ignored."""
        if self._subscribers.pop(token, None) is not None:
            logger.debug(f"Unsubscribed {token.name or token.token_id}")

    def publish(self, batch: TickBatch) -> None:
        """
        Deliver a batch to every current subscriber, in subscription order.

        Iterates over a copy of the subscriber set: subscriptions added or
        removed by a callback take effect on the next publish.
        """
        self._latest = batch
        self._metrics.total_batches_published += 1
        self._metrics.last_publish_time = datetime.now(timezone.utc)

        for token, callback in list(self._subscribers.items()):
            self._deliver(token, callback, batch)

    def seed(self, batch: TickBatch) -> None:
        """Set the current state handed to late subscribers, without delivering it."""
        self._latest = batch

    def _deliver(self, token: SubscriptionToken, callback: TickCallback, batch: TickBatch) -> None:
        try:
            callback(batch)
            self._metrics.total_deliveries += 1
        except Exception as e:
            self._metrics.total_handler_errors += 1
            logger.error(f"Handler error for {token.name or token.token_id} on {EventType.MARKET_UPDATE.value}: {e}")

    @property
    def latest(self) -> TickBatch | None:
        """Most recently published batch, if any."""
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def metrics(self) -> BusMetrics:
        return self._metrics

    def get_status(self) -> dict:
        """Get bus status for monitoring."""
        return {
            "subscriber_count": len(self._subscribers),
            "subscribers": [t.name or str(t.token_id) for t in self._subscribers],
            "has_data": self._latest is not None,
            "latest_sequence": self._latest.sequence if self._latest else None,
            "metrics": self._metrics.to_dict(),
        }

    def clear(self) -> None:
        """Drop all subscriptions and the cached batch."""
        self._subscribers.clear()
        self._latest = None

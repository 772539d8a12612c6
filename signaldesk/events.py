"""
Market Events
=============

Value types that flow from the price simulator outward.

An InstrumentSnapshot is the quote state of one instrument after a tick.
A TickBatch is one synchronized update of every tracked instrument; all of
its snapshots share the batch timestamp.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator


HISTORY_LENGTH = 20


class EventType(str, Enum):
    """Event names observed by presentation components."""
    MARKET_UPDATE = "market-update"
    NOTIFICATIONS_ADDED = "notifications-added"


@dataclass(frozen=True)
class InstrumentSnapshot:
    """Current quote state of one instrument."""
    symbol: str
    price: float
    change: float
    change_percent: float
    high: float
    low: float
    volume: int
    history: tuple[float, ...]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "change_percent": self.change_percent,
            "high": self.high,
            "low": self.low,
            "volume": self.volume,
            "history": list(self.history),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TickBatch:
    """One tick worth of snapshots, one per tracked symbol."""
    snapshots: tuple[InstrumentSnapshot, ...]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sequence: int = 0

    def __iter__(self) -> Iterator[InstrumentSnapshot]:
        return iter(self.snapshots)

    def __len__(self) -> int:
        return len(self.snapshots)

    def by_symbol(self) -> dict[str, InstrumentSnapshot]:
        """Index the batch by symbol."""
        return {snap.symbol: snap for snap in self.snapshots}

    def get(self, symbol: str) -> InstrumentSnapshot | None:
        for snap in self.snapshots:
            if snap.symbol == symbol:
                return snap
        return None

    def to_dict(self) -> dict:
        return {
            "type": EventType.MARKET_UPDATE.value,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "data": [snap.to_dict() for snap in self.snapshots],
        }

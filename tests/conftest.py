"""
Pytest Configuration
====================

Shared fixtures for testing.
"""

from datetime import datetime, timezone

import pytest

from signaldesk.event_bus import MarketEventBus
from signaldesk.events import HISTORY_LENGTH, InstrumentSnapshot, TickBatch
from signaldesk.notifications import NotificationQueue
from signaldesk.watchlist import WatchlistStore


def build_snapshot(symbol: str, price: float, initial: float | None = None) -> InstrumentSnapshot:
    initial = initial if initial is not None else price
    return InstrumentSnapshot(
        symbol=symbol,
        price=price,
        change=round(price - initial, 2),
        change_percent=round((price - initial) / initial * 100, 2),
        high=max(price, initial),
        low=min(price, initial),
        volume=1000,
        history=tuple([initial] * (HISTORY_LENGTH - 1) + [price]),
    )


@pytest.fixture
def make_batch():
    """Factory: make_batch({"BTC-USD": 50000.0, ...}) -> TickBatch."""
    counter = {"sequence": 0}

    def _make(prices: dict[str, float]) -> TickBatch:
        counter["sequence"] += 1
        now = datetime.now(timezone.utc)
        return TickBatch(
            snapshots=tuple(build_snapshot(symbol, price) for symbol, price in prices.items()),
            timestamp=now,
            sequence=counter["sequence"],
        )

    return _make


@pytest.fixture
def make_snapshot():
    return build_snapshot


@pytest.fixture
def event_bus():
    return MarketEventBus()


@pytest.fixture
def store():
    """Default six-symbol watchlist."""
    return WatchlistStore()


@pytest.fixture
def queue():
    return NotificationQueue()


@pytest.fixture
def test_config(tmp_path):
    """Minimal valid configuration."""
    return {
        "logging": {"level": "INFO"},
        "simulator": {"interval_seconds": 1.0, "seed": 7},
        "watchlist": {"symbols": ["NVDA", "BTC-USD"]},
        "analysis": {"model": "gemini-2.5-flash", "api_key_env": "GEMINI_API_KEY", "max_retries": 2},
        "auto_scan": {"enabled": False, "interval_seconds": 20, "cooldown_seconds": 60},
        "auth": {"store_path": str(tmp_path / "auth.json")},
        "dashboard": {"enabled": False, "host": "127.0.0.1", "port": 8080},
    }

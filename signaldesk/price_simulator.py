"""
Price Simulator
===============

Synthetic market feed: a bounded random walk for a fixed set of
instruments, one tick batch per interval.

Per tick, for every instrument:
- delta = price * uniform(-volatility, +volatility), floored at MIN_PRICE
- change / change_percent measured from the session's initial price
- running high/low extrema, fixed-length history ring, volume counter

The batch is published to the MarketEventBus in a single emission.
This is a UI feed, not a market model.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from signaldesk.event_bus import MarketEventBus
from signaldesk.events import HISTORY_LENGTH, InstrumentSnapshot, TickBatch
from signaldesk.logging_config import SampledLogger


logger = logging.getLogger(__name__)
tick_logger = SampledLogger(logger, every_n=60)


MIN_PRICE = 0.01
INITIAL_VOLUME_MAX = 5_000_000
VOLUME_STEP_MAX = 1500


class InstrumentClass(str, Enum):
    """Instrument classes; the class picks the default volatility."""
    EQUITY = "equity"
    INDEX = "index"
    VOLATILITY = "volatility"
    CRYPTO = "crypto"
    FOREX = "forex"
    COMMODITY = "commodity"


DEFAULT_VOLATILITY = {
    InstrumentClass.EQUITY: 0.001,
    InstrumentClass.CRYPTO: 0.001,
    InstrumentClass.FOREX: 0.001,
    InstrumentClass.COMMODITY: 0.001,
    InstrumentClass.INDEX: 0.002,
    InstrumentClass.VOLATILITY: 0.02,
}


@dataclass
class InstrumentSpec:
    """Static definition of a simulated instrument."""
    symbol: str
    initial_price: float
    instrument_class: InstrumentClass = InstrumentClass.EQUITY
    volatility: float | None = None
    has_volume: bool | None = None
    decimals: int = 2

    def __post_init__(self):
        if self.initial_price <= 0:
            raise ValueError(f"{self.symbol}: initial price must be positive")
        self.instrument_class = InstrumentClass(self.instrument_class)
        if self.volatility is None:
            self.volatility = DEFAULT_VOLATILITY[self.instrument_class]
        if self.has_volume is None:
            self.has_volume = self.instrument_class != InstrumentClass.VOLATILITY

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstrumentSpec":
        return cls(
            symbol=data["symbol"],
            initial_price=float(data["initial_price"]),
            instrument_class=InstrumentClass(data.get("class", "equity")),
            volatility=data.get("volatility"),
            has_volume=data.get("has_volume"),
            decimals=int(data.get("decimals", 2)),
        )


DEFAULT_INSTRUMENTS: tuple[InstrumentSpec, ...] = (
    InstrumentSpec("NIFTY 50", 22450.00, InstrumentClass.INDEX),
    InstrumentSpec("INDIA VIX", 12.50, InstrumentClass.VOLATILITY),
    InstrumentSpec("RELIANCE", 2980.50),
    InstrumentSpec("HDFCBANK", 1450.20),
    InstrumentSpec("TATASTEEL", 155.80),
    InstrumentSpec("INFY", 1485.35),
    InstrumentSpec("SBIN", 760.00),
    InstrumentSpec("ADANIENT", 3120.50),
    InstrumentSpec("ICICIBANK", 1090.15),
    InstrumentSpec("BAJFINANCE", 6850.00),
    InstrumentSpec("NVDA", 880.00),
    InstrumentSpec("TSLA", 175.00),
    InstrumentSpec("BTC-USD", 50000.00, InstrumentClass.CRYPTO),
    InstrumentSpec("ETH-USD", 3000.00, InstrumentClass.CRYPTO),
    InstrumentSpec("EUR-USD", 1.0850, InstrumentClass.FOREX, decimals=4),
    InstrumentSpec("XAU-USD", 2350.00, InstrumentClass.COMMODITY),
)


@dataclass
class _InstrumentState:
    """Canonical mutable state of one instrument; owned by the simulator."""
    spec: InstrumentSpec
    price: float
    high: float
    low: float
    volume: int
    history: deque = field(default_factory=lambda: deque(maxlen=HISTORY_LENGTH))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def snapshot(self) -> InstrumentSnapshot:
        initial = self.spec.initial_price
        return InstrumentSnapshot(
            symbol=self.spec.symbol,
            price=self.price,
            change=round(self.price - initial, self.spec.decimals),
            change_percent=round((self.price - initial) / initial * 100, 2),
            high=self.high,
            low=self.low,
            volume=self.volume,
            history=tuple(self.history),
            timestamp=self.timestamp,
        )


class PriceSimulator:
    """
    Periodic tick generator for a fixed instrument universe.

    Lifecycle: construct -> start() -> stop() -> dispose().
    start() and stop() are idempotent; start() must be called from a
    running event loop.
    """

    def __init__(
        self,
        event_bus: MarketEventBus,
        instruments: list[InstrumentSpec] | tuple[InstrumentSpec, ...] | None = None,
        interval_seconds: float = 1.0,
        seed: int | None = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self._event_bus = event_bus
        self._interval = interval_seconds
        self._random = random.Random(seed)
        self._task: asyncio.Task | None = None
        self._running = False
        self._in_tick = False
        self._sequence = 0
        self._skipped_ticks = 0

        specs = list(instruments) if instruments is not None else list(DEFAULT_INSTRUMENTS)
        self._state: dict[str, _InstrumentState] = {}
        for spec in specs:
            if spec.symbol in self._state:
                raise ValueError(f"Duplicate instrument symbol: {spec.symbol}")
            price = round(spec.initial_price, spec.decimals)
            state = _InstrumentState(
                spec=spec,
                price=price,
                high=price,
                low=price,
                volume=self._random.randrange(INITIAL_VOLUME_MAX) if spec.has_volume else 0,
            )
            state.history.extend([price] * HISTORY_LENGTH)
            self._state[spec.symbol] = state

        # Late subscribers see the opening state before the first tick
        self._event_bus.seed(self.current_batch())

        logger.info(f"PriceSimulator initialized with {len(self._state)} instruments")

    @classmethod
    def from_config(cls, event_bus: MarketEventBus, config: dict[str, Any]) -> "PriceSimulator":
        """Build from the `simulator` section of config.yaml."""
        instruments = None
        if config.get("instruments"):
            instruments = [InstrumentSpec.from_dict(item) for item in config["instruments"]]
        return cls(
            event_bus,
            instruments=instruments,
            interval_seconds=config.get("interval_seconds", 1.0),
            seed=config.get("seed"),
        )

    @property
    def symbols(self) -> list[str]:
        return list(self._state)

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Begin periodic tick generation. No-op if already running."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Market stream connected ({self._interval}s interval)")

    def stop(self) -> None:
        """Cancel periodic tick generation. Safe to call when not started."""
        if not self._running and self._task is None:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("Market stream disconnected")

    def dispose(self) -> None:
        """Stop and release the instrument state."""
        self.stop()
        self._state.clear()

    async def _run(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self._interval)
                if not self._running:
                    break
                self.tick()
        except asyncio.CancelledError:
            pass

    def get_snapshot(self, symbol: str) -> InstrumentSnapshot | None:
        """Current state of one instrument, or None if it is not simulated."""
        state = self._state.get(symbol)
        return state.snapshot() if state else None

    def current_batch(self) -> TickBatch:
        """Snapshot of every instrument, without advancing the walk."""
        now = datetime.now(timezone.utc)
        return TickBatch(
            snapshots=tuple(s.snapshot() for s in self._state.values()),
            timestamp=now,
            sequence=self._sequence,
        )

    def tick(self) -> TickBatch | None:
        """
        Advance every instrument by one random-walk step and publish the batch.

        Returns the published batch, or None when the previous tick is
        still being delivered (re-entrant call from a subscriber).
        """
        if self._in_tick:
            self._skipped_ticks += 1
            logger.warning("Tick skipped: previous batch still being processed")
            return None

        self._in_tick = True
        try:
            now = datetime.now(timezone.utc)
            for state in self._state.values():
                self._step(state, now)

            self._sequence += 1
            batch = TickBatch(
                snapshots=tuple(s.snapshot() for s in self._state.values()),
                timestamp=now,
                sequence=self._sequence,
            )
            tick_logger.debug(f"Tick {self._sequence}: {len(batch)} instruments")
            self._event_bus.publish(batch)
            return batch
        finally:
            self._in_tick = False

    def _step(self, state: _InstrumentState, now: datetime) -> None:
        spec = state.spec
        delta = state.price * self._random.uniform(-spec.volatility, spec.volatility)
        price = round(max(MIN_PRICE, state.price + delta), spec.decimals)
        price = max(price, MIN_PRICE)

        state.price = price
        state.high = max(state.high, price)
        state.low = min(state.low, price)
        state.history.append(price)
        if spec.has_volume:
            state.volume += self._random.randrange(VOLUME_STEP_MAX)
        state.timestamp = now

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "interval_seconds": self._interval,
            "instruments": len(self._state),
            "sequence": self._sequence,
            "skipped_ticks": self._skipped_ticks,
        }

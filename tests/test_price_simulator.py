"""
Tests for Price Simulator
=========================
"""

import asyncio

import pytest

from signaldesk.event_bus import MarketEventBus
from signaldesk.events import HISTORY_LENGTH
from signaldesk.price_simulator import (
    DEFAULT_INSTRUMENTS,
    MIN_PRICE,
    InstrumentClass,
    InstrumentSpec,
    PriceSimulator,
)


@pytest.fixture
def simulator(event_bus):
    sim = PriceSimulator(event_bus, seed=42, interval_seconds=0.01)
    yield sim
    sim.stop()


class TestInstrumentSpec:
    """Test instrument definitions."""

    def test_volatility_defaults_by_class(self):
        """Index and volatility instruments move more than single names."""
        assert InstrumentSpec("X", 10.0).volatility == 0.001
        assert InstrumentSpec("N", 10.0, InstrumentClass.INDEX).volatility == 0.002
        assert InstrumentSpec("V", 10.0, InstrumentClass.VOLATILITY).volatility == 0.02

    def test_volatility_instrument_has_no_volume(self):
        assert InstrumentSpec("V", 10.0, InstrumentClass.VOLATILITY).has_volume is False
        assert InstrumentSpec("X", 10.0).has_volume is True

    def test_non_positive_price_rejected(self):
        with pytest.raises(ValueError):
            InstrumentSpec("X", 0.0)

    def test_from_dict(self):
        spec = InstrumentSpec.from_dict({"symbol": "EUR-USD", "initial_price": 1.085, "class": "forex", "decimals": 4})
        assert spec.instrument_class is InstrumentClass.FOREX
        assert spec.decimals == 4

    def test_default_universe_covers_default_watchlist(self):
        symbols = {spec.symbol for spec in DEFAULT_INSTRUMENTS}
        assert {"NVDA", "TSLA", "BTC-USD", "ETH-USD", "EUR-USD", "XAU-USD"} <= symbols
        assert "NIFTY 50" in symbols and "INDIA VIX" in symbols


class TestPriceSimulator:
    """Test tick generation."""

    def test_initial_history_is_seeded_with_initial_price(self, simulator):
        snap = simulator.get_snapshot("BTC-USD")
        assert snap.history == tuple([50000.0] * HISTORY_LENGTH)
        assert snap.change == 0
        assert snap.change_percent == 0

    def test_construction_seeds_bus_for_late_subscribers(self, event_bus, simulator):
        received = []
        event_bus.subscribe(received.append)
        assert len(received) == 1
        assert len(received[0]) == len(simulator.symbols)

    def test_tick_publishes_full_batch(self, event_bus, simulator):
        received = []
        event_bus.subscribe(received.append)

        batch = simulator.tick()

        assert received[-1] is batch
        assert {s.symbol for s in batch} == set(simulator.symbols)
        assert len({s.timestamp for s in batch}) == 1

    def test_invariants_hold_over_many_ticks(self, simulator):
        """low <= price <= high, bounded history, non-decreasing volume."""
        previous = {s: simulator.get_snapshot(s) for s in simulator.symbols}
        for _ in range(100):
            batch = simulator.tick()
            for snap in batch:
                prev = previous[snap.symbol]
                assert snap.low <= snap.price <= snap.high
                assert snap.price > 0
                assert len(snap.history) == HISTORY_LENGTH
                assert snap.history[-1] == snap.price
                assert snap.history[:-1] == prev.history[1:]
                assert snap.high >= prev.high
                assert snap.low <= prev.low
                assert snap.volume >= prev.volume
                previous[snap.symbol] = snap

    def test_volatility_index_volume_stays_zero(self, simulator):
        for _ in range(10):
            simulator.tick()
        assert simulator.get_snapshot("INDIA VIX").volume == 0

    def test_change_is_measured_from_initial_price(self, event_bus):
        sim = PriceSimulator(event_bus, instruments=[InstrumentSpec("X", 100.0)], seed=1)
        for _ in range(5):
            sim.tick()
        snap = sim.get_snapshot("X")
        assert snap.change == pytest.approx(round(snap.price - 100.0, 2))
        assert snap.change_percent == pytest.approx(round((snap.price - 100.0) / 100.0 * 100, 2))

    def test_price_is_floored(self, event_bus):
        spec = InstrumentSpec("PENNY", MIN_PRICE, volatility=0.9)
        sim = PriceSimulator(event_bus, instruments=[spec], seed=3)
        for _ in range(200):
            sim.tick()
            assert sim.get_snapshot("PENNY").price >= MIN_PRICE

    def test_seed_makes_walk_reproducible(self):
        a = PriceSimulator(MarketEventBus(), seed=11)
        b = PriceSimulator(MarketEventBus(), seed=11)
        for _ in range(5):
            assert a.tick().by_symbol()["NVDA"].price == b.tick().by_symbol()["NVDA"].price

    def test_duplicate_symbols_rejected(self, event_bus):
        with pytest.raises(ValueError):
            PriceSimulator(event_bus, instruments=[InstrumentSpec("X", 1.0), InstrumentSpec("X", 2.0)])

    def test_unknown_symbol_snapshot_is_none(self, simulator):
        assert simulator.get_snapshot("NOPE") is None

    def test_reentrant_tick_is_skipped(self, event_bus, simulator):
        """A subscriber that ticks during delivery does not interleave batches."""
        nested = []
        armed = {"on": False}

        def ticker(batch):
            if armed["on"]:
                nested.append(simulator.tick())

        event_bus.subscribe(ticker)
        armed["on"] = True

        simulator.tick()

        assert nested == [None]
        assert simulator.get_status()["skipped_ticks"] == 1

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, event_bus, simulator):
        received = []
        event_bus.subscribe(received.append)
        received.clear()

        simulator.start()
        simulator.start()
        await asyncio.sleep(0.055)
        simulator.stop()

        sequences = [b.sequence for b in received]
        # One timer only: sequences strictly increase by one
        assert sequences == list(range(1, len(sequences) + 1))
        assert len(sequences) >= 1

    @pytest.mark.asyncio
    async def test_stop_halts_ticks(self, event_bus, simulator):
        received = []
        event_bus.subscribe(received.append)

        simulator.start()
        await asyncio.sleep(0.03)
        simulator.stop()
        simulator.stop()
        count = len(received)
        await asyncio.sleep(0.05)

        assert len(received) == count
        assert simulator.is_running is False

    def test_stop_before_start_is_noop(self, simulator):
        simulator.stop()
        assert simulator.is_running is False

"""
Tests for Alert Evaluator
=========================
"""

import pytest

from signaldesk.alert_evaluator import AlertEvaluator
from signaldesk.notifications import ChimeChannel, ChimeHook
from signaldesk.watchlist import AlertCondition


class RecordingChannel(ChimeChannel):
    name = "recording"

    def __init__(self):
        self.batches = []

    def send(self, notifications):
        self.batches.append(list(notifications))
        return True


class BrokenChannel(ChimeChannel):
    name = "broken"

    def send(self, notifications):
        raise OSError("no audio device")


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def evaluator(store, queue, channel, event_bus):
    ev = AlertEvaluator(store, queue, ChimeHook([channel]))
    ev.attach(event_bus)
    return ev


class TestAlertEvaluator:
    """Test threshold crossing and at-most-once firing."""

    def test_btc_crossing_fires_once(self, store, queue, channel, event_bus, evaluator, make_batch):
        """Crossing fires one notification; staying past the threshold does not refire."""
        event_bus.publish(make_batch({"BTC-USD": 50000.0}))
        store.set_alert("BTC-USD", 51000)
        assert store.get("BTC-USD").alert.condition is AlertCondition.ABOVE

        event_bus.publish(make_batch({"BTC-USD": 50500.0}))
        assert len(queue) == 0

        event_bus.publish(make_batch({"BTC-USD": 51010.0}))
        assert len(queue) == 1
        note = queue.items()[0]
        assert note.title == "Price Alert: BTC-USD"
        assert note.message == "BTC-USD crossed ABOVE 51000"
        assert store.get("BTC-USD").alert.is_active is False

        event_bus.publish(make_batch({"BTC-USD": 51200.0}))
        event_bus.publish(make_batch({"BTC-USD": 52000.0}))
        assert len(queue) == 1
        assert len(channel.batches) == 1

    def test_below_alert(self, store, queue, event_bus, evaluator, make_batch):
        event_bus.publish(make_batch({"TSLA": 175.0}))
        store.set_alert("TSLA", 170.5)

        event_bus.publish(make_batch({"TSLA": 171.0}))
        assert len(queue) == 0

        event_bus.publish(make_batch({"TSLA": 170.5}))
        assert queue.items()[0].message == "TSLA crossed BELOW 170.5"

    def test_condition_is_not_rederived(self, store, queue, event_bus, evaluator, make_batch):
        """An ABOVE alert does not fire when price falls, even below the target."""
        event_bus.publish(make_batch({"NVDA": 880.0}))
        store.set_alert("NVDA", 900)

        event_bus.publish(make_batch({"NVDA": 850.0}))

        assert len(queue) == 0
        assert store.get("NVDA").alert.is_active

    def test_target_equal_to_price_fires_on_next_batch(self, store, queue, event_bus, evaluator, make_batch):
        """Degenerate BELOW alert is met immediately by an unchanged price."""
        event_bus.publish(make_batch({"NVDA": 880.0}))
        store.set_alert("NVDA", 880.0)

        event_bus.publish(make_batch({"NVDA": 880.0}))

        assert len(queue) == 1
        assert queue.items()[0].message == "NVDA crossed BELOW 880"

    def test_multiple_alerts_same_batch(self, store, queue, channel, event_bus, evaluator, make_batch):
        """All alerts triggered by one batch notify together, in watchlist order."""
        event_bus.publish(make_batch({"NVDA": 880.0, "TSLA": 175.0}))
        store.set_alert("NVDA", 890)
        store.set_alert("TSLA", 170)

        event_bus.publish(make_batch({"NVDA": 891.0, "TSLA": 169.0}))

        assert [n.symbol for n in queue.items()] == ["NVDA", "TSLA"]
        assert len(channel.batches) == 1
        assert len(channel.batches[0]) == 2

    def test_no_alerts_no_chime(self, channel, event_bus, evaluator, make_batch):
        event_bus.publish(make_batch({"NVDA": 880.0}))
        assert channel.batches == []

    def test_chime_failure_is_swallowed(self, store, queue, event_bus, make_batch):
        hook = ChimeHook([BrokenChannel()])
        AlertEvaluator(store, queue, hook).attach(event_bus)
        event_bus.publish(make_batch({"NVDA": 880.0}))
        store.set_alert("NVDA", 890)

        event_bus.publish(make_batch({"NVDA": 900.0}))

        assert len(queue) == 1
        assert hook.get_stats()["failures"] == 1
        assert event_bus.metrics.total_handler_errors == 0

    def test_attach_is_idempotent(self, store, queue, event_bus):
        ev = AlertEvaluator(store, queue)
        ev.attach(event_bus)
        ev.attach(event_bus)
        assert event_bus.subscriber_count == 1

        ev.detach(event_bus)
        assert event_bus.subscriber_count == 0

    def test_new_alert_after_trigger(self, store, queue, event_bus, evaluator, make_batch):
        """A consumed alert is only replaced by an explicit new one."""
        event_bus.publish(make_batch({"NVDA": 880.0}))
        store.set_alert("NVDA", 890)
        event_bus.publish(make_batch({"NVDA": 895.0}))
        store.set_alert("NVDA", 900)
        event_bus.publish(make_batch({"NVDA": 901.0}))

        assert [n.message for n in queue.items()] == [
            "NVDA crossed ABOVE 900",
            "NVDA crossed ABOVE 890",
        ]
        assert evaluator.get_stats()["alerts_fired"] == 2

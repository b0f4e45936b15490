import logging

from pinchpad.events import EventChannel
from pinchpad.marker_state import MarkerState, MarkerStateChanged


def _event():
    return MarkerStateChanged("m", MarkerState.DEFAULT, MarkerState.TAP, (0.5, 0.5), "T", 0.0)


def test_subscribe_and_unsubscribe():
    channel = EventChannel()
    received = []
    unsubscribe = channel.subscribe(received.append)

    assert channel.publish(_event()) == 1
    unsubscribe()
    assert channel.publish(_event()) == 0
    assert len(received) == 1
    assert channel.listener_count == 0


def test_type_filter():
    channel = EventChannel()
    typed, untyped = [], []
    channel.subscribe(typed.append, MarkerStateChanged)
    channel.subscribe(untyped.append)

    channel.publish("not a marker event")
    channel.publish(_event())

    assert len(typed) == 1
    assert len(untyped) == 2


def test_listener_errors_are_isolated(caplog):
    channel = EventChannel("drums")
    received = []

    def broken(event):
        raise ValueError("boom")

    channel.subscribe(broken)
    channel.subscribe(received.append)

    with caplog.at_level(logging.ERROR, logger="EventChannel"):
        delivered = channel.publish(_event())

    assert delivered == 1
    assert len(received) == 1
    assert "[drums] listener failed" in caplog.text

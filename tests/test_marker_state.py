import logging

import pytest

from pinchpad.config import MarkerConfig
from pinchpad.events import EventChannel
from pinchpad.marker_state import (
    STATE_LETTER_CODES,
    MarkerState,
    MarkerStateChanged,
    MarkerStateMachine,
)


@pytest.fixture
def machine():
    return MarkerStateMachine(events=EventChannel("test"))


@pytest.fixture
def transitions(machine):
    seen = []
    machine.events.subscribe(seen.append, MarkerStateChanged)
    return seen


def test_letter_codes():
    assert STATE_LETTER_CODES == {
        MarkerState.DEFAULT: "D",
        MarkerState.TAP: "T",
        MarkerState.ENGAGED: "E",
        MarkerState.RELEASE: "R",
    }


def test_unknown_marker_defaults(machine):
    assert machine.get_state("nope") is MarkerState.DEFAULT
    assert machine.get_state_code("nope") == "D"
    assert machine.snapshot("nope") is None


def test_tap_then_uncover_returns_to_default(machine, transitions):
    machine.update("m", True, now=0)
    assert machine.get_state("m") is MarkerState.TAP
    machine.update("m", False, now=200)
    assert machine.get_state("m") is MarkerState.DEFAULT
    assert [t.new_state for t in transitions] == [MarkerState.TAP, MarkerState.DEFAULT]


def test_engaged_through_exactly_one_tap(machine, transitions):
    for t in range(0, 502, 1):
        machine.update("m", True, now=t)

    assert machine.get_state("m") is MarkerState.ENGAGED
    assert [t.new_state for t in transitions] == [MarkerState.TAP, MarkerState.ENGAGED]
    assert transitions[1].timestamp == 500


def test_release_then_default_after_timeout(machine, transitions):
    machine.update("m", True, now=0)
    machine.update("m", True, now=500)
    machine.update("m", False, now=600)
    assert machine.get_state("m") is MarkerState.RELEASE

    machine.update("m", True, now=800)            # occlusion does not matter in RELEASE
    assert machine.get_state("m") is MarkerState.RELEASE
    machine.update("m", False, now=900)
    assert machine.get_state("m") is MarkerState.DEFAULT
    assert [t.state_code for t in transitions] == ["T", "E", "R", "D"]


def test_one_transition_per_update(machine):
    machine.update("m", True, now=0)
    snapshot = machine.update("m", True, now=10_000)
    assert snapshot.state is MarkerState.ENGAGED

    machine.update("m", False, now=10_001)
    snapshot = machine.update("m", False, now=99_999)
    assert snapshot.state is MarkerState.DEFAULT
    assert snapshot.transition.prev_state is MarkerState.RELEASE


def test_event_payload(machine, transitions):
    machine.update("pad", False, position=(0.2, 0.3), now=0)
    snapshot = machine.update("pad", True, position=(0.25, 0.35), now=40)

    event = transitions[0]
    assert event.marker_id == "pad"
    assert event.prev_state is MarkerState.DEFAULT
    assert event.new_state is MarkerState.TAP
    assert event.position == (0.25, 0.35)
    assert event.state_code == "T"
    assert event.timestamp == 40
    assert snapshot.transition == event
    assert snapshot.occluded_at == 40
    assert snapshot.last_position == (0.2, 0.3)
    assert machine.velocity("pad") == pytest.approx((0.05, 0.05))


def test_first_update_uses_default_position(machine):
    snapshot = machine.update("m", False, now=0)
    assert snapshot.position == (0.5, 0.5)
    assert snapshot.transition is None


def test_clear_and_clear_all(machine):
    machine.update("a", True, now=0)
    machine.update("b", True, now=0)

    assert machine.clear("a")
    assert not machine.clear("a")
    assert machine.get_state("a") is MarkerState.DEFAULT
    assert machine.marker_ids == ["b"]

    machine.clear_all()
    assert machine.marker_ids == []


def test_update_config(machine):
    machine.update_config(engagement_duration_ms=100)
    machine.update("m", True, now=0)
    machine.update("m", True, now=100)
    assert machine.get_state("m") is MarkerState.ENGAGED
    assert machine.config.release_timeout_ms == 300


def test_failing_listener_does_not_block_transition(caplog):
    machine = MarkerStateMachine(MarkerConfig())

    def broken(event):
        raise RuntimeError("listener bug")

    machine.events.subscribe(broken)
    with caplog.at_level(logging.ERROR):
        snapshot = machine.update("m", True, now=0)

    assert snapshot.state is MarkerState.TAP
    assert "listener failed" in caplog.text

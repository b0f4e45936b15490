"""
PinchPad Marker State - Occlusion driven interaction states

Each marker (one per ROI) runs this machine:

    ┌─────────┐  occluded   ┌─────┐  held >= 500ms  ┌─────────┐
    │ DEFAULT │ ──────────▶ │ TAP │ ──────────────▶ │ ENGAGED │
    └─────────┘ ◀────────── └─────┘                 └─────────┘
         ▲       visible                                 │ visible
         │                ┌─────────┐                    │
         └─────────────── │ RELEASE │ ◀──────────────────┘
            after 300ms   └─────────┘

At most one transition happens per update. Every transition publishes a
MarkerStateChanged event, e.g. a tap fires a drum hit and an engage
starts a sustained note.
"""

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .config import MarkerConfig
from .events import EventChannel, now_ms


class MarkerState(Enum):
    """Interaction state of a marker."""
    DEFAULT = "default"
    TAP = "tap"
    ENGAGED = "engaged"
    RELEASE = "release"


STATE_LETTER_CODES: Dict[MarkerState, str] = {
    MarkerState.DEFAULT: "D",
    MarkerState.TAP: "T",
    MarkerState.ENGAGED: "E",
    MarkerState.RELEASE: "R",
}

DEFAULT_POSITION = (0.5, 0.5)


@dataclass
class MarkerStateRecord:
    """Mutable per-marker state. Only the state machine writes to it."""
    marker_id: str
    state: MarkerState
    position: Tuple[float, float]
    last_position: Tuple[float, float]
    state_entered_at: float
    occluded_at: Optional[float] = None


@dataclass(frozen=True)
class MarkerStateChanged:
    """Published on every state transition."""
    marker_id: str
    prev_state: MarkerState
    new_state: MarkerState
    position: Tuple[float, float]
    state_code: str
    timestamp: float


@dataclass(frozen=True)
class MarkerSnapshot:
    """Read-only copy of a marker's state after an update."""
    marker_id: str
    state: MarkerState
    state_code: str
    position: Tuple[float, float]
    last_position: Tuple[float, float]
    state_entered_at: float
    occluded_at: Optional[float] = None
    transition: Optional[MarkerStateChanged] = None


class MarkerStateMachine:
    """
    Tracks the interaction state of every marker.

    Thread-safe. Events are published after the internal lock is released,
    so listeners may call back into the machine.
    """

    def __init__(self, config: Optional[MarkerConfig] = None, events: Optional[EventChannel] = None):
        self.config = config or MarkerConfig()
        self.events = events or EventChannel("markers")
        self._records: Dict[str, MarkerStateRecord] = {}
        self._lock = threading.RLock()
        self.logger = logging.getLogger("MarkerStateMachine")

    def _next_state(self, record: MarkerStateRecord, is_occluded: bool, now: float) -> Optional[MarkerState]:
        elapsed = now - record.state_entered_at
        state = record.state
        if state is MarkerState.DEFAULT:
            return MarkerState.TAP if is_occluded else None
        if state is MarkerState.TAP:
            if not is_occluded:
                return MarkerState.DEFAULT
            if elapsed >= self.config.engagement_duration_ms:
                return MarkerState.ENGAGED
            return None
        if state is MarkerState.ENGAGED:
            return MarkerState.RELEASE if not is_occluded else None
        if state is MarkerState.RELEASE:
            if elapsed >= self.config.release_timeout_ms:
                return MarkerState.DEFAULT
            return None
        raise ValueError(f"Unhandled marker state: {state!r}")

    def update(
        self,
        marker_id: str,
        is_occluded: bool,
        position: Optional[Tuple[float, float]] = None,
        now: Optional[float] = None,
        publish: bool = True,
    ) -> MarkerSnapshot:
        """
        Advance one marker by one step.

        Args:
            marker_id: Marker (ROI) id; a record is created on first use
            is_occluded: Debounced occlusion flag
            position: Normalized marker position, if known this frame
            now: Timestamp in milliseconds (None = monotonic clock)
            publish: False leaves publishing `snapshot.transition` to the caller

        Returns:
            Snapshot after the update, with the transition if one happened
        """
        now = now_ms() if now is None else now
        with self._lock:
            record = self._records.get(marker_id)
            if record is None:
                start = position or DEFAULT_POSITION
                record = MarkerStateRecord(
                    marker_id=marker_id,
                    state=MarkerState.DEFAULT,
                    position=start,
                    last_position=start,
                    state_entered_at=now,
                )
                self._records[marker_id] = record
                self.logger.debug(f"Marker {marker_id} registered")
            elif position is not None:
                record.last_position = record.position
                record.position = position

            transition = None
            new_state = self._next_state(record, is_occluded, now)
            if new_state is not None:
                prev_state = record.state
                record.state = new_state
                record.state_entered_at = now
                if new_state is MarkerState.TAP:
                    record.occluded_at = now
                elif new_state is MarkerState.DEFAULT:
                    record.occluded_at = None
                transition = MarkerStateChanged(
                    marker_id=marker_id,
                    prev_state=prev_state,
                    new_state=new_state,
                    position=record.position,
                    state_code=STATE_LETTER_CODES[new_state],
                    timestamp=now,
                )
            snapshot = self._snapshot(record, transition)

        if transition is not None:
            self.logger.info(
                f"Marker {marker_id}: {transition.prev_state.value} -> {transition.new_state.value}"
            )
            if publish:
                self.events.publish(transition)
        return snapshot

    @staticmethod
    def _snapshot(record: MarkerStateRecord, transition: Optional[MarkerStateChanged] = None) -> MarkerSnapshot:
        return MarkerSnapshot(
            marker_id=record.marker_id,
            state=record.state,
            state_code=STATE_LETTER_CODES[record.state],
            position=record.position,
            last_position=record.last_position,
            state_entered_at=record.state_entered_at,
            occluded_at=record.occluded_at,
            transition=transition,
        )

    def get_state(self, marker_id: str) -> MarkerState:
        with self._lock:
            record = self._records.get(marker_id)
            return record.state if record else MarkerState.DEFAULT

    def get_state_code(self, marker_id: str) -> str:
        return STATE_LETTER_CODES[self.get_state(marker_id)]

    def snapshot(self, marker_id: str) -> Optional[MarkerSnapshot]:
        with self._lock:
            record = self._records.get(marker_id)
            return self._snapshot(record) if record else None

    def velocity(self, marker_id: str) -> Tuple[float, float]:
        """Position change between the last two updates (normalized units)."""
        with self._lock:
            record = self._records.get(marker_id)
            if record is None:
                return (0.0, 0.0)
            return (
                record.position[0] - record.last_position[0],
                record.position[1] - record.last_position[1],
            )

    def clear(self, marker_id: str) -> bool:
        with self._lock:
            return self._records.pop(marker_id, None) is not None

    def clear_all(self):
        with self._lock:
            self._records.clear()

    def update_config(
        self,
        engagement_duration_ms: Optional[float] = None,
        release_timeout_ms: Optional[float] = None,
    ):
        with self._lock:
            changes = {}
            if engagement_duration_ms is not None:
                changes["engagement_duration_ms"] = float(engagement_duration_ms)
            if release_timeout_ms is not None:
                changes["release_timeout_ms"] = float(release_timeout_ms)
            self.config = replace(self.config, **changes)

    @property
    def marker_ids(self) -> List[str]:
        with self._lock:
            return list(self._records.keys())

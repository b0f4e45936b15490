"""
PinchPad Occlusion - Visibility debouncing

Turns a noisy per-frame visibility ratio into a stable visible/occluded
flag. A change only takes effect once it has held for its delay:

    ratio  ▔▔▔▔▁▁▁▁▁▁▁▁▁▁▁▁▁▁▁▔▔▔▔▔▔▔▔▔▔▔▔
    raw    ....|<-- 300ms -->|.|<-- 300ms -->|
    output ▔▔▔▔▔▔▔▔▔▔▔▔▔▔▔▔▔▁▁▁▁▁▁▁▁▁▁▁▁▁▁▁▔

A flicker shorter than the delay leaves the output unchanged. The frame
that starts a change only records its time, so even a zero delay needs
a second frame to commit.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import OcclusionConfig


class OcclusionEvent(Enum):
    """Debounced visibility transition."""
    OCCLUDED = "occluded"
    REAPPEARED = "reappeared"


@dataclass
class OcclusionUpdate:
    """Debouncer output for one frame."""
    is_visible: bool
    occlusion_timestamp: Optional[float]    # onset of the pending or confirmed occlusion
    event: Optional[OcclusionEvent] = None
    raw_occluded: bool = False


class OcclusionDebouncer:
    """Debounces occlusion for one ROI. Times are milliseconds."""

    def __init__(self, config: Optional[OcclusionConfig] = None, name: str = ""):
        self.config = config or OcclusionConfig()
        self.name = name
        self._visible = True
        self._pending_since: Optional[float] = None
        self._occluded_since: Optional[float] = None
        self.logger = logging.getLogger("OcclusionDebouncer")

    def update(self, visibility_ratio: float, now: float) -> OcclusionUpdate:
        """
        Feed one frame's visibility ratio.

        Args:
            visibility_ratio: Fraction of the ROI judged visible (0..1)
            now: Frame timestamp in milliseconds

        Returns:
            OcclusionUpdate; `event` is set only on the frame the flag flips
        """
        cfg = self.config
        raw_occluded = visibility_ratio < cfg.occlusion_threshold
        event = None

        if self._visible:
            if raw_occluded:
                if self._pending_since is None:
                    self._pending_since = now
                elif now - self._pending_since >= cfg.occlusion_delay_ms:
                    self._visible = False
                    self._occluded_since = self._pending_since
                    self._pending_since = None
                    event = OcclusionEvent.OCCLUDED
            else:
                self._pending_since = None
        else:
            if not raw_occluded:
                if self._pending_since is None:
                    self._pending_since = now
                elif now - self._pending_since >= cfg.reappearance_delay_ms:
                    self._visible = True
                    self._occluded_since = None
                    self._pending_since = None
                    event = OcclusionEvent.REAPPEARED
            else:
                self._pending_since = None

        if event is not None:
            self.logger.debug(f"{self.name}: {event.value} at {now:.0f}ms")

        return OcclusionUpdate(
            is_visible=self._visible,
            occlusion_timestamp=self.occlusion_timestamp,
            event=event,
            raw_occluded=raw_occluded,
        )

    def reset(self):
        self._visible = True
        self._pending_since = None
        self._occluded_since = None

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def occlusion_timestamp(self) -> Optional[float]:
        if self._visible:
            return self._pending_since
        return self._occluded_since

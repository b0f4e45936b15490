"""
PinchPad Gestures - Pinch drawing and knuckle calibration

Turns the hand layer's output into pipeline input:

- PinchRoiBuilder: the path traced while pinching becomes a CircularROI
  when the pinch is released (center = mean of the path, radius = half
  the farthest-pair distance, never smaller than 30px)
- knuckle_span_px: index-MCP (landmark 5) to pinky-MCP (landmark 17)
  distance, a hand-sized ruler for the pixel-to-cm ratio
"""

import math
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .region import CircularROI


MIN_ROI_RADIUS_PX = 30.0
DEFAULT_ROI_RADIUS_PX = 50.0
MIN_PATH_POINTS = 3

INDEX_MCP = 5
PINKY_MCP = 17
KNUCKLE_CM_RANGE = (5.0, 12.0)

logger = logging.getLogger(__name__)


@dataclass
class PinchEvent:
    """One frame of pinch state for one finger."""
    is_pinching: bool
    position: Tuple[float, float]   # frame pixels
    finger_id: int = 0
    timestamp: float = 0.0


def fit_circle(points: Sequence[Tuple[float, float]]) -> Tuple[Tuple[float, float], float]:
    """
    Fit a circle to a drawn path.

    Returns:
        (center, radius) in the path's pixel units
    """
    if not points:
        raise ValueError("Cannot fit a circle to an empty path")
    cx = sum(p[0] for p in points) / len(points)
    cy = sum(p[1] for p in points) / len(points)
    if len(points) < MIN_PATH_POINTS:
        return (cx, cy), DEFAULT_ROI_RADIUS_PX

    diameter = 0.0
    for i in range(len(points)):
        for j in range(i + 1, len(points)):
            d = math.hypot(points[i][0] - points[j][0], points[i][1] - points[j][1])
            if d > diameter:
                diameter = d
    return (cx, cy), max(diameter / 2.0, MIN_ROI_RADIUS_PX)


class PinchRoiBuilder:
    """Collects pinch paths per finger and emits an ROI on release."""

    def __init__(self, frame_size: Tuple[int, int]):
        """
        Args:
            frame_size: (width, height) of the surface the pinch positions are in
        """
        self.frame_size = frame_size
        self._paths: Dict[int, List[Tuple[float, float]]] = {}

    def feed(self, event: PinchEvent) -> Optional[CircularROI]:
        """
        Feed one pinch event.

        Returns:
            A new CircularROI when a pinch ends, otherwise None
        """
        if event.is_pinching:
            self._paths.setdefault(event.finger_id, []).append(
                (float(event.position[0]), float(event.position[1]))
            )
            return None

        path = self._paths.pop(event.finger_id, None)
        if not path:
            return None
        return self.build(path, created_at=event.timestamp or None)

    def build(self, path: Sequence[Tuple[float, float]], created_at: Optional[float] = None) -> CircularROI:
        width, height = self.frame_size
        (cx, cy), radius = fit_circle(path)
        roi = CircularROI.create(
            center=(cx / width, cy / height),
            radius=radius / width,
            created_at=created_at,
        )
        logger.info(
            f"ROI {roi.roi_id} drawn at ({cx:.0f}, {cy:.0f}) r={radius:.0f}px from {len(path)} points"
        )
        return roi

    def cancel(self, finger_id: Optional[int] = None):
        if finger_id is None:
            self._paths.clear()
        else:
            self._paths.pop(finger_id, None)

    @property
    def is_drawing(self) -> bool:
        return bool(self._paths)

    def current_path(self, finger_id: int = 0) -> List[Tuple[float, float]]:
        return list(self._paths.get(finger_id, []))


def knuckle_span_px(landmarks: Sequence[Sequence[float]], frame_size: Tuple[int, int]) -> Optional[float]:
    """
    Pixel distance between the index and pinky knuckles.

    Args:
        landmarks: 21 hand landmarks, normalized (x, y[, z])
        frame_size: (width, height) in pixels

    Returns:
        Distance in pixels, or None if the landmarks are incomplete
    """
    if landmarks is None or len(landmarks) <= PINKY_MCP:
        return None
    width, height = frame_size
    a, b = landmarks[INDEX_MCP], landmarks[PINKY_MCP]
    span = math.hypot((a[0] - b[0]) * width, (a[1] - b[1]) * height)
    return span if span > 0 else None


def clamp_knuckle_distance(distance_cm: float) -> float:
    low, high = KNUCKLE_CM_RANGE
    return min(high, max(low, distance_cm))

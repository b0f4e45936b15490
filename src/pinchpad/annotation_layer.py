"""
PinchPad Annotation Layer - Debug overlay for tracked ROIs

Draws, per ROI:
- the drawn circle (dashed while no reference has been captured)
- the tracked reference outline projected by the homography
- detected shapes, colored by type, with their labels and sizes
- a state badge: letter code (D/T/E/R), confidence bar, visibility

All colors are BGR; draw on the frame you display.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import cv2

from .feature_tracker import TrackerPhase
from .marker_state import MarkerState
from .pipeline import RoiFrameResult
from .region import CircularROI
from .shapes import ShapeType


Color = Tuple[int, int, int]


@dataclass
class ColorScheme:
    """Overlay colors."""
    roi: Color = (255, 255, 0)          # Cyan
    tracked: Color = (0, 255, 128)      # Green
    lost: Color = (0, 0, 255)           # Red
    text: Color = (255, 255, 255)       # White
    background: Color = (0, 0, 0)       # Black


def shape_color(shape: ShapeType) -> Color:
    if shape is ShapeType.TRIANGLE:
        return (0, 200, 255)
    if shape is ShapeType.SQUARE:
        return (255, 128, 0)
    if shape is ShapeType.RECTANGLE:
        return (255, 0, 200)
    if shape is ShapeType.CIRCLE:
        return (0, 255, 0)
    if shape is ShapeType.UNKNOWN:
        return (160, 160, 160)
    raise ValueError(f"Unhandled shape type: {shape!r}")


def state_color(state: MarkerState) -> Color:
    if state is MarkerState.DEFAULT:
        return (200, 200, 200)
    if state is MarkerState.TAP:
        return (0, 255, 255)
    if state is MarkerState.ENGAGED:
        return (0, 128, 255)
    if state is MarkerState.RELEASE:
        return (255, 0, 255)
    raise ValueError(f"Unhandled marker state: {state!r}")


class RoiOverlayRenderer:
    """Renders pipeline results onto frames."""

    def __init__(
        self,
        colors: Optional[ColorScheme] = None,
        font: int = cv2.FONT_HERSHEY_SIMPLEX,
        font_scale: float = 0.5,
        thickness: int = 1,
    ):
        self.colors = colors or ColorScheme()
        self.font = font
        self.font_scale = font_scale
        self.thickness = thickness

    def _draw_dashed_circle(self, frame: np.ndarray, center: Tuple[int, int], radius: int,
                            color: Color, segments: int = 24):
        step = 2 * math.pi / segments
        for i in range(0, segments, 2):
            start = math.degrees(i * step)
            cv2.ellipse(frame, center, (radius, radius), 0, start, start + math.degrees(step),
                        color, 2, cv2.LINE_AA)

    def _draw_text(self, frame: np.ndarray, text: str, origin: Tuple[int, int], color: Color):
        (text_w, text_h), _ = cv2.getTextSize(text, self.font, self.font_scale, self.thickness)
        h, w = frame.shape[:2]
        x = max(2, min(origin[0], w - text_w - 2))
        y = max(text_h + 2, min(origin[1], h - 2))
        cv2.rectangle(frame, (x - 2, y - text_h - 3), (x + text_w + 2, y + 3), self.colors.background, -1)
        cv2.putText(frame, text, (x, y), self.font, self.font_scale, color, self.thickness, cv2.LINE_AA)

    def _draw_confidence_bar(self, frame: np.ndarray, x: int, y: int, confidence: float, width: int = 50):
        confidence = max(0.0, min(1.0, confidence))
        cv2.rectangle(frame, (x, y), (x + width, y + 6), (50, 50, 50), -1)
        fill = (0, 255, 0) if confidence > 0.7 else (0, 255, 255) if confidence > 0.4 else (0, 0, 255)
        cv2.rectangle(frame, (x, y), (x + int(width * confidence), y + 6), fill, -1)
        cv2.rectangle(frame, (x, y), (x + width, y + 6), (200, 200, 200), 1)

    def render_roi(self, frame: np.ndarray, roi: CircularROI, result: Optional[RoiFrameResult] = None) -> np.ndarray:
        """Draw one ROI and, when available, its latest result."""
        h, w = frame.shape[:2]
        center = (int(roi.center[0] * w), int(roi.center[1] * h))
        radius = max(1, int(roi.radius * w))

        if result is None or result.phase is TrackerPhase.UNINITIALIZED:
            self._draw_dashed_circle(frame, center, radius, self.colors.roi)
        else:
            cv2.circle(frame, center, radius, self.colors.roi, 1, cv2.LINE_AA)

        if result is None:
            return frame

        tracking = result.tracking
        if tracking.corners:
            quad = np.array(tracking.corners, dtype=np.int32).reshape(-1, 1, 2)
            color = self.colors.tracked if tracking.is_tracked else self.colors.lost
            cv2.polylines(frame, [quad], True, color, 2, cv2.LINE_AA)
        if tracking.is_tracked and tracking.center is not None:
            cx, cy = int(tracking.center[0]), int(tracking.center[1])
            cv2.circle(frame, (cx, cy), 4, self.colors.tracked, -1, cv2.LINE_AA)
            if tracking.rotation is not None:
                tip = (int(cx + 25 * math.cos(-tracking.rotation)), int(cy + 25 * math.sin(-tracking.rotation)))
                cv2.line(frame, (cx, cy), tip, self.colors.tracked, 2, cv2.LINE_AA)

        for marker in result.markers:
            mx, my = int(marker.center[0] * w), int(marker.center[1] * h)
            color = shape_color(marker.shape)
            cv2.circle(frame, (mx, my), 3, color, -1, cv2.LINE_AA)
            text = marker.label
            if marker.size_cm is not None:
                text += f" {marker.size_cm[0]:.1f}x{marker.size_cm[1]:.1f}cm"
            self._draw_text(frame, text, (mx + 6, my - 6), color)

        state = result.marker.state
        badge_x, badge_y = center[0] - radius, center[1] - radius - 8
        badge = f"[{result.marker.state_code}] {state.value}"
        if not result.is_visible:
            badge += " (occluded)"
        self._draw_text(frame, badge, (badge_x, badge_y), state_color(state))
        self._draw_confidence_bar(frame, center[0] - 25, center[1] + radius + 6, tracking.confidence)
        return frame

    def render_all(
        self,
        frame: np.ndarray,
        rois: Dict[str, CircularROI],
        results: Dict[str, RoiFrameResult],
    ) -> np.ndarray:
        for roi_id, roi in rois.items():
            self.render_roi(frame, roi, results.get(roi_id))
        return frame

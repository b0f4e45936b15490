"""
PinchPad Region Extraction - Circular ROI to pixel region

A CircularROI lives in normalized coordinates: center in [0, 1] per axis,
radius as a fraction of the frame WIDTH. The extractor maps it onto the
current frame (optionally via a display surface of another size), clamps
the bounding square to the frame and returns a copy of the pixels plus a
circular mask.

    display (dw x dh)                 source frame (fw x fh)
    ┌───────────────┐   scale =       ┌──────────────────────┐
    │     ( o )     │ ──────────────▶ │        (  o  )       │
    └───────────────┘  fw/dw, fh/dh   └──────────────────────┘
"""

import math
import time
import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from .config import ExtractorConfig


@dataclass(frozen=True)
class CircularROI:
    """A user-drawn circular region in normalized frame coordinates."""
    roi_id: str
    center: Tuple[float, float]     # (x, y) in [0, 1]
    radius: float                   # fraction of frame width
    created_at: float = field(default_factory=lambda: time.monotonic() * 1000.0)

    def __post_init__(self):
        if not self.radius > 0:
            raise ValueError(f"ROI radius must be positive, got {self.radius}")

    @classmethod
    def create(
        cls,
        center: Tuple[float, float],
        radius: float,
        roi_id: Optional[str] = None,
        created_at: Optional[float] = None,
    ) -> "CircularROI":
        roi_id = roi_id or str(uuid.uuid4())[:8]
        if created_at is None:
            return cls(roi_id, (float(center[0]), float(center[1])), float(radius))
        return cls(roi_id, (float(center[0]), float(center[1])), float(radius), created_at)


@dataclass
class RoiRegion:
    """Pixels cut out of one frame for one ROI."""
    roi_id: str
    pixels: np.ndarray
    mask: np.ndarray                        # 255 inside the circle
    detection_mask: Optional[np.ndarray]    # inset mask for edges/keypoints
    offset: Tuple[int, int]                 # top-left corner in frame pixels
    center: Tuple[float, float]             # circle center, region-local pixels
    radius: Tuple[float, float]             # (rx, ry) in frame pixels
    frame_size: Tuple[int, int]             # (width, height)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def to_frame(self, x: float, y: float) -> Tuple[float, float]:
        """Region-local pixel -> frame pixel."""
        return (x + self.offset[0], y + self.offset[1])

    def to_normalized(self, x: float, y: float) -> Tuple[float, float]:
        """Region-local pixel -> normalized frame coordinates."""
        fx, fy = self.to_frame(x, y)
        fw, fh = self.frame_size
        return (fx / fw, fy / fh)


def ellipse_mask(
    height: int,
    width: int,
    center: Tuple[float, float],
    radius: Tuple[float, float],
) -> np.ndarray:
    """uint8 mask with 255 inside the axis-aligned ellipse."""
    rx, ry = radius
    if rx <= 0 or ry <= 0:
        return np.zeros((height, width), dtype=np.uint8)
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
    dx = (xs + 0.5 - center[0]) / rx
    dy = (ys + 0.5 - center[1]) / ry
    return np.where(dx * dx + dy * dy <= 1.0, 255, 0).astype(np.uint8)


class RegionExtractor:
    """
    Cuts a CircularROI out of a frame.

    A None return means "skip this frame" (no frame yet, or the ROI lies
    completely outside it) and is never an error.
    """

    def __init__(self, config: Optional[ExtractorConfig] = None):
        self.config = config or ExtractorConfig()
        self.logger = logging.getLogger("RegionExtractor")

    def extract(
        self,
        roi: CircularROI,
        frame: Optional[np.ndarray],
        display_size: Optional[Tuple[int, int]] = None,
        source_size: Optional[Tuple[int, int]] = None,
    ) -> Optional[RoiRegion]:
        """
        Extract the ROI pixels from a frame.

        Args:
            roi: Region in normalized coordinates
            frame: Source frame (H x W x C or H x W)
            display_size: (width, height) of the surface the ROI was drawn on
            source_size: (width, height) of the source (None = frame size)

        Returns:
            RoiRegion, or None when there is nothing to extract
        """
        if frame is None or frame.size == 0:
            return None

        frame_h, frame_w = frame.shape[:2]
        src_w, src_h = source_size or (frame_w, frame_h)
        base_w, base_h = display_size or (src_w, src_h)
        if base_w <= 0 or base_h <= 0:
            return None

        scale_x = src_w / base_w
        scale_y = src_h / base_h

        cx = roi.center[0] * base_w * scale_x
        cy = roi.center[1] * base_h * scale_y
        r_base = roi.radius * base_w
        rx = r_base * scale_x
        ry = r_base * scale_y

        # Clamp each side on its own
        x0 = max(0, int(math.floor(cx - rx)))
        y0 = max(0, int(math.floor(cy - ry)))
        x1 = min(frame_w, int(math.ceil(cx + rx)))
        y1 = min(frame_h, int(math.ceil(cy + ry)))

        if x1 - x0 <= 0 or y1 - y0 <= 0:
            self.logger.debug(f"ROI {roi.roi_id} outside frame, skipping")
            return None

        pixels = frame[y0:y1, x0:x1].copy()
        height, width = pixels.shape[:2]
        local_center = (cx - x0, cy - y0)

        mask = ellipse_mask(height, width, local_center, (rx, ry))
        detection_mask = None

        if self.config.apply_mask:
            margin = self.config.mask_margin_px
            detection_mask = ellipse_mask(
                height, width, local_center,
                (max(0.0, rx - margin), max(0.0, ry - margin))
            )
            if pixels.ndim == 3 and pixels.shape[2] == 4:
                pixels[:, :, 3][mask == 0] = 0

        return RoiRegion(
            roi_id=roi.roi_id,
            pixels=pixels,
            mask=mask,
            detection_mask=detection_mask,
            offset=(x0, y0),
            center=local_center,
            radius=(rx, ry),
            frame_size=(frame_w, frame_h),
        )

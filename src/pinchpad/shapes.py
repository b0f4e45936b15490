"""
PinchPad Shapes - Contour detection and shape classification

Pipeline for one ROI region:

    pixels ─▶ gray ─▶ GaussianBlur(5) ─▶ Canny(50,150) ─▶ dilate(3x3)
                                                              │
                         inset circle mask  ──────── AND ◀────┘
                                                              │
    ContourSet ◀── top 10 by area ◀── area >= 100 ◀── external contours

Each surviving contour is classified by its approximated polygon:

    3 vertices              -> triangle
    4 vertices, aspect<1.2  -> square (otherwise rectangle)
    8-12 vertices, round    -> circle (4*pi*A/P^2 > 0.8)
    anything else           -> unknown
"""

import math
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from .config import ContourConfig
from .region import RoiRegion
from .shape_identity import hu_descriptor
from .vision import VisionProvider


SQUARE_ASPECT_MAX = 1.2
CIRCLE_MIN_VERTICES = 8
CIRCLE_MAX_VERTICES = 12
CIRCULARITY_MIN = 0.8


class ShapeType(Enum):
    """Classified outline of a contour."""
    TRIANGLE = "triangle"
    SQUARE = "square"
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    UNKNOWN = "unknown"


def shape_display_name(shape: ShapeType) -> str:
    if shape is ShapeType.TRIANGLE:
        return "Triangle"
    if shape is ShapeType.SQUARE:
        return "Square"
    if shape is ShapeType.RECTANGLE:
        return "Rectangle"
    if shape is ShapeType.CIRCLE:
        return "Circle"
    if shape is ShapeType.UNKNOWN:
        return "Shape"
    raise ValueError(f"Unhandled shape type: {shape!r}")


@dataclass
class ShapeInfo:
    """Classification of one contour."""
    shape: ShapeType
    corners: List[Tuple[float, float]]
    perimeter: float
    area: float
    center: Tuple[float, float]


@dataclass
class DetectedContour:
    """A contour that survived filtering, in region-local pixels."""
    contour: np.ndarray
    area: float
    hu: List[float]
    info: ShapeInfo


@dataclass
class ContourSet:
    """All contours found in one region, largest first."""
    contours: List[DetectedContour] = field(default_factory=list)
    center_of_mass: Optional[Tuple[float, float]] = None    # region-local pixels

    @property
    def count(self) -> int:
        return len(self.contours)

    @property
    def hu_descriptors(self) -> List[List[float]]:
        return [c.hu for c in self.contours]


@dataclass
class MarkerMeasurement:
    """A labelled shape with its real-world size when calibrated."""
    label: str
    shape: ShapeType
    center: Tuple[float, float]                 # normalized frame coordinates
    size_px: Tuple[float, float]
    size_cm: Optional[Tuple[float, float]] = None


def classify_shape(
    contour: np.ndarray,
    vision: VisionProvider,
    epsilon_ratio: float = 0.04,
) -> ShapeInfo:
    """
    Classify a contour by its approximated polygon.

    Args:
        contour: OpenCV contour (N x 1 x 2 or N x 2, int32 or float32)
        vision: Provider for the contour primitives
        epsilon_ratio: Approximation tolerance as a fraction of the perimeter

    Returns:
        ShapeInfo with the shape, polygon corners, perimeter, area and centroid
    """
    contour = np.asarray(contour)
    if contour.dtype not in (np.int32, np.float32):
        contour = contour.astype(np.float32)
    if contour.ndim == 2:
        contour = contour.reshape(-1, 1, 2)

    perimeter = vision.arc_length(contour, True)
    area = vision.contour_area(contour)
    approx = vision.approx_poly(contour, epsilon_ratio * perimeter)
    corners = approx.reshape(-1, 2).astype(np.float64)
    vertices = len(corners)

    shape = ShapeType.UNKNOWN
    if vertices == 3:
        shape = ShapeType.TRIANGLE
    elif vertices == 4:
        w, h = np.ptp(corners[:, 0]), np.ptp(corners[:, 1])
        short = min(w, h)
        aspect = max(w, h) / short if short > 0 else math.inf
        shape = ShapeType.SQUARE if aspect < SQUARE_ASPECT_MAX else ShapeType.RECTANGLE
    elif CIRCLE_MIN_VERTICES <= vertices <= CIRCLE_MAX_VERTICES and perimeter > 0:
        circularity = 4.0 * math.pi * area / (perimeter * perimeter)
        if circularity > CIRCULARITY_MIN:
            shape = ShapeType.CIRCLE

    m = vision.moments(contour)
    if m["m00"] != 0:
        center = (m["m10"] / m["m00"], m["m01"] / m["m00"])
    else:
        pts = contour.reshape(-1, 2).astype(np.float64)
        center = (float(pts[:, 0].mean()), float(pts[:, 1].mean()))

    return ShapeInfo(
        shape=shape,
        corners=[(float(x), float(y)) for x, y in corners],
        perimeter=perimeter,
        area=area,
        center=(float(center[0]), float(center[1])),
    )


class ContourDetector:
    """Finds, filters and classifies the dominant contours of a region."""

    def __init__(self, vision: VisionProvider, config: Optional[ContourConfig] = None):
        self.config = config or ContourConfig()
        self.vision = vision
        self.logger = logging.getLogger("ContourDetector")

    def detect(self, region: RoiRegion) -> ContourSet:
        """
        Detect contours inside a region.

        Raises:
            VisionError: If an OpenCV primitive fails
        """
        cfg = self.config
        with self.vision.scope() as scope:
            gray = scope.adopt(self.vision.to_gray(region.pixels))
            blurred = scope.adopt(self.vision.gaussian_blur(gray.value, cfg.blur_kernel))
            edges = scope.adopt(self.vision.canny(blurred.value, cfg.canny_low, cfg.canny_high))
            dilated = scope.adopt(self.vision.dilate(edges.value, 3))

            edge_map = dilated.value
            if region.detection_mask is not None:
                edge_map[region.detection_mask == 0] = 0

            raw = self.vision.find_external_contours(edge_map)

        kept = []
        for contour in raw:
            area = self.vision.contour_area(contour)
            if area >= cfg.min_contour_area:
                kept.append((area, contour))
        kept.sort(key=lambda item: item[0], reverse=True)
        kept = kept[:cfg.max_contours]

        detected = [
            DetectedContour(
                contour=contour,
                area=area,
                hu=hu_descriptor(contour, self.vision),
                info=classify_shape(contour, self.vision, cfg.approx_epsilon),
            )
            for area, contour in kept
        ]

        total = sum(d.area for d in detected)
        center_of_mass = None
        if total > 0:
            center_of_mass = (
                sum(d.info.center[0] * d.area for d in detected) / total,
                sum(d.info.center[1] * d.area for d in detected) / total,
            )

        self.logger.debug(f"Region {region.roi_id}: {len(raw)} raw, {len(detected)} kept contours")
        return ContourSet(contours=detected, center_of_mass=center_of_mass)


def measure_markers(
    contours: ContourSet,
    region: RoiRegion,
    vision: VisionProvider,
    cm_per_pixel: Optional[float] = None,
) -> List[MarkerMeasurement]:
    """
    Label each detected shape and, when calibrated, size it in centimetres.

    Labels read "<shape> #<n>", numbered from 1 in area order.
    """
    markers = []
    for i, detected in enumerate(contours.contours):
        _, (w, h), _ = vision.min_area_rect(detected.contour)
        size_cm = None
        if cm_per_pixel is not None and cm_per_pixel > 0:
            size_cm = (w * cm_per_pixel, h * cm_per_pixel)
        markers.append(MarkerMeasurement(
            label=f"{detected.info.shape.value} #{i + 1}",
            shape=detected.info.shape,
            center=region.to_normalized(*detected.info.center),
            size_px=(float(w), float(h)),
            size_cm=size_cm,
        ))
    return markers

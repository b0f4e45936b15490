import math

import numpy as np
import cv2
import pytest

from pinchpad.region import CircularROI, RegionExtractor
from pinchpad.shapes import (
    ContourDetector,
    ShapeType,
    classify_shape,
    measure_markers,
    shape_display_name,
)


def _contour(points):
    return np.array(points, dtype=np.int32).reshape(-1, 1, 2)


def _regular_polygon(sides, radius=50, center=(100, 100)):
    return _contour([
        (round(center[0] + radius * math.cos(2 * math.pi * i / sides)),
         round(center[1] + radius * math.sin(2 * math.pi * i / sides)))
        for i in range(sides)
    ])


def test_square_below_aspect_limit(vision):
    info = classify_shape(_contour([(10, 10), (129, 10), (129, 110), (10, 110)]), vision)
    assert info.shape is ShapeType.SQUARE
    assert len(info.corners) == 4
    assert info.center == pytest.approx((69.5, 60.0))
    assert info.area == pytest.approx(119 * 100)


def test_rectangle_at_aspect_limit(vision):
    info = classify_shape(_contour([(10, 10), (130, 10), (130, 110), (10, 110)]), vision)
    assert info.shape is ShapeType.RECTANGLE


def test_triangle(vision):
    info = classify_shape(_contour([(50, 10), (90, 90), (10, 90)]), vision)
    assert info.shape is ShapeType.TRIANGLE


def test_octagon_counts_as_circle(vision):
    info = classify_shape(_regular_polygon(8), vision)
    assert info.shape is ShapeType.CIRCLE


def test_pentagon_is_unknown(vision):
    info = classify_shape(_regular_polygon(5), vision)
    assert info.shape is ShapeType.UNKNOWN


def test_degenerate_contour_center_falls_back_to_mean(vision):
    info = classify_shape(_contour([(0, 0), (10, 0)]), vision)
    assert info.area == 0
    assert info.shape is ShapeType.UNKNOWN
    assert info.center == pytest.approx((5.0, 0.0))


def test_every_shape_has_display_name():
    for shape in ShapeType:
        assert shape_display_name(shape)


def test_detect_single_marker(scene, center_roi, vision):
    frame = scene.blank()
    cv2.rectangle(frame, (290, 210), (350, 270), (30, 30, 30), -1)
    cv2.circle(frame, (320, 190), 1, (0, 0, 0), -1)     # speck, filtered by area
    region = RegionExtractor().extract(center_roi, frame)

    contours = ContourDetector(vision).detect(region)

    assert contours.count == 1
    assert contours.contours[0].info.shape is ShapeType.SQUARE
    assert len(contours.contours[0].hu) == 7
    assert contours.center_of_mass == pytest.approx((64.0, 64.0), abs=2.0)


def test_empty_region_has_no_contours(scene, center_roi, vision):
    region = RegionExtractor().extract(center_roi, scene.blank())
    contours = ContourDetector(vision).detect(region)
    assert contours.count == 0
    assert contours.center_of_mass is None


def test_keeps_ten_largest(scene, vision):
    frame = scene.blank()
    sizes = iter(range(14, 38, 2))
    for dy in (-50, 0, 50):
        for dx in (-75, -25, 25, 75):
            s = next(sizes)
            x, y = 320 + dx - s // 2, 240 + dy - s // 2
            cv2.rectangle(frame, (x, y), (x + s, y + s), (20, 20, 20), -1)
    roi = CircularROI.create(center=(0.5, 0.5), radius=0.3)
    region = RegionExtractor().extract(roi, frame)

    contours = ContourDetector(vision).detect(region)

    areas = [c.area for c in contours.contours]
    assert contours.count == 10
    assert areas == sorted(areas, reverse=True)


def test_measure_markers_labels_and_sizes(scene, center_roi, vision):
    frame = scene.blank()
    cv2.rectangle(frame, (290, 210), (350, 270), (30, 30, 30), -1)
    region = RegionExtractor().extract(center_roi, frame)
    contours = ContourDetector(vision).detect(region)

    uncalibrated = measure_markers(contours, region, vision)
    calibrated = measure_markers(contours, region, vision, cm_per_pixel=0.1)

    assert uncalibrated[0].label == "square #1"
    assert uncalibrated[0].size_cm is None
    assert uncalibrated[0].center == pytest.approx((0.5, 0.5), abs=0.01)
    w_px, h_px = calibrated[0].size_px
    assert calibrated[0].size_cm == pytest.approx((w_px * 0.1, h_px * 0.1))
    assert 5.5 < calibrated[0].size_cm[0] < 7.5

import numpy as np
import pytest

from pinchpad.annotation_layer import RoiOverlayRenderer, shape_color, state_color
from pinchpad.marker_state import MarkerState
from pinchpad.pipeline import RoiTrackingPipeline
from pinchpad.shapes import ShapeType
from pinchpad.smoothing import KalmanSmoother
from pinchpad.video_pipeline import PerformanceMonitor, ThreadedFrameSource


def test_every_shape_and_state_has_a_color():
    assert len({shape_color(s) for s in ShapeType}) == len(ShapeType)
    assert len({state_color(s) for s in MarkerState}) == len(MarkerState)


def test_render_draws_roi_and_result(scene, center_roi):
    pipeline = RoiTrackingPipeline()
    pipeline.set_roi(center_roi)
    frame = scene.marker()
    pipeline.process_frame(frame, now=0)
    results = pipeline.process_frame(frame, now=33)

    canvas = scene.blank()
    RoiOverlayRenderer().render_all(canvas, {"pad": center_roi}, results)

    assert not np.array_equal(canvas, scene.blank())


def test_render_roi_without_result(scene, center_roi):
    canvas = scene.blank()
    RoiOverlayRenderer().render_roi(canvas, center_roi)
    assert not np.array_equal(canvas, scene.blank())


def test_kalman_smoother():
    smoother = KalmanSmoother()
    assert smoother.position is None
    assert smoother.update(100.0, 50.0) == (100.0, 50.0)
    for _ in range(30):
        x, y = smoother.update(100.0, 50.0)
    assert (x, y) == pytest.approx((100.0, 50.0), abs=0.5)
    smoother.reset(10.0, 10.0)
    assert smoother.velocity == (0.0, 0.0)


def test_performance_monitor():
    monitor = PerformanceMonitor(window=3)
    for latency in (10.0, 20.0, 30.0, 40.0):
        monitor.update(latency)
    assert monitor.samples == 3
    assert monitor.latency_ms == 40.0
    assert monitor.avg_latency_ms == pytest.approx(30.0)


def test_frame_source_before_start():
    source = ThreadedFrameSource(source="missing-clip.mp4")
    assert source.get_current_frame() is None
    assert not source.is_running
    assert not source.start()

"""
PinchPad - Pinch-drawn ROI tracking and marker events for camera drum pads

Draw a circle around a physical marker with a pinch; PinchPad follows it
from frame to frame and reports tap / engage / release events when a hand
covers it.

Features:
- Contour detection with shape classification (triangle, square, rectangle, circle)
- Hu-moment shape re-identification under partial occlusion
- ORB + RANSAC homography pose (center, rotation, confidence)
- Debounced occlusion and a DEFAULT -> TAP -> ENGAGED -> RELEASE state machine
- Real-world marker sizes from a knuckle-span calibration

Quick Start:
    from pinchpad import (
        RoiTrackingPipeline, ThreadedFrameSource, CircularROI,
        MarkerStateChanged, load_config,
    )

    pipeline = RoiTrackingPipeline(load_config())
    pipeline.events.subscribe(lambda e: print(e.state_code), MarkerStateChanged)

    with ThreadedFrameSource(source=0) as source:
        pipeline.set_roi(CircularROI.create(center=(0.5, 0.5), radius=0.1))
        while True:
            results = pipeline.process_frame(source.get_current_frame())
"""

__version__ = "1.0.0"
__author__ = "PinchPad Team"

# Configuration
from .config import (
    PipelineConfig,
    ExtractorConfig,
    ContourConfig,
    ShapeMatchConfig,
    FeatureConfig,
    OcclusionConfig,
    MarkerConfig,
    load_config,
)

# Vision primitives
from .vision import VisionProvider, VisionError, VisionScope, VisionHandle

# Stages
from .region import CircularROI, RoiRegion, RegionExtractor
from .shapes import (
    ShapeType,
    ShapeInfo,
    ContourSet,
    ContourDetector,
    MarkerMeasurement,
    classify_shape,
    measure_markers,
)
from .shape_identity import ShapeMatch, hu_descriptor, similarity, best_match
from .feature_tracker import (
    TrackerPhase,
    TrackingResult,
    ReferenceDescriptor,
    FeatureSet,
    FeaturePoseTracker,
    match_descriptors,
    estimate_pose,
)
from .occlusion import OcclusionDebouncer, OcclusionUpdate, OcclusionEvent
from .marker_state import (
    MarkerState,
    MarkerStateMachine,
    MarkerStateChanged,
    MarkerSnapshot,
    STATE_LETTER_CODES,
)
from .events import EventChannel, now_ms

# Composition
from .pipeline import RoiTrackingPipeline, RoiFrameResult
from .gestures import PinchEvent, PinchRoiBuilder, knuckle_span_px
from .smoothing import KalmanSmoother

# Video & overlay
from .video_pipeline import ThreadedFrameSource, PerformanceMonitor, FrameStats
from .annotation_layer import RoiOverlayRenderer, ColorScheme

__all__ = [
    # Version
    "__version__",

    # Configuration
    "PipelineConfig",
    "ExtractorConfig",
    "ContourConfig",
    "ShapeMatchConfig",
    "FeatureConfig",
    "OcclusionConfig",
    "MarkerConfig",
    "load_config",

    # Vision
    "VisionProvider",
    "VisionError",
    "VisionScope",
    "VisionHandle",

    # Stages
    "CircularROI",
    "RoiRegion",
    "RegionExtractor",
    "ShapeType",
    "ShapeInfo",
    "ContourSet",
    "ContourDetector",
    "MarkerMeasurement",
    "classify_shape",
    "measure_markers",
    "ShapeMatch",
    "hu_descriptor",
    "similarity",
    "best_match",
    "TrackerPhase",
    "TrackingResult",
    "ReferenceDescriptor",
    "FeatureSet",
    "FeaturePoseTracker",
    "match_descriptors",
    "estimate_pose",
    "OcclusionDebouncer",
    "OcclusionUpdate",
    "OcclusionEvent",
    "MarkerState",
    "MarkerStateMachine",
    "MarkerStateChanged",
    "MarkerSnapshot",
    "STATE_LETTER_CODES",
    "EventChannel",
    "now_ms",

    # Composition
    "RoiTrackingPipeline",
    "RoiFrameResult",
    "PinchEvent",
    "PinchRoiBuilder",
    "knuckle_span_px",
    "KalmanSmoother",

    # Video & overlay
    "ThreadedFrameSource",
    "PerformanceMonitor",
    "FrameStats",
    "RoiOverlayRenderer",
    "ColorScheme",
]

"""
PinchPad Pipeline - Per-frame ROI tracking and marker state

One RoiTrackingPipeline owns every live ROI and runs the stages once per
displayed frame:

┌──────────────────────────────────────────────────────────────────┐
│  frame ─▶ RegionExtractor ─┬─▶ ContourDetector ──┐               │
│                            │   (shape stage)     │  merge, under │
│                            └─▶ FeaturePoseTracker┤  the ROI lock │
│                                (feature stage)   │               │
│                                                  ▼               │
│          shape identity ─▶ OcclusionDebouncer ─▶ MarkerStateMachine│
└──────────────────────────────────────────────────────────────────┘

The two stages only read the region, so they can run on worker threads
(parallel_stages=True). A frame that arrives while an ROI is still being
processed is dropped for that ROI. A failing OpenCV call degrades its
stage for one frame and never stops the loop.
"""

import copy
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .config import PipelineConfig
from .events import EventChannel, now_ms
from .feature_tracker import FeaturePoseTracker, ReferenceDescriptor, TrackerPhase, TrackingResult
from .gestures import clamp_knuckle_distance, knuckle_span_px
from .marker_state import MarkerSnapshot, MarkerStateMachine
from .occlusion import OcclusionDebouncer, OcclusionEvent, OcclusionUpdate
from .region import CircularROI, RegionExtractor, RoiRegion
from .shape_identity import ShapeMatch, best_match
from .shapes import ContourDetector, ContourSet, MarkerMeasurement, measure_markers
from .smoothing import KalmanSmoother
from .video_pipeline import PerformanceMonitor
from .vision import VisionError, VisionProvider


@dataclass
class RoiFrameResult:
    """Everything the pipeline knows about one ROI after one frame."""
    roi_id: str
    timestamp: float
    tracking: TrackingResult
    phase: TrackerPhase
    marker: MarkerSnapshot
    position: Tuple[float, float]                   # normalized, smoothed
    is_visible: bool
    visibility_ratio: Optional[float] = None        # None when not measured this frame
    occlusion_event: Optional[OcclusionEvent] = None
    contour_count: int = 0
    shape_match: Optional[ShapeMatch] = None
    markers: List[MarkerMeasurement] = field(default_factory=list)
    region_offset: Tuple[int, int] = (0, 0)
    region_size: Tuple[int, int] = (0, 0)
    errors: List[str] = field(default_factory=list)
    latency_ms: float = 0.0


@dataclass
class _RoiState:
    roi: CircularROI
    reference: ReferenceDescriptor
    debouncer: OcclusionDebouncer
    smoother: Optional[KalmanSmoother]
    lock: threading.Lock = field(default_factory=threading.Lock)
    phase: TrackerPhase = TrackerPhase.UNINITIALIZED
    last_result: Optional[RoiFrameResult] = None
    dropped_frames: int = 0
    retired: bool = False          # set under `lock` once the ROI leaves the pipeline


class RoiTrackingPipeline:
    """
    Tracks pinch-drawn ROIs and turns occlusion into marker events.

    Usage:
        pipeline = RoiTrackingPipeline(load_config())
        pipeline.events.subscribe(on_marker_change, MarkerStateChanged)
        pipeline.set_roi(roi)

        while True:
            results = pipeline.process_frame(source.get_current_frame())
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        vision: Optional[VisionProvider] = None,
        events: Optional[EventChannel] = None,
    ):
        self.config = config or PipelineConfig()
        self.vision = vision or VisionProvider()
        self.events = events or EventChannel("pinchpad")

        self.extractor = RegionExtractor(self.config.extractor)
        self.detector = ContourDetector(self.vision, self.config.contours)
        self.tracker = FeaturePoseTracker(self.vision, self.config.features)
        self.markers = MarkerStateMachine(self.config.markers, self.events)
        self.monitor = PerformanceMonitor()

        self._states: Dict[str, _RoiState] = {}
        self._states_lock = threading.Lock()
        self._cm_per_pixel: Optional[float] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.config.parallel_stages:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="pinchpad-stage")

        self.logger = logging.getLogger("RoiTrackingPipeline")

    # ==================== ROI lifecycle ====================

    def _new_state(self, roi: CircularROI) -> _RoiState:
        return _RoiState(
            roi=roi,
            reference=ReferenceDescriptor(),
            debouncer=OcclusionDebouncer(self.config.occlusion, name=roi.roi_id),
            smoother=KalmanSmoother() if self.config.smoothing else None,
        )

    def _make_room(self, roi_id: str) -> List[_RoiState]:
        """Detach the states that must go before `roi_id` is inserted. Caller holds _states_lock."""
        detached = []
        if roi_id in self._states:
            detached.append(self._states.pop(roi_id))
        while len(self._states) >= max(1, self.config.max_rois):
            oldest = min(self._states.values(), key=lambda s: s.roi.created_at)
            detached.append(self._states.pop(oldest.roi.roi_id))
        return detached

    def _retire(self, states: Sequence[_RoiState]):
        """
        Wait out any frame still running for detached ROIs, then drop their markers.

        A frame holding the ROI lock finishes its marker update first, so
        nothing can recreate the record after it is cleared.
        """
        for state in states:
            with state.lock:
                state.retired = True
                self.markers.clear(state.roi.roi_id)
            self.monitor.forget_roi(state.roi.roi_id)

    def set_roi(self, roi: CircularROI) -> List[str]:
        """
        Start tracking an ROI.

        Re-adding an existing id restarts it. When the pipeline is at
        capacity the oldest ROIs are removed to make room.

        Returns:
            Ids of the ROIs that were evicted
        """
        with self._states_lock:
            detached = self._make_room(roi.roi_id)
        self._retire(detached)

        with self._states_lock:
            late = self._make_room(roi.roi_id)
            self._states[roi.roi_id] = self._new_state(roi)
        self._retire(late)

        evicted = [s.roi.roi_id for s in detached + late if s.roi.roi_id != roi.roi_id]
        for roi_id in evicted:
            self.logger.info(f"ROI {roi_id} evicted")
        self.logger.info(
            f"ROI {roi.roi_id} set at ({roi.center[0]:.3f}, {roi.center[1]:.3f}) r={roi.radius:.3f}"
        )
        return evicted

    def remove_roi(self, roi_id: str) -> bool:
        with self._states_lock:
            state = self._states.pop(roi_id, None)
        if state is None:
            self.markers.clear(roi_id)
            return False
        self._retire([state])
        self.logger.info(f"ROI {roi_id} removed")
        return True

    def reset_roi(self, roi_id: str) -> bool:
        """Forget the reference and state of an ROI; it recaptures on the next frame."""
        with self._states_lock:
            state = self._states.pop(roi_id, None)
        if state is None:
            return False
        self._retire([state])
        with self._states_lock:
            self._states.setdefault(roi_id, self._new_state(state.roi))
        self.logger.info(f"ROI {roi_id} reset")
        return True

    def clear(self):
        with self._states_lock:
            states = list(self._states.values())
            self._states.clear()
        self._retire(states)
        self.markers.clear_all()
        self.logger.info("All ROIs cleared")

    @property
    def rois(self) -> List[CircularROI]:
        with self._states_lock:
            return [s.roi for s in self._states.values()]

    def get_roi(self, roi_id: str) -> Optional[CircularROI]:
        with self._states_lock:
            state = self._states.get(roi_id)
            return state.roi if state else None

    def last_result(self, roi_id: str) -> Optional[RoiFrameResult]:
        """Most recent result for an ROI (a copy), for use as a display fallback."""
        with self._states_lock:
            state = self._states.get(roi_id)
        if state is None or state.last_result is None:
            return None
        return copy.deepcopy(state.last_result)

    def dropped_frames(self, roi_id: str) -> int:
        with self._states_lock:
            state = self._states.get(roi_id)
            return state.dropped_frames if state else 0

    def phase(self, roi_id: str) -> Optional[TrackerPhase]:
        with self._states_lock:
            state = self._states.get(roi_id)
            return state.phase if state else None

    # ==================== Calibration ====================

    def update_pixel_to_cm_ratio(self, known_distance_cm: float, measured_pixel_distance: float) -> bool:
        """
        Calibrate real-world sizes from a reference of known length.

        Returns:
            False (and leaves the calibration unchanged) for non-positive input
        """
        if not known_distance_cm > 0 or not measured_pixel_distance > 0:
            self.logger.warning(
                f"Ignoring calibration: {known_distance_cm}cm over {measured_pixel_distance}px"
            )
            return False
        self._cm_per_pixel = known_distance_cm / measured_pixel_distance
        self.logger.info(f"Calibrated: {self._cm_per_pixel:.4f} cm/px")
        return True

    def calibrate_from_hand(
        self,
        landmarks: Sequence[Sequence[float]],
        frame_size: Tuple[int, int],
        knuckle_distance_cm: Optional[float] = None,
    ) -> bool:
        """Calibrate from the index-to-pinky knuckle span of a detected hand."""
        span = knuckle_span_px(landmarks, frame_size)
        if span is None:
            return False
        cm = clamp_knuckle_distance(knuckle_distance_cm or self.config.knuckle_distance_cm)
        return self.update_pixel_to_cm_ratio(cm, span)

    @property
    def cm_per_pixel(self) -> Optional[float]:
        return self._cm_per_pixel

    # ==================== Stages ====================

    def _shape_stage(self, region: RoiRegion) -> Tuple[Optional[ContourSet], Optional[str]]:
        try:
            return self.detector.detect(region), None
        except VisionError as e:
            self.logger.warning(f"Shape stage failed for {region.roi_id}: {e}")
            return None, f"shape: {e}"

    def _feature_stage(self, state: _RoiState, region: RoiRegion, now: float) -> Tuple[Optional[TrackingResult], Optional[str]]:
        try:
            return self.tracker.track(state.reference, region, now), None
        except VisionError as e:
            self.logger.warning(f"Feature stage failed for {region.roi_id}: {e}")
            return None, f"features: {e}"

    def _run_stages(self, state: _RoiState, region: RoiRegion, now: float):
        if self._executor is None:
            return self._shape_stage(region), self._feature_stage(state, region, now)
        shape_future = self._executor.submit(self._shape_stage, region)
        feature_future = self._executor.submit(self._feature_stage, state, region, now)
        return shape_future.result(), feature_future.result()

    def _visibility(self, state: _RoiState, contours: ContourSet, now: float) -> Tuple[Optional[float], Optional[ShapeMatch]]:
        """
        Visibility ratio = current contour count / reference contour count.

        A frame whose contours do not re-identify the reference shape is
        treated as fully occluded.
        """
        reference = state.reference
        if not reference.has_shape:
            if contours.count == 0:
                return None, None
            reference.hu = list(contours.contours[0].hu)
            reference.contour_count = contours.count
            reference.shape_captured_at = now
            self.logger.info(f"Shape reference captured for {state.roi.roi_id}: {contours.count} contours")
            return 1.0, None

        ratio = min(1.0, contours.count / reference.contour_count)
        match = None
        if self.config.shape_match.identity_enabled and contours.count > 0:
            match = best_match(reference.hu, contours.hu_descriptors, self.config.shape_match.hu_match_threshold)
            if not match.accepted:
                ratio = 0.0
        return ratio, match

    def _position(
        self,
        state: _RoiState,
        region: RoiRegion,
        tracking: TrackingResult,
        contours: Optional[ContourSet],
    ) -> Tuple[float, float]:
        fw, fh = region.frame_size
        measured = None
        if tracking.is_tracked and tracking.center is not None:
            measured = tracking.center
        elif contours is not None and contours.center_of_mass is not None:
            measured = region.to_frame(*contours.center_of_mass)

        if measured is None:
            return state.roi.center
        x, y = measured
        if state.smoother is not None:
            x, y = state.smoother.update(x, y)
        return (x / fw, y / fh)

    # ==================== Frame processing ====================

    def process_frame(
        self,
        frame: Optional[np.ndarray],
        now: Optional[float] = None,
        display_size: Optional[Tuple[int, int]] = None,
    ) -> Dict[str, RoiFrameResult]:
        """
        Run every ROI through the pipeline for one frame.

        Args:
            frame: Current frame (RGBA from ThreadedFrameSource, or BGR)
            now: Frame timestamp in milliseconds (None = monotonic clock)
            display_size: (width, height) of the surface the ROIs were drawn on

        Returns:
            Results for the ROIs processed this frame. ROIs that were
            skipped (no region, or still busy) are absent.
        """
        start = time.perf_counter()
        now = now_ms() if now is None else now
        with self._states_lock:
            states = list(self._states.values())

        results: Dict[str, RoiFrameResult] = {}
        for state in states:
            if not state.lock.acquire(blocking=False):
                state.dropped_frames += 1
                self.logger.debug(f"ROI {state.roi.roi_id} busy, frame dropped")
                continue
            try:
                if state.retired:
                    continue
                result = self._process_roi(state, frame, now, display_size)
            finally:
                state.lock.release()
            if result is None:
                continue
            results[state.roi.roi_id] = result
            # Published outside the ROI lock so listeners may remove or reset ROIs
            if result.marker.transition is not None:
                self.events.publish(result.marker.transition)

        if results:
            self.monitor.update((time.perf_counter() - start) * 1000)
        return results

    def _process_roi(
        self,
        state: _RoiState,
        frame: Optional[np.ndarray],
        now: float,
        display_size: Optional[Tuple[int, int]],
    ) -> Optional[RoiFrameResult]:
        start = time.perf_counter()
        roi_id = state.roi.roi_id

        region = self.extractor.extract(state.roi, frame, display_size)
        if region is None:
            return None

        (contours, shape_error), (tracking, feature_error) = self._run_stages(state, region, now)
        errors = [e for e in (shape_error, feature_error) if e]

        if tracking is None:
            tracking = TrackingResult.lost(
                phase=TrackerPhase.LOST if state.reference.has_features else state.phase
            )
        state.phase = tracking.phase

        ratio, match = (None, None)
        if contours is not None:
            ratio, match = self._visibility(state, contours, now)

        if ratio is not None:
            occlusion = state.debouncer.update(ratio, now)
        else:
            occlusion = OcclusionUpdate(
                is_visible=state.debouncer.is_visible,
                occlusion_timestamp=state.debouncer.occlusion_timestamp,
            )

        position = self._position(state, region, tracking, contours)
        marker = self.markers.update(roi_id, not occlusion.is_visible, position, now, publish=False)

        measurements = []
        if contours is not None:
            try:
                measurements = measure_markers(contours, region, self.vision, self._cm_per_pixel)
            except VisionError as e:
                self.logger.warning(f"Marker measurement failed for {roi_id}: {e}")
                errors.append(f"measure: {e}")

        latency_ms = (time.perf_counter() - start) * 1000
        self.monitor.record_roi(roi_id, latency_ms)
        if latency_ms > self.config.latency_budget_ms:
            self.logger.warning(f"ROI {roi_id} took {latency_ms:.1f}ms (budget {self.config.latency_budget_ms:.0f}ms)")

        result = RoiFrameResult(
            roi_id=roi_id,
            timestamp=now,
            tracking=tracking,
            phase=state.phase,
            marker=marker,
            position=position,
            is_visible=occlusion.is_visible,
            visibility_ratio=ratio,
            occlusion_event=occlusion.event,
            contour_count=contours.count if contours is not None else 0,
            shape_match=match,
            markers=measurements,
            region_offset=region.offset,
            region_size=region.size,
            errors=errors,
            latency_ms=latency_ms,
        )
        state.last_result = result
        return copy.deepcopy(result)

    # ==================== Shutdown ====================

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

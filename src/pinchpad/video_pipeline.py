"""
PinchPad Video Pipeline - Pull-based frame source and latency monitor

The tracking pipeline pulls frames; it never waits for the camera:
- A daemon thread keeps only the freshest frame (older ones are dropped)
- get_current_frame() returns a private RGBA copy, or None before the
  first frame arrives
- PerformanceMonitor keeps rolling FPS and per-frame processing latency
"""

import time
import logging
import platform
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Tuple, Union

import cv2
import numpy as np


@dataclass
class FrameStats:
    """Capture statistics."""
    frame_number: int
    width: int
    height: int
    fps: float
    dropped_frames: int
    age_ms: float = 0.0


class ThreadedFrameSource:
    """
    Threaded camera / video reader that always serves the newest frame.

    Usage:
        with ThreadedFrameSource(source=0) as source:
            while True:
                frame = source.get_current_frame()
                if frame is not None:
                    results = pipeline.process_frame(frame)
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Optional[Tuple[int, int]] = None,
        loop: bool = False,
    ):
        """
        Args:
            source: Camera index or video file path
            resolution: Requested (width, height), None = native
            loop: Restart video files when they end
        """
        self.source = source
        self.resolution = resolution
        self.loop = loop

        self._cap: Optional[cv2.VideoCapture] = None
        self._frame: Optional[np.ndarray] = None
        self._frame_time = 0.0
        self._frame_lock = threading.Lock()
        self._running = False
        self._thread: Optional[threading.Thread] = None

        self._frame_count = 0
        self._dropped_frames = 0
        self._start_time = 0.0
        self._width = 0
        self._height = 0
        self._native_fps = 0.0

        self.logger = logging.getLogger("ThreadedFrameSource")

    def _open(self) -> bool:
        if isinstance(self.source, int):
            backend = {
                "Windows": cv2.CAP_DSHOW,
                "Darwin": cv2.CAP_AVFOUNDATION,
            }.get(platform.system(), cv2.CAP_V4L2)
            self._cap = cv2.VideoCapture(self.source, backend)
            if not self._cap.isOpened():
                self._cap = cv2.VideoCapture(self.source)
        else:
            self._cap = cv2.VideoCapture(self.source)

        if not self._cap.isOpened():
            self.logger.error(f"Failed to open video source: {self.source}")
            return False

        if self.resolution:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        self._width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._native_fps = self._cap.get(cv2.CAP_PROP_FPS) or 30.0

        self.logger.info(f"Video source opened: {self._width}x{self._height} @ {self._native_fps:.1f}fps")
        return True

    def _capture_loop(self):
        is_file = isinstance(self.source, str)
        while self._running:
            ok, frame = self._cap.read()
            if not ok:
                if is_file and self.loop:
                    self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
                    continue
                if is_file:
                    self.logger.info("End of video file reached")
                    self._running = False
                    break
                time.sleep(0.001)
                continue

            with self._frame_lock:
                if self._frame is not None:
                    self._dropped_frames += 1
                self._frame = frame
                self._frame_time = time.perf_counter()
                self._frame_count += 1

            if is_file and self._native_fps > 0:
                time.sleep(1.0 / self._native_fps)

    def start(self) -> bool:
        if self._running:
            return True
        if not self._open():
            return False

        self._running = True
        self._start_time = time.perf_counter()
        self._frame_count = 0
        self._dropped_frames = 0
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()
        self.logger.info("Capture thread started")
        return True

    def stop(self):
        self._running = False
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        if self._cap:
            self._cap.release()
            self._cap = None
        self.logger.info("Capture stopped")

    def get_current_frame(self) -> Optional[np.ndarray]:
        """
        Newest frame as an RGBA array (H x W x 4), or None.

        The returned array is a copy; callers may modify it freely.
        """
        with self._frame_lock:
            if self._frame is None:
                return None
            frame = self._frame
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)

    @property
    def stats(self) -> FrameStats:
        with self._frame_lock:
            age_ms = (time.perf_counter() - self._frame_time) * 1000 if self._frame is not None else 0.0
            count = self._frame_count
            dropped = self._dropped_frames
        elapsed = time.perf_counter() - self._start_time
        return FrameStats(
            frame_number=count,
            width=self._width,
            height=self._height,
            fps=count / elapsed if elapsed > 0 else 0.0,
            dropped_frames=dropped,
            age_ms=age_ms,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def frame_size(self) -> Tuple[int, int]:
        return (self._width, self._height)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


class PerformanceMonitor:
    """Rolling FPS and processing latency."""

    def __init__(self, window: int = 30):
        self._last_time: Optional[float] = None
        self._fps_history: Deque[float] = deque(maxlen=window)
        self._latency_history: Deque[float] = deque(maxlen=window)
        self._latency_ms = 0.0
        self._roi_latency: Dict[str, float] = {}

    def update(self, latency_ms: float = 0.0):
        """Record one processed frame. Call once per frame, not per ROI."""
        now = time.perf_counter()
        if self._last_time is not None:
            dt = now - self._last_time
            if dt > 0:
                self._fps_history.append(1.0 / dt)
        self._last_time = now
        self._latency_ms = latency_ms
        self._latency_history.append(latency_ms)

    def record_roi(self, roi_id: str, latency_ms: float):
        self._roi_latency[roi_id] = latency_ms

    def roi_latency_ms(self, roi_id: str) -> Optional[float]:
        return self._roi_latency.get(roi_id)

    def forget_roi(self, roi_id: str):
        self._roi_latency.pop(roi_id, None)

    def draw(self, frame: np.ndarray) -> np.ndarray:
        fps = self.fps
        color = (0, 255, 0) if fps >= 30 else (0, 255, 255) if fps >= 15 else (0, 0, 255)
        cv2.putText(frame, f"FPS: {fps:.1f}", (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2, cv2.LINE_AA)
        cv2.putText(frame, f"Pipeline: {self._latency_ms:.0f}ms (avg {self.avg_latency_ms:.0f})", (10, 60),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 1, cv2.LINE_AA)
        return frame

    @property
    def fps(self) -> float:
        if not self._fps_history:
            return 0.0
        return sum(self._fps_history) / len(self._fps_history)

    @property
    def latency_ms(self) -> float:
        return self._latency_ms

    @property
    def avg_latency_ms(self) -> float:
        if not self._latency_history:
            return 0.0
        return sum(self._latency_history) / len(self._latency_history)

    @property
    def samples(self) -> int:
        return len(self._latency_history)

"""
PinchPad Vision - Thin provider over OpenCV primitives

Every cv2 call made by the tracking stages goes through VisionProvider so
that:
- cv2.error surfaces as a single VisionError type the pipeline can catch
- transient objects (gray buffers, masks, keypoints, descriptors,
  homographies) are held in a VisionScope and released on every exit
  path, including exceptions

Usage:
    vision = VisionProvider()
    with vision.scope() as scope:
        gray = scope.adopt(vision.to_gray(pixels))
        edges = scope.adopt(vision.canny(gray.value, 50, 150))
    assert vision.live_handles == 0
"""

import logging
import threading
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np
import cv2


class VisionError(RuntimeError):
    """Raised when an underlying vision primitive fails."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"{operation} failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class VisionHandle:
    """An object allocated for one frame that must be released exactly once."""

    __slots__ = ("_value", "_on_release", "_released")

    def __init__(self, value: Any, on_release: Callable[[], None]):
        self._value = value
        self._on_release = on_release
        self._released = False

    @property
    def value(self) -> Any:
        if self._released:
            raise VisionError("VisionHandle.value", RuntimeError("handle already released"))
        return self._value

    @property
    def released(self) -> bool:
        return self._released

    def release(self):
        if self._released:
            return
        self._released = True
        self._value = None
        self._on_release()


class VisionScope:
    """
    Owns the handles allocated while processing one region.

    Leaving the ``with`` block releases every adopted handle in reverse
    order, whether the block finished normally or raised.
    """

    def __init__(self, provider: "VisionProvider"):
        self._provider = provider
        self._handles: List[VisionHandle] = []

    def adopt(self, value: Any) -> VisionHandle:
        handle = self._provider._new_handle(value)
        self._handles.append(handle)
        return handle

    def release_all(self):
        while self._handles:
            self._handles.pop().release()

    @property
    def open_count(self) -> int:
        return sum(1 for h in self._handles if not h.released)

    def __enter__(self) -> "VisionScope":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release_all()
        return False


class VisionProvider:
    """OpenCV-backed image primitives used by the shape and feature stages."""

    def __init__(self):
        self._live = 0
        self._lock = threading.Lock()
        self.logger = logging.getLogger("VisionProvider")

    # ==================== Resource accounting ====================

    def scope(self) -> VisionScope:
        return VisionScope(self)

    def _new_handle(self, value: Any) -> VisionHandle:
        with self._lock:
            self._live += 1
        return VisionHandle(value, self._release_one)

    def _release_one(self):
        with self._lock:
            self._live -= 1

    @property
    def live_handles(self) -> int:
        """Handles allocated through a scope and not yet released."""
        with self._lock:
            return self._live

    def _call(self, operation: str, fn: Callable, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except cv2.error as e:
            self.logger.debug(f"{operation}: {e}")
            raise VisionError(operation, e) from e

    # ==================== Conversions & filters ====================

    def to_gray(self, image: np.ndarray) -> np.ndarray:
        """Grayscale copy of a 1, 3 (BGR) or 4 (RGBA) channel image."""
        if image.ndim == 2:
            return image.copy()
        channels = image.shape[2]
        if channels == 4:
            return self._call("cvtColor", cv2.cvtColor, image, cv2.COLOR_RGBA2GRAY)
        if channels == 3:
            return self._call("cvtColor", cv2.cvtColor, image, cv2.COLOR_BGR2GRAY)
        if channels == 1:
            return image[:, :, 0].copy()
        raise VisionError("to_gray", ValueError(f"unsupported channel count {channels}"))

    def gaussian_blur(self, gray: np.ndarray, kernel: int = 5) -> np.ndarray:
        return self._call("GaussianBlur", cv2.GaussianBlur, gray, (kernel, kernel), 0)

    def canny(self, gray: np.ndarray, low: float, high: float) -> np.ndarray:
        return self._call("Canny", cv2.Canny, gray, low, high)

    def dilate(self, image: np.ndarray, kernel: int = 3) -> np.ndarray:
        element = np.ones((kernel, kernel), dtype=np.uint8)
        return self._call("dilate", cv2.dilate, image, element, iterations=1)

    def erode(self, image: np.ndarray, kernel: int = 3) -> np.ndarray:
        element = np.ones((kernel, kernel), dtype=np.uint8)
        return self._call("erode", cv2.erode, image, element, iterations=1)

    def pad(self, image: np.ndarray, border: int) -> np.ndarray:
        return self._call(
            "copyMakeBorder", cv2.copyMakeBorder,
            image, border, border, border, border, cv2.BORDER_REFLECT_101
        )

    # ==================== Contours ====================

    def find_external_contours(self, edges: np.ndarray) -> List[np.ndarray]:
        contours, _ = self._call(
            "findContours", cv2.findContours,
            edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE
        )
        return list(contours)

    def contour_area(self, contour: np.ndarray) -> float:
        return float(self._call("contourArea", cv2.contourArea, contour))

    def arc_length(self, contour: np.ndarray, closed: bool = True) -> float:
        return float(self._call("arcLength", cv2.arcLength, contour, closed))

    def approx_poly(self, contour: np.ndarray, epsilon: float) -> np.ndarray:
        return self._call("approxPolyDP", cv2.approxPolyDP, contour, epsilon, True)

    def moments(self, contour: np.ndarray) -> dict:
        return self._call("moments", cv2.moments, contour)

    def hu_moments(self, moments: dict) -> np.ndarray:
        return self._call("HuMoments", cv2.HuMoments, moments).flatten()

    def min_area_rect(self, contour: np.ndarray) -> Tuple[Tuple[float, float], Tuple[float, float], float]:
        return self._call("minAreaRect", cv2.minAreaRect, contour)

    def bounding_rect(self, points: np.ndarray) -> Tuple[int, int, int, int]:
        return self._call("boundingRect", cv2.boundingRect, points)

    # ==================== Features & geometry ====================

    def detect_features(
        self,
        gray: np.ndarray,
        mask: Optional[np.ndarray],
        max_features: int,
        fast_threshold: int,
    ) -> Tuple[Sequence[cv2.KeyPoint], Optional[np.ndarray]]:
        """ORB keypoints and 32-byte binary descriptors."""
        orb = self._call(
            "ORB_create", cv2.ORB_create,
            nfeatures=max_features, edgeThreshold=31, patchSize=31,
            fastThreshold=fast_threshold
        )
        return self._call("ORB.detectAndCompute", orb.detectAndCompute, gray, mask)

    def find_homography(
        self,
        src: np.ndarray,
        dst: np.ndarray,
        reproj_threshold: float,
    ) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        return self._call(
            "findHomography", cv2.findHomography,
            src, dst, cv2.RANSAC, reproj_threshold
        )

    def perspective_transform(self, points: np.ndarray, H: np.ndarray) -> np.ndarray:
        pts = np.asarray(points, dtype=np.float32).reshape(-1, 1, 2)
        return self._call("perspectiveTransform", cv2.perspectiveTransform, pts, H).reshape(-1, 2)

"""Synthetic scenes shared by the unit tests."""

import os
import sys

import numpy as np
import cv2
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), os.pardir, "src"))

from pinchpad.region import CircularROI
from pinchpad.vision import VisionError, VisionProvider


FRAME_W, FRAME_H = 640, 480
BACKGROUND = 200


class Scene:
    """Builds 640x480 BGR frames with a textured marker at the center."""

    width = FRAME_W
    height = FRAME_H
    center = (FRAME_W // 2, FRAME_H // 2)

    def blank(self, value: int = BACKGROUND) -> np.ndarray:
        return np.full((self.height, self.width, 3), value, dtype=np.uint8)

    def marker(self, size: int = 64, seed: int = 7, center=None) -> np.ndarray:
        """Dark-framed square filled with a random 8x8 grid of gray cells."""
        frame = self.blank()
        cx, cy = center or self.center
        half = size // 2
        x0, y0 = cx - half, cy - half
        rng = np.random.default_rng(seed)
        cell = size // 8
        for row in range(8):
            for col in range(8):
                value = int(rng.integers(0, 256))
                frame[y0 + row * cell:y0 + (row + 1) * cell, x0 + col * cell:x0 + (col + 1) * cell] = value
        cv2.rectangle(frame, (x0, y0), (x0 + size - 1, y0 + size - 1), (0, 0, 0), 3)
        return frame

    def rotated(self, frame: np.ndarray, angle_deg: float) -> np.ndarray:
        M = cv2.getRotationMatrix2D((float(self.center[0]), float(self.center[1])), angle_deg, 1.0)
        return cv2.warpAffine(
            frame, M, (self.width, self.height),
            flags=cv2.INTER_LINEAR, borderValue=(BACKGROUND, BACKGROUND, BACKGROUND)
        )

    def covered(self, frame: np.ndarray, value: int = 90, half: int = 110) -> np.ndarray:
        """A flat 'hand' over the whole ROI."""
        out = frame.copy()
        cx, cy = self.center
        out[cy - half:cy + half, cx - half:cx + half] = value
        return out

    def bar(self, length: int = 100, thickness: int = 14) -> np.ndarray:
        frame = self.blank()
        cx, cy = self.center
        cv2.rectangle(frame, (cx - length // 2, cy - thickness // 2),
                      (cx + length // 2, cy + thickness // 2), (20, 20, 20), -1)
        return frame


class FailingVisionProvider(VisionProvider):
    """Provider whose named primitives raise, as a broken backend would."""

    def __init__(self, *failing: str):
        super().__init__()
        self.failing = set(failing)

    def detect_features(self, *args, **kwargs):
        if "detect_features" in self.failing:
            raise VisionError("ORB.detectAndCompute", RuntimeError("backend unavailable"))
        return super().detect_features(*args, **kwargs)

    def find_homography(self, *args, **kwargs):
        if "find_homography" in self.failing:
            raise VisionError("findHomography", RuntimeError("backend unavailable"))
        return super().find_homography(*args, **kwargs)

    def canny(self, *args, **kwargs):
        if "canny" in self.failing:
            raise VisionError("Canny", RuntimeError("backend unavailable"))
        return super().canny(*args, **kwargs)


@pytest.fixture
def scene():
    return Scene()


@pytest.fixture
def center_roi():
    return CircularROI.create(center=(0.5, 0.5), radius=0.1, roi_id="pad", created_at=0.0)


@pytest.fixture
def vision():
    return VisionProvider()


@pytest.fixture
def failing_vision():
    return FailingVisionProvider

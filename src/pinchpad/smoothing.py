"""
PinchPad Smoothing - Kalman filter for marker positions

Constant-velocity model, one step per processed frame:

    state       [x, y, vx, vy]
    measurement [x, y]

Keeps the reported marker position steady while the hand or camera
jitters, without lagging behind a real move.
"""

from typing import Optional, Tuple

import numpy as np
import cv2


class KalmanSmoother:
    """2D position smoother backed by cv2.KalmanFilter."""

    def __init__(self, process_noise: float = 0.5, measurement_noise: float = 0.05):
        """
        Args:
            process_noise: Trust in the motion model (higher = more responsive)
            measurement_noise: Expected measurement noise (lower = follow measurements)
        """
        self.kf = cv2.KalmanFilter(4, 2)
        self.kf.transitionMatrix = np.array([
            [1, 0, 1, 0],
            [0, 1, 0, 1],
            [0, 0, 1, 0],
            [0, 0, 0, 1]
        ], dtype=np.float32)
        self.kf.measurementMatrix = np.array([
            [1, 0, 0, 0],
            [0, 1, 0, 0]
        ], dtype=np.float32)
        self.kf.processNoiseCov = np.eye(4, dtype=np.float32) * process_noise
        self.kf.measurementNoiseCov = np.eye(2, dtype=np.float32) * measurement_noise
        self.kf.errorCovPost = np.eye(4, dtype=np.float32)

        self._position: Optional[Tuple[float, float]] = None

    def reset(self, x: float, y: float):
        """Snap the filter to a position with zero velocity."""
        self.kf.statePost = np.array([[x], [y], [0], [0]], dtype=np.float32)
        self.kf.errorCovPost = np.eye(4, dtype=np.float32)
        self._position = (x, y)

    def update(self, x: float, y: float) -> Tuple[float, float]:
        """Predict, correct with a measurement and return the smoothed position."""
        if self._position is None:
            self.reset(x, y)
            return x, y

        self.kf.predict()
        corrected = self.kf.correct(np.array([[x], [y]], dtype=np.float32))
        self._position = (float(corrected[0, 0]), float(corrected[1, 0]))
        return self._position

    @property
    def position(self) -> Optional[Tuple[float, float]]:
        return self._position

    @property
    def velocity(self) -> Tuple[float, float]:
        if self._position is None:
            return 0.0, 0.0
        return float(self.kf.statePost[2, 0]), float(self.kf.statePost[3, 0])

"""
PinchPad Feature Tracker - ORB matching + RANSAC homography pose

Per-ROI lifecycle:

    UNINITIALIZED ──(>= 10 keypoints)──▶ REFERENCE_CAPTURED
                                               │
                                               ▼
                                  TRACKING ◀──────▶ LOST

The first region with enough keypoints becomes the reference and is never
refreshed automatically. Every later region is matched against it:

1. ORB keypoints inside the inset ROI mask (FAST threshold 10, or 5 for
   regions under 150px so small drawn circles still find corners)
2. Greedy matching on Hamming distance plus a small spatial term
   (smallest combined distance first, each keypoint used once)
3. RANSAC homography on >= 8 matches; confidence = inliers / matches
4. Reference center and corners projected into the current frame
"""

import math
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from .config import FeatureConfig
from .region import RoiRegion
from .vision import VisionProvider


ORB_BORDER = 31     # ORB edgeThreshold; keypoints closer to the edge get no descriptor

_POPCOUNT = np.array([bin(i).count("1") for i in range(256)], dtype=np.uint8)


class TrackerPhase(Enum):
    """Feature tracking phase of one ROI."""
    UNINITIALIZED = "uninitialized"
    REFERENCE_CAPTURED = "reference-captured"
    TRACKING = "tracking"
    LOST = "lost"


@dataclass
class FeatureSet:
    """Keypoints (region-local pixels) and their binary descriptors."""
    points: np.ndarray                  # N x 2 float32
    descriptors: Optional[np.ndarray]   # N x 32 uint8
    size: Tuple[int, int]               # (width, height) of the source region

    @property
    def count(self) -> int:
        return int(len(self.points))

    @classmethod
    def empty(cls, size: Tuple[int, int]) -> "FeatureSet":
        return cls(np.zeros((0, 2), dtype=np.float32), None, size)


@dataclass
class ReferenceDescriptor:
    """
    What an ROI looked like when tracking started.

    The shape part (Hu moments) and the feature part (keypoints,
    descriptors, pixels) are captured independently, each on the first
    region that yields it. Only an explicit reset replaces them.
    """
    hu: Optional[List[float]] = None
    contour_count: int = 0
    features: Optional[FeatureSet] = None
    pixels: Optional[np.ndarray] = None
    shape_captured_at: Optional[float] = None
    features_captured_at: Optional[float] = None

    @property
    def has_shape(self) -> bool:
        return self.hu is not None

    @property
    def has_features(self) -> bool:
        return self.features is not None


@dataclass
class TrackingResult:
    """Pose estimate for one frame. Positions are frame pixels."""
    is_tracked: bool = False
    confidence: float = 0.0
    match_count: int = 0
    inlier_count: int = 0
    center: Optional[Tuple[float, float]] = None
    rotation: Optional[float] = None                    # radians
    corners: Optional[List[Tuple[float, float]]] = None
    keypoint_count: int = 0
    phase: TrackerPhase = TrackerPhase.UNINITIALIZED

    @classmethod
    def lost(cls, keypoint_count: int = 0, match_count: int = 0, inlier_count: int = 0,
             phase: TrackerPhase = TrackerPhase.LOST) -> "TrackingResult":
        confidence = inlier_count / match_count if match_count else 0.0
        return cls(
            is_tracked=False,
            confidence=confidence,
            match_count=match_count,
            inlier_count=inlier_count,
            keypoint_count=keypoint_count,
            phase=phase,
        )


def hamming_matrix(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Pairwise Hamming distances between two sets of binary descriptors."""
    xor = np.bitwise_xor(a[:, None, :], b[None, :, :])
    return _POPCOUNT[xor].sum(axis=2, dtype=np.int32)


def match_descriptors(
    ref_desc: Optional[np.ndarray],
    ref_points: np.ndarray,
    cur_desc: Optional[np.ndarray],
    cur_points: np.ndarray,
    max_distance: float = 64.0,
    spatial_weight: float = 0.05,
) -> List[Tuple[int, int, float]]:
    """
    Greedy one-to-one descriptor matching.

    Combined distance = Hamming + spatial_weight * euclidean distance
    between keypoint positions. All pairs under max_distance are sorted
    ascending and taken in order, skipping any whose reference or current
    keypoint was already used.

    Returns:
        List of (ref_index, cur_index, combined_distance)
    """
    if ref_desc is None or cur_desc is None or len(ref_desc) == 0 or len(cur_desc) == 0:
        return []

    combined = hamming_matrix(ref_desc, cur_desc).astype(np.float32)
    if spatial_weight:
        diff = ref_points[:, None, :] - cur_points[None, :, :]
        combined += spatial_weight * np.sqrt(np.sum(diff * diff, axis=2))

    ref_idx, cur_idx = np.nonzero(combined <= max_distance)
    if len(ref_idx) == 0:
        return []
    distances = combined[ref_idx, cur_idx]
    order = np.argsort(distances, kind="stable")

    limit = min(len(ref_desc), len(cur_desc))
    used_ref = set()
    used_cur = set()
    matches = []
    for k in order:
        r, c = int(ref_idx[k]), int(cur_idx[k])
        if r in used_ref or c in used_cur:
            continue
        used_ref.add(r)
        used_cur.add(c)
        matches.append((r, c, float(distances[k])))
        if len(matches) == limit:
            break
    return matches


def rotation_from_homography(H: np.ndarray) -> float:
    """In-plane rotation (radians) averaged from both rotation terms."""
    return (math.atan2(H[0, 1], H[0, 0]) + math.atan2(-H[1, 0], H[1, 1])) / 2.0


def estimate_pose(
    ref_points: np.ndarray,
    cur_points: np.ndarray,
    ref_size: Tuple[int, int],
    vision: VisionProvider,
    offset: Tuple[int, int] = (0, 0),
    match_threshold: float = 0.4,
    min_matches: int = 8,
    reproj_threshold: float = 3.0,
) -> TrackingResult:
    """
    Estimate the ROI pose from matched point pairs.

    Args:
        ref_points: Matched reference points (N x 2, reference region pixels)
        cur_points: Matched current points (N x 2, current region pixels)
        ref_size: (width, height) of the reference region
        vision: Provider for the homography primitives
        offset: Current region's top-left corner in frame pixels
        match_threshold: Minimum inlier ratio for is_tracked
        min_matches: Minimum matched pairs to attempt a homography
        reproj_threshold: RANSAC reprojection threshold in pixels

    Returns:
        TrackingResult with center, rotation and corners in frame pixels

    Raises:
        VisionError: If the homography primitive fails
    """
    match_count = len(ref_points)
    if match_count < min_matches:
        return TrackingResult.lost(match_count=match_count)

    src = np.asarray(ref_points, dtype=np.float32).reshape(-1, 1, 2)
    dst = np.asarray(cur_points, dtype=np.float32).reshape(-1, 1, 2)

    with vision.scope() as scope:
        H, inlier_mask = vision.find_homography(src, dst, reproj_threshold)
        scope.adopt(H)
        scope.adopt(inlier_mask)
        if H is None or inlier_mask is None:
            return TrackingResult.lost(match_count=match_count)

        inliers = int(np.count_nonzero(inlier_mask))
        confidence = inliers / match_count

        w, h = ref_size
        outline = np.array([[w / 2.0, h / 2.0], [0, 0], [w, 0], [w, h], [0, h]], dtype=np.float32)
        projected = scope.adopt(vision.perspective_transform(outline, H)).value
        projected = projected + np.array(offset, dtype=np.float32)
        rotation = rotation_from_homography(H)

    center = (float(projected[0, 0]), float(projected[0, 1]))
    corners = [(float(x), float(y)) for x, y in projected[1:]]
    is_tracked = confidence >= match_threshold

    return TrackingResult(
        is_tracked=is_tracked,
        confidence=confidence,
        match_count=match_count,
        inlier_count=inliers,
        center=center,
        rotation=rotation,
        corners=corners,
        phase=TrackerPhase.TRACKING if is_tracked else TrackerPhase.LOST,
    )


class FeaturePoseTracker:
    """
    Sparse-feature pose tracker for circular ROIs.

    The tracker itself holds no per-ROI state: the caller owns the
    ReferenceDescriptor and passes it to every update.
    """

    def __init__(self, vision: VisionProvider, config: Optional[FeatureConfig] = None):
        self.config = config or FeatureConfig()
        self.vision = vision
        self.logger = logging.getLogger("FeaturePoseTracker")

    def fast_threshold_for(self, region: RoiRegion) -> int:
        if min(region.width, region.height) < self.config.small_roi_px:
            return self.config.small_roi_fast_threshold
        return self.config.fast_threshold

    def extract_features(self, region: RoiRegion) -> FeatureSet:
        """
        ORB keypoints and descriptors inside the ROI mask.

        The gray region is padded by the ORB border so that keypoints near
        the crop edge still get descriptors; the padding is masked out.

        Raises:
            VisionError: If an OpenCV primitive fails
        """
        mask = region.detection_mask if region.detection_mask is not None else region.mask
        with self.vision.scope() as scope:
            gray = scope.adopt(self.vision.to_gray(region.pixels))
            padded = scope.adopt(self.vision.pad(gray.value, ORB_BORDER))
            padded_mask = scope.adopt(np.pad(mask, ORB_BORDER, mode="constant", constant_values=0))

            keypoints, descriptors = self.vision.detect_features(
                padded.value,
                padded_mask.value,
                self.config.max_features,
                self.fast_threshold_for(region),
            )
            kp_handle = scope.adopt(keypoints)
            desc_handle = scope.adopt(descriptors)

            if desc_handle.value is None or len(kp_handle.value) == 0:
                return FeatureSet.empty(region.size)

            points = np.array([kp.pt for kp in kp_handle.value], dtype=np.float32) - ORB_BORDER
            return FeatureSet(points, desc_handle.value.copy(), region.size)

    def capture_reference(self, reference: ReferenceDescriptor, features: FeatureSet,
                          region: RoiRegion, now: Optional[float] = None) -> bool:
        """Store the feature part of a reference if there are enough keypoints."""
        if features.count < self.config.min_keypoints:
            return False
        reference.features = features
        reference.pixels = region.pixels.copy()
        reference.features_captured_at = now if now is not None else time.monotonic() * 1000.0
        self.logger.info(f"Reference captured for {region.roi_id}: {features.count} keypoints")
        return True

    def match(self, reference: ReferenceDescriptor, features: FeatureSet, region: RoiRegion) -> TrackingResult:
        """Match current features against the reference and estimate the pose."""
        cfg = self.config
        ref = reference.features
        if ref is None:
            return TrackingResult.lost(keypoint_count=features.count, phase=TrackerPhase.UNINITIALIZED)
        if features.count < cfg.min_keypoints:
            return TrackingResult.lost(keypoint_count=features.count)

        matches = match_descriptors(
            ref.descriptors, ref.points,
            features.descriptors, features.points,
            cfg.max_match_distance, cfg.spatial_weight,
        )
        if len(matches) < cfg.min_matches:
            self.logger.debug(f"{region.roi_id}: only {len(matches)} matches")
            return TrackingResult.lost(keypoint_count=features.count, match_count=len(matches))

        ref_pts = ref.points[[m[0] for m in matches]]
        cur_pts = features.points[[m[1] for m in matches]]
        result = estimate_pose(
            ref_pts, cur_pts, ref.size, self.vision,
            offset=region.offset,
            match_threshold=cfg.match_threshold,
            min_matches=cfg.min_matches,
            reproj_threshold=cfg.ransac_reproj_threshold,
        )
        result.keypoint_count = features.count
        return result

    def track(self, reference: ReferenceDescriptor, region: RoiRegion, now: Optional[float] = None) -> TrackingResult:
        """
        One tracking step for one ROI.

        Captures the reference on the first region with enough keypoints,
        otherwise matches against it. Only the feature part of the
        reference is touched.

        Raises:
            VisionError: If an OpenCV primitive fails
        """
        features = self.extract_features(region)
        if not reference.has_features:
            if self.capture_reference(reference, features, region, now):
                return TrackingResult.lost(keypoint_count=features.count, phase=TrackerPhase.REFERENCE_CAPTURED)
            return TrackingResult.lost(keypoint_count=features.count, phase=TrackerPhase.UNINITIALIZED)
        return self.match(reference, features, region)

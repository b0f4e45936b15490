"""
PinchPad Shape Identity - Hu-moment re-identification

A contour's identity is its 7 Hu moments in log space. Two contours are
compared with a weighted L1 distance (low-order moments count more, they
are the most stable under noise) mapped to a [0, 1] similarity:

    d = sum(w_i * |a_i - b_i|) / sum(w_i)
    similarity = exp(-3 * d)

Malformed input never raises: it simply scores 0.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .vision import VisionProvider


HU_WEIGHTS = (2.0, 1.5, 1.0, 1.0, 0.8, 0.8, 0.5)
HU_EPSILON = 1e-10
SIMILARITY_DECAY = 3.0
DEFAULT_MATCH_THRESHOLD = 0.8

logger = logging.getLogger(__name__)

@dataclass
class ShapeMatch:
    """Result of comparing a reference descriptor against candidates."""
    index: int          # -1 when there was nothing to compare
    score: float
    accepted: bool


def hu_descriptor(contour: np.ndarray, vision: VisionProvider) -> List[float]:
    """
    Log-scaled Hu moments of a contour.

    Returns:
        7 floats, each log(|hu| + 1e-10)
    """
    hu = vision.hu_moments(vision.moments(contour))
    return [math.log(abs(float(m)) + HU_EPSILON) for m in hu]


def _as_vector(descriptor) -> Optional[np.ndarray]:
    if descriptor is None:
        return None
    try:
        vec = np.asarray(descriptor, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        return None
    if vec.shape[0] != len(HU_WEIGHTS) or not np.all(np.isfinite(vec)):
        return None
    return vec


def similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Weighted Hu-moment similarity in [0, 1].

    Symmetric, and exactly 1.0 for identical descriptors. Missing,
    wrong-length or non-finite descriptors score 0.0.
    """
    va = _as_vector(a)
    vb = _as_vector(b)
    if va is None or vb is None:
        return 0.0
    weights = np.asarray(HU_WEIGHTS)
    distance = float(np.sum(weights * np.abs(va - vb)) / np.sum(weights))
    return float(math.exp(-SIMILARITY_DECAY * distance))


def best_match(
    reference: Optional[Sequence[float]],
    candidates: Sequence[Optional[Sequence[float]]],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> ShapeMatch:
    """
    Find the candidate most similar to the reference.

    Every candidate is scored; the highest wins. The match is accepted
    only when that score reaches the threshold.
    """
    best_index = -1
    best_score = 0.0
    for i, candidate in enumerate(candidates):
        score = similarity(reference, candidate)
        if score > best_score:
            best_index = i
            best_score = score

    accepted = best_index >= 0 and best_score >= threshold
    logger.debug(f"Best shape match: index={best_index} score={best_score:.3f} accepted={accepted}")
    return ShapeMatch(index=best_index, score=best_score, accepted=accepted)
